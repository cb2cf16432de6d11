"""
Cache invalidation triggered by catalog and stock writes.
"""

from typing import Iterable, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..cache.store import (
    TAG_ANALYTICS,
    TAG_BRAND,
    TAG_CATEGORY,
    TAG_PRODUCT_LIST,
    CacheStore,
    product_tag,
)


class CacheInvalidator:
    """Purge cache entries by tag after a write.

    Callers await these methods before responding, so the next read after a
    successful write never hits an entry the write made stale. A store failure
    is logged and does not fail the write.
    """

    def __init__(self, store: CacheStore, metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("storefront.catalog.invalidation")

    async def categories_changed(self) -> int:
        return await self.invalidate([TAG_CATEGORY])

    async def brands_changed(self) -> int:
        return await self.invalidate([TAG_BRAND])

    async def product_changed(self, product_id: str) -> int:
        return await self.invalidate([TAG_PRODUCT_LIST, product_tag(product_id)])

    async def stock_changed(self, product_ids: Iterable[str]) -> int:
        return await self.invalidate(product_tag(pid) for pid in sorted(set(product_ids)))

    async def invalidate(self, tags: Iterable[str]) -> int:
        tags = list(tags)
        if not tags:
            return 0
        try:
            removed = await self.store.invalidate_tags(tags)
        except Exception as e:
            self.logger.error("Cache invalidation failed", tags=tags, error=str(e))
            return 0

        if self.metrics:
            for tag in tags:
                self.metrics.record_cache_invalidation(tag)
        self.logger.info("Cache invalidated", tags=tags, removed=removed)
        return removed

    async def clear_all(self) -> int:
        """Administrative clear of every cached payload."""
        removed = await self.store.clear()
        self.logger.info("Cache cleared", removed=removed)
        return removed

    async def clear_analytics(self) -> int:
        removed = await self.store.invalidate_tags([TAG_ANALYTICS])
        self.logger.info("Dashboard cache cleared", removed=removed)
        return removed
