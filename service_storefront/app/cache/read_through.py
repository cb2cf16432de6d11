"""
Read-through access to the cache store with read-time TTL checks.
"""

import json
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from shared.errors import ServiceError, StoreException
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .store import CacheEntry, CacheKey, CacheStore, dumps_payload, utcnow


def normalize_payload(payload: Any) -> Any:
    """Return the payload exactly as it will read back from the store."""
    return json.loads(dumps_payload(payload))


class ReadThroughCache:
    """Serve fresh entries from the store, otherwise recompute and upsert.

    Store failures are logged and treated as misses; a result computed while
    the store is down is still returned.
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: float,
        metrics: Optional[MetricsCollector] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.metrics = metrics
        self.clock = clock or utcnow
        self.logger = get_logger("storefront.cache.read_through")

    async def fetch(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        rendered = key.render()

        entry = await self._lookup(rendered)
        if entry is not None and entry.is_fresh(self.clock(), ttl):
            self._record(key.namespace, "hit")
            return entry.payload

        self._record(key.namespace, "stale" if entry is not None else "miss")

        start = time.perf_counter()
        try:
            payload = normalize_payload(await compute())
        except StoreException:
            raise
        except Exception as e:
            self.logger.error("Recompute failed", key=rendered, error=str(e))
            raise ServiceError("Failed to load data", {"namespace": key.namespace}) from e

        if self.metrics:
            self.metrics.observe_recompute(key.namespace, time.perf_counter() - start)

        try:
            await self.store.put(rendered, payload, key.tags)
        except Exception as e:
            self.logger.warning("Cache write failed", key=rendered, error=str(e))

        return payload

    async def _lookup(self, rendered: str) -> Optional[CacheEntry]:
        try:
            return await self.store.get(rendered)
        except Exception as e:
            self.logger.warning("Cache read failed, recomputing", key=rendered, error=str(e))
            return None

    def _record(self, namespace: str, result: str):
        if self.metrics:
            self.metrics.record_cache_lookup(namespace, result)
