"""
Cache store interface shared by the Mongo and Redis backends.

Entries are keyed by a rendered :class:`CacheKey` and carry a set of tags.
Writes invalidate by tag intersection rather than by matching key substrings.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Tuple
from urllib.parse import quote


# Entity-type tags
TAG_PRODUCT_LIST = "product-list"
TAG_PRODUCT_DETAIL = "product-detail"
TAG_CATEGORY = "category"
TAG_BRAND = "brand"
TAG_ANALYTICS = "analytics"


def product_tag(product_id: str) -> str:
    """Tag carried by every entry that embeds a single product."""
    return f"product:{product_id}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def dumps_payload(payload: Any) -> str:
    """Serialize a payload the same way on every write."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=_json_default)


@dataclass(frozen=True)
class CacheKey:
    """Structured cache key: a namespace, ordered parameters and invalidation tags."""

    namespace: str
    params: Tuple[Tuple[str, str], ...] = ()
    tags: Tuple[str, ...] = ()

    def render(self) -> str:
        if not self.params:
            return self.namespace
        # Values are percent-encoded except for the "," id list separator
        return self.namespace + ":" + "|".join(f"{name}={quote(value, safe=',')}" for name, value in self.params)

    def __str__(self) -> str:
        return self.render()


@dataclass
class CacheEntry:
    """A cached payload with its tags and last refresh time."""

    key: str
    payload: Any
    tags: List[str] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utcnow)

    def is_fresh(self, now: datetime, ttl_seconds: float) -> bool:
        return (now - self.updated_at).total_seconds() < ttl_seconds


class CacheStore(ABC):
    """Key/value store for computed listings."""

    name = "cache"

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for ``key`` regardless of age, or None."""

    @abstractmethod
    async def put(self, key: str, payload: Any, tags: Iterable[str]) -> None:
        """Insert or replace the entry for ``key`` and reset its timestamp."""

    @abstractmethod
    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        """Delete every entry carrying any of ``tags``. Returns the number removed."""

    @abstractmethod
    async def clear(self, prefix: Optional[str] = None) -> int:
        """Delete all entries, or only those whose key starts with ``prefix``."""

    async def start(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
