"""
Redis cache store.
"""

import json
from datetime import datetime
from typing import Any, Iterable, Optional

import redis.asyncio as redis

from shared.errors import ServiceError
from shared.logging import get_logger

from .store import CacheEntry, CacheStore, dumps_payload, utcnow


class RedisCacheStore(CacheStore):
    """Entries under ``cache:<key>``; each tag is a set of entry keys under ``cache-tag:<tag>``."""

    name = "redis"

    ENTRY_PREFIX = "cache:"
    TAG_PREFIX = "cache-tag:"

    def __init__(self, redis_url: str, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.redis = client
        self.logger = get_logger("storefront.cache.redis")

    async def start(self):
        """Connect to Redis."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
        try:
            await self.redis.ping()
        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise ServiceError("Cache store unavailable", {"backend": "redis"})

        self.logger.info("Redis cache store started")

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Redis cache store stopped")

    def _entry_key(self, key: str) -> str:
        return f"{self.ENTRY_PREFIX}{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.TAG_PREFIX}{tag}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.redis.get(self._entry_key(key))
        if not raw:
            return None

        data = json.loads(raw)
        return CacheEntry(
            key=key,
            payload=json.loads(data["payload"]),
            tags=data.get("tags", []),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )

    async def put(self, key: str, payload: Any, tags: Iterable[str]) -> None:
        tags = sorted(set(tags))
        entry_key = self._entry_key(key)
        record = json.dumps({
            "payload": dumps_payload(payload),
            "tags": tags,
            "updated_at": utcnow().isoformat(),
        })

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.set(entry_key, record)
            for tag in tags:
                pipe.sadd(self._tag_key(tag), entry_key)
            await pipe.execute()

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        tag_keys = [self._tag_key(tag) for tag in tags]
        if not tag_keys:
            return 0

        entry_keys = set()
        for tag_key in tag_keys:
            entry_keys.update(await self.redis.smembers(tag_key))

        deleted = 0
        if entry_keys:
            deleted = await self.redis.delete(*entry_keys)
        await self.redis.delete(*tag_keys)
        return deleted

    async def clear(self, prefix: Optional[str] = None) -> int:
        pattern = f"{self.ENTRY_PREFIX}{prefix or ''}*"
        keys = [key async for key in self.redis.scan_iter(match=pattern)]
        deleted = await self.redis.delete(*keys) if keys else 0

        if prefix is None:
            tag_keys = [key async for key in self.redis.scan_iter(match=f"{self.TAG_PREFIX}*")]
            if tag_keys:
                await self.redis.delete(*tag_keys)

        self.logger.info("Cleared cache keys", prefix=prefix, deleted=deleted)
        return deleted

    async def ping(self) -> bool:
        return bool(await self.redis.ping())
