"""Cache stores for computed catalog and dashboard payloads."""

from shared.config import BaseConfig

from .mongo_store import MongoCacheStore
from .redis_store import RedisCacheStore
from .store import CacheEntry, CacheKey, CacheStore


def build_cache_store(config: BaseConfig, database) -> CacheStore:
    """Select the cache backend named by ``cache_backend``."""
    if config.cache_backend == "redis":
        return RedisCacheStore(config.redis_url)
    if config.cache_backend == "mongo":
        return MongoCacheStore(database)
    raise ValueError(f"Unknown cache backend: {config.cache_backend}")


__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheStore",
    "MongoCacheStore",
    "RedisCacheStore",
    "build_cache_store",
]
