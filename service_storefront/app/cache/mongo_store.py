"""
Cache store kept in a collection of the primary document database.
"""

import json
import re
from datetime import timezone
from typing import Any, Iterable, Optional

from pymongo import ASCENDING
from pymongo.asynchronous.database import AsyncDatabase

from shared.logging import get_logger

from .store import CacheEntry, CacheStore, dumps_payload, utcnow


class MongoCacheStore(CacheStore):
    """Cache entries stored as ``{key, payload, tags, updatedAt}`` documents.

    The payload is kept as serialized JSON so that a hit returns exactly what
    the miss produced.
    """

    name = "mongo"

    def __init__(self, database: AsyncDatabase, collection_name: str = "product_cache"):
        self.collection = database[collection_name]
        self.logger = get_logger("storefront.cache.mongo")

    async def start(self) -> None:
        await self.collection.create_index([("key", ASCENDING)], unique=True)
        await self.collection.create_index([("tags", ASCENDING)])
        self.logger.info("Mongo cache store ready", collection=self.collection.name)

    async def get(self, key: str) -> Optional[CacheEntry]:
        document = await self.collection.find_one({"key": key})
        if document is None:
            return None

        updated_at = document["updatedAt"]
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)

        return CacheEntry(
            key=key,
            payload=json.loads(document["payload"]),
            tags=list(document.get("tags", [])),
            updated_at=updated_at,
        )

    async def put(self, key: str, payload: Any, tags: Iterable[str]) -> None:
        await self.collection.update_one(
            {"key": key},
            {"$set": {
                "payload": dumps_payload(payload),
                "tags": sorted(set(tags)),
                "updatedAt": utcnow(),
            }},
            upsert=True,
        )

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        tags = list(tags)
        if not tags:
            return 0
        result = await self.collection.delete_many({"tags": {"$in": tags}})
        return result.deleted_count

    async def clear(self, prefix: Optional[str] = None) -> int:
        query = {} if prefix is None else {"key": {"$regex": "^" + re.escape(prefix)}}
        result = await self.collection.delete_many(query)
        return result.deleted_count

    async def ping(self) -> bool:
        await self.collection.database.command("ping")
        return True
