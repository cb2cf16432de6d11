"""
MongoDB persistence layer for the storefront service.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from shared.errors import ConflictError
from shared.logging import get_logger


Query = Dict[str, Any]
Sort = List[Tuple[str, int]]

REFERENCE_COLLECTIONS = {
    "category": "categories",
    "brand": "brands",
}


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Parse an id from a path or body; malformed ids behave like unknown ones."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def new_id() -> str:
    return str(ObjectId())


def serialize_document(value: Any) -> Any:
    """Convert ObjectIds (including nested ``_id`` fields) to strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: serialize_document(item) for key, item in value.items()}
    if isinstance(value, list):
        return [serialize_document(item) for item in value]
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MongoPersistence:
    """Document storage for the catalog, carts, addresses, orders, applications and feature images.

    Ids cross this boundary as strings. Product category and brand
    references, cart lines and order lines store ids as strings too.
    """

    def __init__(self, mongo_uri: str, database_name: str, client: Optional[AsyncMongoClient] = None):
        self.client = client or AsyncMongoClient(
            mongo_uri,
            tz_aware=True,
            serverSelectionTimeoutMS=5000,
        )
        self.db = self.client[database_name]
        self.logger = get_logger("storefront.persistence.mongo")

        self.products = self.db["products"]
        self.carts = self.db["carts"]
        self.addresses = self.db["addresses"]
        self.orders = self.db["orders"]
        self.distributor_applications = self.db["distributor_applications"]
        self.features = self.db["features"]

    async def start(self):
        """Create the indexes the service relies on."""
        await self.products.create_index([("categoryId", ASCENDING)])
        await self.products.create_index([("brandId", ASCENDING)])
        await self.products.create_index([("price", ASCENDING)])
        await self.products.create_index([("createdAt", DESCENDING)])
        for collection in REFERENCE_COLLECTIONS.values():
            await self.db[collection].create_index([("name", ASCENDING)], unique=True)
        await self.carts.create_index([("userId", ASCENDING)], unique=True)
        await self.addresses.create_index([("userId", ASCENDING)])
        await self.orders.create_index([("userId", ASCENDING)])
        await self.orders.create_index([("orderDate", DESCENDING)])
        await self.orders.create_index([("cartItems.productId", ASCENDING)])
        await self.orders.create_index([("orderStatus", ASCENDING)])
        await self.distributor_applications.create_index([("userId", ASCENDING)], unique=True)

        self.logger.info("MongoDB persistence started", database=self.db.name)

    async def close(self):
        await self.client.close()
        self.logger.info("MongoDB persistence stopped")

    async def ping(self) -> bool:
        await self.db.command("ping")
        return True

    # Products

    async def find_products(self, query: Query, sort: Sort, skip: int = 0, limit: int = 0) -> List[Dict[str, Any]]:
        cursor = self.products.find(query).sort(sort).skip(skip).limit(limit)
        return [serialize_document(doc) async for doc in cursor]

    async def count_products(self, query: Query) -> int:
        return await self.products.count_documents(query)

    async def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        return serialize_document(await self.products.find_one({"_id": oid}))

    async def get_products(self, product_ids: Iterable[str]) -> List[Dict[str, Any]]:
        oids = [oid for oid in (to_object_id(pid) for pid in product_ids) if oid is not None]
        if not oids:
            return []
        return [serialize_document(doc) async for doc in self.products.find({"_id": {"$in": oids}})]

    async def insert_product(self, document: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        document = {**document, "createdAt": now, "updatedAt": now}
        result = await self.products.insert_one(document)
        document["_id"] = result.inserted_id
        return serialize_document(document)

    async def update_product(self, product_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(product_id)
        if oid is None:
            return None
        document = await self.products.find_one_and_update(
            {"_id": oid},
            {"$set": {**fields, "updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(document)

    async def delete_product(self, product_id: str) -> bool:
        oid = to_object_id(product_id)
        if oid is None:
            return False
        result = await self.products.delete_one({"_id": oid})
        return result.deleted_count == 1

    async def decrement_stock_if_available(self, product_id: str, quantity: int) -> bool:
        """Atomically take ``quantity`` units unless that would make stock negative."""
        oid = to_object_id(product_id)
        if oid is None:
            return False
        result = await self.products.update_one(
            {"_id": oid, "totalStock": {"$gte": quantity}},
            {"$inc": {"totalStock": -quantity}},
        )
        return result.modified_count == 1

    async def increment_stock(self, product_id: str, quantity: int) -> None:
        oid = to_object_id(product_id)
        if oid is not None:
            await self.products.update_one({"_id": oid}, {"$inc": {"totalStock": quantity}})

    async def upsert_review(
        self, product_id: str, review: Dict[str, Any]
    ) -> Optional[Tuple[Dict[str, Any], bool]]:
        """Update the author's embedded review in place, or push a new one.

        Returns the product and whether the review was created, or None when
        the product does not exist.
        """
        oid = to_object_id(product_id)
        if oid is None:
            return None

        for _ in range(2):
            result = await self.products.update_one(
                {"_id": oid, "reviews.user": review["user"]},
                {"$set": {
                    "reviews.$.rating": review["rating"],
                    "reviews.$.comment": review["comment"],
                    "reviews.$.updatedAt": review["updatedAt"],
                }},
            )
            if result.matched_count:
                created = False
                break

            # The author filter keeps a concurrent first review from being pushed twice
            result = await self.products.update_one(
                {"_id": oid, "reviews.user": {"$ne": review["user"]}},
                {"$push": {"reviews": review}},
            )
            if result.matched_count:
                created = True
                break
        else:
            return None

        product = await self._refresh_average(oid)
        return (product, created) if product is not None else None

    async def pull_review(self, product_id: str, review_id: str) -> Optional[Dict[str, Any]]:
        """Remove one embedded review; None when the product or review is gone."""
        oid = to_object_id(product_id)
        if oid is None:
            return None

        result = await self.products.update_one(
            {"_id": oid, "reviews._id": review_id},
            {"$pull": {"reviews": {"_id": review_id}}},
        )
        if not result.modified_count:
            return None
        return await self._refresh_average(oid)

    async def _refresh_average(self, oid: ObjectId) -> Optional[Dict[str, Any]]:
        document = await self.products.find_one_and_update(
            {"_id": oid},
            [{"$set": {
                "averageReview": {"$ifNull": [{"$avg": "$reviews.rating"}, 0]},
                "updatedAt": _now(),
            }}],
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(document) if document is not None else None

    # Categories and brands

    def _references(self, kind: str):
        return self.db[REFERENCE_COLLECTIONS[kind]]

    async def list_references(self, kind: str) -> List[Dict[str, Any]]:
        cursor = self._references(kind).find({}).sort([("name", ASCENDING)])
        return [serialize_document(doc) async for doc in cursor]

    async def get_references(self, kind: str, ids: Iterable[str]) -> List[Dict[str, Any]]:
        oids = [oid for oid in (to_object_id(value) for value in ids) if oid is not None]
        if not oids:
            return []
        cursor = self._references(kind).find({"_id": {"$in": oids}})
        return [serialize_document(doc) async for doc in cursor]

    async def insert_reference(self, kind: str, document: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        document = {**document, "createdAt": now, "updatedAt": now}
        try:
            result = await self._references(kind).insert_one(document)
        except DuplicateKeyError:
            raise ConflictError(f"{kind.title()} already exists", {"name": document.get("name")})
        document["_id"] = result.inserted_id
        return serialize_document(document)

    async def update_reference(self, kind: str, reference_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(reference_id)
        if oid is None:
            return None
        try:
            document = await self._references(kind).find_one_and_update(
                {"_id": oid},
                {"$set": {**fields, "updatedAt": _now()}},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ConflictError(f"{kind.title()} already exists", {"name": fields.get("name")})
        return serialize_document(document)

    async def delete_reference(self, kind: str, reference_id: str) -> bool:
        oid = to_object_id(reference_id)
        if oid is None:
            return False
        result = await self._references(kind).delete_one({"_id": oid})
        return result.deleted_count == 1

    # Carts

    async def get_cart(self, user_id: str) -> Optional[Dict[str, Any]]:
        return serialize_document(await self.carts.find_one({"userId": user_id}))

    async def save_cart(self, user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        now = _now()
        document = await self.carts.find_one_and_update(
            {"userId": user_id},
            {"$set": {"items": items, "updatedAt": now}, "$setOnInsert": {"createdAt": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(document)

    async def delete_cart(self, user_id: str, cart_id: Optional[str] = None) -> bool:
        query: Query = {"userId": user_id}
        if cart_id:
            oid = to_object_id(cart_id)
            if oid is None:
                return False
            query["_id"] = oid
        result = await self.carts.delete_one(query)
        return result.deleted_count == 1

    # Addresses

    async def insert_address(self, document: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        document = {**document, "createdAt": now, "updatedAt": now}
        result = await self.addresses.insert_one(document)
        document["_id"] = result.inserted_id
        return serialize_document(document)

    async def list_addresses(self, user_id: str) -> List[Dict[str, Any]]:
        cursor = self.addresses.find({"userId": user_id}).sort([("createdAt", ASCENDING)])
        return [serialize_document(doc) async for doc in cursor]

    async def update_address(self, user_id: str, address_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = to_object_id(address_id)
        if oid is None:
            return None
        document = await self.addresses.find_one_and_update(
            {"_id": oid, "userId": user_id},
            {"$set": {**fields, "updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(document)

    async def delete_address(self, user_id: str, address_id: str) -> bool:
        oid = to_object_id(address_id)
        if oid is None:
            return False
        result = await self.addresses.delete_one({"_id": oid, "userId": user_id})
        return result.deleted_count == 1

    # Orders

    async def insert_order(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document = dict(document)
        result = await self.orders.insert_one(document)
        document["_id"] = result.inserted_id
        return serialize_document(document)

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        oid = to_object_id(order_id)
        if oid is None:
            return None
        return serialize_document(await self.orders.find_one({"_id": oid}))

    async def find_orders(self, query: Query, sort: Sort, skip: int = 0, limit: int = 0) -> List[Dict[str, Any]]:
        cursor = self.orders.find(query).sort(sort).skip(skip).limit(limit)
        return [serialize_document(doc) async for doc in cursor]

    async def count_orders(self, query: Query) -> int:
        return await self.orders.count_documents(query)

    async def update_order(
        self, order_id: str, fields: Dict[str, Any], *, where: Optional[Query] = None
    ) -> Optional[Dict[str, Any]]:
        """Set ``fields`` if the order exists and also matches ``where``.

        Returns the updated order, or None when nothing matched. The match and
        the update are a single atomic operation.
        """
        oid = to_object_id(order_id)
        if oid is None:
            return None
        document = await self.orders.find_one_and_update(
            {"_id": oid, **(where or {})},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(document)

    async def distinct_order_customers(self, query: Query) -> int:
        return len(await self.orders.distinct("userId", query))

    async def sum_order_totals(self, query: Query) -> float:
        cursor = await self.orders.aggregate([
            {"$match": query},
            {"$group": {"_id": None, "total": {"$sum": "$totalAmount"}}},
        ])
        rows = await cursor.to_list()
        return rows[0]["total"] if rows else 0

    async def top_products(self, limit: int = 5) -> List[Dict[str, Any]]:
        cursor = await self.orders.aggregate([
            {"$unwind": "$cartItems"},
            {"$group": {
                "_id": "$cartItems.productId",
                "title": {"$first": "$cartItems.title"},
                "image": {"$first": "$cartItems.image"},
                "totalQty": {"$sum": "$cartItems.quantity"},
            }},
            {"$sort": {"totalQty": -1, "_id": 1}},
            {"$limit": limit},
        ])
        return serialize_document(await cursor.to_list())

    async def daily_sales(self, since: datetime) -> List[Dict[str, Any]]:
        cursor = await self.orders.aggregate([
            {"$match": {"orderDate": {"$gte": since}}},
            {"$group": {
                "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$orderDate"}},
                "revenue": {"$sum": "$totalAmount"},
                "orders": {"$sum": 1},
            }},
            {"$sort": {"_id": 1}},
        ])
        return [
            {"day": row["_id"], "revenue": row["revenue"], "orders": row["orders"]}
            for row in await cursor.to_list()
        ]

    # Distributor applications

    async def insert_application(self, document: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        document = {**document, "createdAt": now, "updatedAt": now}
        try:
            result = await self.distributor_applications.insert_one(document)
        except DuplicateKeyError:
            raise ConflictError("You have already applied. Please check your distributor status.")
        document["_id"] = result.inserted_id
        return serialize_document(document)

    async def find_application(self, query: Query) -> Optional[Dict[str, Any]]:
        return serialize_document(await self.distributor_applications.find_one(query))

    async def list_applications(self) -> List[Dict[str, Any]]:
        cursor = self.distributor_applications.find({}).sort([("createdAt", DESCENDING)])
        return [serialize_document(doc) async for doc in cursor]

    async def update_application(
        self, application_id: str, fields: Dict[str, Any], *, where: Optional[Query] = None
    ) -> Optional[Dict[str, Any]]:
        oid = to_object_id(application_id)
        if oid is None:
            return None
        document = await self.distributor_applications.find_one_and_update(
            {"_id": oid, **(where or {})},
            {"$set": {**fields, "updatedAt": _now()}},
            return_document=ReturnDocument.AFTER,
        )
        return serialize_document(document)

    async def delete_application(self, application_id: str, *, where: Optional[Query] = None) -> bool:
        oid = to_object_id(application_id)
        if oid is None:
            return False
        result = await self.distributor_applications.delete_one({"_id": oid, **(where or {})})
        return result.deleted_count == 1

    # Feature images

    async def insert_feature(self, document: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        document = {**document, "createdAt": now, "updatedAt": now}
        result = await self.features.insert_one(document)
        document["_id"] = result.inserted_id
        return serialize_document(document)

    async def list_features(self) -> List[Dict[str, Any]]:
        cursor = self.features.find({}).sort([("createdAt", ASCENDING)])
        return [serialize_document(doc) async for doc in cursor]

    async def delete_feature(self, feature_id: str) -> bool:
        oid = to_object_id(feature_id)
        if oid is None:
            return False
        result = await self.features.delete_one({"_id": oid})
        return result.deleted_count == 1
