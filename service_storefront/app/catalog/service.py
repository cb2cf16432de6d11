"""
Catalog read path: cached product listings, reference lists and product detail.
"""

from typing import Any, Dict, List

from shared.errors import NotFoundError
from shared.logging import get_logger
from shared.tracing import trace_operation

from ..cache.read_through import ReadThroughCache
from ..cache.store import TAG_BRAND, TAG_CATEGORY, TAG_PRODUCT_DETAIL, CacheKey, product_tag
from ..persistence.mongo import MongoPersistence
from .query import ListingQuery


CATEGORY_LIST_KEY = CacheKey("category-list", tags=(TAG_CATEGORY,))
BRAND_LIST_KEY = CacheKey("brand-list", tags=(TAG_BRAND,))


def product_detail_key(product_id: str) -> CacheKey:
    return CacheKey(f"product-detail:{product_id}", tags=(TAG_PRODUCT_DETAIL, product_tag(product_id)))


def _reference_summary(reference_id: Any, lookup: Dict[str, Dict[str, Any]]):
    reference = lookup.get(reference_id)
    if reference is None:
        return None
    return {"_id": reference["_id"], "name": reference.get("name", "")}


class CatalogService:
    """Answers catalog reads from the cache store when a fresh entry exists."""

    def __init__(self, persistence: MongoPersistence, cache: ReadThroughCache):
        self.persistence = persistence
        self.cache = cache
        self.logger = get_logger("storefront.catalog")

    async def list_products(self, query: ListingQuery) -> Dict[str, Any]:
        """Return ``{products, pagination}`` for one normalised listing query."""

        async def compute() -> Dict[str, Any]:
            with trace_operation("catalog.list_products", sort=query.sort_by, page=query.page):
                mongo_filter = query.to_mongo_filter()
                products = await self.persistence.find_products(
                    mongo_filter,
                    query.to_mongo_sort(),
                    skip=query.skip,
                    limit=query.limit,
                )
                total = await self.persistence.count_products(mongo_filter)
                products = await self.populate_references(products)

            self.logger.debug("Listing recomputed", total=total, returned=len(products))
            return {"products": products, "pagination": query.pagination(total)}

        return await self.cache.fetch(query.cache_key(), compute)

    async def list_categories(self) -> List[Dict[str, Any]]:
        async def compute():
            return await self.persistence.list_references("category")

        return await self.cache.fetch(CATEGORY_LIST_KEY, compute)

    async def list_brands(self) -> List[Dict[str, Any]]:
        async def compute():
            return await self.persistence.list_references("brand")

        return await self.cache.fetch(BRAND_LIST_KEY, compute)

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        # Misses are not cached; the lookup raises before anything is stored
        async def compute():
            product = await self.persistence.get_product(product_id)
            if product is None:
                raise NotFoundError("Product not found!", {"product_id": product_id})
            populated = await self.populate_references([product])
            return populated[0]

        return await self.cache.fetch(product_detail_key(product_id), compute)

    async def populate_references(self, products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Replace ``categoryId``/``brandId`` with ``{_id, name}`` (None when dangling)."""
        if not products:
            return products

        categories = await self.persistence.get_references(
            "category", {p.get("categoryId") for p in products if p.get("categoryId")}
        )
        brands = await self.persistence.get_references(
            "brand", {p.get("brandId") for p in products if p.get("brandId")}
        )
        category_lookup = {c["_id"]: c for c in categories}
        brand_lookup = {b["_id"]: b for b in brands}

        return [
            {
                **product,
                "categoryId": _reference_summary(product.get("categoryId"), category_lookup),
                "brandId": _reference_summary(product.get("brandId"), brand_lookup),
            }
            for product in products
        ]
