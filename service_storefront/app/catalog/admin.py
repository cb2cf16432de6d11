"""
Admin writes to products, categories and brands.
"""

from math import ceil
from typing import Any, Dict, Optional

from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger

from ..models import BrandCreateRequest, BrandUpdateRequest, CategoryCreateRequest, ProductCreateRequest, ProductUpdateRequest
from ..persistence.mongo import MongoPersistence
from .invalidation import CacheInvalidator
from .service import CatalogService


class CatalogAdminService:
    """Catalog mutations. Each write awaits its cache invalidation before returning."""

    def __init__(self, persistence: MongoPersistence, catalog: CatalogService, invalidator: CacheInvalidator):
        self.persistence = persistence
        self.catalog = catalog
        self.invalidator = invalidator
        self.logger = get_logger("storefront.catalog.admin")

    async def _require_reference(self, kind: str, reference_id: str):
        if not await self.persistence.get_references(kind, [reference_id]):
            raise ValidationError(f"Unknown {kind}", {f"{kind}_id": reference_id})

    @staticmethod
    def _require_images(images):
        images = [image for image in images or [] if image and image.strip()]
        if not images:
            raise ValidationError("At least one product image is required.")
        return images

    # Products

    async def add_product(self, request: ProductCreateRequest) -> Dict[str, Any]:
        images = self._require_images(request.images)
        await self._require_reference("category", request.category_id)
        await self._require_reference("brand", request.brand_id)

        product = await self.persistence.insert_product({
            "images": images,
            "title": request.title,
            "description": request.description,
            "categoryId": request.category_id,
            "brandId": request.brand_id,
            "price": request.price,
            "salePrice": (request.sale_price or 0) if request.is_on_sale else 0,
            "isOnSale": request.is_on_sale,
            "totalStock": request.total_stock,
            "reviews": [],
            "averageReview": 0,
        })

        await self.invalidator.product_changed(product["_id"])
        self.logger.info("Product added", product_id=product["_id"], title=product["title"])
        return product

    async def edit_product(self, product_id: str, request: ProductUpdateRequest) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"images": self._require_images(request.images)}
        for name, value in (
            ("title", request.title),
            ("description", request.description),
            ("price", request.price),
            ("salePrice", request.sale_price),
            ("totalStock", request.total_stock),
            ("isOnSale", request.is_on_sale),
        ):
            if value is not None:
                fields[name] = value

        if request.category_id:
            await self._require_reference("category", request.category_id)
            fields["categoryId"] = request.category_id
        if request.brand_id:
            await self._require_reference("brand", request.brand_id)
            fields["brandId"] = request.brand_id
        if request.is_on_sale is False:
            fields["salePrice"] = 0

        product = await self.persistence.update_product(product_id, fields)
        if product is None:
            raise NotFoundError("Product not found.", {"product_id": product_id})

        await self.invalidator.product_changed(product_id)
        self.logger.info("Product updated", product_id=product_id, fields=sorted(fields))
        return product

    async def delete_product(self, product_id: str):
        if not await self.persistence.delete_product(product_id):
            raise NotFoundError("Product not found", {"product_id": product_id})

        await self.invalidator.product_changed(product_id)
        self.logger.info("Product deleted", product_id=product_id)

    async def list_products(
        self,
        category_id: Optional[str] = None,
        brand_id: Optional[str] = None,
        is_on_sale: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """Uncached admin listing."""
        query: Dict[str, Any] = {}
        if category_id:
            query["categoryId"] = category_id
        if brand_id:
            query["brandId"] = brand_id
        if is_on_sale is not None:
            query["isOnSale"] = is_on_sale

        products = await self.persistence.find_products(
            query, [("createdAt", -1), ("_id", 1)], skip=(page - 1) * limit, limit=limit
        )
        total = await self.persistence.count_products(query)
        return {
            "products": await self.catalog.populate_references(products),
            "pagination": {
                "total": total,
                "currentPage": page,
                "totalPages": ceil(total / limit) if total else 0,
            },
        }

    # Categories and brands

    async def create_category(self, request: CategoryCreateRequest) -> Dict[str, Any]:
        category = await self.persistence.insert_reference("category", request.model_dump())
        await self.invalidator.categories_changed()
        self.logger.info("Category created", category_id=category["_id"], name=category["name"])
        return category

    async def delete_category(self, category_id: str):
        if not await self.persistence.delete_reference("category", category_id):
            raise NotFoundError("Category not found", {"category_id": category_id})
        await self.invalidator.categories_changed()
        self.logger.info("Category deleted", category_id=category_id)

    async def create_brand(self, request: BrandCreateRequest) -> Dict[str, Any]:
        brand = await self.persistence.insert_reference("brand", request.model_dump())
        await self.invalidator.brands_changed()
        self.logger.info("Brand created", brand_id=brand["_id"], name=brand["name"])
        return brand

    async def edit_brand(self, brand_id: str, request: BrandUpdateRequest) -> Dict[str, Any]:
        fields = request.model_dump(exclude_none=True)
        if not fields:
            raise ValidationError("Nothing to update")

        brand = await self.persistence.update_reference("brand", brand_id, fields)
        if brand is None:
            raise NotFoundError("Brand not found", {"brand_id": brand_id})
        await self.invalidator.brands_changed()
        self.logger.info("Brand updated", brand_id=brand_id)
        return brand

    async def delete_brand(self, brand_id: str):
        if not await self.persistence.delete_reference("brand", brand_id):
            raise NotFoundError("Brand not found", {"brand_id": brand_id})
        await self.invalidator.brands_changed()
        self.logger.info("Brand deleted", brand_id=brand_id)
