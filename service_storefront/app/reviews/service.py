"""
Product reviews embedded in the product document.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from shared.errors import AuthorizationError, NotFoundError
from shared.logging import get_logger

from ..catalog.invalidation import CacheInvalidator
from ..catalog.service import CatalogService
from ..models import ReviewRequest, SessionUser
from ..persistence.mongo import MongoPersistence, new_id


class ReviewService:
    """Maintains each product's review list and its ``averageReview``.

    Each change is a single update of the embedded list, and the average is
    recomputed by the database from the list it just wrote.
    """

    def __init__(self, persistence: MongoPersistence, catalog: CatalogService, invalidator: CacheInvalidator):
        self.persistence = persistence
        self.catalog = catalog
        self.invalidator = invalidator
        self.logger = get_logger("storefront.reviews")

    async def _get_product(self, product_id: str) -> Dict[str, Any]:
        product = await self.persistence.get_product(product_id)
        if product is None:
            raise NotFoundError("Product not found", {"product_id": product_id})
        return product

    async def list_reviews(self, product_id: str) -> List[Dict[str, Any]]:
        product = await self._get_product(product_id)
        return sorted(product.get("reviews", []), key=lambda r: str(r.get("createdAt", "")), reverse=True)

    async def add_review(self, product_id: str, user: SessionUser, request: ReviewRequest) -> Dict[str, Any]:
        """Add a review, or update the caller's existing one."""
        now = datetime.now(timezone.utc)
        review = {
            "_id": new_id(),
            "user": user.id,
            "userName": user.user_name,
            "rating": request.rating,
            "comment": request.comment,
            "createdAt": now,
            "updatedAt": now,
        }

        result = await self.persistence.upsert_review(product_id, review)
        if result is None:
            raise NotFoundError("Product not found", {"product_id": product_id})

        product, created = result
        return await self._changed(product, "Review added" if created else "Review updated", user.id)

    async def delete_review(self, product_id: str, review_id: str, user: SessionUser) -> Dict[str, Any]:
        product = await self._get_product(product_id)

        review = next((r for r in product.get("reviews", []) if r.get("_id") == review_id), None)
        if review is None:
            raise NotFoundError("Review not found", {"review_id": review_id})
        if review.get("user") != user.id and not user.is_admin:
            raise AuthorizationError("You can only delete your own review")

        product = await self.persistence.pull_review(product_id, review_id)
        if product is None:
            raise NotFoundError("Review not found", {"review_id": review_id})
        return await self._changed(product, "Review deleted", user.id)

    async def _changed(self, product: Dict[str, Any], event: str, user_id: str) -> Dict[str, Any]:
        await self.invalidator.product_changed(product["_id"])
        self.logger.info(
            event,
            product_id=product["_id"],
            user_id=user_id,
            average=product.get("averageReview"),
            count=len(product.get("reviews", [])),
        )

        populated = await self.catalog.populate_references([product])
        return populated[0]
