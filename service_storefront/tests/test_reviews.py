"""
Tests for embedded product reviews.
"""

import asyncio

import pytest

from shared.errors import AuthorizationError, NotFoundError
from service_storefront.app.models import ReviewRequest, SessionUser
from service_storefront.app.reviews.service import ReviewService

from .conftest import seed_product


@pytest.fixture
def reviews(persistence, catalog, invalidator):
    return ReviewService(persistence, catalog, invalidator)


def _user(n: int) -> SessionUser:
    return SessionUser(id=f"user-{n}", user_name=f"reviewer{n}")


class TestReviewService:
    """Test cases for ReviewService."""

    @pytest.mark.asyncio
    async def test_average_recomputed_on_add_and_delete(self, reviews, persistence):
        """Test ratings 5, 3, 4 average 4.0 and 4.5 once the 3 is removed."""
        product_id = seed_product(persistence)

        for n, rating in enumerate([5, 3, 4]):
            product = await reviews.add_review(product_id, _user(n), ReviewRequest(rating=rating))
        assert product["averageReview"] == 4.0

        three = next(r for r in product["reviews"] if r["rating"] == 3)
        product = await reviews.delete_review(product_id, three["_id"], _user(1))

        assert product["averageReview"] == 4.5
        assert len(product["reviews"]) == 2

    @pytest.mark.asyncio
    async def test_concurrent_reviews_are_both_kept(self, reviews, persistence):
        """Test two users reviewing at once both land and both count in the average."""
        product_id = seed_product(persistence)
        get_product = persistence.get_product

        async def slow_get_product(pid):
            await asyncio.sleep(0)
            return await get_product(pid)

        persistence.get_product = slow_get_product

        await asyncio.gather(
            reviews.add_review(product_id, _user(1), ReviewRequest(rating=5)),
            reviews.add_review(product_id, _user(2), ReviewRequest(rating=2)),
        )

        stored = persistence.products.documents[product_id]
        assert sorted(r["user"] for r in stored["reviews"]) == ["user-1", "user-2"]
        assert stored["averageReview"] == 3.5

    @pytest.mark.asyncio
    async def test_second_review_by_same_user_updates(self, reviews, persistence):
        """Test a user's repeat review replaces their earlier rating."""
        product_id = seed_product(persistence)

        await reviews.add_review(product_id, _user(1), ReviewRequest(rating=2))
        product = await reviews.add_review(product_id, _user(1), ReviewRequest(rating=5, comment="Grew on me"))

        assert len(product["reviews"]) == 1
        assert product["averageReview"] == 5

    @pytest.mark.asyncio
    async def test_review_invalidates_product_detail(self, reviews, catalog, persistence):
        """Test a cached product detail shows the new average after a review."""
        product_id = seed_product(persistence)
        assert (await catalog.get_product(product_id))["averageReview"] == 0

        await reviews.add_review(product_id, _user(1), ReviewRequest(rating=4))

        assert (await catalog.get_product(product_id))["averageReview"] == 4

    @pytest.mark.asyncio
    async def test_cannot_delete_someone_elses_review(self, reviews, persistence):
        """Test only the author or an admin may delete a review."""
        product_id = seed_product(persistence)
        product = await reviews.add_review(product_id, _user(1), ReviewRequest(rating=4))
        review_id = product["reviews"][0]["_id"]

        with pytest.raises(AuthorizationError):
            await reviews.delete_review(product_id, review_id, _user(2))

        admin = SessionUser(id="admin", role="admin")
        product = await reviews.delete_review(product_id, review_id, admin)
        assert product["reviews"] == []
        assert product["averageReview"] == 0

    @pytest.mark.asyncio
    async def test_delete_missing_review(self, reviews, persistence):
        """Test deleting an unknown review is a 404."""
        product_id = seed_product(persistence)

        with pytest.raises(NotFoundError):
            await reviews.delete_review(product_id, "missing", _user(1))
