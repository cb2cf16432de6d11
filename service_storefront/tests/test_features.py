"""
Tests for home page feature images.
"""

import pytest

from shared.errors import NotFoundError
from service_storefront.app.features.service import FeatureService
from service_storefront.app.models import FeatureImageRequest


@pytest.fixture
def features(persistence):
    return FeatureService(persistence)


class TestFeatureService:
    """Test cases for FeatureService."""

    @pytest.mark.asyncio
    async def test_added_images_are_listed(self, features):
        """Test images come back in the order they were added."""
        await features.add(FeatureImageRequest(image="https://cdn.example.com/banner-1.jpg"))
        await features.add(FeatureImageRequest(image="https://cdn.example.com/banner-2.jpg"))

        images = [feature["image"] for feature in await features.list()]

        assert images == ["https://cdn.example.com/banner-1.jpg", "https://cdn.example.com/banner-2.jpg"]

    @pytest.mark.asyncio
    async def test_delete(self, features):
        """Test a deleted image leaves the list."""
        feature = await features.add(FeatureImageRequest(image="https://cdn.example.com/banner.jpg"))

        await features.delete(feature["_id"])

        assert await features.list() == []

    @pytest.mark.asyncio
    async def test_delete_unknown_is_404(self, features):
        """Test deleting a missing image."""
        with pytest.raises(NotFoundError):
            await features.delete("64b7f0c2a1b2c3d4e5f60718")
