"""
Feature images shown in the storefront's home page banner.
"""

from typing import Any, Dict, List

from shared.errors import NotFoundError
from shared.logging import get_logger

from ..models import FeatureImageRequest
from ..persistence.mongo import MongoPersistence


class FeatureService:
    def __init__(self, persistence: MongoPersistence):
        self.persistence = persistence
        self.logger = get_logger("storefront.features")

    async def add(self, request: FeatureImageRequest) -> Dict[str, Any]:
        feature = await self.persistence.insert_feature({"image": request.image})
        self.logger.info("Feature image added", feature_id=feature["_id"])
        return feature

    async def list(self) -> List[Dict[str, Any]]:
        return await self.persistence.list_features()

    async def delete(self, feature_id: str):
        if not await self.persistence.delete_feature(feature_id):
            raise NotFoundError("Not found", {"feature_id": feature_id})
        self.logger.info("Feature image deleted", feature_id=feature_id)
