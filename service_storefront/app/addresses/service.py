"""
Saved delivery addresses.
"""

from typing import Any, Dict, List

from shared.errors import NotFoundError, ValidationError
from shared.logging import get_logger

from ..models import AddressRequest, AddressUpdateRequest
from ..persistence.mongo import MongoPersistence


class AddressService:
    def __init__(self, persistence: MongoPersistence):
        self.persistence = persistence
        self.logger = get_logger("storefront.addresses")

    async def add(self, user_id: str, request: AddressRequest) -> Dict[str, Any]:
        address = await self.persistence.insert_address({"userId": user_id, **request.model_dump()})
        self.logger.info("Address added", user_id=user_id, address_id=address["_id"])
        return address

    async def list(self, user_id: str) -> List[Dict[str, Any]]:
        return await self.persistence.list_addresses(user_id)

    async def edit(self, user_id: str, address_id: str, request: AddressUpdateRequest) -> Dict[str, Any]:
        fields = request.model_dump(exclude_none=True)
        if not fields:
            raise ValidationError("Invalid data provided!")

        address = await self.persistence.update_address(user_id, address_id, fields)
        if address is None:
            raise NotFoundError("Address not found", {"address_id": address_id})
        return address

    async def delete(self, user_id: str, address_id: str):
        if not await self.persistence.delete_address(user_id, address_id):
            raise NotFoundError("Address not found", {"address_id": address_id})
        self.logger.info("Address deleted", user_id=user_id, address_id=address_id)
