"""
Distributor applications: one per user, reviewed by admins.
"""

import csv
import io
from datetime import datetime
from typing import Any, Dict, List

from shared.errors import AuthenticationError, NotFoundError
from shared.logging import get_logger

from ..models import DistributorApplicationRequest, DistributorStatus, SessionUser
from ..persistence.mongo import MongoPersistence


CSV_FIELDS = ["company", "contactName", "title", "email", "phone", "markets", "status", "createdAt"]


def _csv_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return "" if value is None else value


class DistributorService:
    def __init__(self, persistence: MongoPersistence):
        self.persistence = persistence
        self.logger = get_logger("storefront.distributors")

    async def apply(self, user: SessionUser, request: DistributorApplicationRequest) -> Dict[str, Any]:
        """Submit an application; a second one from the same user is a conflict."""
        if not user.email:
            raise AuthenticationError("Unauthorised user!", {"reason": "missing email claim"})

        application = await self.persistence.insert_application({
            "userId": user.id,
            "email": user.email,
            "company": request.company,
            "contactName": request.contact_name,
            "title": request.title,
            "phone": request.phone,
            "markets": request.markets,
            "status": DistributorStatus.SUBMITTED.value,
        })
        self.logger.info("Distributor application submitted", application_id=application["_id"], user_id=user.id)
        return application

    async def status(self, user: SessionUser) -> Dict[str, Any]:
        application = await self.persistence.find_application({"userId": user.id})
        if application is None and user.email:
            # Older applications were stored without a user id
            application = await self.persistence.find_application({"email": user.email})
            if application is not None:
                application = await self.persistence.update_application(
                    application["_id"], {"userId": user.id, "email": application.get("email") or user.email}
                )
                self.logger.info("Application linked to user", application_id=application["_id"], user_id=user.id)

        if application is None:
            raise NotFoundError("No application found")
        return application

    async def list_applications(self) -> List[Dict[str, Any]]:
        return await self.persistence.list_applications()

    async def update_status(self, application_id: str, status: DistributorStatus) -> Dict[str, Any]:
        application = await self.persistence.update_application(application_id, {"status": status.value})
        if application is None:
            raise NotFoundError("Not found", {"application_id": application_id})
        self.logger.info("Distributor status updated", application_id=application_id, status=status.value)
        return application

    async def withdraw(self, application_id: str, user: SessionUser):
        deleted = await self.persistence.delete_application(application_id, where={"userId": user.id})
        if not deleted:
            raise NotFoundError("Application not found or not yours", {"application_id": application_id})
        self.logger.info("Distributor application withdrawn", application_id=application_id, user_id=user.id)

    async def delete(self, application_id: str):
        if not await self.persistence.delete_application(application_id):
            raise NotFoundError("Application not found", {"application_id": application_id})
        self.logger.info("Distributor application deleted", application_id=application_id)

    async def export_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for application in await self.persistence.list_applications():
            writer.writerow({name: _csv_value(application.get(name)) for name in CSV_FIELDS})
        return buffer.getvalue()
