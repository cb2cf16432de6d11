"""
Tests for distributor applications.
"""

import csv
import io

import pytest

from shared.errors import ConflictError, NotFoundError
from service_storefront.app.distributors.service import DistributorService
from service_storefront.app.models import DistributorApplicationRequest, DistributorStatus, SessionUser


@pytest.fixture
def distributors(persistence):
    return DistributorService(persistence)


@pytest.fixture
def application():
    return DistributorApplicationRequest(
        company="Acme Traders", contactName="Asha", title="Owner", phone="9999999999", markets="Pune, Mumbai"
    )


class TestDistributorService:
    """Test cases for DistributorService."""

    @pytest.mark.asyncio
    async def test_apply_once(self, distributors, application, shopper):
        """Test a user can only hold one application."""
        created = await distributors.apply(shopper, application)

        assert created["status"] == "Submitted"
        assert created["email"] == shopper.email
        with pytest.raises(ConflictError):
            await distributors.apply(shopper, application)

    @pytest.mark.asyncio
    async def test_status_falls_back_to_email_and_links_user(self, distributors, persistence, shopper):
        """Test an application stored without a user id is found by email and linked."""
        legacy = persistence.applications.insert({"email": shopper.email, "company": "Old Co", "status": "Approved"})

        found = await distributors.status(shopper)

        assert found["_id"] == legacy["_id"]
        assert persistence.applications.documents[legacy["_id"]]["userId"] == shopper.id

    @pytest.mark.asyncio
    async def test_status_without_application(self, distributors, shopper):
        """Test status is a 404 when the user never applied."""
        with pytest.raises(NotFoundError):
            await distributors.status(shopper)

    @pytest.mark.asyncio
    async def test_withdraw_only_own_application(self, distributors, application, shopper):
        """Test another user cannot withdraw an application."""
        created = await distributors.apply(shopper, application)

        with pytest.raises(NotFoundError):
            await distributors.withdraw(created["_id"], SessionUser(id="intruder"))

        await distributors.withdraw(created["_id"], shopper)
        assert await distributors.list_applications() == []

    @pytest.mark.asyncio
    async def test_update_status(self, distributors, application, shopper):
        """Test an admin status change."""
        created = await distributors.apply(shopper, application)

        updated = await distributors.update_status(created["_id"], DistributorStatus.APPROVED)

        assert updated["status"] == "Approved"

    @pytest.mark.asyncio
    async def test_export_csv(self, distributors, application, shopper):
        """Test the CSV export columns and values."""
        await distributors.apply(shopper, application)

        rows = list(csv.DictReader(io.StringIO(await distributors.export_csv())))

        assert list(rows[0].keys()) == [
            "company", "contactName", "title", "email", "phone", "markets", "status", "createdAt",
        ]
        assert rows[0]["company"] == "Acme Traders"
        assert rows[0]["markets"] == "Pune, Mumbai"
        assert rows[0]["createdAt"].startswith("20")
