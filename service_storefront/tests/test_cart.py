"""
Tests for the cart and address book.
"""

import pytest

from shared.errors import NotFoundError, ValidationError
from service_storefront.app.addresses.service import AddressService
from service_storefront.app.cart.service import CartService
from service_storefront.app.models import AddressRequest, AddressUpdateRequest

from .conftest import seed_product


@pytest.fixture
def carts(persistence):
    return CartService(persistence)


@pytest.fixture
def addresses(persistence):
    return AddressService(persistence)


class TestCartService:
    """Test cases for CartService."""

    @pytest.mark.asyncio
    async def test_add_merges_quantities(self, carts, persistence):
        """Test adding the same product twice merges the line."""
        product = seed_product(persistence, title="Mug", price=12)

        await carts.add_item("u1", product, 1)
        cart = await carts.add_item("u1", product, 2)

        assert cart["items"] == [{
            "productId": product,
            "title": "Mug",
            "image": "https://img.example.com/p.png",
            "images": ["https://img.example.com/p.png"],
            "price": 12,
            "salePrice": 0,
            "quantity": 3,
        }]

    @pytest.mark.asyncio
    async def test_add_unknown_product(self, carts):
        """Test adding a missing product is a 404."""
        with pytest.raises(NotFoundError):
            await carts.add_item("u1", "64b7f0c2a1b2c3d4e5f60718", 1)

    @pytest.mark.asyncio
    async def test_get_creates_and_prunes(self, carts, persistence):
        """Test fetching creates an empty cart and drops vanished products."""
        assert (await carts.get_cart("u1"))["items"] == []

        kept = seed_product(persistence)
        gone = seed_product(persistence)
        await carts.add_item("u1", kept, 1)
        await carts.add_item("u1", gone, 1)
        await persistence.delete_product(gone)

        cart = await carts.get_cart("u1")

        assert [item["productId"] for item in cart["items"]] == [kept]
        assert len((await persistence.get_cart("u1"))["items"]) == 1

    @pytest.mark.asyncio
    async def test_update_missing_item(self, carts, persistence):
        """Test updating a line that is not in the cart."""
        product = seed_product(persistence)
        await carts.add_item("u1", product, 1)

        with pytest.raises(NotFoundError):
            await carts.update_item("u1", "other", 2)

    @pytest.mark.asyncio
    async def test_delete_and_clear(self, carts, persistence):
        """Test removing one line and clearing the rest."""
        a = seed_product(persistence)
        b = seed_product(persistence)
        await carts.add_item("u1", a, 1)
        await carts.add_item("u1", b, 1)

        cart = await carts.delete_item("u1", a)
        assert [item["productId"] for item in cart["items"]] == [b]

        await carts.clear("u1")
        assert (await persistence.get_cart("u1"))["items"] == []


class TestAddressService:
    """Test cases for AddressService."""

    def _request(self):
        return AddressRequest(address="12 Market Road", city="Pune", pincode="411001", phone="9999999999")

    @pytest.mark.asyncio
    async def test_add_edit_delete(self, addresses):
        """Test the address lifecycle for one user."""
        address = await addresses.add("u1", self._request())

        edited = await addresses.edit("u1", address["_id"], AddressUpdateRequest(city="Mumbai"))
        assert edited["city"] == "Mumbai"
        assert [a["_id"] for a in await addresses.list("u1")] == [address["_id"]]

        await addresses.delete("u1", address["_id"])
        assert await addresses.list("u1") == []

    @pytest.mark.asyncio
    async def test_other_users_address_not_editable(self, addresses):
        """Test users cannot touch each other's addresses."""
        address = await addresses.add("u1", self._request())

        with pytest.raises(NotFoundError):
            await addresses.edit("u2", address["_id"], AddressUpdateRequest(city="Mumbai"))
        with pytest.raises(NotFoundError):
            await addresses.delete("u2", address["_id"])

    @pytest.mark.asyncio
    async def test_empty_edit_rejected(self, addresses):
        """Test an edit with no fields is a validation error."""
        address = await addresses.add("u1", self._request())

        with pytest.raises(ValidationError):
            await addresses.edit("u1", address["_id"], AddressUpdateRequest())
