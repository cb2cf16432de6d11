"""
Shared fixtures for storefront tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from service_storefront.app.cache.read_through import ReadThroughCache
from service_storefront.app.catalog.admin import CatalogAdminService
from service_storefront.app.catalog.invalidation import CacheInvalidator
from service_storefront.app.catalog.service import CatalogService
from service_storefront.app.models import SessionUser
from service_storefront.app.orders.service import OrderService

from .fakes import FakeCacheStore, FakeEmailSender, FakeGateway, FakePersistence


class MutableClock:
    """Clock the tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


def seed_reference(persistence: FakePersistence, kind: str, name: str) -> str:
    return persistence.references[kind].insert({"name": name})["_id"]


def seed_product(persistence: FakePersistence, **fields) -> str:
    document = {
        "images": ["https://img.example.com/p.png"],
        "title": "Product",
        "description": "",
        "categoryId": None,
        "brandId": None,
        "price": 100,
        "salePrice": 0,
        "isOnSale": False,
        "totalStock": 10,
        "reviews": [],
        "averageReview": 0,
        "createdAt": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }
    document.update(fields)
    return persistence.products.insert(document)["_id"]


@pytest.fixture
def clock():
    return MutableClock(datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def persistence():
    return FakePersistence()


@pytest.fixture
def cache_store(clock):
    return FakeCacheStore(clock)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def email():
    return FakeEmailSender()


@pytest.fixture
def invalidator(cache_store):
    return CacheInvalidator(cache_store)


@pytest.fixture
def catalog(persistence, cache_store, clock):
    return CatalogService(persistence, ReadThroughCache(cache_store, 600, clock=clock))


@pytest.fixture
def catalog_admin(persistence, catalog, invalidator):
    return CatalogAdminService(persistence, catalog, invalidator)


@pytest.fixture
def orders(persistence, invalidator, gateway, email, clock):
    return OrderService(
        persistence,
        invalidator,
        gateway,
        email,
        success_url="https://shop.example.com/success?orderId={order_id}&session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url="https://shop.example.com/cancel",
        clock=clock,
    )


@pytest.fixture
def shopper():
    return SessionUser(id="user-1", email="shopper@example.com", user_name="shopper")


@pytest.fixture
def admin_user():
    return SessionUser(id="admin-1", email="admin@example.com", user_name="admin", role="admin")
