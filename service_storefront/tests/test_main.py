"""
Tests for the storefront HTTP surface.
"""

import csv
import io

import pytest
from fastapi.testclient import TestClient

from shared.config import get_config
from service_storefront.app.auth.session import issue_token
from service_storefront.app.main import StorefrontService

from .conftest import seed_product, seed_reference
from .test_orders import ADDRESS, completed_event


SECRET = "test-secret"


def auth(user_id="user-1", role="user"):
    token = issue_token(SECRET, {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "userName": user_id,
        "role": role,
    })
    return {"Authorization": f"Bearer {token}"}


ADMIN = auth("admin-1", role="admin")


@pytest.fixture
def service(persistence, cache_store, gateway, email, clock):
    config = get_config("storefront", 8000, env="test", jwt_secret=SECRET, enable_tracing=False)
    return StorefrontService(
        config,
        persistence=persistence,
        cache_store=cache_store,
        payments=gateway,
        email=email,
        clock=clock,
    )


@pytest.fixture
def client(service):
    with TestClient(service.app) as client:
        yield client


class TestStorefrontService:
    """Test cases for StorefrontService routes."""

    def test_health(self, client):
        """Test the health endpoint reports dependency status."""
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["service"] == "storefront"
        assert body["dependencies"] == {"mongodb": "ok", "cache": "ok"}

    def test_health_degraded_when_cache_down(self, client, cache_store):
        """Test a failing cache store marks the service degraded."""
        cache_store.fail = True

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "degraded"
        assert response.json()["dependencies"]["cache"] == "error"

    def test_request_id_echoed(self, client):
        """Test the request id header is returned."""
        response = client.get("/api/shop/categories", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_product_listing_envelope(self, client, persistence):
        """Test listing returns the success envelope with pagination."""
        seed_product(persistence, title="Cheap", price=10)
        seed_product(persistence, title="Dear", price=90)

        response = client.get("/api/shop/products/get", params={"sortBy": "price-hightolow", "limit": "1"})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [p["title"] for p in body["data"]] == ["Dear"]
        assert body["pagination"] == {"total": 2, "currentPage": 1, "totalPages": 2, "limit": 1}

    def test_bad_filter_is_validation_error(self, client):
        """Test a non-numeric price bound."""
        response = client.get("/api/shop/products/get", params={"minPrice": "cheap"})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"
        assert response.json()["success"] is False

    def test_unknown_product_is_404(self, client):
        """Test product details for a missing id."""
        response = client.get("/api/shop/products/get/64b7f0c2a1b2c3d4e5f60718")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_cart_requires_session(self, client):
        """Test signed-out callers are rejected."""
        response = client.get("/api/shop/cart/get")

        assert response.status_code == 401
        assert response.json()["message"] == "Unauthorised user!"

    def test_admin_routes_require_admin(self, client):
        """Test regular users cannot reach admin routes."""
        response = client.get("/api/admin/orders/stats", headers=auth())

        assert response.status_code == 403
        assert response.json()["code"] == "AUTHORIZATION_ERROR"

    def test_malformed_body_is_400(self, client):
        """Test body validation failures use the shared error shape."""
        response = client.post("/api/shop/cart/add", json={"productId": "p1", "quantity": 0}, headers=auth())

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["message"] == "Invalid data provided!"

    def test_admin_category_visible_in_shop(self, client):
        """Test a category created by an admin appears in the shop list."""
        created = client.post("/api/admin/categories", json={"name": "Lighting"}, headers=ADMIN)
        assert created.status_code == 201

        names = [c["name"] for c in client.get("/api/shop/categories").json()["data"]]

        assert names == ["Lighting"]

    def test_cod_checkout(self, client, persistence, email):
        """Test placing a cash-on-delivery order over HTTP."""
        product = seed_product(persistence, title="Lamp", totalStock=4)
        client.post("/api/shop/cart/add", json={"productId": product, "quantity": 2}, headers=auth())

        response = client.post("/api/shop/order/create", headers=auth(), json={
            "cartItems": [{"productId": product, "quantity": 2}],
            "addressInfo": ADDRESS,
            "paymentMethod": "cod",
        })

        assert response.status_code == 201
        body = response.json()
        assert body["approvalURL"] is None
        assert body["data"]["orderStatus"] == "confirmed"
        assert persistence.products.documents[product]["totalStock"] == 2

        orders = client.get("/api/shop/order/list", headers=auth()).json()["data"]
        assert [o["_id"] for o in orders] == [body["orderId"]]

    def test_card_checkout_confirmed_by_webhook(self, client, persistence, gateway):
        """Test a card order is confirmed by a signed provider callback."""
        product = seed_product(persistence, totalStock=3)
        created = client.post("/api/shop/order/create", headers=auth(), json={
            "cartItems": [{"productId": product, "quantity": 1}],
            "addressInfo": ADDRESS,
            "paymentMethod": "card",
        }).json()
        assert created["approvalURL"] == "https://checkout.example.com/cs_test_1"

        gateway.events["sig-ok"] = completed_event(created["orderId"])
        response = client.post("/api/shop/order/webhook", content=b"{}", headers={"stripe-signature": "sig-ok"})

        assert response.json() == {"received": True, "status": "confirmed"}
        assert persistence.orders.documents[created["orderId"]]["paymentStatus"] == "paid"
        assert persistence.products.documents[product]["totalStock"] == 2

    def test_webhook_bad_signature(self, client):
        """Test an unverifiable callback is a 400 and changes nothing."""
        response = client.post("/api/shop/order/webhook", content=b"{}", headers={"stripe-signature": "forged"})

        assert response.status_code == 400
        assert response.json()["code"] == "PAYMENT_VERIFICATION_ERROR"

    def test_clear_cache(self, client, persistence, cache_store):
        """Test the admin cache clear empties the store."""
        seed_reference(persistence, "brand", "Acme")
        client.get("/api/shop/brands")
        assert cache_store.entries

        response = client.delete("/api/admin/cache", headers=ADMIN)

        assert response.json()["removed"] >= 1
        assert cache_store.entries == {}

    def test_distributor_csv_export(self, client):
        """Test the admin CSV export is an attachment."""
        client.post("/api/distributors", headers=auth(), json={
            "company": "Acme Traders",
            "contactName": "Asha",
            "phone": "9999999999",
            "markets": "Pune",
        })

        response = client.get("/api/distributors/export/csv", headers=ADMIN)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert rows[0]["company"] == "Acme Traders"
        assert rows[0]["email"] == "user-1@example.com"

    def test_shutdown_releases_resources(self, service, cache_store, email):
        """Test the lifespan closes the injected collaborators."""
        with TestClient(service.app):
            pass

        assert cache_store.closed
        assert email.closed

    def test_feature_images(self, client):
        """Test admins manage feature images and anyone can list them."""
        created = client.post("/api/common/feature/add", json={"image": "https://cdn.example.com/b.jpg"}, headers=ADMIN)
        assert created.status_code == 201
        feature_id = created.json()["data"]["_id"]

        listed = client.get("/api/common/feature/get").json()["data"]
        assert [f["image"] for f in listed] == ["https://cdn.example.com/b.jpg"]

        deleted = client.delete(f"/api/common/feature/delete/{feature_id}", headers=ADMIN)
        assert deleted.json() == {"success": True, "message": "Feature image deleted"}
        assert client.delete(f"/api/common/feature/delete/{feature_id}", headers=ADMIN).status_code == 404

    def test_feature_image_changes_require_admin(self, client):
        """Test regular users cannot add feature images."""
        response = client.post("/api/common/feature/add", json={"image": "https://cdn.example.com/b.jpg"}, headers=auth())

        assert response.status_code == 403
