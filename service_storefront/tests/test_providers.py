"""
Tests for the card payment gateway and the email sender.
"""

import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import stripe

from shared.circuit_breaker import get_circuit_breaker
from shared.errors import ExternalServiceError, PaymentVerificationError
from service_storefront.app.notifications.email import EmailSender, order_summary
from service_storefront.app.payments.stripe_gateway import StripeGateway, to_minor_units


WEBHOOK_SECRET = "whsec_test_secret"

ORDER = {
    "_id": "64b7f0c2a1b2c3d4e5f60718",
    "userEmail": "shopper@example.com",
    "userName": "shopper",
    "cartItems": [
        {"productId": "p1", "title": "Lamp", "image": "https://img.example.com/l.png", "price": 100, "quantity": 2},
        {"productId": "p2", "title": "Shade", "image": "", "price": 50.5, "quantity": 1},
    ],
    "totalAmount": 250.5,
    "paymentMethod": "card",
    "paymentStatus": "paid",
    "orderStatus": "confirmed",
    "addressInfo": {"address": "12 Market Road", "city": "Pune", "pincode": "411001"},
}


def sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


class TestStripeGateway:
    """Test cases for StripeGateway."""

    @pytest.fixture
    def gateway(self):
        get_circuit_breaker("stripe").reset()
        return StripeGateway("sk_test_key", WEBHOOK_SECRET, currency="inr")

    def test_minor_units(self):
        """Test amounts convert to integer minor units."""
        assert to_minor_units(19.99) == 1999
        assert to_minor_units(100) == 10000

    def test_valid_signature_returns_event(self, gateway):
        """Test a correctly signed payload is parsed."""
        payload = json.dumps({"type": "checkout.session.completed", "data": {"object": {"id": "cs_1"}}})

        event = gateway.construct_event(payload.encode(), sign(payload))

        assert event["data"]["object"]["id"] == "cs_1"

    def test_bad_signature_rejected(self, gateway):
        """Test a payload signed with another secret is rejected."""
        payload = json.dumps({"type": "checkout.session.completed"})

        with pytest.raises(PaymentVerificationError):
            gateway.construct_event(payload.encode(), sign(payload, secret="whsec_other"))

    def test_missing_signature_rejected(self, gateway):
        """Test a webhook without a signature header."""
        with pytest.raises(PaymentVerificationError):
            gateway.construct_event(b"{}", "")

    @pytest.mark.asyncio
    async def test_create_checkout_session(self, gateway):
        """Test the session carries line items in minor units and the order id."""
        with patch("stripe.checkout.Session.create") as create:
            create.return_value = {"id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}

            session = await gateway.create_checkout_session(ORDER, "https://shop/success", "https://shop/cancel")

        assert session == {"id": "cs_1", "url": "https://checkout.stripe.com/cs_1"}
        kwargs = create.call_args.kwargs
        assert kwargs["api_key"] == "sk_test_key"
        assert kwargs["metadata"] == {"orderId": ORDER["_id"]}
        assert kwargs["client_reference_id"] == ORDER["_id"]
        assert [item["price_data"]["unit_amount"] for item in kwargs["line_items"]] == [10000, 5050]
        assert [item["quantity"] for item in kwargs["line_items"]] == [2, 1]
        assert "images" not in kwargs["line_items"][1]["price_data"]["product_data"]

    @pytest.mark.asyncio
    async def test_provider_error_wrapped(self, gateway):
        """Test SDK errors surface as ExternalServiceError."""
        with patch("stripe.checkout.Session.retrieve", side_effect=stripe.APIConnectionError("down")):
            with pytest.raises(ExternalServiceError):
                await gateway.retrieve_session("cs_1")


class TestEmailSender:
    """Test cases for EmailSender."""

    @pytest.fixture(autouse=True)
    def no_backoff(self):
        get_circuit_breaker("sendgrid").reset()
        with patch("shared.retry.asyncio.sleep", new=AsyncMock()):
            yield

    def _sender(self, statuses, api_key="SG.key"):
        requests = []
        statuses = list(statuses)

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(statuses.pop(0))

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return EmailSender(api_key, "shop@example.com", "Shop", client=client), requests

    def test_order_summary(self):
        """Test the plain-text body lists lines and totals."""
        body = order_summary(ORDER)

        assert "Lamp x 2 @ 100.00" in body
        assert "Total: 250.50" in body
        assert "Pune 411001" in body

    @pytest.mark.asyncio
    async def test_send(self):
        """Test a successful send posts the SendGrid payload."""
        sender, requests = self._sender([202])

        assert await sender.send_order_confirmation(ORDER) is True

        message = json.loads(requests[0].content)
        assert requests[0].headers["Authorization"] == "Bearer SG.key"
        assert message["personalizations"] == [{"to": [{"email": "shopper@example.com"}]}]
        assert message["from"] == {"email": "shop@example.com", "name": "Shop"}
        assert message["subject"] == "Order Confirmed - Payment Received"

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self):
        """Test a 503 is retried and the send succeeds."""
        sender, requests = self._sender([503, 202])

        assert await sender.send("a@example.com", "Hi", "Body") is True
        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_permanent_failure_reported_not_raised(self):
        """Test a 400 is not retried and the send reports failure."""
        sender, requests = self._sender([400])

        assert await sender.send("a@example.com", "Hi", "Body") is False
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_disabled_without_api_key(self):
        """Test nothing is sent when no API key is configured."""
        sender, requests = self._sender([], api_key="")

        assert await sender.send("a@example.com", "Hi", "Body") is False
        assert requests == []
