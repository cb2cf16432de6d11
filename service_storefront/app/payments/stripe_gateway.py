"""
Hosted checkout sessions and webhook verification via Stripe.
"""

import asyncio
import json
from typing import Any, Dict, List

import stripe

from shared.circuit_breaker import CircuitBreakerOpenException, get_circuit_breaker
from shared.errors import ExternalServiceError, PaymentVerificationError
from shared.logging import get_logger


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class StripeGateway:
    """Creates checkout sessions, retrieves them, and verifies webhook signatures.

    The Stripe SDK is synchronous, so calls run in a worker thread.
    """

    def __init__(self, secret_key: str, webhook_secret: str, currency: str = "inr"):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.circuit_breaker = get_circuit_breaker("stripe", failure_threshold=5, recovery_timeout=30.0)
        self.logger = get_logger("storefront.payments.stripe")

    async def _call(self, operation: str, func, **kwargs) -> Any:
        async def invoke():
            return await asyncio.to_thread(func, api_key=self.secret_key, **kwargs)

        try:
            return await self.circuit_breaker.call(invoke)
        except CircuitBreakerOpenException:
            self.logger.warning("Stripe circuit open", operation=operation)
            raise ExternalServiceError("stripe", "Payment provider unavailable")
        except stripe.StripeError as e:
            self.logger.error("Stripe call failed", operation=operation, error=str(e))
            raise ExternalServiceError("stripe", "Payment provider error", {"operation": operation})

    async def create_checkout_session(
        self,
        order: Dict[str, Any],
        success_url: str,
        cancel_url: str,
    ) -> Dict[str, Any]:
        """Create a hosted checkout session referencing the order id in its metadata."""
        line_items: List[Dict[str, Any]] = []
        for item in order["cartItems"]:
            product_data: Dict[str, Any] = {"name": item["title"] or item["productId"]}
            if item.get("image"):
                product_data["images"] = [item["image"]]
            line_items.append({
                "price_data": {
                    "currency": self.currency,
                    "product_data": product_data,
                    "unit_amount": to_minor_units(item["price"]),
                },
                "quantity": item["quantity"],
            })

        session = await self._call(
            "checkout.create",
            stripe.checkout.Session.create,
            mode="payment",
            payment_method_types=["card"],
            line_items=line_items,
            success_url=success_url,
            cancel_url=cancel_url,
            client_reference_id=order["_id"],
            customer_email=order.get("userEmail") or None,
            metadata={"orderId": order["_id"]},
        )
        self.logger.info("Checkout session created", order_id=order["_id"], session_id=session["id"])
        return {"id": session["id"], "url": session["url"]}

    async def retrieve_session(self, session_id: str) -> Dict[str, Any]:
        session = await self._call("checkout.retrieve", stripe.checkout.Session.retrieve, id=session_id)
        return {
            "id": session["id"],
            "payment_status": session.get("payment_status"),
            "payment_intent": session.get("payment_intent"),
            "metadata": dict(session.get("metadata") or {}),
        }

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify the signature header and return the event as plain data."""
        if not signature:
            raise PaymentVerificationError("Missing webhook signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning("Webhook signature rejected", error=str(e))
            raise PaymentVerificationError("Invalid webhook signature")
        except ValueError as e:
            self.logger.warning("Webhook payload rejected", error=str(e))
            raise PaymentVerificationError("Invalid webhook payload")
        return json.loads(payload)
