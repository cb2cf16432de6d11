"""
Transactional email via the SendGrid HTTP API.
"""

from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import get_circuit_breaker
from shared.logging import get_logger
from shared.retry import RetryConfig, retry_on_exception


SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class TransientEmailError(Exception):
    """Provider answered with a retryable status."""


def order_summary(order: Dict[str, Any]) -> str:
    """Plain-text order summary used as the message body."""
    lines = [
        f"Hi {order.get('userName') or 'there'},",
        "",
        f"Thank you for your order {order['_id']}.",
        "",
    ]
    for item in order.get("cartItems", []):
        lines.append(f"- {item.get('title') or item['productId']} x {item['quantity']} @ {item['price']:.2f}")
    lines.extend([
        "",
        f"Total: {order['totalAmount']:.2f}",
        f"Payment: {order['paymentMethod']} ({order['paymentStatus']})",
        f"Status: {order['orderStatus']}",
    ])
    address = order.get("addressInfo") or {}
    if address:
        lines.extend(["", "Delivering to:", f"{address.get('address', '')}, {address.get('city', '')} {address.get('pincode', '')}"])
    return "\n".join(lines)


class EmailSender:
    """Sends order emails. Failures are logged and reported as False, never raised."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        sender_name: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.sender = sender
        self.sender_name = sender_name
        self.client = client or httpx.AsyncClient(timeout=10.0)
        self.logger = get_logger("storefront.notifications.email")
        self.circuit_breaker = get_circuit_breaker(
            "sendgrid",
            failure_threshold=3,
            recovery_timeout=60.0
        )

    async def close(self):
        await self.client.aclose()

    @retry_on_exception((httpx.TransportError, TransientEmailError), config=RetryConfig(max_attempts=3, base_delay=0.5))
    async def _post(self, message: Dict[str, Any]):
        async def _send():
            response = await self.client.post(
                SENDGRID_URL,
                json=message,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientEmailError(f"SendGrid returned {response.status_code}")
            response.raise_for_status()
            return response

        return await self.circuit_breaker.call(_send)

    async def send(self, to: str, subject: str, text: str) -> bool:
        if not self.api_key:
            self.logger.info("Email delivery disabled, skipping", to=to, subject=subject)
            return False
        if not to:
            self.logger.warning("No recipient, skipping email", subject=subject)
            return False

        sender: Dict[str, str] = {"email": self.sender}
        if self.sender_name:
            sender["name"] = self.sender_name

        message = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": sender,
            "subject": subject,
            "content": [{"type": "text/plain", "value": text}],
        }

        try:
            await self._post(message)
        except Exception as e:
            self.logger.error("Email send failed", to=to, subject=subject, error=str(e))
            return False

        self.logger.info("Email sent", to=to, subject=subject)
        return True

    async def send_order_confirmation(self, order: Dict[str, Any]) -> bool:
        subject = "Order Confirmed - Payment Received" if order.get("paymentStatus") == "paid" else "Order Placed Successfully"
        return await self.send(order.get("userEmail", ""), subject, order_summary(order))
