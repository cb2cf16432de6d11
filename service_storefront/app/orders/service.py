"""
Order placement, card-payment confirmation and order lifecycle.

Stock rules:

* Cash on delivery takes stock when the order is placed.
* Card orders take stock only when payment is confirmed, either by the
  provider's webhook or by the verify fallback. Whichever caller flips
  ``paymentStatus`` to ``paid`` applies the side effects; later deliveries
  are no-ops.
* Each decrement is conditional on sufficient stock, so stock never goes
  negative. A multi-line COD order that loses a race part-way through
  gives back the units it already took.
"""

import asyncio
from datetime import datetime, timezone
from math import ceil
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from shared.errors import (
    ExternalServiceError,
    InsufficientStockError,
    NotFoundError,
    PaymentVerificationError,
    ValidationError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.tracing import add_span_attributes, trace_function

from ..catalog.invalidation import CacheInvalidator
from ..models import CreateOrderRequest, OrderLineRequest, OrderStatus, PaymentMethod, PaymentStatus, SessionUser
from ..notifications.email import EmailSender
from ..payments.stripe_gateway import StripeGateway
from ..persistence.mongo import MongoPersistence


ADMIN_SORTS = {
    "date-desc": [("orderDate", -1)],
    "date-asc": [("orderDate", 1)],
    "amount-desc": [("totalAmount", -1)],
    "amount-asc": [("totalAmount", 1)],
    "status": [("orderStatus", 1)],
}

CLOSED_STATUSES = (OrderStatus.DELIVERED.value, OrderStatus.RETURNED.value, OrderStatus.CANCELLED.value)


def normalize_order_status(status: str) -> str:
    """Known statuses are stored lowercase; other free text is kept as given."""
    status = status.strip()
    lowered = status.lower()
    if lowered in {s.value for s in OrderStatus}:
        return lowered
    return status


def effective_price(product: Dict[str, Any]) -> float:
    sale_price = product.get("salePrice") or 0
    if product.get("isOnSale") and sale_price > 0:
        return sale_price
    return product.get("price", 0)


def order_total(lines: Iterable[Dict[str, Any]]) -> float:
    return round(sum(line["price"] * line["quantity"] for line in lines), 2)


def merge_lines(lines: Iterable[OrderLineRequest]) -> List[Tuple[str, int]]:
    """Combine repeated products, keeping first-seen order."""
    merged: Dict[str, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return list(merged.items())


class OrderService:
    """Creates orders and keeps stock, order status and payment status consistent."""

    def __init__(
        self,
        persistence: MongoPersistence,
        invalidator: CacheInvalidator,
        payments: StripeGateway,
        email: EmailSender,
        metrics: Optional[MetricsCollector] = None,
        *,
        success_url: str = "",
        cancel_url: str = "",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.persistence = persistence
        self.invalidator = invalidator
        self.payments = payments
        self.email = email
        self.metrics = metrics
        self.success_url = success_url
        self.cancel_url = cancel_url
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("storefront.orders")
        self._notifications: Set[asyncio.Task] = set()

    # Creation

    @trace_function("orders.create")
    async def create_order(self, user: SessionUser, request: CreateOrderRequest) -> Dict[str, Any]:
        """Place an order. Returns ``{"order": ..., "url": ...}``; ``url`` is set for card orders."""
        lines = await self._snapshot_lines(request.cart_items)
        now = self.clock()
        document = {
            "userId": user.id,
            "userName": user.user_name,
            "userEmail": user.email,
            "cartId": request.cart_id,
            "cartItems": lines,
            "addressInfo": request.address_info.to_document(),
            "paymentMethod": request.payment_method.value,
            "totalAmount": order_total(lines),
            "orderDate": now,
            "orderUpdateDate": now,
            "paymentId": None,
        }

        if request.payment_method == PaymentMethod.COD:
            order = await self._place_cod_order(user, request.cart_id, document)
            result = {"order": order, "url": None}
        else:
            result = await self._place_card_order(document)

        add_span_attributes(order_id=result["order"]["_id"], payment_method=request.payment_method.value)
        if self.metrics:
            self.metrics.record_order_created(request.payment_method.value)
        return result

    async def _snapshot_lines(self, requested: List[OrderLineRequest]) -> List[Dict[str, Any]]:
        """Check every line against current stock, before anything is mutated."""
        merged = merge_lines(requested)
        products = await self.persistence.get_products([product_id for product_id, _ in merged])
        lookup = {product["_id"]: product for product in products}

        lines = []
        for product_id, quantity in merged:
            product = lookup.get(product_id)
            if product is None:
                self._reject("missing_product")
                raise NotFoundError("Product not found", {"product_id": product_id})

            available = product.get("totalStock", 0)
            if quantity > available:
                self._reject("insufficient_stock")
                self.logger.info(
                    "Order rejected, insufficient stock",
                    product_id=product_id,
                    requested=quantity,
                    available=available,
                )
                raise InsufficientStockError(product_id, product.get("title", ""), quantity, available)

            images = product.get("images") or []
            lines.append({
                "productId": product_id,
                "title": product.get("title", ""),
                "image": images[0] if images else "",
                "price": effective_price(product),
                "quantity": quantity,
                "categoryId": product.get("categoryId"),
                "brandId": product.get("brandId"),
            })
        return lines

    async def _place_cod_order(self, user: SessionUser, cart_id: Optional[str], document: Dict[str, Any]) -> Dict[str, Any]:
        taken: List[Dict[str, Any]] = []
        for line in document["cartItems"]:
            if await self.persistence.decrement_stock_if_available(line["productId"], line["quantity"]):
                taken.append(line)
                continue

            # Another order took the stock after validation
            await self._restore_stock(taken)
            product = await self.persistence.get_product(line["productId"])
            available = product.get("totalStock", 0) if product else 0
            self._reject("stock_race")
            raise InsufficientStockError(line["productId"], line["title"], line["quantity"], available)

        document.update({
            "paymentStatus": PaymentStatus.PENDING.value,
            "orderStatus": OrderStatus.CONFIRMED.value,
            "stockApplied": True,
            "stockShortfall": [],
        })
        try:
            order = await self.persistence.insert_order(document)
        except Exception:
            await self._restore_stock(taken)
            raise

        await self.persistence.delete_cart(user.id, cart_id)
        await self.invalidator.stock_changed(line["productId"] for line in taken)
        self.logger.info("COD order placed", order_id=order["_id"], user_id=user.id, total=order["totalAmount"])
        self._notify(order)
        return order

    async def _place_card_order(self, document: Dict[str, Any]) -> Dict[str, Any]:
        document.update({
            "paymentStatus": PaymentStatus.PENDING.value,
            "orderStatus": OrderStatus.PENDING.value,
            "stockApplied": False,
            "stockShortfall": [],
        })
        order = await self.persistence.insert_order(document)

        try:
            session = await self.payments.create_checkout_session(
                order,
                success_url=self.success_url.format(order_id=order["_id"]),
                cancel_url=self.cancel_url,
            )
        except ExternalServiceError:
            await self.persistence.update_order(
                order["_id"],
                {"paymentStatus": PaymentStatus.FAILED.value, "orderUpdateDate": self.clock()},
            )
            raise

        order = await self.persistence.update_order(order["_id"], {"checkoutSessionId": session["id"]})
        self.logger.info("Card order awaiting payment", order_id=order["_id"], session_id=session["id"])
        return {"order": order, "url": session["url"]}

    # Payment confirmation

    async def confirm_payment(self, order_id: str, reference: Optional[str], source: str) -> Tuple[Optional[Dict[str, Any]], str]:
        """Mark a card order paid and apply its side effects exactly once.

        Returns the order and one of ``confirmed``, ``already_paid``,
        ``order_cancelled``, ``not_card_order`` or ``not_found``.
        """
        now = self.clock()
        order = await self.persistence.update_order(
            order_id,
            {
                "paymentStatus": PaymentStatus.PAID.value,
                "orderStatus": OrderStatus.CONFIRMED.value,
                "paymentId": reference,
                "orderUpdateDate": now,
            },
            where={
                "paymentMethod": PaymentMethod.CARD.value,
                "paymentStatus": {"$ne": PaymentStatus.PAID.value},
                "orderStatus": {"$nin": [OrderStatus.CANCELLED.value, OrderStatus.RETURNED.value]},
            },
        )

        if order is None:
            outcome, existing = await self._explain_unconfirmed(order_id)
            self._record_confirmation(source, outcome)
            return existing, outcome

        shortfall = []
        decremented = []
        for line in order["cartItems"]:
            if await self.persistence.decrement_stock_if_available(line["productId"], line["quantity"]):
                decremented.append(line)
            else:
                shortfall.append(line["productId"])
                self.logger.error(
                    "Paid order exceeds available stock",
                    order_id=order_id,
                    product_id=line["productId"],
                    quantity=line["quantity"],
                )

        # A cancel that landed while stock was being taken saw stockApplied False
        applied = await self.persistence.update_order(
            order_id,
            {"stockApplied": True, "stockShortfall": shortfall},
            where={"orderStatus": {"$nin": [OrderStatus.CANCELLED.value, OrderStatus.RETURNED.value]}},
        )
        if applied is None:
            await self._restore_stock(decremented)
            await self.invalidator.stock_changed(line["productId"] for line in decremented)
            self.logger.warning("Order closed during payment confirmation, refund manually", order_id=order_id)
            self._record_confirmation(source, "order_cancelled")
            return await self.persistence.get_order(order_id), "order_cancelled"

        order = applied
        await self.persistence.delete_cart(order["userId"], order.get("cartId"))
        await self.invalidator.stock_changed(line["productId"] for line in order["cartItems"])

        self._record_confirmation(source, "confirmed")
        self.logger.info("Payment confirmed", order_id=order_id, source=source, reference=reference)
        self._notify(order)
        return order, "confirmed"

    async def _explain_unconfirmed(self, order_id: str) -> Tuple[str, Optional[Dict[str, Any]]]:
        existing = await self.persistence.get_order(order_id)
        if existing is None:
            self.logger.error("Payment for unknown order", order_id=order_id)
            return "not_found", None
        if existing.get("paymentStatus") == PaymentStatus.PAID.value:
            self.logger.info("Payment already confirmed, skipping", order_id=order_id)
            return "already_paid", existing
        if existing.get("paymentMethod") != PaymentMethod.CARD.value:
            return "not_card_order", existing

        # TODO: refund payments that arrive for cancelled orders through the provider API
        self.logger.warning("Payment received for closed order, refund manually", order_id=order_id)
        return "order_cancelled", existing

    async def handle_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Process a provider event. Bad signatures raise before anything is read or written."""
        event = self.payments.construct_event(payload, signature)
        event_type = event.get("type")

        if event_type != "checkout.session.completed":
            self.logger.info("Webhook event ignored", event_type=event_type)
            return {"received": True, "status": "ignored"}

        session = (event.get("data") or {}).get("object") or {}
        order_id = (session.get("metadata") or {}).get("orderId")
        if not order_id:
            self.logger.error("Checkout session without order id", session_id=session.get("id"))
            self._record_confirmation("webhook", "missing_order_id")
            return {"received": True, "status": "missing_order_id"}

        if session.get("payment_status") not in (None, "paid"):
            self.logger.info("Checkout completed without payment", order_id=order_id)
            return {"received": True, "status": "not_paid"}

        reference = session.get("payment_intent") or session.get("id")
        _, outcome = await self.confirm_payment(order_id, reference, source="webhook")
        return {"received": True, "status": outcome}

    async def verify_payment(self, order_id: Optional[str], session_id: Optional[str]) -> Dict[str, Any]:
        """Synchronous fallback used by the checkout success page."""
        if not order_id:
            raise ValidationError("Order ID is required")

        order = await self.persistence.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found", {"order_id": order_id})

        if order.get("paymentStatus") == PaymentStatus.PAID.value:
            return {"success": True, "message": "Already verified", "data": order}
        if order.get("paymentMethod") != PaymentMethod.CARD.value:
            return {"success": True, "message": "Not a card order", "data": order}

        checkout_session_id = session_id or order.get("checkoutSessionId")
        if not checkout_session_id:
            raise ValidationError("Missing checkout session id")

        session = await self.payments.retrieve_session(checkout_session_id)
        session_order = session["metadata"].get("orderId")
        if session_order and session_order != order_id:
            raise PaymentVerificationError("Checkout session does not belong to this order")

        if session.get("payment_status") != "paid":
            return {"success": False, "message": "Not paid yet", "data": order}

        reference = session.get("payment_intent") or checkout_session_id
        confirmed, outcome = await self.confirm_payment(order_id, reference, source="verify")
        if outcome == "confirmed":
            return {"success": True, "message": "Payment verified", "data": confirmed}
        if outcome == "already_paid":
            return {"success": True, "message": "Already verified", "data": confirmed}
        return {"success": False, "message": "Order can no longer be paid", "data": confirmed}

    # Lifecycle

    async def list_user_orders(self, user: SessionUser) -> List[Dict[str, Any]]:
        return await self.persistence.find_orders({"userId": user.id}, [("orderDate", -1), ("_id", 1)])

    async def get_order(self, order_id: str, user: SessionUser) -> Dict[str, Any]:
        order = await self.persistence.get_order(order_id)
        if order is None or (order.get("userId") != user.id and not user.is_admin):
            raise NotFoundError("Order not found!", {"order_id": order_id})
        return order

    async def cancel_order(self, order_id: str, user: SessionUser) -> Dict[str, Any]:
        order = await self.get_order(order_id, user)
        if (order.get("orderStatus") or "").lower() in CLOSED_STATUSES:
            raise ValidationError("Order cannot be cancelled", {"order_status": order.get("orderStatus")})
        return await self._close_order(order, OrderStatus.CANCELLED.value)

    async def return_order(self, order_id: str, user: SessionUser) -> Dict[str, Any]:
        order = await self.get_order(order_id, user)
        if (order.get("orderStatus") or "").lower() != OrderStatus.DELIVERED.value:
            raise ValidationError("Return request not allowed", {"order_status": order.get("orderStatus")})
        return await self._close_order(order, OrderStatus.RETURNED.value)

    async def _close_order(self, order: Dict[str, Any], status: str) -> Dict[str, Any]:
        # The status guard makes concurrent cancel/return requests restore stock once
        updated = await self.persistence.update_order(
            order["_id"],
            {"orderStatus": status, "orderUpdateDate": self.clock(), "stockApplied": False},
            where={"orderStatus": order.get("orderStatus"), "stockApplied": order.get("stockApplied", False)},
        )
        if updated is None:
            raise ValidationError("Order was modified concurrently, please retry", {"order_id": order["_id"]})

        if order.get("stockApplied"):
            shortfall = set(order.get("stockShortfall") or [])
            restored = [line for line in order["cartItems"] if line["productId"] not in shortfall]
            await self._restore_stock(restored)
            await self.invalidator.stock_changed(line["productId"] for line in restored)

        self.logger.info("Order closed", order_id=order["_id"], status=status, stock_restored=bool(order.get("stockApplied")))
        return updated

    # Admin

    async def admin_list_orders(self, sort_by: str = "date-desc", page: int = 1, limit: int = 10) -> Dict[str, Any]:
        sort = ADMIN_SORTS.get(sort_by, ADMIN_SORTS["date-desc"]) + [("_id", 1)]
        orders = await self.persistence.find_orders({}, sort, skip=(page - 1) * limit, limit=limit)
        total = await self.persistence.count_orders({})
        return {
            "orders": orders,
            "pagination": {
                "currentPage": page,
                "totalPages": ceil(total / limit) if total else 0,
                "totalOrders": total,
                "hasNext": page * limit < total,
                "hasPrev": page > 1,
            },
        }

    async def admin_get_order(self, order_id: str) -> Dict[str, Any]:
        order = await self.persistence.get_order(order_id)
        if order is None:
            raise NotFoundError("Order not found!", {"order_id": order_id})
        return order

    async def update_order_status(self, order_id: str, status: str) -> Dict[str, Any]:
        status = normalize_order_status(status)
        if not status:
            raise ValidationError("Order status is required")

        order = await self.persistence.update_order(order_id, {"orderStatus": status, "orderUpdateDate": self.clock()})
        if order is None:
            raise NotFoundError("Order not found!", {"order_id": order_id})
        self.logger.info("Order status updated", order_id=order_id, status=status)
        return order

    async def update_payment_status(self, order_id: str, payment_status: Optional[str]) -> Dict[str, Any]:
        if payment_status not in {s.value for s in PaymentStatus}:
            raise ValidationError("Invalid payment status provided.", {"payment_status": payment_status})

        order = await self.admin_get_order(order_id)
        if order.get("paymentMethod") != PaymentMethod.COD.value:
            raise ValidationError("This action is only applicable for Cash on Delivery orders.")

        order = await self.persistence.update_order(
            order_id, {"paymentStatus": payment_status, "orderUpdateDate": self.clock()}
        )
        self.logger.info("Payment status updated", order_id=order_id, payment_status=payment_status)
        return order

    # Helpers

    async def _restore_stock(self, lines: Iterable[Dict[str, Any]]):
        for line in lines:
            await self.persistence.increment_stock(line["productId"], line["quantity"])

    def _reject(self, reason: str):
        if self.metrics:
            self.metrics.record_order_rejected(reason)

    def _record_confirmation(self, source: str, result: str):
        if self.metrics:
            self.metrics.record_payment_confirmation(source, result)

    def _notify(self, order: Dict[str, Any]):
        """Send the confirmation email without holding up the response."""
        task = asyncio.create_task(self.email.send_order_confirmation(order))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def drain_notifications(self):
        """Wait for in-flight emails, e.g. on shutdown."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications), return_exceptions=True)
