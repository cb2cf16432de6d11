"""
Shared error handling for the storefront backend.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    success: bool = False
    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class StoreException(Exception):
    """Base exception for storefront services."""

    status_code = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(StoreException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(StoreException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class ValidationError(StoreException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(StoreException):
    """Missing order, product, cart, address or application."""

    status_code = 404

    def __init__(self, message: str = "Not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ConflictError(StoreException):
    """Duplicate-key violations, reported as a plain 400."""

    def __init__(self, message: str = "Already exists", details: Optional[Dict[str, Any]] = None):
        super().__init__("DUPLICATE", message, details)


class InsufficientStockError(StoreException):
    """A line item asks for more units than the product has in stock."""

    def __init__(self, product_id: str, title: str, requested: int, available: int):
        super().__init__(
            "INSUFFICIENT_STOCK",
            f"Insufficient stock for {title or product_id}",
            {
                "product_id": product_id,
                "title": title,
                "requested": requested,
                "available": available,
            },
        )


class PaymentVerificationError(StoreException):
    """Card-payment callback failed authenticity verification."""

    def __init__(self, message: str = "Payment verification failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("PAYMENT_VERIFICATION_ERROR", message, details)


class ServiceError(StoreException):
    """Service-related errors."""

    status_code = 500

    def __init__(self, message: str = "Service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVICE_ERROR", message, details)


class ExternalServiceError(StoreException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)
