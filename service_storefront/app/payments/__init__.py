"""Card payment provider integration."""

from .stripe_gateway import StripeGateway

__all__ = ["StripeGateway"]
