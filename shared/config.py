"""
Shared configuration management for the storefront backend.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="STORE_",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Document database
    mongo_uri: str = Field(default="mongodb://localhost:27017")
    mongo_database: str = Field(default="storefront")

    # Cache store
    cache_backend: str = Field(default="mongo", description="mongo or redis")
    redis_url: str = Field(default="redis://localhost:6379/0")
    catalog_cache_ttl_seconds: int = Field(default=600)
    analytics_cache_ttl_seconds: int = Field(default=600)

    # Catalog paging
    default_page_size: int = Field(default=12)
    max_page_size: int = Field(default=100)

    # Card payments
    stripe_secret_key: str = Field(default="")
    stripe_webhook_secret: str = Field(default="")
    checkout_currency: str = Field(default="inr")
    checkout_success_url: str = Field(
        default="http://localhost:5173/shop/payment-success?orderId={order_id}&session_id={{CHECKOUT_SESSION_ID}}"
    )
    checkout_cancel_url: str = Field(default="http://localhost:5173/shop/payment-cancel")

    # Transactional email
    sendgrid_api_key: str = Field(default="")
    email_sender: str = Field(default="support@example.com")
    email_sender_name: str = Field(default="Storefront")

    # Security
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    jwt_secret: str = Field(default="change-me")
    jwt_algorithm: str = Field(default="HS256")
    auth_cookie_name: str = Field(default="token")

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4318")
    enable_console_tracing: bool = Field(default=False)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)


def cors_origins(config: BaseConfig) -> Optional[List[str]]:
    """Origins allowed to call the API with credentials."""
    if config.env == "local":
        return ["*"]
    return list(config.allowed_origins)
