"""
Shared utilities for the storefront backend.

This package aggregates common building blocks consumed by the services:

- config: Service configuration via pydantic-settings
- logging: Structured logging with trace correlation
- metrics: Prometheus metrics helpers
- tracing: OpenTelemetry tracing config
- errors: Canonical error types and responses
- retry: Retry decorator for external providers
- circuit_breaker: Resilient external call protection

Do not import from service packages into shared/.
"""
