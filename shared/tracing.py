"""OpenTelemetry tracing for the storefront backend."""

from typing import Optional, Dict, Any
import os
import functools
import inspect
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.pymongo import PymongoInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.trace import Status, StatusCode


def _exporter_kwargs(endpoint_override: Optional[str] = None) -> Dict[str, Any]:
    endpoint = (
        endpoint_override
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        or "http://localhost:4318"
    )
    if not endpoint.endswith("/v1/traces"):
        endpoint = endpoint.rstrip("/") + "/v1/traces"

    headers: Dict[str, str] = {}
    for segment in (os.getenv("OTEL_EXPORTER_OTLP_HEADERS") or "").split(","):
        if "=" not in segment:
            continue
        key, value = segment.split("=", 1)
        if key.strip():
            headers[key.strip()] = value.strip()

    kwargs: Dict[str, Any] = {"endpoint": endpoint}
    if headers:
        kwargs["headers"] = headers
    return kwargs


def configure_tracing(service_name: str, otel_exporter: Optional[str] = None, enable_console: bool = False) -> None:
    """Configure OpenTelemetry tracing and instrument the client libraries."""

    resource = Resource.create({
        "service.name": service_name,
        "service.version": "1.0.0",
        "service.namespace": "storefront",
        "service.instance.id": os.getenv("HOSTNAME", "unknown"),
        "deployment.environment": os.getenv("STORE_ENV", "local"),
    })

    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**_exporter_kwargs(otel_exporter))))
    if enable_console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)

    FastAPIInstrumentor().instrument()
    HTTPXClientInstrumentor().instrument()
    PymongoInstrumentor().instrument()
    RedisInstrumentor().instrument()


def get_tracer(name: str):
    """Get a tracer instance."""
    return trace.get_tracer(name)


@contextmanager
def trace_operation(operation_name: str, **attributes):
    """Context manager to trace an operation."""
    tracer = get_tracer("storefront")
    with tracer.start_as_current_span(operation_name) as span:
        for key, value in attributes.items():
            span.set_attribute(key, value)

        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.set_attribute("error.message", str(exc))
            raise


def trace_function(operation_name: Optional[str] = None, **attributes):
    """Decorator tracing an async service method."""

    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError("trace_function only wraps coroutine functions")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            name = operation_name or f"{func.__module__}.{func.__name__}"
            with trace_operation(name, **attributes) as span:
                result = await func(*args, **kwargs)
                span.set_status(Status(StatusCode.OK))
                return result

        return wrapper

    return decorator


def add_span_attributes(**attributes):
    """Add attributes to the current span."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        for key, value in attributes.items():
            current_span.set_attribute(key, value)
