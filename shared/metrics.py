"""
Prometheus metrics for the storefront backend.
"""

from typing import Dict, Optional, Tuple
import threading

from prometheus_client import REGISTRY, Counter, Histogram, Info, CollectorRegistry


class MetricsCollector:
    """Request, cache, order and payment metrics for one service."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else REGISTRY

        self.service_info = Info("service_info", "Service information", registry=self.registry)
        self.service_info.info({"service": service_name, "version": "1.0.0"})

        # HTTP
        self.http_requests = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )
        self.http_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )
        self.health_checks = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )
        self.errors = Counter(
            "errors_total",
            "Error responses by error code",
            ["error_type", "service"],
            registry=self.registry
        )

        # Cache
        self.cache_lookups = Counter(
            "cache_lookups_total",
            "Cache lookups by namespace and result",
            ["namespace", "result"],
            registry=self.registry
        )
        self.cache_invalidations = Counter(
            "cache_invalidations_total",
            "Invalidation requests by tag kind",
            ["tag"],
            registry=self.registry
        )
        self.cache_recompute = Histogram(
            "cache_recompute_duration_seconds",
            "Time spent recomputing a cached payload",
            ["namespace"],
            registry=self.registry
        )

        # Orders and payments
        self.orders_created = Counter(
            "orders_created_total",
            "Orders created by payment method",
            ["payment_method"],
            registry=self.registry
        )
        self.orders_rejected = Counter(
            "orders_rejected_total",
            "Orders rejected before persistence",
            ["reason"],
            registry=self.registry
        )
        self.payment_confirmations = Counter(
            "payment_confirmations_total",
            "Card payment confirmations by source and outcome",
            ["source", "result"],
            registry=self.registry
        )

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        self.http_requests.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        self.http_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_health_check(self, status: str):
        self.health_checks.labels(status=status).inc()

    def record_error(self, error_type: str):
        self.errors.labels(error_type=error_type, service=self.service_name).inc()

    def record_cache_lookup(self, namespace: str, result: str):
        """``result`` is hit, miss or stale."""
        self.cache_lookups.labels(namespace=namespace, result=result).inc()

    def record_cache_invalidation(self, tag: str):
        # product:<id> is counted as "product"
        self.cache_invalidations.labels(tag=tag.split(":")[0]).inc()

    def observe_recompute(self, namespace: str, seconds: float):
        self.cache_recompute.labels(namespace=namespace).observe(seconds)

    def record_order_created(self, payment_method: str):
        self.orders_created.labels(payment_method=payment_method).inc()

    def record_order_rejected(self, reason: str):
        self.orders_rejected.labels(reason=reason).inc()

    def record_payment_confirmation(self, source: str, result: str):
        self.payment_confirmations.labels(source=source, result=result).inc()


_collectors: Dict[Tuple[str, int], MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get the metrics collector for a service, creating it once per registry."""
    key = (service_name, id(registry))
    with _collectors_lock:
        if key not in _collectors:
            _collectors[key] = MetricsCollector(service_name, registry)
        return _collectors[key]
