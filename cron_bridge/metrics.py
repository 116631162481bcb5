"""Prometheus metrics for cron-bridge."""

from prometheus_client import Counter, Histogram, start_http_server
import functools
import time

# Public exports
__all__ = [
    "ROUTED_OPERATIONS",
    "PASSTHROUGH_OPERATIONS",
    "MANIFEST_WRITES",
    "MANIFEST_FLUSHES",
    "FLUSH_LATENCY",
    "ROUTE_LATENCY",
    "start_metrics_server",
    "track_route",
]

# Operations re-issued against the other scheduler.
ROUTED_OPERATIONS = Counter(
    "cron_bridge_routed_operations_total",
    "Scheduler operations re-issued against the other scheduler",
    ["direction", "operation"],
)

# Operations left to their native scheduler by the loop guard.
PASSTHROUGH_OPERATIONS = Counter(
    "cron_bridge_passthrough_operations_total",
    "Intercepted operations passed through without routing",
    ["operation"],
)

MANIFEST_WRITES = Counter(
    "cron_bridge_manifest_writes_total",
    "Manifest writes received by the cache",
    ["outcome"],
)

MANIFEST_FLUSHES = Counter(
    "cron_bridge_manifest_flushes_total",
    "Manifest flushes to the durable table",
    ["outcome"],
)

# Histogram tracking how long each flush takes.
FLUSH_LATENCY = Histogram(
    "cron_bridge_manifest_flush_seconds",
    "Time spent writing the manifest to the durable table",
)

ROUTE_LATENCY = Histogram(
    "cron_bridge_route_seconds",
    "Time spent re-issuing an operation on the other scheduler",
    ["direction", "operation"],
)


def start_metrics_server(port: int = 8000) -> None:
    """Start an HTTP server to expose Prometheus metrics."""
    start_http_server(port)


def track_route(direction: str, operation: str | None = None):
    """Decorator counting each routed call of a router method.

    The operation label defaults to the wrapped function's name.
    """

    def decorator(func):
        label = operation or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.monotonic()
            try:
                return func(*args, **kwargs)
            finally:
                ROUTED_OPERATIONS.labels(direction, label).inc()
                ROUTE_LATENCY.labels(direction, label).observe(
                    time.monotonic() - start_time
                )

        return wrapper

    return decorator

