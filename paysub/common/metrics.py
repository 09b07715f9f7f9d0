"""Prometheus metric definitions."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Outbound payment gateway calls",
    ["operation", "outcome"],
)
gateway_latency_seconds = Histogram(
    "gateway_latency_seconds",
    "Outbound payment gateway call latency seconds",
    ["operation"],
)
payments_created_total = Counter(
    "payments_created_total",
    "Payments persisted after gateway acceptance",
    ["payment_type", "status"],
)
payment_transitions_total = Counter(
    "payment_transitions_total",
    "Applied payment status transitions",
    ["from_status", "to_status", "source"],
)
subscription_transitions_total = Counter(
    "subscription_transitions_total",
    "Applied subscription status transitions",
    ["from_status", "to_status", "source"],
)
reconcile_conflicts_total = Counter(
    "reconcile_conflicts_total",
    "Gateway statuses refused because the local status graph forbids them",
    ["resource"],
)
webhooks_received_total = Counter(
    "webhooks_received_total",
    "Inbound gateway notifications",
    ["action", "outcome"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
