"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


orders_created_total = Counter("orders_created_total", "Total orders created", ["service"])
payment_attempts_total = Counter(
    "payment_attempts_total",
    "Total payment attempts started",
    ["service", "trigger"],
)
payment_success_total = Counter("payment_success_total", "Total successful payments", ["service"])
payment_failure_total = Counter(
    "payment_failure_total",
    "Total failed payment attempts",
    ["service", "kind"],
)
gateway_latency_seconds = Histogram(
    "gateway_latency_seconds",
    "Payment gateway call latency seconds, transport retries included",
    ["service"],
)
gateway_transport_retries_total = Counter(
    "gateway_transport_retries_total",
    "Immediate transport-level retries against the payment gateway",
    ["service"],
)
retries_scheduled_total = Counter("retries_scheduled_total", "Delayed payment retries scheduled", ["service"])
retry_scheduling_failures_total = Counter(
    "retry_scheduling_failures_total",
    "Delayed payment retries that could not be scheduled",
    ["service"],
)
retry_jobs_total = Counter(
    "retry_jobs_total",
    "Delayed payment retry jobs executed by the worker",
    ["service", "result"],
)
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


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
