"""
Prometheus metrics for the message API, served on the health listener.

- http_requests_total{method, path, status}
- request_latency_seconds{method, path}
- message_operations_total{operation, result}
- outbox_writes_total{result}

`path` is the route template, never the concrete URL, so label cardinality
stays bounded by the number of routes.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

OUTBOX_RESULTS = ("written", "failed")

# Handlers do one indexed query plus at most one outbox insert
LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests by method, route and status code",
    labelnames=["method", "path", "status"],
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Time from request receipt to response, in seconds",
    labelnames=["method", "path"],
    buckets=LATENCY_BUCKETS,
)

# operation: create, get, list, list_pinned, search, update, delete, pin
# result: ok, invalid_content, unauthorized, forbidden, not_found, error
message_operations_total = Counter(
    "message_operations_total",
    "Message operations by outcome",
    labelnames=["operation", "result"],
)

outbox_writes_total = Counter(
    "outbox_writes_total",
    "Outbox event writes by outcome",
    labelnames=["result"],
)

# Export zero-valued series so a failure rate can be computed from the start
for _result in OUTBOX_RESULTS:
    outbox_writes_total.labels(result=_result)


def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    request_latency_seconds.labels(method=method, path=path).observe(latency_seconds)


def record_message_operation(operation: str, result: str) -> None:
    message_operations_total.labels(operation=operation, result=result).inc()


def record_outbox_write(result: str) -> None:
    """result is one of OUTBOX_RESULTS."""
    outbox_writes_total.labels(result=result).inc()


def get_metrics() -> bytes:
    """Current values of the default registry in the text exposition format."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
