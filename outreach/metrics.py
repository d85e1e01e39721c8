"""
Prometheus metrics for the outreach service.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Message creation counter (status)
- Reply correlation counter (source, result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# Using default buckets: .005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0
request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# status: sent, scheduled
messages_created_total = Counter(
    "messages_created_total",
    "Messages accepted by the store",
    labelnames=["status"]
)

# source: simulated, webhook
# result: recorded, ignored
replies_recorded_total = Counter(
    "replies_recorded_total",
    "Inbound replies offered to the correlator",
    labelnames=["source", "result"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template (e.g. /messages/{message_id}) or raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_created(status: str) -> None:
    messages_created_total.labels(status=status).inc()


def record_reply_outcome(source: str, result: str) -> None:
    """
    Record what happened to an inbound reply.

    Args:
        source: Where the reply came from - "simulated" or "webhook"
        result: "recorded" when stored, "ignored" when its message is unknown
    """
    replies_recorded_total.labels(source=source, result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
