"""
Prometheus metrics for the message explorer.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Upstream JSON-RPC call counter (method, outcome)
- Ingestion outcome counter (result)
- Backfill pass counter (outcome)

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

# method: eth_getLogs, eth_blockNumber
# outcome: ok, error
upstream_requests_total = Counter(
    "upstream_requests_total",
    "Total upstream JSON-RPC calls",
    labelnames=["method", "outcome"]
)

# result: created, duplicate
ingested_messages_total = Counter(
    "ingested_messages_total",
    "Messages handed to the store during backfill",
    labelnames=["result"]
)

# outcome: completed, failed
backfill_passes_total = Counter(
    "backfill_passes_total",
    "Backfill passes triggered by under-filled pages",
    labelnames=["outcome"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # /messages?id=42 -> /messages
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


def record_upstream_call(method: str, ok: bool) -> None:
    upstream_requests_total.labels(method=method, outcome="ok" if ok else "error").inc()


def record_ingestion(result: str) -> None:
    """
    Record the outcome of handing one message to the store.

    Args:
        result: "created" for a new row, "duplicate" when the nonce was already stored
    """
    ingested_messages_total.labels(result=result).inc()


def record_backfill_pass(outcome: str) -> None:
    backfill_passes_total.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    """
    Get the content type for Prometheus metrics.

    Returns:
        Content type string for Prometheus exposition format
    """
    return CONTENT_TYPE_LATEST
