from prometheus_client import Counter, Gauge, Histogram, generate_latest

HTTP_REQUESTS = Counter(
    "pgrok_http_requests_total",
    "Total proxied HTTP requests",
    ["method", "status"],
)

WEBSOCKET_MESSAGES = Counter(
    "pgrok_websocket_messages_total",
    "Total relayed WebSocket messages",
    ["direction", "type"],  # direction: in/out, type: text/binary
)

OPEN_CONNECTIONS = Gauge(
    "pgrok_open_connections",
    "HTTP requests currently in flight",
)

ACTIVE_WEBSOCKETS = Gauge(
    "pgrok_active_websockets",
    "WebSocket connections currently relayed",
)

REQUEST_DURATION = Histogram(
    "pgrok_request_duration_seconds",
    "Time until the local service returned response headers",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)


def bucket_status(status: int) -> str:
    """Bucket HTTP status to prevent cardinality explosion."""
    if 100 <= status < 600:
        return f"{status // 100}xx"
    return "other"


def generate_metrics() -> bytes:
    return generate_latest()
