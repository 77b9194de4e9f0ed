"""Prometheus metrics registry for the cast channel engine."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Frame metrics
cast_frames_sent_total: Final = Counter(  # type: ignore[assignment]
    "cast_frames_sent_total",
    "Total frames written to the device",
    ["namespace", "outcome"],
)

cast_frames_recv_total: Final = Counter(  # type: ignore[assignment]
    "cast_frames_recv_total",
    "Total frames read from the device",
    ["namespace"],
)

cast_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "cast_decode_errors_total",
    "Total decode or framing errors",
    ["reason"],
)

# Request/reply metrics
cast_requests_total: Final = Counter(  # type: ignore[assignment]
    "cast_requests_total",
    "Total correlated requests by terminal outcome",
    ["namespace", "outcome"],
)

cast_request_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "cast_request_latency_seconds",
    "Request to reply latency in seconds",
    ["namespace"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

cast_pending_requests: Final = Gauge(  # type: ignore[assignment]
    "cast_pending_requests",
    "Requests currently awaiting a reply",
)

cast_replies_dropped_total: Final = Counter(  # type: ignore[assignment]
    "cast_replies_dropped_total",
    "Replies dropped because their request id was already retired",
    ["reason"],
)

# Connection metrics
cast_connection_state: Final = Gauge(  # type: ignore[assignment]
    "cast_connection_state",
    "Current connection state",
    ["device", "state"],
)

cast_heartbeat_total: Final = Counter(  # type: ignore[assignment]
    "cast_heartbeat_total",
    "Total heartbeat exchanges",
    ["device", "outcome"],
)

# Event dispatch metrics
cast_events_total: Final = Counter(  # type: ignore[assignment]
    "cast_events_total",
    "Total unsolicited events by outcome",
    ["namespace", "outcome"],
)

_server_state = {"started": False}
_server_lock = threading.Lock()

_CONNECTION_STATES = ("disconnected", "connecting", "connected", "closing", "closed")


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_frame_sent(namespace: str, outcome: str) -> None:
    """Record a frame write."""
    cast_frames_sent_total.labels(namespace=namespace, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_frame_recv(namespace: str) -> None:
    """Record a decoded inbound frame."""
    cast_frames_recv_total.labels(namespace=namespace).inc()  # type: ignore[no-untyped-call]


def record_decode_error(reason: str) -> None:
    """Record a decode error."""
    cast_decode_errors_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_request(namespace: str, outcome: str) -> None:
    """Record a request reaching its terminal state."""
    cast_requests_total.labels(namespace=namespace, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_request_latency(namespace: str, latency_seconds: float) -> None:
    """Record request round-trip latency."""
    cast_request_latency_seconds.labels(namespace=namespace).observe(latency_seconds)  # type: ignore[no-untyped-call]


def record_pending_requests(count: int) -> None:
    """Record the size of the pending-slot table."""
    cast_pending_requests.set(count)  # type: ignore[no-untyped-call]


def record_reply_dropped(reason: str) -> None:
    """Record a duplicate or stale reply being dropped."""
    cast_replies_dropped_total.labels(reason=reason).inc()  # type: ignore[no-untyped-call]


def record_connection_state(device: str, state: str) -> None:
    """Record connection state change."""
    # Set gauge to 1 for current state, 0 for all others
    for s in _CONNECTION_STATES:
        value = 1 if s == state else 0
        cast_connection_state.labels(device=device, state=s).set(value)  # type: ignore[no-untyped-call]


def record_heartbeat(device: str, outcome: str) -> None:
    """Record a heartbeat exchange."""
    cast_heartbeat_total.labels(device=device, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_event(namespace: str, outcome: str) -> None:
    """Record an unsolicited event being queued, delivered or dropped."""
    cast_events_total.labels(namespace=namespace, outcome=outcome).inc()  # type: ignore[no-untyped-call]
