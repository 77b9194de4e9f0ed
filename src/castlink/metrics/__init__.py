"""Metrics module."""

from .registry import (
    record_connection_state,
    record_decode_error,
    record_event,
    record_frame_recv,
    record_frame_sent,
    record_heartbeat,
    record_pending_requests,
    record_reply_dropped,
    record_request,
    record_request_latency,
    start_metrics_server,
)

__all__ = [
    "record_connection_state",
    "record_decode_error",
    "record_event",
    "record_frame_recv",
    "record_frame_sent",
    "record_heartbeat",
    "record_pending_requests",
    "record_reply_dropped",
    "record_request",
    "record_request_latency",
    "start_metrics_server",
]
