"""Custom exception types for transport layer errors.

This module defines the exception hierarchy for channel and request errors,
extending the protocol exceptions.
"""

from __future__ import annotations

from castlink.protocol.exceptions import CastError


class TransportIOError(CastError):
    """Byte stream fault (connect, read or write failed).

    Raised when:
    - The TLS connection cannot be opened
    - A write or read on the stream raises an OS-level error

    Attributes:
        reason: Specific failure reason
        operation: Stream operation that failed ("connect", "send", "recv")

    """

    def __init__(self, reason: str, operation: str = "unknown") -> None:
        self.reason: str = reason
        self.operation: str = operation
        super().__init__(f"Transport I/O error during {operation}: {reason}")


class ChannelClosedError(CastError):
    """Channel is closing or closed.

    Raised when:
    - Sending on a channel after close()
    - The peer closed the stream (reason "closed_by_peer")
    - A pending request is drained by close() (reason is the close reason)

    Attributes:
        reason: Why the channel closed

    """

    def __init__(self, reason: str = "closed") -> None:
        self.reason: str = reason
        super().__init__(f"Channel closed: {reason}")


class RequestTimeoutError(CastError):
    """No reply arrived before the request deadline.

    Attributes:
        request_id: Request id that timed out
        timeout_seconds: Timeout value that was exceeded
        namespace: Namespace the request was sent on

    """

    def __init__(self, request_id: int, timeout_seconds: float, namespace: str = "") -> None:
        self.request_id: int = request_id
        self.timeout_seconds: float = timeout_seconds
        self.namespace: str = namespace
        super().__init__(f"Request {request_id} timed out after {timeout_seconds}s")
