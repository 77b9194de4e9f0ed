"""Custom exception types for cast protocol errors.

This module defines the root of the castlink exception hierarchy and the
protocol-layer errors. Codec failures always surface as one of these typed
errors, never as a raw library exception, whatever bytes the device sends.
"""

from __future__ import annotations


class CastError(Exception):
    """Base exception for all castlink errors.

    Every public operation fails with a subclass of this, enabling catch-all
    handling while keeping specific types for detailed handling.
    """


class EncodingError(CastError):
    """Envelope cannot be encoded.

    Raised when the encoded message exceeds the maximum frame size or a string
    field is not valid UTF-8.

    Attributes:
        reason: Specific failure reason (e.g., "frame_too_large", "invalid_utf8")

    """

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = f"Envelope encode failed: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class DecodingError(CastError):
    """Frame or payload cannot be decoded.

    Raised on malformed length prefix, truncated payload, protobuf schema
    violation, invalid UTF-8, or a JSON payload that is not an object.

    Attributes:
        reason: Specific failure reason (e.g., "truncated", "schema_violation")
        data_preview: First 16 bytes of the offending data

    """

    def __init__(self, reason: str, data: bytes = b"") -> None:
        self.reason = reason
        # Only keep a short prefix; payloads can carry session identifiers
        self.data_preview = data[:16] if data else b""
        super().__init__(f"Decode failed: {reason}")


class FramingError(DecodingError):
    """Stream framing error.

    Raised by PacketFramer when a length prefix is larger than the maximum
    frame size. There is no resynchronization point in the stream, so this is
    fatal for the connection.

    Attributes:
        reason: Specific failure reason (e.g., "frame_too_large")
        frame_length: Length announced by the corrupt prefix

    """

    def __init__(self, reason: str, frame_length: int = 0) -> None:
        super().__init__(reason)
        self.frame_length = frame_length
