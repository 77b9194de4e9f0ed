"""Stream framing for length-prefixed cast messages.

This module provides PacketFramer for extracting complete frames from a TLS byte
stream, handling partial frames, multi-frame reads, and protecting against buffer
exhaustion.
"""

from __future__ import annotations

from castlink.const import CAST_MAX_FRAME_SIZE
from castlink.logging_abstraction import get_logger
from castlink.protocol.exceptions import FramingError

logger = get_logger(__name__)

FRAME_HEADER_LENGTH = 4


class PacketFramer:
    r"""Extract complete frames from a byte stream.

    Stream reads may return partial frames, multiple frames, or exact boundaries.
    PacketFramer buffers incoming bytes and extracts complete frames based on the
    4-byte big-endian length prefix.

    Algorithm:

    1. Buffer all incoming bytes
    2. Check if buffer has at least 4 bytes (header)
    3. Parse header to get body length (big-endian uint32)
    4. Validate length <= max_frame_size
    5. If buffer has the full frame (4 + length), extract it
    6. Repeat until buffer exhausted

    The stream has no resynchronization marker, so an oversized length is not
    recovered from: the buffer is discarded and FramingError is raised.

    Example:
        framer = PacketFramer()
        frames = framer.feed(b'\x00\x00\x00\x05ab')
        assert frames == []  # Incomplete

        frames = framer.feed(b'cde')
        assert frames == [b'\x00\x00\x00\x05abcde']

    """

    def __init__(self, max_frame_size: int = CAST_MAX_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size
        self.buffer: bytearray = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        """Add data to buffer and return list of complete frames.

        Args:
            data: Incoming bytes from a stream read

        Returns:
            Complete frames, each including its length prefix (may be empty)

        Raises:
            FramingError: A length prefix exceeds max_frame_size

        """
        self.buffer.extend(data)
        return self._extract_frames()

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of their frame."""
        return len(self.buffer)

    def reset(self) -> None:
        self.buffer = bytearray()

    def _extract_frames(self) -> list[bytes]:
        frames: list[bytes] = []

        while len(self.buffer) >= FRAME_HEADER_LENGTH:
            frame_length = int.from_bytes(self.buffer[:FRAME_HEADER_LENGTH], "big")

            if frame_length > self.max_frame_size:
                logger.error(
                    "✗ Invalid frame length: %d (max %d), stream is unrecoverable",
                    frame_length,
                    self.max_frame_size,
                    extra={"frame_length": frame_length, "buffer_size": len(self.buffer)},
                )
                self.reset()
                raise FramingError("frame_too_large", frame_length)

            total_length = FRAME_HEADER_LENGTH + frame_length
            if len(self.buffer) < total_length:
                # Incomplete frame, wait for more data
                break

            frames.append(bytes(self.buffer[:total_length]))
            del self.buffer[:total_length]

        return frames
