"""Framed envelope channel over an encrypted byte stream."""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque

from castlink.const import CAST_MAX_FRAME_SIZE, CAST_SENDER_ID
from castlink.logging_abstraction import get_logger
from castlink.metrics import registry
from castlink.protocol.codec import EnvelopeCodec
from castlink.protocol.envelope import Envelope
from castlink.protocol.exceptions import DecodingError
from castlink.protocol.packet_framer import PacketFramer
from castlink.transport.correlator import RequestCorrelator
from castlink.transport.exceptions import ChannelClosedError, TransportIOError
from castlink.transport.socket_abstraction import ByteStream

logger = get_logger(__name__)

_CLOSE_FLUSH_TIMEOUT_SECONDS = 1.0


class TransportChannel:
    """Send and receive envelopes as length-prefixed frames.

    Writes are serialized by a lock so frames from concurrent senders never
    interleave on the wire. Each channel owns one RequestCorrelator.
    """

    def __init__(
        self,
        stream: ByteStream,
        sender_id: str = CAST_SENDER_ID,
        max_frame_size: int = CAST_MAX_FRAME_SIZE,
    ) -> None:
        self.stream: ByteStream = stream
        self.sender_id: str = sender_id
        self.codec: EnvelopeCodec = EnvelopeCodec(max_frame_size)
        self.framer: PacketFramer = PacketFramer(max_frame_size)
        self.correlator: RequestCorrelator = RequestCorrelator(self.send, sender_id=sender_id)
        self._frames: deque[bytes] = deque()
        self._send_lock: asyncio.Lock = asyncio.Lock()
        self._closed_reason: str | None = None

    @property
    def is_closed(self) -> bool:
        return self._closed_reason is not None

    @property
    def closed_reason(self) -> str | None:
        return self._closed_reason

    async def send(self, envelope: Envelope) -> None:
        """Encode, frame and write one envelope.

        Raises:
            ChannelClosedError: Channel is closing or closed
            EncodingError: Envelope cannot be encoded
            TransportIOError: Stream write failed

        """
        if self._closed_reason is not None:
            raise ChannelClosedError(self._closed_reason)

        frame = self.codec.encode(envelope)

        async with self._send_lock:
            # close() may have run while we waited for the lock
            if self._closed_reason is not None:
                raise ChannelClosedError(self._closed_reason)
            try:
                await self.stream.send(frame)
            except TransportIOError:
                registry.record_frame_sent(envelope.namespace, "error")
                raise

        registry.record_frame_sent(envelope.namespace, "ok")
        logger.debug(
            "Sent %s",
            envelope,
            extra={"namespace": envelope.namespace, "destination_id": envelope.destination_id, "bytes": len(frame)},
        )

    async def receive(self) -> Envelope:
        """Return the next complete envelope from the stream.

        Raises:
            ChannelClosedError: Channel closed, or the peer closed the stream
            FramingError: Corrupt length prefix (fatal for the connection)
            DecodingError: Frame does not decode to a valid envelope
            TransportIOError: Stream read failed

        """
        while not self._frames:
            if self._closed_reason is not None:
                raise ChannelClosedError(self._closed_reason)
            try:
                data = await self.stream.recv()
            except TransportIOError:
                if self._closed_reason is not None:
                    raise ChannelClosedError(self._closed_reason) from None
                raise
            if not data:
                raise ChannelClosedError(self._closed_reason or "closed_by_peer")
            try:
                self._frames.extend(self.framer.feed(data))
            except DecodingError as e:
                registry.record_decode_error(e.reason)
                raise

        frame = self._frames.popleft()
        try:
            envelope = self.codec.decode(frame)
        except DecodingError as e:
            registry.record_decode_error(e.reason)
            logger.warning(
                "✗ Frame decode failed: %s",
                e.reason,
                extra={"reason": e.reason, "frame_length": len(frame), "preview": e.data_preview.hex()},
            )
            raise

        registry.record_frame_recv(envelope.namespace)
        logger.debug("Received %s", envelope, extra={"namespace": envelope.namespace})
        return envelope

    async def close(self, reason: str = "closed") -> None:
        """Close the channel; idempotent.

        Pending requests fail with ChannelClosedError(reason), an in-flight
        write gets a short grace period, then the stream is closed.
        """
        if self._closed_reason is not None:
            return
        self._closed_reason = reason
        logger.info("→ Closing channel", extra={"reason": reason})

        self.correlator.close(reason)

        # Let a frame that is mid-write finish before tearing the stream down
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._send_lock.acquire(), timeout=_CLOSE_FLUSH_TIMEOUT_SECONDS)
            self._send_lock.release()

        await self.stream.close()
        self._frames.clear()
        self.framer.reset()
        logger.info("✓ Channel closed", extra={"reason": reason})
