"""Envelope codec: protobuf serialization plus 4-byte big-endian length framing.

Wire format per message::

    [4-byte big-endian length][CastMessage protobuf bytes]

``decode`` accepts device-controlled bytes and only ever raises
``DecodingError``.
"""

from __future__ import annotations

import struct

from google.protobuf.message import DecodeError, EncodeError

from castlink.const import CAST_MAX_FRAME_SIZE
from castlink.protocol.cast_channel import PROTOCOL_VERSION_CASTV2_1_0, CastMessage
from castlink.protocol.envelope import Envelope, PayloadType
from castlink.protocol.exceptions import DecodingError, EncodingError

__all__ = ["LENGTH_PREFIX", "LENGTH_PREFIX_SIZE", "EnvelopeCodec"]

LENGTH_PREFIX = struct.Struct(">I")
LENGTH_PREFIX_SIZE = LENGTH_PREFIX.size


def _check_utf8(field_name: str, value: str) -> None:
    try:
        _ = value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise EncodingError("invalid_utf8", field_name) from e


def _decoded_text(value: str | bytes, body: bytes) -> str:
    # proto2 string fields holding invalid UTF-8 come back as raw bytes
    if isinstance(value, bytes):
        raise DecodingError("invalid_utf8", body)
    try:
        _ = value.encode("utf-8")
    except UnicodeEncodeError as e:
        raise DecodingError("invalid_utf8", body) from e
    return value


class EnvelopeCodec:
    """Encode and decode envelopes.

    Args:
        max_frame_size: Largest accepted message body in bytes (device-imposed)

    """

    def __init__(self, max_frame_size: int = CAST_MAX_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size

    def encode_message(self, envelope: Envelope) -> bytes:
        """Serialize an envelope to CastMessage bytes (no length prefix).

        Raises:
            EncodingError: invalid UTF-8 in a string field, or body over max_frame_size

        """
        _check_utf8("source_id", envelope.source_id)
        _check_utf8("destination_id", envelope.destination_id)
        _check_utf8("namespace", envelope.namespace)

        message = CastMessage()
        message.protocol_version = PROTOCOL_VERSION_CASTV2_1_0
        message.source_id = envelope.source_id
        message.destination_id = envelope.destination_id
        message.namespace = envelope.namespace

        if isinstance(envelope.payload, bytes):
            message.payload_type = PayloadType.BINARY
            message.payload_binary = envelope.payload
        else:
            _check_utf8("payload", envelope.payload)
            message.payload_type = PayloadType.STRING
            message.payload_utf8 = envelope.payload

        try:
            body = message.SerializeToString()
        except EncodeError as e:
            raise EncodingError("serialize_failed", str(e)) from e

        if len(body) > self.max_frame_size:
            raise EncodingError(
                "frame_too_large",
                f"{len(body)} > {self.max_frame_size} bytes",
            )
        return body

    def encode(self, envelope: Envelope) -> bytes:
        """Serialize an envelope into one length-prefixed frame."""
        body = self.encode_message(envelope)
        return LENGTH_PREFIX.pack(len(body)) + body

    def decode_message(self, body: bytes) -> Envelope:
        """Parse CastMessage bytes (no length prefix) into an envelope.

        Raises:
            DecodingError: protobuf parse failure, missing required fields, invalid UTF-8

        """
        if len(body) > self.max_frame_size:
            raise DecodingError("frame_too_large", body)

        message = CastMessage()
        try:
            _ = message.ParseFromString(body)
        except UnicodeDecodeError as e:
            raise DecodingError("invalid_utf8", body) from e
        except (DecodeError, ValueError) as e:
            raise DecodingError("schema_violation", body) from e

        if not message.IsInitialized():
            raise DecodingError("missing_required_fields", body)

        try:
            source_id = _decoded_text(message.source_id, body)
            destination_id = _decoded_text(message.destination_id, body)
            namespace = _decoded_text(message.namespace, body)

            payload: str | bytes
            if message.payload_type == PayloadType.BINARY:
                payload = bytes(message.payload_binary)
            else:
                payload = _decoded_text(message.payload_utf8, body)
        except UnicodeDecodeError as e:
            raise DecodingError("invalid_utf8", body) from e

        return Envelope(
            source_id=source_id,
            destination_id=destination_id,
            namespace=namespace,
            payload=payload,
        )

    def decode(self, frame: bytes) -> Envelope:
        """Parse one complete length-prefixed frame into an envelope.

        Raises:
            DecodingError: malformed prefix, truncated or oversized body, trailing
                bytes, or any decode_message failure

        """
        if len(frame) < LENGTH_PREFIX_SIZE:
            raise DecodingError("short_length_prefix", frame)

        (length,) = LENGTH_PREFIX.unpack_from(frame)
        if length > self.max_frame_size:
            raise DecodingError("frame_too_large", frame)

        body = frame[LENGTH_PREFIX_SIZE:]
        if len(body) < length:
            raise DecodingError("truncated", frame)
        if len(body) > length:
            raise DecodingError("trailing_bytes", frame)

        return self.decode_message(body)
