"""Wire layer: envelope model, protobuf codec and stream framing."""

from castlink.protocol.codec import EnvelopeCodec
from castlink.protocol.envelope import Envelope, PayloadType
from castlink.protocol.exceptions import CastError, DecodingError, EncodingError, FramingError
from castlink.protocol.namespaces import Namespace
from castlink.protocol.packet_framer import PacketFramer

__all__ = [
    "CastError",
    "DecodingError",
    "EncodingError",
    "Envelope",
    "EnvelopeCodec",
    "FramingError",
    "Namespace",
    "PacketFramer",
    "PayloadType",
]
