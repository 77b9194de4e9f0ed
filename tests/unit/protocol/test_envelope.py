"""Unit tests for Envelope, namespaces and protocol exceptions."""

from __future__ import annotations

import pytest

from castlink.protocol.envelope import Envelope, PayloadType
from castlink.protocol.exceptions import CastError, DecodingError, EncodingError, FramingError
from castlink.protocol.namespaces import NS_DEVICE_AUTH, NS_HEARTBEAT, NS_MEDIA, Namespace
from tests.helpers.expectations import expect_exception


class TestEnvelope:
    """Tests for JSON payload helpers."""

    def test_from_json_is_compact(self) -> None:
        """Test from_json serializes without whitespace."""
        envelope = Envelope.from_json("sender-0", "receiver-0", NS_HEARTBEAT, {"type": "PING"})

        assert envelope.payload == '{"type":"PING"}'
        assert envelope.payload_type is PayloadType.STRING

    def test_from_json_rejects_unserializable(self) -> None:
        """Test non-JSON values raise EncodingError."""
        err = expect_exception(Envelope.from_json, EncodingError, "a", "b", NS_MEDIA, {"x": object()})

        assert err.reason == "invalid_json"

    def test_json_parses_object(self) -> None:
        """Test json() returns the decoded object."""
        envelope = Envelope("a", "b", NS_MEDIA, '{"type":"MEDIA_STATUS","requestId":3}')

        assert envelope.json() == {"type": "MEDIA_STATUS", "requestId": 3}

    @pytest.mark.parametrize(
        ("payload", "reason"),
        [
            (b"\x01\x02", "binary_payload"),
            ("{not json", "invalid_json"),
            ("[" * 100000, "invalid_json"),
            ("[1, 2]", "json_not_object"),
        ],
    )
    def test_json_errors(self, payload: str | bytes, reason: str) -> None:
        """Test json() failures carry a specific reason."""
        envelope = Envelope("a", "b", NS_MEDIA, payload)

        err = expect_exception(envelope.json, DecodingError)

        assert err.reason == reason
        assert envelope.try_json() is None

    def test_binary_payload_type(self) -> None:
        """Test bytes payloads report BINARY."""
        assert Envelope("a", "b", NS_DEVICE_AUTH, b"\x00").payload_type is PayloadType.BINARY

    def test_str_hides_binary_payload(self) -> None:
        """Test the log representation summarizes binary data."""
        text = str(Envelope("a", "b", NS_DEVICE_AUTH, b"\x00" * 12))

        assert "<12 bytes>" in text
        assert NS_DEVICE_AUTH in text

    def test_envelope_is_immutable(self) -> None:
        """Test envelopes are frozen."""
        envelope = Envelope("a", "b", NS_MEDIA, "{}")

        with pytest.raises(AttributeError):
            envelope.source_id = "c"  # type: ignore[misc]


class TestNamespace:
    """Tests for the known namespace table."""

    def test_lookup_known(self) -> None:
        """Test wire strings resolve to their enum member."""
        assert Namespace.lookup(NS_MEDIA) is Namespace.MEDIA
        assert Namespace.MEDIA.short_name == "media"
        assert Namespace.DEVICE_AUTH.short_name == "device-auth"

    def test_lookup_unknown(self) -> None:
        """Test custom namespaces are not known."""
        assert Namespace.lookup("urn:x-cast:com.example.custom") is None


class TestProtocolExceptions:
    """Tests for the protocol exception hierarchy."""

    def test_decoding_error_keeps_short_preview(self) -> None:
        """Test only the first 16 bytes of offending data are retained."""
        err = DecodingError("schema_violation", bytes(range(40)))

        assert err.data_preview == bytes(range(16))
        assert "schema_violation" in str(err)

    def test_framing_error_is_decoding_error(self) -> None:
        """Test FramingError can be handled as any decode failure."""
        err = FramingError("frame_too_large", 1 << 20)

        assert isinstance(err, DecodingError)
        assert isinstance(err, CastError)
        assert err.frame_length == 1 << 20
        assert err.data_preview == b""

    def test_encoding_error_message_includes_detail(self) -> None:
        """Test the detail is appended to the message."""
        err = EncodingError("frame_too_large", "70000 > 65536 bytes")

        assert str(err) == "Envelope encode failed: frame_too_large (70000 > 65536 bytes)"
