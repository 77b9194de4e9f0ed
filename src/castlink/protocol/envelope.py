"""Protocol message envelope exchanged between sender and receiver."""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from castlink.protocol.exceptions import DecodingError, EncodingError


class PayloadType(IntEnum):
    """Wire values of the envelope payload type."""

    STRING = 0
    BINARY = 1


@dataclass(frozen=True, slots=True)
class Envelope:
    """One protocol message.

    Attributes:
        source_id: Transport id of the sender
        destination_id: Transport id of the recipient ("*" for broadcasts)
        namespace: Logical channel name
        payload: JSON text (``str``) or binary data (``bytes``)

    """

    source_id: str
    destination_id: str
    namespace: str
    payload: str | bytes

    @property
    def payload_type(self) -> PayloadType:
        return PayloadType.BINARY if isinstance(self.payload, bytes) else PayloadType.STRING

    @classmethod
    def from_json(
        cls,
        source_id: str,
        destination_id: str,
        namespace: str,
        data: dict[str, Any],
    ) -> Envelope:
        """Build a STRING envelope from a JSON-serializable mapping."""
        try:
            payload = json.dumps(data, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise EncodingError("invalid_json", str(e)) from e
        return cls(source_id, destination_id, namespace, payload)

    def json(self) -> dict[str, Any]:
        """Parse a STRING payload as a JSON object.

        Raises:
            DecodingError: Binary payload, invalid JSON, or JSON that is not an object

        """
        if isinstance(self.payload, bytes):
            raise DecodingError("binary_payload")
        try:
            data = json.loads(self.payload)
        except (ValueError, RecursionError) as e:
            raise DecodingError("invalid_json", self.payload.encode("utf-8", "replace")) from e
        if not isinstance(data, dict):
            raise DecodingError("json_not_object", self.payload.encode("utf-8", "replace"))
        return data

    def try_json(self) -> dict[str, Any] | None:
        """Like json(), but returns None instead of raising."""
        try:
            return self.json()
        except DecodingError:
            return None

    def __str__(self) -> str:
        body = self.payload if isinstance(self.payload, str) else f"<{len(self.payload)} bytes>"
        return f"Message {self.namespace} from {self.source_id} to {self.destination_id}: {body}"
