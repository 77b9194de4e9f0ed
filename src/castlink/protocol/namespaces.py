"""Namespace strings and message vocabulary of the cast control protocol.

Field and type names are the device's vocabulary and must match exactly.
"""

from __future__ import annotations

from enum import StrEnum

NS_DEVICE_AUTH = "urn:x-cast:com.google.cast.tp.deviceauth"
NS_CONNECTION = "urn:x-cast:com.google.cast.tp.connection"
NS_HEARTBEAT = "urn:x-cast:com.google.cast.tp.heartbeat"
NS_RECEIVER = "urn:x-cast:com.google.cast.receiver"
NS_MEDIA = "urn:x-cast:com.google.cast.media"


class Namespace(StrEnum):
    """Known namespaces, keyed by their short name."""

    DEVICE_AUTH = NS_DEVICE_AUTH
    CONNECTION = NS_CONNECTION
    HEARTBEAT = NS_HEARTBEAT
    RECEIVER = NS_RECEIVER
    MEDIA = NS_MEDIA

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @classmethod
    def lookup(cls, namespace: str) -> Namespace | None:
        """Return the known namespace for a wire string, or None."""
        try:
            return cls(namespace)
        except ValueError:
            return None


_SHORT_NAMES = {
    Namespace.DEVICE_AUTH: "device-auth",
    Namespace.CONNECTION: "connection",
    Namespace.HEARTBEAT: "heartbeat",
    Namespace.RECEIVER: "receiver",
    Namespace.MEDIA: "media",
}

# Common payload keys
MESSAGE_TYPE = "type"
REQUEST_ID = "requestId"
SESSION_ID = "sessionId"
MEDIA_SESSION_ID = "mediaSessionId"

# connection namespace
TYPE_CONNECT = "CONNECT"
TYPE_CLOSE = "CLOSE"

# heartbeat namespace
TYPE_PING = "PING"
TYPE_PONG = "PONG"

# receiver namespace
TYPE_GET_STATUS = "GET_STATUS"
TYPE_LAUNCH = "LAUNCH"
TYPE_STOP = "STOP"
TYPE_SET_VOLUME = "SET_VOLUME"
TYPE_RECEIVER_STATUS = "RECEIVER_STATUS"
TYPE_LAUNCH_ERROR = "LAUNCH_ERROR"
TYPE_INVALID_REQUEST = "INVALID_REQUEST"

# media namespace
TYPE_LOAD = "LOAD"
TYPE_PLAY = "PLAY"
TYPE_PAUSE = "PAUSE"
TYPE_SEEK = "SEEK"
TYPE_MEDIA_STATUS = "MEDIA_STATUS"
TYPE_LOAD_FAILED = "LOAD_FAILED"
TYPE_LOAD_CANCELLED = "LOAD_CANCELLED"
TYPE_INVALID_PLAYER_STATE = "INVALID_PLAYER_STATE"

MEDIA_REJECTION_TYPES = frozenset(
    {TYPE_LOAD_FAILED, TYPE_LOAD_CANCELLED, TYPE_INVALID_PLAYER_STATE, TYPE_INVALID_REQUEST},
)
