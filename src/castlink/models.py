"""Typed views of receiver and media status payloads.

Field aliases are the device's JSON vocabulary. Unknown fields are ignored;
opaque values (metadata, custom data) are passed through untouched.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from castlink.protocol.exceptions import DecodingError
from castlink.protocol.namespaces import REQUEST_ID


class StreamType(StrEnum):
    """Media stream types understood by the default receiver."""

    BUFFERED = "BUFFERED"
    LIVE = "LIVE"
    NONE = "NONE"


class PlayerState(StrEnum):
    IDLE = "IDLE"
    PLAYING = "PLAYING"
    PAUSED = "PAUSED"
    BUFFERING = "BUFFERING"
    UNKNOWN = "UNKNOWN"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Volume(_WireModel):
    """Volume level in [0, 1] and mute flag; either may be absent."""

    level: float | None = None
    muted: bool | None = None


class ApplicationSession(_WireModel):
    """An application running on the receiver, as reported by one status.

    Replaced wholesale on every receiver status; transport ids change when an
    application relaunches.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    app_id: str = Field(alias="appId")
    display_name: str = Field(default="", alias="displayName")
    session_id: str = Field(default="", alias="sessionId")
    transport_id: str = Field(default="", alias="transportId")
    status_text: str = Field(default="", alias="statusText")
    is_idle: bool = Field(default=False, alias="isIdleScreen")
    namespaces: tuple[str, ...] = ()

    @field_validator("namespaces", mode="before")
    @classmethod
    def _namespace_names(cls, value: Any) -> Any:
        if isinstance(value, list):
            return tuple(item["name"] if isinstance(item, dict) else item for item in value)
        return value

    def supports(self, namespace: str) -> bool:
        return namespace in self.namespaces


class ReceiverStatus(_WireModel):
    """Receiver-wide status: running applications plus device volume."""

    applications: list[ApplicationSession] = Field(default_factory=list)
    volume: Volume = Field(default_factory=Volume)
    is_active_input: bool | None = Field(default=None, alias="isActiveInput")
    is_stand_by: bool | None = Field(default=None, alias="isStandBy")
    request_id: int = 0

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ReceiverStatus:
        """Build from a RECEIVER_STATUS message.

        Raises:
            DecodingError: The status object does not match the expected shape

        """
        status = data.get("status") or {}
        if not isinstance(status, dict):
            raise DecodingError("invalid_receiver_status")
        request_id = data.get(REQUEST_ID)
        try:
            return cls.model_validate(
                {**status, "request_id": request_id if isinstance(request_id, int) else 0},
            )
        except ValidationError as e:
            raise DecodingError("invalid_receiver_status") from e

    def find_app(self, app_id: str) -> ApplicationSession | None:
        return next((app for app in self.applications if app.app_id == app_id), None)

    def find_session(self, session_or_transport_id: str) -> ApplicationSession | None:
        """Look up an application by its transport id or its session id."""
        for app in self.applications:
            if session_or_transport_id in (app.transport_id, app.session_id):
                return app
        return None

    def is_running(self, app_id: str) -> bool:
        app = self.find_app(app_id)
        return app is not None and not app.is_idle


class MediaInformation(_WireModel):
    """Description of the loaded media item."""

    content_id: str = Field(default="", alias="contentId")
    content_type: str = Field(default="", alias="contentType")
    stream_type: str = Field(default=StreamType.BUFFERED.value, alias="streamType")
    duration: float | None = None
    metadata: dict[str, Any] | None = None


class MediaSession(_WireModel):
    """State of one media session on an application transport."""

    media_session_id: int = Field(alias="mediaSessionId")
    transport_id: str = ""
    player_state: str = Field(default=PlayerState.UNKNOWN.value, alias="playerState")
    current_time: float = Field(default=0.0, alias="currentTime")
    volume: Volume = Field(default_factory=Volume)
    idle_reason: str | None = Field(default=None, alias="idleReason")
    playback_rate: float = Field(default=1.0, alias="playbackRate")
    supported_media_commands: int = Field(default=0, alias="supportedMediaCommands")
    media: MediaInformation | None = None

    @property
    def is_active(self) -> bool:
        return self.player_state != PlayerState.IDLE


def parse_media_status(data: dict[str, Any], transport_id: str = "") -> list[MediaSession]:
    """Parse the ``status`` list of a MEDIA_STATUS message.

    Raises:
        DecodingError: The status entries do not match the expected shape

    """
    entries = data.get("status") or []
    if not isinstance(entries, list):
        raise DecodingError("invalid_media_status")
    try:
        return [MediaSession.model_validate({**entry, "transport_id": transport_id}) for entry in entries]
    except (ValidationError, TypeError) as e:
        raise DecodingError("invalid_media_status") from e
