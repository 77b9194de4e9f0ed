"""Media controller bound to one running application session."""

from __future__ import annotations

import math
from collections.abc import Awaitable, Callable
from typing import Any

from castlink.controllers.connection import ConnectionController
from castlink.controllers.exceptions import CommandRejectedError, NoActiveSessionError, SessionExpiredError
from castlink.controllers.receiver import ReceiverController
from castlink.correlation import correlation_context
from castlink.logging_abstraction import get_logger
from castlink.models import ApplicationSession, MediaSession, StreamType, parse_media_status
from castlink.protocol.envelope import Envelope
from castlink.protocol.exceptions import DecodingError
from castlink.protocol.namespaces import (
    MEDIA_REJECTION_TYPES,
    MEDIA_SESSION_ID,
    MESSAGE_TYPE,
    NS_MEDIA,
    SESSION_ID,
    TYPE_GET_STATUS,
    TYPE_LOAD,
    TYPE_LOAD_FAILED,
    TYPE_MEDIA_STATUS,
    TYPE_PAUSE,
    TYPE_PLAY,
    TYPE_SEEK,
    TYPE_SET_VOLUME,
    TYPE_STOP,
)
from castlink.transport.connection_manager import ConnectionManager
from castlink.transport.retry_policy import TimeoutConfig
from castlink.utils import call_listeners, validate_level

logger = get_logger(__name__)

MediaStatusCallback = Callable[[MediaSession | None], Awaitable[None] | None]

RESUME_STATES = ("PLAYBACK_START", "PLAYBACK_PAUSE")


class MediaController:
    """Load and control media on one application transport.

    Opens a virtual connection to the application before the first command.
    Once the application stops (or the device closes the virtual connection)
    the controller expires: in-flight commands fail with SessionExpiredError
    and so does every later command.
    """

    def __init__(
        self,
        manager: ConnectionManager,
        connections: ConnectionController,
        session: ApplicationSession,
        receiver: ReceiverController | None = None,
        timeout_config: TimeoutConfig | None = None,
    ) -> None:
        if not session.transport_id:
            msg = f"Application {session.app_id} has no transport id"
            raise ValueError(msg)
        self.manager = manager
        self.connections = connections
        self.session = session
        self.receiver = receiver
        self.timeout_config = timeout_config or manager.timeout_config
        self.media_session: MediaSession | None = None
        self._expired: SessionExpiredError | None = None
        self._in_flight: set[int] = set()
        self._status_listeners: list[MediaStatusCallback] = []

        self._subscription = manager.subscribe(NS_MEDIA, self._on_event, source_id=self.transport_id)
        connections.add_remote_close_listener(self._on_remote_close)
        if receiver is not None:
            receiver.add_app_stopped_listener(self._on_app_stopped)

    @property
    def transport_id(self) -> str:
        return self.session.transport_id

    @property
    def media_session_id(self) -> int | None:
        return self.media_session.media_session_id if self.media_session else None

    @property
    def is_expired(self) -> bool:
        return self._expired is not None

    def add_status_listener(self, callback: MediaStatusCallback) -> None:
        self._status_listeners.append(callback)

    def _check_expired(self) -> None:
        if self._expired is not None:
            raise SessionExpiredError(self.transport_id, self._expired.reason)

    def _require_session(self, command: str) -> int:
        self._check_expired()
        if self.media_session is None:
            raise NoActiveSessionError(command)
        return self.media_session.media_session_id

    async def _request(self, payload: dict[str, Any], timeout: float) -> MediaSession | None:
        self._check_expired()
        await self.connections.connect(self.transport_id)
        self._check_expired()

        with correlation_context():
            slot = await self.manager.correlator.send_request(NS_MEDIA, self.transport_id, payload, timeout)
            self._in_flight.add(slot.request_id)
            if self._expired is not None:
                _ = self.manager.correlator.fail(
                    slot.request_id,
                    SessionExpiredError(self.transport_id, self._expired.reason),
                )
            try:
                reply = await slot.future
            finally:
                self._in_flight.discard(slot.request_id)

        data = reply.json()
        message_type = data.get(MESSAGE_TYPE)
        if message_type in MEDIA_REJECTION_TYPES:
            reason = data.get("reason") or data.get("detailedErrorCode") or ""
            raise CommandRejectedError(str(message_type), str(reason))
        if message_type != TYPE_MEDIA_STATUS:
            raise DecodingError("unexpected_reply_type", str(message_type).encode())
        return await self._apply_status(data)

    async def load(
        self,
        url: str,
        content_type: str = "video/mp4",
        stream_type: StreamType | str = StreamType.BUFFERED,
        autoplay: bool = True,
        current_time: float = 0.0,
        metadata: dict[str, Any] | None = None,
        custom_data: dict[str, Any] | None = None,
    ) -> MediaSession:
        """Load media into the application and return the new media session.

        Raises:
            ValueError: Unknown stream type
            CommandRejectedError: LOAD_FAILED, LOAD_CANCELLED or INVALID_REQUEST
            SessionExpiredError: The application stopped

        """
        stream_type = StreamType(stream_type)
        media: dict[str, Any] = {
            "contentId": url,
            "streamType": stream_type.value,
            "contentType": content_type,
        }
        if metadata:
            media["metadata"] = metadata

        logger.info("→ Loading %s", url, extra={"transport_id": self.transport_id, "content_type": content_type})
        session = await self._request(
            {
                MESSAGE_TYPE: TYPE_LOAD,
                SESSION_ID: self.session.session_id,
                "media": media,
                "currentTime": current_time,
                "autoplay": autoplay,
                "customData": custom_data or {},
            },
            self.timeout_config.command_timeout,
        )
        if session is None:
            raise CommandRejectedError(TYPE_LOAD_FAILED, "no media session in reply")
        logger.info(
            "✓ Loaded media session %d",
            session.media_session_id,
            extra={"media_session_id": session.media_session_id, "player_state": session.player_state},
        )
        return session

    async def _command(self, message_type: str, timeout: float | None = None, **fields: Any) -> MediaSession | None:
        media_session_id = self._require_session(message_type.lower())
        payload: dict[str, Any] = {MESSAGE_TYPE: message_type, MEDIA_SESSION_ID: media_session_id}
        payload.update(fields)
        return await self._request(
            payload,
            timeout if timeout is not None else self.timeout_config.command_timeout,
        )

    async def play(self) -> MediaSession | None:
        return await self._command(TYPE_PLAY)

    async def pause(self) -> MediaSession | None:
        return await self._command(TYPE_PAUSE)

    async def stop(self) -> MediaSession | None:
        return await self._command(TYPE_STOP)

    async def seek(self, position: float, resume_state: str | None = None) -> MediaSession | None:
        """Seek to ``position`` seconds.

        Positions past the end of the media are validated by the device and
        surface as CommandRejectedError.

        Raises:
            ValueError: Negative position or unknown resume state

        """
        if isinstance(position, bool) or math.isnan(position) or position < 0:
            msg = f"Seek position must be >= 0, got {position!r}"
            raise ValueError(msg)
        fields: dict[str, Any] = {"currentTime": position}
        if resume_state is not None:
            if resume_state not in RESUME_STATES:
                msg = f"Unknown resume state {resume_state!r}"
                raise ValueError(msg)
            fields["resumeState"] = resume_state
        return await self._command(TYPE_SEEK, **fields)

    async def set_volume(self, level: float) -> MediaSession | None:
        """Set the stream volume, independent of the receiver volume."""
        level = validate_level(level)
        return await self._command(TYPE_SET_VOLUME, volume={"level": level})

    async def set_muted(self, muted: bool) -> MediaSession | None:
        return await self._command(TYPE_SET_VOLUME, volume={"muted": bool(muted)})

    async def get_status(self) -> MediaSession | None:
        """Query the media status; does not require a known media session."""
        payload: dict[str, Any] = {MESSAGE_TYPE: TYPE_GET_STATUS}
        if self.media_session is not None:
            payload[MEDIA_SESSION_ID] = self.media_session.media_session_id
        return await self._request(payload, self.timeout_config.status_timeout)

    async def _apply_status(self, data: dict[str, Any]) -> MediaSession | None:
        sessions = parse_media_status(data, self.transport_id)
        if not sessions:
            self.media_session = None
        else:
            current_id = self.media_session_id
            self.media_session = next(
                (s for s in sessions if s.media_session_id == current_id),
                sessions[0],
            )
        await call_listeners(self._status_listeners, self.media_session, logger=logger, what="Media status")
        return self.media_session

    def invalidate(self, reason: str = "application_stopped") -> None:
        """Expire the controller; in-flight commands fail with SessionExpiredError."""
        if self._expired is not None:
            return
        self._expired = SessionExpiredError(self.transport_id, reason)
        logger.info(
            "Media controller expired",
            extra={"transport_id": self.transport_id, "reason": reason, "in_flight": len(self._in_flight)},
        )
        for request_id in sorted(self._in_flight):
            _ = self.manager.correlator.fail(request_id, SessionExpiredError(self.transport_id, reason))
        self._in_flight.clear()

        self._subscription.unsubscribe()
        self.connections.forget(self.transport_id)
        self.connections.remove_remote_close_listener(self._on_remote_close)
        if self.receiver is not None:
            self.receiver.remove_app_stopped_listener(self._on_app_stopped)

    def _on_app_stopped(self, app: ApplicationSession) -> None:
        if app.transport_id == self.transport_id or (
            app.session_id and app.session_id == self.session.session_id
        ):
            self.invalidate("application_stopped")

    def _on_remote_close(self, transport_id: str) -> None:
        if transport_id == self.transport_id:
            self.invalidate("connection_closed")

    async def _on_event(self, envelope: Envelope) -> None:
        data = envelope.try_json()
        if data is None:
            return
        message_type = data.get(MESSAGE_TYPE)
        if message_type != TYPE_MEDIA_STATUS:
            logger.debug("Ignoring media event %s", message_type, extra={"type": message_type})
            return
        try:
            _ = await self._apply_status(data)
        except DecodingError as e:
            logger.warning("Malformed media status push: %s", e.reason, extra={"reason": e.reason})
