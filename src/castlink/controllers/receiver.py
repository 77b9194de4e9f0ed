"""Receiver controller: status, launch, stop and device volume.

Every status the device sends, whether a reply or a push, replaces the cached
ReceiverStatus wholesale. Applications that disappear from one status to the
next are reported to app-stopped listeners so media controllers bound to them
expire.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from castlink.const import APP_ALIASES, PLATFORM_DESTINATION_ID
from castlink.controllers.connection import ConnectionController
from castlink.controllers.exceptions import CommandRejectedError, LaunchFailedError, NotRunningError
from castlink.logging_abstraction import get_logger
from castlink.models import ApplicationSession, ReceiverStatus
from castlink.protocol.envelope import Envelope
from castlink.protocol.exceptions import DecodingError
from castlink.protocol.namespaces import (
    MESSAGE_TYPE,
    NS_RECEIVER,
    SESSION_ID,
    TYPE_GET_STATUS,
    TYPE_INVALID_REQUEST,
    TYPE_LAUNCH,
    TYPE_LAUNCH_ERROR,
    TYPE_RECEIVER_STATUS,
    TYPE_SET_VOLUME,
    TYPE_STOP,
)
from castlink.transport.connection_manager import ConnectionManager
from castlink.transport.exceptions import RequestTimeoutError
from castlink.transport.retry_policy import TimeoutConfig
from castlink.utils import call_listeners, validate_level

logger = get_logger(__name__)

StatusCallback = Callable[[ReceiverStatus], Awaitable[None] | None]
AppStoppedCallback = Callable[[ApplicationSession], Awaitable[None] | None]

# How long launch() waits for a status push before polling GET_STATUS
_LAUNCH_POLL_INTERVAL_SECONDS = 1.0


def resolve_app_id(app_id: str) -> str:
    """Map a built-in alias ("default", "backdrop", "youtube") to its app id."""
    return APP_ALIASES.get(app_id, app_id)


class ReceiverController:
    """Commands on the receiver namespace of the platform transport."""

    def __init__(
        self,
        manager: ConnectionManager,
        connections: ConnectionController,
        timeout_config: TimeoutConfig | None = None,
    ) -> None:
        self.manager = manager
        self.connections = connections
        self.timeout_config = timeout_config or manager.timeout_config
        self.status: ReceiverStatus | None = None
        self._status_listeners: list[StatusCallback] = []
        self._app_stopped_listeners: list[AppStoppedCallback] = []
        self._launch_waiters: list[tuple[str, asyncio.Future[ApplicationSession]]] = []
        self._subscription = manager.subscribe(NS_RECEIVER, self._on_event, source_id=PLATFORM_DESTINATION_ID)

    def add_status_listener(self, callback: StatusCallback) -> None:
        self._status_listeners.append(callback)

    def add_app_stopped_listener(self, callback: AppStoppedCallback) -> None:
        self._app_stopped_listeners.append(callback)

    def remove_app_stopped_listener(self, callback: AppStoppedCallback) -> None:
        if callback in self._app_stopped_listeners:
            self._app_stopped_listeners.remove(callback)

    @property
    def applications(self) -> list[ApplicationSession]:
        return list(self.status.applications) if self.status else []

    def find_session(self, session_or_transport_id: str) -> ApplicationSession | None:
        return self.status.find_session(session_or_transport_id) if self.status else None

    def running_app(self, app_id: str) -> ApplicationSession | None:
        """The session of ``app_id`` if the last status shows it running and not idle."""
        if self.status is None:
            return None
        app = self.status.find_app(resolve_app_id(app_id))
        return app if app is not None and not app.is_idle else None

    async def _request(self, payload: dict[str, Any], timeout: float) -> Envelope:
        return await self.manager.request(NS_RECEIVER, PLATFORM_DESTINATION_ID, payload, timeout)

    async def _apply_reply(self, envelope: Envelope) -> ReceiverStatus:
        data = envelope.json()
        message_type = data.get(MESSAGE_TYPE)
        if message_type == TYPE_RECEIVER_STATUS:
            return await self._update_status(ReceiverStatus.from_payload(data))
        if message_type in (TYPE_INVALID_REQUEST, TYPE_LAUNCH_ERROR):
            raise CommandRejectedError(str(message_type), str(data.get("reason", "")))
        raise DecodingError("unexpected_reply_type", str(message_type).encode())

    async def get_status(self, timeout: float | None = None) -> ReceiverStatus:
        """Query the receiver for its running applications and volume.

        Raises:
            RequestTimeoutError: No status within the status timeout
            CommandRejectedError: Device answered INVALID_REQUEST

        """
        reply = await self._request(
            {MESSAGE_TYPE: TYPE_GET_STATUS},
            timeout if timeout is not None else self.timeout_config.status_timeout,
        )
        return await self._apply_reply(reply)

    async def launch(self, app_id: str, timeout: float | None = None) -> ApplicationSession:
        """Launch an application and wait until a status shows it running.

        The LAUNCH reply only means "request accepted"; success is confirmed by
        a status (the reply itself, a push, or a GET_STATUS poll) listing the
        app as running and not idle.

        Raises:
            LaunchFailedError: LAUNCH_ERROR, INVALID_REQUEST, or no confirming
                status before the deadline

        """
        app_id = resolve_app_id(app_id)
        timeout = timeout if timeout is not None else self.timeout_config.launch_timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        # Registered before sending: the confirming push may beat the reply
        waiter: asyncio.Future[ApplicationSession] = loop.create_future()
        entry = (app_id, waiter)
        self._launch_waiters.append(entry)
        logger.info("→ Launching %s", app_id, extra={"app_id": app_id, "timeout": timeout})
        try:
            try:
                reply = await self._request({MESSAGE_TYPE: TYPE_LAUNCH, "appId": app_id}, timeout)
                _ = await self._apply_reply(reply)
            except RequestTimeoutError as e:
                # A status push may have confirmed the launch without a reply
                if not waiter.done():
                    raise LaunchFailedError(app_id, "timeout") from e
            except CommandRejectedError as e:
                raise LaunchFailedError(app_id, e.reason or e.reply_type) from e

            session = await self._await_running(app_id, waiter, deadline)
        finally:
            self._launch_waiters.remove(entry)
            if not waiter.done():
                _ = waiter.cancel()

        logger.info(
            "✓ Launched %s",
            app_id,
            extra={"app_id": app_id, "transport_id": session.transport_id, "session_id": session.session_id},
        )
        return session

    async def _await_running(
        self,
        app_id: str,
        waiter: asyncio.Future[ApplicationSession],
        deadline: float,
    ) -> ApplicationSession:
        loop = asyncio.get_running_loop()
        while not waiter.done():
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LaunchFailedError(app_id, "timeout")
            try:
                return await asyncio.wait_for(
                    asyncio.shield(waiter),
                    timeout=min(remaining, _LAUNCH_POLL_INTERVAL_SECONDS),
                )
            except TimeoutError:
                pass

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LaunchFailedError(app_id, "timeout")
            logger.debug("Polling status for %s", app_id, extra={"app_id": app_id})
            try:
                _ = await self.get_status(timeout=min(remaining, self.timeout_config.status_timeout))
            except RequestTimeoutError:
                continue
        return waiter.result()

    async def stop(self, session_transport_id: str) -> ReceiverStatus:
        """Stop a running application by transport id or session id.

        Raises:
            NotRunningError: No such application in the last known status;
                nothing is sent
            CommandRejectedError: Device answered INVALID_REQUEST

        """
        app = self.find_session(session_transport_id)
        if app is None:
            raise NotRunningError(session_transport_id)

        logger.info("→ Stopping %s", app.app_id, extra={"app_id": app.app_id, "session_id": app.session_id})
        reply = await self._request(
            {MESSAGE_TYPE: TYPE_STOP, SESSION_ID: app.session_id},
            self.timeout_config.command_timeout,
        )
        return await self._apply_reply(reply)

    async def set_volume(self, level: float) -> ReceiverStatus:
        """Set the device volume level in [0, 1].

        Raises:
            ValueError: Level outside [0, 1]

        """
        level = validate_level(level)
        reply = await self._request(
            {MESSAGE_TYPE: TYPE_SET_VOLUME, "volume": {"level": level}},
            self.timeout_config.command_timeout,
        )
        return await self._apply_reply(reply)

    async def set_muted(self, muted: bool) -> ReceiverStatus:
        reply = await self._request(
            {MESSAGE_TYPE: TYPE_SET_VOLUME, "volume": {"muted": bool(muted)}},
            self.timeout_config.command_timeout,
        )
        return await self._apply_reply(reply)

    async def _update_status(self, status: ReceiverStatus) -> ReceiverStatus:
        previous = self.status
        self.status = status

        if previous is not None:
            gone = [
                app
                for app in previous.applications
                if status.find_session(app.session_id or app.transport_id) is None
            ]
            for app in gone:
                logger.info(
                    "Application %s stopped",
                    app.display_name or app.app_id,
                    extra={"app_id": app.app_id, "transport_id": app.transport_id},
                )
                self.connections.forget(app.transport_id)
                await call_listeners(self._app_stopped_listeners, app, logger=logger, what="App-stopped")

        for app_id, waiter in self._launch_waiters:
            running = status.find_app(app_id)
            if running is not None and not running.is_idle and not waiter.done():
                waiter.set_result(running)

        await call_listeners(self._status_listeners, status, logger=logger, what="Receiver status")
        return status

    async def _on_event(self, envelope: Envelope) -> None:
        data = envelope.try_json()
        if data is None:
            return
        message_type = data.get(MESSAGE_TYPE)
        if message_type != TYPE_RECEIVER_STATUS:
            logger.debug("Ignoring receiver event %s", message_type, extra={"type": message_type})
            return
        try:
            status = ReceiverStatus.from_payload(data)
        except DecodingError as e:
            logger.warning("Malformed receiver status push: %s", e.reason, extra={"reason": e.reason})
            return
        _ = await self._update_status(status)
