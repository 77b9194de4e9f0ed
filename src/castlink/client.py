"""High-level client: one connection to one cast receiver."""

from __future__ import annotations

import ssl
from collections.abc import Callable
from types import TracebackType
from typing import Any, Self

from castlink.const import CAST_PORT, PLATFORM_DESTINATION_ID
from castlink.controllers.connection import ConnectionController
from castlink.controllers.exceptions import NotRunningError
from castlink.controllers.media import MediaController
from castlink.controllers.receiver import ReceiverController
from castlink.logging_abstraction import get_logger
from castlink.models import ApplicationSession, ReceiverStatus
from castlink.protocol.exceptions import CastError
from castlink.transport.connection_manager import ConnectionLostCallback, ConnectionManager
from castlink.transport.retry_policy import RetryPolicy, TimeoutConfig
from castlink.transport.router import EventCallback, Subscription
from castlink.transport.socket_abstraction import ByteStream

logger = get_logger(__name__)


class CastClient:
    """Receiver and media control over a single connection.

    Example:
        async with await CastClient.connect("192.168.1.20") as client:
            app = await client.launch("default")
            media = client.media_controller(app)
            await media.load("http://example.com/video.mp4")
            await media.pause()

    """

    def __init__(self, manager: ConnectionManager, timeout_config: TimeoutConfig | None = None) -> None:
        self.manager = manager
        self.timeout_config = timeout_config or manager.timeout_config
        self.connections = ConnectionController(manager)
        self.receiver = ReceiverController(manager, self.connections, self.timeout_config)
        self._media_controllers: dict[str, MediaController] = {}

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int = CAST_PORT,
        ssl_context: ssl.SSLContext | None = None,
        timeout_config: TimeoutConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs: Any,
    ) -> CastClient:
        """Open a TLS connection to ``host`` and connect to the receiver.

        Extra keyword arguments are passed to ConnectionManager.

        Raises:
            TransportIOError: The device could not be reached

        """
        manager = await ConnectionManager.open(
            host,
            port,
            ssl_context=ssl_context,
            timeout_config=timeout_config,
            retry_policy=retry_policy,
            **kwargs,
        )
        client = cls(manager, timeout_config)
        await client._open_platform()
        return client

    @classmethod
    async def from_stream(
        cls,
        stream: ByteStream,
        timeout_config: TimeoutConfig | None = None,
        **kwargs: Any,
    ) -> CastClient:
        """Run the client over an already-established encrypted stream."""
        manager = ConnectionManager(stream, timeout_config=timeout_config, **kwargs)
        await manager.start()
        client = cls(manager, timeout_config)
        await client._open_platform()
        return client

    async def _open_platform(self) -> None:
        try:
            await self.connections.connect(PLATFORM_DESTINATION_ID)
        except CastError:
            await self.manager.close("platform_connect_failed")
            raise

    @property
    def is_connected(self) -> bool:
        return self.manager.is_connected()

    @property
    def status(self) -> ReceiverStatus | None:
        """Last receiver status seen (reply or push)."""
        return self.receiver.status

    async def get_status(self) -> ReceiverStatus:
        return await self.receiver.get_status()

    async def launch(self, app_id: str, timeout: float | None = None) -> ApplicationSession:
        return await self.receiver.launch(app_id, timeout)

    async def stop(self, session_transport_id: str) -> ReceiverStatus:
        return await self.receiver.stop(session_transport_id)

    async def set_volume(self, level: float) -> ReceiverStatus:
        return await self.receiver.set_volume(level)

    async def set_muted(self, muted: bool) -> ReceiverStatus:
        return await self.receiver.set_muted(muted)

    def media_controller(self, session: ApplicationSession | str) -> MediaController:
        """Return the media controller bound to an application session.

        Args:
            session: Application session, or its transport id / session id as
                found in the last receiver status

        Raises:
            NotRunningError: The id does not match a running application

        """
        if isinstance(session, str):
            found = self.receiver.find_session(session)
            if found is None:
                raise NotRunningError(session)
            session = found

        controller = self._media_controllers.get(session.transport_id)
        if controller is None or controller.is_expired:
            controller = MediaController(
                self.manager,
                self.connections,
                session,
                receiver=self.receiver,
                timeout_config=self.timeout_config,
            )
            self._media_controllers[session.transport_id] = controller
        return controller

    def subscribe(self, namespace: str, callback: EventCallback, source_id: str | None = None) -> Subscription:
        """Receive unsolicited events on a known namespace."""
        return self.manager.subscribe(namespace, callback, source_id)

    def subscribe_raw(self, callback: EventCallback, source_id: str | None = None) -> Subscription:
        """Receive events on namespaces without a dedicated handler."""
        return self.manager.subscribe_raw(callback, source_id)

    def add_connection_lost_listener(self, callback: ConnectionLostCallback) -> Callable[[], None]:
        """Call ``callback(reason)`` once the connection is gone; returns a remover."""
        return self.manager.add_connection_lost_listener(callback)

    async def close(self) -> None:
        """Close virtual connections best-effort, then tear the connection down."""
        if self.manager.is_connected():
            for transport_id in sorted(self.connections.open_transports):
                try:
                    await self.connections.close(transport_id)
                except CastError as e:
                    logger.debug("CLOSE to %s not sent: %s", transport_id, e, extra={"transport_id": transport_id})
        await self.manager.close("closed")

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
