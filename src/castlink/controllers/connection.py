"""Virtual connections (CONNECT / CLOSE) to receiver and application transports."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from castlink.const import CAST_USER_AGENT, PLATFORM_DESTINATION_ID
from castlink.logging_abstraction import get_logger
from castlink.protocol.envelope import Envelope
from castlink.protocol.namespaces import MESSAGE_TYPE, NS_CONNECTION, TYPE_CLOSE, TYPE_CONNECT
from castlink.transport.connection_manager import ConnectionManager
from castlink.utils import call_listeners

logger = get_logger(__name__)

RemoteCloseCallback = Callable[[str], Awaitable[None] | None]


class ConnectionController:
    """Open and close virtual connections; tracks which are open.

    A transport only talks to us after CONNECT. When the device CLOSEs a
    virtual connection, listeners are told the transport id so controllers
    bound to it can expire.
    """

    def __init__(self, manager: ConnectionManager, user_agent: str = CAST_USER_AGENT) -> None:
        self.manager = manager
        self.user_agent = user_agent
        self.open_transports: set[str] = set()
        self._remote_close_listeners: list[RemoteCloseCallback] = []
        self._subscription = manager.subscribe(NS_CONNECTION, self._on_event)

    def _payload(self, message_type: str) -> dict[str, object]:
        return {MESSAGE_TYPE: message_type, "userAgent": self.user_agent, "origin": {}}

    async def connect(self, destination_id: str = PLATFORM_DESTINATION_ID) -> None:
        """Open a virtual connection; no-op if already open."""
        if destination_id in self.open_transports:
            return
        await self.manager.send(NS_CONNECTION, destination_id, self._payload(TYPE_CONNECT))
        self.open_transports.add(destination_id)
        logger.debug("✓ Virtual connection opened", extra={"destination_id": destination_id})

    async def close(self, destination_id: str) -> None:
        """Close a virtual connection; no-op if it is not open."""
        if destination_id not in self.open_transports:
            return
        self.open_transports.discard(destination_id)
        await self.manager.send(NS_CONNECTION, destination_id, self._payload(TYPE_CLOSE))
        logger.debug("Virtual connection closed", extra={"destination_id": destination_id})

    def is_open(self, destination_id: str) -> bool:
        return destination_id in self.open_transports

    def forget(self, destination_id: str) -> None:
        """Drop a transport without sending CLOSE (the application is gone)."""
        self.open_transports.discard(destination_id)

    def add_remote_close_listener(self, callback: RemoteCloseCallback) -> None:
        self._remote_close_listeners.append(callback)

    def remove_remote_close_listener(self, callback: RemoteCloseCallback) -> None:
        if callback in self._remote_close_listeners:
            self._remote_close_listeners.remove(callback)

    async def _on_event(self, envelope: Envelope) -> None:
        data = envelope.try_json()
        if data is None or data.get(MESSAGE_TYPE) != TYPE_CLOSE:
            return
        transport_id = envelope.source_id
        self.open_transports.discard(transport_id)
        logger.info(
            "Device closed virtual connection",
            extra={"transport_id": transport_id, "reason": data.get("reasonCode", "")},
        )
        await call_listeners(self._remote_close_listeners, transport_id, logger=logger, what="Remote-close")
