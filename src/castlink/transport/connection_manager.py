"""Connection lifecycle: reader loop, heartbeat, event dispatch and teardown."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import ssl
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

from castlink.const import (
    CAST_EVENT_QUEUE_SIZE,
    CAST_HEARTBEAT_INTERVAL,
    CAST_HEARTBEAT_MISS_THRESHOLD,
    CAST_MAX_FRAME_SIZE,
    CAST_PORT,
    CAST_SENDER_ID,
)
from castlink.correlation import correlation_context
from castlink.logging_abstraction import get_logger
from castlink.metrics import registry
from castlink.protocol.envelope import Envelope
from castlink.protocol.exceptions import DecodingError
from castlink.transport.channel import TransportChannel
from castlink.transport.exceptions import ChannelClosedError, TransportIOError
from castlink.transport.heartbeat import HeartbeatMonitor
from castlink.transport.retry_policy import RetryPolicy, TimeoutConfig
from castlink.transport.router import EventCallback, EventDispatcher, NamespaceRouter, SubscriberRegistry, Subscription
from castlink.transport.socket_abstraction import ByteStream, TLSConnection

logger = get_logger(__name__)

ConnectionLostCallback = Callable[[str], Awaitable[None] | None]


class ConnectionState(Enum):
    """Connection state enumeration."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


class ConnectionManager:
    """Owns one channel and everything that runs on it.

    **Task Lifecycle**:
    - ``start()`` launches the reader task (``_packet_router``), the event
      dispatcher task and the heartbeat task.
    - ``close()`` is the single teardown path. The reader loop and the heartbeat
      never tear anything down themselves; on a fatal error they schedule
      ``close()`` with the error as reason.

    **Close order**: heartbeat, reader task, pending requests (ChannelClosedError),
    stream, event dispatcher, then connection-lost listeners.
    """

    def __init__(
        self,
        stream: ByteStream,
        sender_id: str = CAST_SENDER_ID,
        timeout_config: TimeoutConfig | None = None,
        max_frame_size: int = CAST_MAX_FRAME_SIZE,
        heartbeat_interval: float = CAST_HEARTBEAT_INTERVAL,
        heartbeat_miss_threshold: int = CAST_HEARTBEAT_MISS_THRESHOLD,
        event_queue_size: int = CAST_EVENT_QUEUE_SIZE,
        device: str = "unknown",
    ) -> None:
        """Initialize connection manager.

        Args:
            stream: Established encrypted byte stream
            sender_id: Our transport id
            timeout_config: Request deadlines (defaults to TimeoutConfig())
            max_frame_size: Largest accepted message body in bytes
            heartbeat_interval: Seconds between heartbeat ticks
            heartbeat_miss_threshold: Missed PONGs before the link is dead
            event_queue_size: Capacity of the unsolicited event queue
            device: Device label for logs and metrics

        """
        self.device: str = device
        self.sender_id: str = sender_id
        self.timeout_config: TimeoutConfig = timeout_config or TimeoutConfig()
        self.channel: TransportChannel = TransportChannel(stream, sender_id, max_frame_size)
        self.correlator = self.channel.correlator
        self.subscribers: SubscriberRegistry = SubscriberRegistry()
        self.dispatcher: EventDispatcher = EventDispatcher(self.subscribers, event_queue_size)
        self.heartbeat: HeartbeatMonitor = HeartbeatMonitor(
            self.channel.send,
            self._on_heartbeat_dead,
            sender_id=sender_id,
            interval=heartbeat_interval,
            miss_threshold=heartbeat_miss_threshold,
            device=device,
        )
        self.router: NamespaceRouter = NamespaceRouter(
            self.correlator,
            self.dispatcher,
            self.heartbeat,
            sender_id,
        )
        self.state: ConnectionState = ConnectionState.DISCONNECTED
        self._state_lock: asyncio.Lock = asyncio.Lock()
        self._closed_event: asyncio.Event = asyncio.Event()
        self.packet_router_task: asyncio.Task[None] | None = None
        self.close_task: asyncio.Task[None] | None = None
        self.close_reason: str | None = None
        self._connection_lost_listeners: list[ConnectionLostCallback] = []

    @classmethod
    async def open(
        cls,
        host: str,
        port: int = CAST_PORT,
        ssl_context: ssl.SSLContext | None = None,
        timeout_config: TimeoutConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        **kwargs: Any,
    ) -> ConnectionManager:
        """Open a TLS connection (with retry) and return a started manager.

        Raises:
            TransportIOError: Every connection attempt failed

        """
        timeout_config = timeout_config or TimeoutConfig()
        retry_policy = retry_policy or RetryPolicy()
        device = f"{host}:{port}"
        registry.record_connection_state(device, ConnectionState.CONNECTING.value)

        last_error: TransportIOError | None = None
        for attempt in range(retry_policy.max_attempts):
            connection = TLSConnection(
                host,
                port,
                ssl_context=ssl_context,
                connect_timeout=timeout_config.connect_timeout,
            )
            try:
                await connection.connect()
            except TransportIOError as e:
                last_error = e
                logger.warning(
                    "Connection attempt %d/%d failed",
                    attempt + 1,
                    retry_policy.max_attempts,
                    extra={"device": device, "reason": e.reason},
                )
                if attempt < retry_policy.max_attempts - 1:
                    delay = retry_policy.get_delay(attempt)
                    logger.debug("Retrying connection", extra={"delay": delay, "attempt": attempt + 1})
                    await asyncio.sleep(delay)
                continue

            manager = cls(connection, timeout_config=timeout_config, device=device, **kwargs)
            await manager.start()
            return manager

        registry.record_connection_state(device, ConnectionState.DISCONNECTED.value)
        logger.error(
            "✗ Could not connect to %s",
            device,
            extra={"device": device, "attempts": retry_policy.max_attempts},
        )
        raise last_error or TransportIOError("no_attempts", "connect")

    async def start(self) -> None:
        """Start the reader, dispatcher and heartbeat tasks."""
        async with self._state_lock:
            if self.state is not ConnectionState.DISCONNECTED:
                return
            self.state = ConnectionState.CONNECTED
            registry.record_connection_state(self.device, self.state.value)

        self.dispatcher.start()
        self.packet_router_task = asyncio.create_task(self._packet_router(), name="castlink-reader")
        self.heartbeat.start()
        logger.info("✓ Connection started", extra={"device": self.device, "sender_id": self.sender_id})

    def is_connected(self) -> bool:
        """Check if connection is established (best effort, may be stale)."""
        return self.state is ConnectionState.CONNECTED

    async def send(self, namespace: str, destination_id: str, payload: Mapping[str, Any]) -> None:
        """Send a fire-and-forget JSON message.

        Raises:
            ChannelClosedError: Channel closed
            EncodingError: Payload cannot be encoded
            TransportIOError: Stream write failed

        """
        envelope = Envelope.from_json(self.sender_id, destination_id, namespace, dict(payload))
        await self.channel.send(envelope)

    async def request(
        self,
        namespace: str,
        destination_id: str,
        payload: Mapping[str, Any],
        timeout: float,
    ) -> Envelope:
        """Send a request and wait for its reply within ``timeout`` seconds."""
        with correlation_context():
            return await self.correlator.request(namespace, destination_id, payload, timeout)

    def subscribe(self, namespace: str, callback: EventCallback, source_id: str | None = None) -> Subscription:
        return self.subscribers.subscribe(namespace, callback, source_id)

    def subscribe_raw(self, callback: EventCallback, source_id: str | None = None) -> Subscription:
        return self.subscribers.subscribe_raw(callback, source_id)

    def add_connection_lost_listener(self, callback: ConnectionLostCallback) -> Callable[[], None]:
        """Register a callback run with the close reason once the connection is gone.

        Returns:
            A function that removes the listener

        """
        self._connection_lost_listeners.append(callback)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._connection_lost_listeners.remove(callback)

        return remove

    async def _packet_router(self) -> None:
        """Receive envelopes and route them until the channel fails or closes.

        **Exception Handling**:
        - asyncio.CancelledError: Clean shutdown from close() (re-raised)
        - ChannelClosedError / TransportIOError / DecodingError: fatal for the
          connection; close() is scheduled with the error as reason
        """
        try:
            while True:
                envelope = await self.channel.receive()
                try:
                    _ = self.router.route(envelope)
                except Exception as e:
                    # A routing bug for one envelope must not take the connection down
                    logger.exception(
                        "Unexpected error routing envelope",
                        extra={
                            "namespace": envelope.namespace,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        },
                    )
        except asyncio.CancelledError:
            logger.debug("Packet router cancelled (clean shutdown)")
            raise
        except ChannelClosedError as e:
            logger.info("Channel closed under reader", extra={"device": self.device, "reason": e.reason})
            self._trigger_close(e.reason)
        except TransportIOError as e:
            logger.warning("✗ Transport failure", extra={"device": self.device, "reason": e.reason})
            self._trigger_close(f"io_error: {e.reason}")
        except DecodingError as e:
            logger.warning("✗ Undecodable frame, closing", extra={"device": self.device, "reason": e.reason})
            self._trigger_close(f"decode_error: {e.reason}")

    def _on_heartbeat_dead(self) -> None:
        self._trigger_close("heartbeat_timeout")

    def _trigger_close(self, reason: str) -> None:
        """Schedule close() unless a close is already running."""
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        if self.close_task is None or self.close_task.done():
            logger.info("Triggering close", extra={"device": self.device, "reason": reason})
            self.close_task = asyncio.create_task(self.close(reason), name="castlink-close")

    async def close(self, reason: str = "closed") -> None:
        """Tear the connection down; idempotent.

        Concurrent callers wait for the first close to finish.
        """
        async with self._state_lock:
            already_closing = self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED)
            if not already_closing:
                self.state = ConnectionState.CLOSING
                self.close_reason = reason
                registry.record_connection_state(self.device, self.state.value)
        if already_closing:
            current = asyncio.current_task()
            if current is not self.close_task and current is not self.packet_router_task:
                await self._closed_event.wait()
            return

        logger.info("→ Closing connection", extra={"device": self.device, "reason": reason})
        try:
            # 1. Stop heartbeat timer
            await self.heartbeat.stop()

            # 2. Cancel reader task (stops reading from the stream)
            task = self.packet_router_task
            self.packet_router_task = None
            if task is not None and task is not asyncio.current_task() and not task.done():
                _ = task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            # 3. Fail pending requests and close the stream
            await self.channel.close(reason)

            # 4. Deliver already-queued events, then stop the dispatcher
            await self.dispatcher.stop()
        finally:
            async with self._state_lock:
                self.state = ConnectionState.CLOSED
                registry.record_connection_state(self.device, self.state.value)
            self._closed_event.set()
            logger.info("✓ Connection closed", extra={"device": self.device, "reason": reason})

        await self._notify_connection_lost(reason)

    async def _notify_connection_lost(self, reason: str) -> None:
        for callback in list(self._connection_lost_listeners):
            try:
                result = callback(reason)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.exception(
                    "Connection-lost listener failed",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )

    async def wait_closed(self) -> str | None:
        """Wait until the connection is closed; returns the close reason."""
        await self._closed_event.wait()
        return self.close_reason
