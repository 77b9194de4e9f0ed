"""Inbound routing: replies to the correlator, events to subscribers.

The reader loop calls ``NamespaceRouter.route`` for every decoded envelope.
Routing itself never awaits: replies resolve futures, heartbeat traffic flips
monitor state, and events are put on a bounded queue that a separate
dispatcher task drains into subscriber callbacks.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from castlink.const import BROADCAST_ID, CAST_EVENT_QUEUE_SIZE, CAST_SENDER_ID
from castlink.logging_abstraction import get_logger
from castlink.metrics import registry
from castlink.protocol.envelope import Envelope
from castlink.protocol.namespaces import NS_HEARTBEAT, Namespace
from castlink.transport.correlator import RequestCorrelator
from castlink.transport.heartbeat import HeartbeatMonitor
from castlink.transport.types import Event, Inbound, Reply

logger = get_logger(__name__)

EventCallback = Callable[[Envelope], Awaitable[None] | None]

_DISPATCHER_STOP_TIMEOUT_SECONDS = 2.0


@dataclass(eq=False)
class Subscription:
    """Handle returned by SubscriberRegistry.subscribe."""

    callback: EventCallback
    namespace: str | None = None
    source_id: str | None = None
    _registry: SubscriberRegistry | None = field(default=None, repr=False)

    @property
    def is_raw(self) -> bool:
        return self.namespace is None

    def matches(self, envelope: Envelope) -> bool:
        return self.source_id is None or self.source_id == envelope.source_id

    def unsubscribe(self) -> None:
        if self._registry is not None:
            self._registry.unsubscribe(self)
            self._registry = None


class SubscriberRegistry:
    """Callbacks for unsolicited events, per known namespace plus a raw list."""

    def __init__(self) -> None:
        self._by_namespace: dict[str, list[Subscription]] = {ns.value: [] for ns in Namespace}
        self._raw: list[Subscription] = []

    def subscribe(
        self,
        namespace: str,
        callback: EventCallback,
        source_id: str | None = None,
    ) -> Subscription:
        """Subscribe to events on a known namespace.

        Args:
            namespace: One of the known namespace strings
            callback: Called with each matching envelope (sync or async)
            source_id: Only deliver events from this transport id

        Raises:
            ValueError: Namespace is not a known one (use subscribe_raw)

        """
        if Namespace.lookup(namespace) is None:
            msg = f"Unknown namespace {namespace!r}; use subscribe_raw for custom namespaces"
            raise ValueError(msg)
        subscription = Subscription(callback, namespace, source_id, self)
        self._by_namespace[namespace].append(subscription)
        return subscription

    def subscribe_raw(self, callback: EventCallback, source_id: str | None = None) -> Subscription:
        """Subscribe to events on namespaces that have no dedicated handler."""
        subscription = Subscription(callback, None, source_id, self)
        self._raw.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        bucket = self._raw if subscription.namespace is None else self._by_namespace[subscription.namespace]
        with contextlib.suppress(ValueError):
            bucket.remove(subscription)

    def matching(self, envelope: Envelope) -> list[Subscription]:
        bucket = self._by_namespace.get(envelope.namespace)
        if bucket is None:
            bucket = self._raw
        return [sub for sub in bucket if sub.matches(envelope)]

    def clear(self) -> None:
        for bucket in self._by_namespace.values():
            bucket.clear()
        self._raw.clear()


class EventDispatcher:
    """Bounded hand-off queue between the reader loop and subscriber callbacks.

    A full queue drops the event with a warning; it never blocks the reader.
    """

    def __init__(self, subscribers: SubscriberRegistry, maxsize: int = CAST_EVENT_QUEUE_SIZE) -> None:
        self.subscribers: SubscriberRegistry = subscribers
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self.dropped: int = 0

    @property
    def qsize(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="castlink-event-dispatcher")

    def dispatch(self, event: Event) -> bool:
        """Queue an event, return True if queued, False if dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            registry.record_event(event.namespace, "dropped")
            logger.warning(
                "Event queue full, %s event dropped",
                event.namespace,
                extra={
                    "namespace": event.namespace,
                    "source_id": event.envelope.source_id,
                    "queue_size": self._queue.qsize(),
                },
            )
            return False
        registry.record_event(event.namespace, "queued")
        return True

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                break
            await self._deliver(event)

    async def _deliver(self, event: Event) -> None:
        for subscription in self.subscribers.matching(event.envelope):
            try:
                result = subscription.callback(event.envelope)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # One failing subscriber must not starve the others
                logger.exception(
                    "Event subscriber failed",
                    extra={
                        "namespace": event.namespace,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                registry.record_event(event.namespace, "callback_error")
            else:
                registry.record_event(event.namespace, "delivered")

    async def stop(self) -> None:
        """Deliver what is queued, then stop the dispatcher task."""
        task = self._task
        self._task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Called from inside a subscriber: let the loop exit on its own
            with contextlib.suppress(asyncio.QueueFull):
                self._queue.put_nowait(None)
            return
        try:
            await asyncio.wait_for(self._queue.put(None), timeout=_DISPATCHER_STOP_TIMEOUT_SECONDS)
            await asyncio.wait_for(task, timeout=_DISPATCHER_STOP_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Event dispatcher did not drain in time, cancelling")
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


class NamespaceRouter:
    """Classify each inbound envelope once and hand it to its consumer."""

    def __init__(
        self,
        correlator: RequestCorrelator,
        dispatcher: EventDispatcher,
        heartbeat: HeartbeatMonitor | None = None,
        sender_id: str = CAST_SENDER_ID,
    ) -> None:
        self.correlator = correlator
        self.dispatcher = dispatcher
        self.heartbeat = heartbeat
        self.sender_id = sender_id

    def route(self, envelope: Envelope) -> Inbound | None:
        """Route one envelope; returns its classification, or None if dropped."""
        if envelope.destination_id not in (self.sender_id, BROADCAST_ID):
            logger.debug(
                "Dropping envelope addressed to %s",
                envelope.destination_id,
                extra={"namespace": envelope.namespace, "destination_id": envelope.destination_id},
            )
            registry.record_event(envelope.namespace, "misaddressed")
            return None

        inbound = self.correlator.classify(envelope)
        if isinstance(inbound, Reply):
            _ = self.correlator.resolve(inbound.request_id, envelope)
        elif inbound.namespace == NS_HEARTBEAT and self.heartbeat is not None:
            self.heartbeat.on_message(envelope)
        else:
            if Namespace.lookup(inbound.namespace) is None:
                logger.debug(
                    "Received unknown namespace: %s",
                    inbound.namespace,
                    extra={"namespace": inbound.namespace, "source_id": envelope.source_id},
                )
            _ = self.dispatcher.dispatch(inbound)
        return inbound
