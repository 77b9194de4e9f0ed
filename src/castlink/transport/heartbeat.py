"""Heartbeat liveness monitor (PING/PONG on the heartbeat namespace)."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import Enum

from castlink.const import (
    CAST_HEARTBEAT_INTERVAL,
    CAST_HEARTBEAT_MISS_THRESHOLD,
    CAST_SENDER_ID,
    PLATFORM_DESTINATION_ID,
)
from castlink.logging_abstraction import get_logger
from castlink.metrics import registry
from castlink.protocol.envelope import Envelope
from castlink.protocol.exceptions import CastError
from castlink.protocol.namespaces import MESSAGE_TYPE, NS_HEARTBEAT, TYPE_PING, TYPE_PONG

logger = get_logger(__name__)


class HeartbeatState(Enum):
    """Heartbeat state enumeration."""

    IDLE = "idle"
    AWAITING_PONG = "awaiting_pong"
    DEAD = "dead"


class HeartbeatMonitor:
    """Ping the receiver on a fixed interval and declare the link dead on silence.

    Every tick in IDLE sends a PING and moves to AWAITING_PONG. A tick that finds
    the monitor still AWAITING_PONG counts a miss and pings again; at
    ``miss_threshold`` misses the monitor goes DEAD and calls ``on_dead`` once.
    A PONG returns it to IDLE and clears the miss counter. Pings from the device
    are answered with PONG.
    """

    def __init__(
        self,
        send: Callable[[Envelope], Awaitable[None]],
        on_dead: Callable[[], None],
        sender_id: str = CAST_SENDER_ID,
        interval: float = CAST_HEARTBEAT_INTERVAL,
        miss_threshold: int = CAST_HEARTBEAT_MISS_THRESHOLD,
        device: str = "unknown",
    ) -> None:
        self._send = send
        self._on_dead = on_dead
        self.sender_id = sender_id
        self.interval = interval
        self.miss_threshold = max(1, miss_threshold)
        self.device = device
        self.state: HeartbeatState = HeartbeatState.IDLE
        self.misses: int = 0
        self._task: asyncio.Task[None] | None = None
        self._pong_tasks: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="castlink-heartbeat")

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and task is not asyncio.current_task() and not task.done():
            _ = task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for pong_task in list(self._pong_tasks):
            _ = pong_task.cancel()
        self._pong_tasks.clear()

    async def _run(self) -> None:
        try:
            while self.state is not HeartbeatState.DEAD:
                await asyncio.sleep(self.interval)
                await self.tick()
        except asyncio.CancelledError:
            logger.debug("Heartbeat cancelled (clean shutdown)")
            raise

    async def tick(self) -> None:
        """Advance the state machine by one interval."""
        if self.state is HeartbeatState.DEAD:
            return

        if self.state is HeartbeatState.AWAITING_PONG:
            self.misses += 1
            registry.record_heartbeat(self.device, "miss")
            logger.debug(
                "Heartbeat PONG missing (%d/%d)",
                self.misses,
                self.miss_threshold,
                extra={"device": self.device, "misses": self.misses},
            )
            if self.misses >= self.miss_threshold:
                self.state = HeartbeatState.DEAD
                registry.record_heartbeat(self.device, "dead")
                logger.warning(
                    "✗ Heartbeat dead after %d missed PONGs (%.1fs)",
                    self.misses,
                    self.misses * self.interval,
                    extra={"device": self.device, "interval": self.interval},
                )
                self._on_dead()
                return

        await self._send_ping()

    async def _send_ping(self) -> None:
        envelope = Envelope.from_json(
            self.sender_id,
            PLATFORM_DESTINATION_ID,
            NS_HEARTBEAT,
            {MESSAGE_TYPE: TYPE_PING},
        )
        # An undelivered ping is treated as unanswered
        self.state = HeartbeatState.AWAITING_PONG
        try:
            await self._send(envelope)
        except CastError as e:
            logger.debug(
                "Heartbeat PING not sent: %s",
                e,
                extra={"device": self.device, "error_type": type(e).__name__},
            )
            return
        registry.record_heartbeat(self.device, "ping")

    async def _send_pong(self, destination_id: str) -> None:
        envelope = Envelope.from_json(
            self.sender_id,
            destination_id,
            NS_HEARTBEAT,
            {MESSAGE_TYPE: TYPE_PONG},
        )
        try:
            await self._send(envelope)
        except CastError as e:
            logger.debug("Heartbeat PONG not sent: %s", e, extra={"device": self.device})

    def on_message(self, envelope: Envelope) -> None:
        """Handle heartbeat traffic from the device; only flips state inline."""
        data = envelope.try_json()
        if data is None:
            return
        message_type = data.get(MESSAGE_TYPE)

        if message_type == TYPE_PONG:
            if self.state is HeartbeatState.DEAD:
                return
            self.state = HeartbeatState.IDLE
            self.misses = 0
            registry.record_heartbeat(self.device, "pong")
        elif message_type == TYPE_PING:
            task = asyncio.create_task(self._send_pong(envelope.source_id))
            self._pong_tasks.add(task)
            task.add_done_callback(self._pong_tasks.discard)
        else:
            logger.debug(
                "Unknown heartbeat message type: %s",
                message_type,
                extra={"device": self.device},
            )
