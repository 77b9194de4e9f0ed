"""Core dataclasses for the cast transport layer.

This module defines the pending-request slot and the tagged union produced by
classifying every inbound envelope.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from castlink.protocol.envelope import Envelope


@dataclass
class PendingRequest:
    """Tracks a request awaiting its reply.

    Attributes:
        request_id: Id stamped into the outbound payload
        namespace: Namespace the request was sent on
        destination_id: Transport id the request was sent to
        future: Completion handle, resolved exactly once
        deadline: Loop time at which the request expires
        timeout: Seconds between send and deadline
        correlation_id: Correlation id for observability
        sent_at: Loop time when the frame was handed to the channel
        timer: Scheduled expiry callback
    """

    request_id: int
    namespace: str
    destination_id: str
    future: asyncio.Future[Envelope]
    deadline: float
    timeout: float = 0.0
    correlation_id: str = ""
    sent_at: float = 0.0
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self.future.done()


@dataclass(frozen=True, slots=True)
class Reply:
    """Inbound envelope answering one of our requests."""

    request_id: int
    envelope: Envelope


@dataclass(frozen=True, slots=True)
class Event:
    """Inbound envelope nobody is waiting for (status push, ping, close...)."""

    namespace: str
    envelope: Envelope


Inbound = Reply | Event
