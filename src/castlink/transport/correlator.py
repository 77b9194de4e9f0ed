"""Request/reply correlation keyed by request id.

The correlator owns the table of pending request slots. It is only touched from
the event loop thread, which serializes slot creation, resolution, expiry and
cancellation. Waiters are woken through their future (``set_result`` /
``set_exception``), never by calling back into them from the reader loop.

Slot lifecycle::

    send_request() ──► pending ──► resolve()  ─► retired ("ok")
                          │ ├───► expire()   ─► retired ("timeout")
                          │ ├───► fail()     ─► retired ("failed")
                          │ └───► cancelled  ─► retired ("cancelled")
                          └────► close()     ─► retired ("closed")

Replies for retired ids are dropped; ids are retired in a bounded cache so a
late reply is recognized as stale rather than as an unsolicited event.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from functools import partial
from typing import Any

from castlink.const import CAST_SENDER_ID
from castlink.correlation import generate_correlation_id, get_correlation_id
from castlink.logging_abstraction import get_logger
from castlink.metrics import registry
from castlink.protocol.envelope import Envelope
from castlink.protocol.namespaces import REQUEST_ID
from castlink.transport.exceptions import ChannelClosedError, RequestTimeoutError
from castlink.transport.types import Event, Inbound, PendingRequest, Reply

logger = get_logger(__name__)

MAX_REQUEST_ID = 2**31 - 1
RETIRED_CACHE_SIZE = 1024

SendFunc = Callable[[Envelope], Awaitable[None]]


class RequestCorrelator:
    """Match replies to outstanding requests.

    One correlator exists per channel; the request-id counter is its field.
    """

    def __init__(
        self,
        send: SendFunc,
        sender_id: str = CAST_SENDER_ID,
        retired_cache_size: int = RETIRED_CACHE_SIZE,
    ) -> None:
        self._send: SendFunc = send
        self.sender_id: str = sender_id
        self._pending: dict[int, PendingRequest] = {}
        self._retired: OrderedDict[int, str] = OrderedDict()
        self._retired_cache_size: int = retired_cache_size
        self._next_id: int = 1
        self._closed_reason: str | None = None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def pending_ids(self) -> list[int]:
        return sorted(self._pending)

    @property
    def is_closed(self) -> bool:
        return self._closed_reason is not None

    def is_pending(self, request_id: int) -> bool:
        return request_id in self._pending

    def is_retired(self, request_id: int) -> bool:
        return request_id in self._retired

    def _allocate_id(self) -> int:
        # Wraps at the top of the signed 32-bit range, skipping ids still in flight
        for _ in range(len(self._pending) + 1):
            request_id = self._next_id
            self._next_id = request_id + 1 if request_id < MAX_REQUEST_ID else 1
            if request_id not in self._pending:
                _ = self._retired.pop(request_id, None)
                return request_id
        msg = "no free request id"
        raise RuntimeError(msg)

    def _retire(self, request_id: int, outcome: str) -> None:
        self._retired[request_id] = outcome
        self._retired.move_to_end(request_id)
        while len(self._retired) > self._retired_cache_size:
            _ = self._retired.popitem(last=False)

    def _finish(self, slot: PendingRequest, outcome: str) -> None:
        """Bookkeeping shared by every terminal transition of a slot."""
        if slot.timer is not None:
            slot.timer.cancel()
            slot.timer = None
        self._retire(slot.request_id, outcome)
        registry.record_request(slot.namespace, outcome)
        registry.record_pending_requests(len(self._pending))
        if outcome == "ok" and slot.sent_at:
            latency = asyncio.get_running_loop().time() - slot.sent_at
            registry.record_request_latency(slot.namespace, latency)

    async def send_request(
        self,
        namespace: str,
        destination_id: str,
        payload: Mapping[str, Any],
        timeout: float,
    ) -> PendingRequest:
        """Allocate an id, record the slot, and send the request.

        The slot exists before the frame is written, so a reply that races the
        write is still matched. If the send fails the slot is discarded and the
        error propagates.

        Args:
            namespace: Namespace to send on
            destination_id: Transport id of the recipient
            payload: JSON object; ``requestId`` is stamped into a copy
            timeout: Seconds until the request resolves with RequestTimeoutError

        Returns:
            The pending slot; await ``slot.future`` for the reply

        Raises:
            ChannelClosedError: Correlator already closed
            EncodingError: Payload is not JSON-serializable or too large
            TransportIOError: Stream write failed

        """
        if self._closed_reason is not None:
            raise ChannelClosedError(self._closed_reason)

        loop = asyncio.get_running_loop()
        request_id = self._allocate_id()
        body = dict(payload)
        body[REQUEST_ID] = request_id
        envelope = Envelope.from_json(self.sender_id, destination_id, namespace, body)

        slot = PendingRequest(
            request_id=request_id,
            namespace=namespace,
            destination_id=destination_id,
            future=loop.create_future(),
            deadline=loop.time() + timeout,
            timeout=timeout,
            correlation_id=get_correlation_id() or generate_correlation_id(),
        )
        slot.timer = loop.call_at(slot.deadline, self.expire, request_id)
        slot.future.add_done_callback(partial(self._on_future_done, request_id))
        self._pending[request_id] = slot
        registry.record_pending_requests(len(self._pending))

        logger.debug(
            "→ Request %d %s to %s",
            request_id,
            body.get("type", "?"),
            destination_id,
            extra={"request_id": request_id, "namespace": namespace, "timeout": timeout},
        )

        try:
            await self._send(envelope)
        except BaseException:
            self._discard(request_id, "send_failed")
            raise

        slot.sent_at = loop.time()
        return slot

    async def request(
        self,
        namespace: str,
        destination_id: str,
        payload: Mapping[str, Any],
        timeout: float,
    ) -> Envelope:
        """Send a request and wait for its reply.

        Cancelling the caller removes the slot without notifying the device.

        Raises:
            RequestTimeoutError: No reply before the deadline
            ChannelClosedError: Channel closed while waiting
            CastError: Whatever the slot was failed with

        """
        slot = await self.send_request(namespace, destination_id, payload, timeout)
        return await slot.future

    def classify(self, envelope: Envelope) -> Inbound:
        """Tag an inbound envelope as a Reply or an Event.

        A Reply carries a non-zero integer requestId that is pending or retired.
        Everything else (binary payloads, id 0, ids we never issued) is an Event.
        """
        data = envelope.try_json()
        if data is not None:
            request_id = data.get(REQUEST_ID)
            if (
                isinstance(request_id, int)
                and not isinstance(request_id, bool)
                and request_id != 0
                and (request_id in self._pending or request_id in self._retired)
            ):
                return Reply(request_id, envelope)
        return Event(envelope.namespace, envelope)

    def resolve(self, request_id: int, envelope: Envelope) -> bool:
        """Deliver a reply to its waiter.

        Returns:
            True if a waiter received it, False if the reply was dropped

        """
        slot = self._pending.pop(request_id, None)
        if slot is None:
            reason = "stale" if request_id in self._retired else "unknown"
            logger.debug(
                "Dropping %s reply for request %d (was %s)",
                reason,
                request_id,
                self._retired.get(request_id, "never issued"),
                extra={"request_id": request_id, "namespace": envelope.namespace},
            )
            registry.record_reply_dropped(reason)
            return False

        if slot.future.done():
            # Cancelled by the caller; the done callback has not run yet
            self._finish(slot, "cancelled")
            registry.record_reply_dropped("cancelled")
            return False

        self._finish(slot, "ok")
        slot.future.set_result(envelope)
        logger.debug(
            "✓ Reply for request %d",
            request_id,
            extra={"request_id": request_id, "correlation_id": slot.correlation_id},
        )
        return True

    def expire(self, request_id: int) -> None:
        """Deadline timer callback."""
        slot = self._pending.pop(request_id, None)
        if slot is None:
            return
        slot.timer = None
        if slot.future.done():
            self._finish(slot, "cancelled")
            return
        self._finish(slot, "timeout")
        logger.warning(
            "Request %d timed out after %.1fs",
            request_id,
            slot.timeout,
            extra={
                "request_id": request_id,
                "namespace": slot.namespace,
                "correlation_id": slot.correlation_id,
            },
        )
        slot.future.set_exception(RequestTimeoutError(request_id, slot.timeout, slot.namespace))

    def fail(self, request_id: int, exc: BaseException) -> bool:
        """Resolve one pending slot with an error.

        Returns:
            True if the slot was pending and now carries ``exc``

        """
        slot = self._pending.pop(request_id, None)
        if slot is None:
            return False
        if slot.future.done():
            self._finish(slot, "cancelled")
            return False
        self._finish(slot, "failed")
        slot.future.set_exception(exc)
        return True

    def close(self, reason: str = "closed") -> None:
        """Fail every pending slot with ChannelClosedError, in request-id order.

        Idempotent; later send_request calls raise ChannelClosedError.
        """
        if self._closed_reason is None:
            self._closed_reason = reason
        for request_id in sorted(self._pending):
            slot = self._pending.pop(request_id)
            if slot.future.done():
                self._finish(slot, "cancelled")
                continue
            self._finish(slot, "closed")
            slot.future.set_exception(ChannelClosedError(self._closed_reason))

    def _discard(self, request_id: int, outcome: str) -> None:
        slot = self._pending.pop(request_id, None)
        if slot is None:
            return
        self._finish(slot, outcome)
        _ = slot.future.cancel()

    def _on_future_done(self, request_id: int, future: asyncio.Future[Envelope]) -> None:
        if not future.cancelled():
            return
        slot = self._pending.get(request_id)
        if slot is None or slot.future is not future:
            return
        del self._pending[request_id]
        self._finish(slot, "cancelled")
        logger.debug(
            "Request %d cancelled by caller",
            request_id,
            extra={"request_id": request_id, "namespace": slot.namespace},
        )
