"""Shared fixtures for castlink tests.

``FakeStream`` stands in for the TLS byte stream: tests push device frames in
and inspect the envelopes the client wrote. ``FakeDevice`` scripts a receiver
on top of it by answering requests from per-type handlers.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import pytest_asyncio

from castlink.client import CastClient
from castlink.const import PLATFORM_DESTINATION_ID
from castlink.protocol.codec import EnvelopeCodec
from castlink.protocol.envelope import Envelope
from castlink.protocol.namespaces import (
    MESSAGE_TYPE,
    NS_HEARTBEAT,
    NS_MEDIA,
    NS_RECEIVER,
    REQUEST_ID,
    TYPE_GET_STATUS,
    TYPE_PING,
    TYPE_PONG,
    TYPE_RECEIVER_STATUS,
)
from castlink.transport.connection_manager import ConnectionManager
from castlink.transport.exceptions import TransportIOError
from castlink.transport.retry_policy import TimeoutConfig

SENDER_ID = "sender-0"

JSONDict = dict[str, Any]
RequestHandler = Callable[[Envelope, JSONDict], None]


class FakeStream:
    """In-memory ByteStream."""

    def __init__(self, max_frame_size: int = 65536) -> None:
        self.codec = EnvelopeCodec(max_frame_size)
        self.inbound: asyncio.Queue[bytes] = asyncio.Queue()
        self.sent: list[Envelope] = []
        self.on_send: Callable[[Envelope], None] | None = None
        self.fail_sends: bool = False
        self.close_calls: int = 0
        self._closed = False
        self._cursor = 0
        self._new_frame = asyncio.Event()

    async def recv(self) -> bytes:
        if self._closed:
            return b""
        return await self.inbound.get()

    async def send(self, data: bytes) -> None:
        if self._closed or self.fail_sends:
            raise TransportIOError("not_connected", "send")
        envelope = self.codec.decode(data)
        self.sent.append(envelope)
        self._new_frame.set()
        if self.on_send is not None:
            self.on_send(envelope)

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True
        self.inbound.put_nowait(b"")

    @property
    def is_connected(self) -> bool:
        return not self._closed

    def push(self, envelope: Envelope) -> None:
        """Queue one encoded frame for the client to read."""
        self.inbound.put_nowait(self.codec.encode(envelope))

    def push_json(
        self,
        namespace: str,
        data: JSONDict,
        source_id: str = PLATFORM_DESTINATION_ID,
        destination_id: str = SENDER_ID,
    ) -> None:
        self.push(Envelope.from_json(source_id, destination_id, namespace, data))

    def push_bytes(self, data: bytes) -> None:
        self.inbound.put_nowait(data)

    def sent_json(self, namespace: str | None = None, message_type: str | None = None) -> list[JSONDict]:
        """Payloads of sent STRING envelopes, optionally filtered."""
        payloads = []
        for envelope in self.sent:
            if namespace is not None and envelope.namespace != namespace:
                continue
            data = envelope.try_json()
            if data is None:
                continue
            if message_type is not None and data.get(MESSAGE_TYPE) != message_type:
                continue
            payloads.append(data)
        return payloads

    async def next_sent(
        self,
        message_type: str | None = None,
        namespace: str | None = None,
        timeout: float = 1.0,
    ) -> Envelope:
        """Wait for the next written envelope (after the last one returned) that matches."""

        async def _wait() -> Envelope:
            while True:
                while self._cursor < len(self.sent):
                    envelope = self.sent[self._cursor]
                    self._cursor += 1
                    data = envelope.try_json() or {}
                    if namespace is not None and envelope.namespace != namespace:
                        continue
                    if message_type is not None and data.get(MESSAGE_TYPE) != message_type:
                        continue
                    return envelope
                self._new_frame.clear()
                _ = await self._new_frame.wait()

        return await asyncio.wait_for(_wait(), timeout)


def app_entry(
    app_id: str,
    transport_id: str,
    session_id: str | None = None,
    display_name: str = "",
    is_idle: bool = False,
    namespaces: tuple[str, ...] = (NS_MEDIA,),
) -> JSONDict:
    """One ``applications`` entry of a RECEIVER_STATUS payload."""
    return {
        "appId": app_id,
        "displayName": display_name or app_id,
        "sessionId": session_id or f"session-{transport_id}",
        "transportId": transport_id,
        "statusText": "",
        "isIdleScreen": is_idle,
        "namespaces": [{"name": ns} for ns in namespaces],
    }


class FakeDevice:
    """Scripted receiver answering requests written to a FakeStream.

    Handlers are keyed by message type. By default GET_STATUS is answered with
    the current ``applications`` and PINGs are answered with PONG; tests add or
    replace handlers for the command under test.
    """

    def __init__(self, stream: FakeStream) -> None:
        self.stream = stream
        self.applications: list[JSONDict] = []
        self.volume: JSONDict = {"level": 0.5, "muted": False}
        self.handlers: dict[str, RequestHandler] = {
            TYPE_GET_STATUS: self.answer_receiver_status,
            TYPE_PING: self.answer_ping,
        }
        stream.on_send = self._on_send

    def _on_send(self, envelope: Envelope) -> None:
        data = envelope.try_json()
        if data is None:
            return
        handler = self.handlers.get(str(data.get(MESSAGE_TYPE)))
        if handler is not None:
            handler(envelope, data)

    def reply(self, request: Envelope, request_data: JSONDict, payload: JSONDict) -> None:
        """Answer ``request`` on its namespace, echoing its request id."""
        self.stream.push_json(
            request.namespace,
            {**payload, REQUEST_ID: request_data.get(REQUEST_ID, 0)},
            source_id=request.destination_id,
            destination_id=request.source_id,
        )

    def receiver_status(self, request_id: int = 0) -> JSONDict:
        return {
            MESSAGE_TYPE: TYPE_RECEIVER_STATUS,
            REQUEST_ID: request_id,
            "status": {"applications": list(self.applications), "volume": dict(self.volume)},
        }

    def push_receiver_status(self) -> None:
        """Broadcast an unsolicited receiver status."""
        self.stream.push_json(NS_RECEIVER, self.receiver_status(), destination_id="*")

    def answer_receiver_status(self, request: Envelope, data: JSONDict) -> None:
        if request.namespace == NS_RECEIVER:
            self.reply(request, data, self.receiver_status())

    def answer_ping(self, request: Envelope, data: JSONDict) -> None:
        if request.namespace == NS_HEARTBEAT:
            self.reply(request, data, {MESSAGE_TYPE: TYPE_PONG})


@pytest.fixture
def fast_timeouts() -> TimeoutConfig:
    """Short deadlines so timeout paths finish quickly."""
    return TimeoutConfig(status_timeout=0.3, command_timeout=0.3, launch_timeout=1.0, connect_timeout=0.3)


@pytest.fixture
def stream() -> FakeStream:
    return FakeStream()


@pytest.fixture
def device(stream: FakeStream) -> FakeDevice:
    return FakeDevice(stream)


@pytest_asyncio.fixture
async def manager(stream: FakeStream, fast_timeouts: TimeoutConfig) -> AsyncIterator[ConnectionManager]:
    """Started ConnectionManager over a FakeStream; heartbeat effectively off."""
    mgr = ConnectionManager(stream, sender_id=SENDER_ID, timeout_config=fast_timeouts, heartbeat_interval=60.0)
    await mgr.start()
    yield mgr
    await mgr.close("test_teardown")


@pytest_asyncio.fixture
async def client(
    stream: FakeStream,
    device: FakeDevice,
    fast_timeouts: TimeoutConfig,
) -> AsyncIterator[CastClient]:
    """CastClient connected to the FakeDevice."""
    cast_client = await CastClient.from_stream(
        stream,
        timeout_config=fast_timeouts,
        sender_id=SENDER_ID,
        heartbeat_interval=60.0,
    )
    yield cast_client
    await cast_client.close()
