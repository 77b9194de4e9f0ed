"""Unit tests for ConnectionManager lifecycle and teardown."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from castlink.protocol.envelope import Envelope
from castlink.protocol.namespaces import NS_MEDIA, NS_RECEIVER
from castlink.transport.connection_manager import ConnectionManager, ConnectionState
from castlink.transport.exceptions import ChannelClosedError, TransportIOError
from castlink.transport.retry_policy import RetryPolicy, TimeoutConfig
from tests.conftest import SENDER_ID, FakeDevice, FakeStream
from tests.helpers.expectations import expect_async_exception, expect_future_exception, wait_until


class TestConnectionState:
    """Tests for ConnectionState enum."""

    def test_connection_state_values(self) -> None:
        """Test ConnectionState enum values."""
        assert ConnectionState.DISCONNECTED.value == "disconnected"
        assert ConnectionState.CONNECTING.value == "connecting"
        assert ConnectionState.CONNECTED.value == "connected"
        assert ConnectionState.CLOSING.value == "closing"
        assert ConnectionState.CLOSED.value == "closed"


class TestConnectionManagerInit:
    """Tests for ConnectionManager initialization."""

    def test_init_defaults(self, stream: FakeStream) -> None:
        """Test a fresh manager is disconnected and shares the channel's correlator."""
        mgr = ConnectionManager(stream)

        assert mgr.state is ConnectionState.DISCONNECTED
        assert mgr.correlator is mgr.channel.correlator
        assert isinstance(mgr.timeout_config, TimeoutConfig)
        assert not mgr.is_connected()

    def test_init_with_timeout_config(self, stream: FakeStream, fast_timeouts: TimeoutConfig) -> None:
        """Test a custom TimeoutConfig is kept."""
        mgr = ConnectionManager(stream, timeout_config=fast_timeouts)

        assert mgr.timeout_config is fast_timeouts


class TestConnectionManagerTraffic:
    """Tests for requests and events on a started manager."""

    @pytest.mark.asyncio
    async def test_request_round_trip(self, manager: ConnectionManager, device: FakeDevice) -> None:
        """Test a request is answered through the reader loop."""
        reply = await manager.request(NS_RECEIVER, "receiver-0", {"type": "GET_STATUS"}, 1.0)

        assert reply.json()["type"] == "RECEIVER_STATUS"
        assert manager.correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_event_reaches_subscriber(self, manager: ConnectionManager, stream: FakeStream) -> None:
        """Test unsolicited pushes are delivered to subscribers."""
        received: asyncio.Queue[Envelope] = asyncio.Queue()
        _ = manager.subscribe(NS_MEDIA, received.put_nowait)

        stream.push_json(NS_MEDIA, {"type": "MEDIA_STATUS", "requestId": 0, "status": []}, source_id="web-5")

        envelope = await asyncio.wait_for(received.get(), 1.0)
        assert envelope.source_id == "web-5"

    @pytest.mark.asyncio
    async def test_routing_error_does_not_close(self, manager: ConnectionManager, stream: FakeStream) -> None:
        """Test a bug while routing one envelope leaves the connection up."""
        with patch.object(manager.router, "route", side_effect=[RuntimeError("bug"), None]):
            stream.push_json(NS_MEDIA, {"type": "X"})
            stream.push_json(NS_MEDIA, {"type": "Y"})
            await wait_until(lambda: stream.inbound.empty())
            await asyncio.sleep(0.01)

        assert manager.is_connected()


class TestConnectionManagerClose:
    """Tests for the single teardown path."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, manager: ConnectionManager, stream: FakeStream) -> None:
        """Test closing twice gives the same observable state as closing once."""
        lost = MagicMock()
        _ = manager.add_connection_lost_listener(lost)

        await manager.close("closed")
        await manager.close("again")

        assert manager.state is ConnectionState.CLOSED
        assert manager.close_reason == "closed"
        assert stream.close_calls == 1
        lost.assert_called_once_with("closed")

    @pytest.mark.asyncio
    async def test_concurrent_close(self, manager: ConnectionManager, stream: FakeStream) -> None:
        """Test concurrent callers both return after teardown finished."""
        _ = await asyncio.gather(manager.close("a"), manager.close("b"))

        assert manager.state is ConnectionState.CLOSED
        assert stream.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_fails_pending_requests(self, manager: ConnectionManager) -> None:
        """Test every in-flight request fails with ChannelClosedError."""
        task = asyncio.create_task(manager.request(NS_RECEIVER, "receiver-0", {"type": "GET_STATUS"}, 5.0))
        await wait_until(lambda: manager.correlator.pending_count == 1)

        await manager.close("closed")

        err = await expect_future_exception(task, ChannelClosedError)
        assert err.reason == "closed"

    @pytest.mark.asyncio
    async def test_send_after_close(self, manager: ConnectionManager) -> None:
        """Test operations after close fail with ChannelClosedError."""
        await manager.close("closed")

        _ = await expect_async_exception(manager.send, ChannelClosedError, NS_RECEIVER, "receiver-0", {"type": "X"})
        _ = await expect_async_exception(
            manager.request,
            ChannelClosedError,
            NS_RECEIVER,
            "receiver-0",
            {"type": "GET_STATUS"},
            1.0,
        )

    @pytest.mark.asyncio
    async def test_peer_close_tears_down(self, manager: ConnectionManager, stream: FakeStream) -> None:
        """Test end of stream closes the manager with closed_by_peer."""
        lost = AsyncMock()
        _ = manager.add_connection_lost_listener(lost)

        stream.push_bytes(b"")

        assert await asyncio.wait_for(manager.wait_closed(), 1.0) == "closed_by_peer"
        await wait_until(lambda: lost.await_count == 1)
        lost.assert_awaited_once_with("closed_by_peer")

    @pytest.mark.asyncio
    async def test_decode_error_is_fatal(self, manager: ConnectionManager, stream: FakeStream) -> None:
        """Test a malformed frame closes the whole channel."""
        pending = asyncio.create_task(manager.request(NS_RECEIVER, "receiver-0", {"type": "GET_STATUS"}, 5.0))
        await wait_until(lambda: manager.correlator.pending_count == 1)

        stream.push_bytes(b"\x00\x00\x00\x03\xff\xff\xff")

        reason = await asyncio.wait_for(manager.wait_closed(), 1.0)
        assert reason is not None
        assert reason.startswith("decode_error")
        _ = await expect_future_exception(pending, ChannelClosedError)

    @pytest.mark.asyncio
    async def test_heartbeat_timeout_closes(self, stream: FakeStream) -> None:
        """Test a device that never answers PING gets the channel closed."""
        mgr = ConnectionManager(stream, sender_id=SENDER_ID, heartbeat_interval=0.02, heartbeat_miss_threshold=2)
        await mgr.start()
        pending = asyncio.create_task(mgr.request(NS_RECEIVER, "receiver-0", {"type": "GET_STATUS"}, 5.0))

        assert await asyncio.wait_for(mgr.wait_closed(), 2.0) == "heartbeat_timeout"
        err = await expect_future_exception(pending, ChannelClosedError)
        assert err.reason == "heartbeat_timeout"
        assert len(stream.sent_json(message_type="PING")) == 2

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, manager: ConnectionManager) -> None:
        """Test the remover returned by add_connection_lost_listener."""
        lost = MagicMock()
        remove = manager.add_connection_lost_listener(lost)

        remove()
        remove()
        await manager.close("closed")

        lost.assert_not_called()


class TestConnectionManagerOpen:
    """Tests for ConnectionManager.open retry behavior."""

    @pytest.mark.asyncio
    async def test_open_gives_up_after_max_attempts(self) -> None:
        """Test every failed attempt is retried, then the last error raised."""
        with patch("castlink.transport.connection_manager.TLSConnection") as tls_cls:
            tls_cls.return_value.connect = AsyncMock(side_effect=TransportIOError("refused", "connect"))

            err = await expect_async_exception(
                ConnectionManager.open,
                TransportIOError,
                "192.0.2.1",
                retry_policy=RetryPolicy(base_delay_seconds=0.0, max_attempts=3),
            )

        assert err.reason == "refused"
        assert tls_cls.return_value.connect.await_count == 3

    @pytest.mark.asyncio
    async def test_open_returns_started_manager(self, stream: FakeStream) -> None:
        """Test a successful attempt yields a connected manager."""
        stream.connect = AsyncMock()  # type: ignore[attr-defined]
        with patch("castlink.transport.connection_manager.TLSConnection", return_value=stream):
            mgr = await ConnectionManager.open("192.0.2.1", 8009, heartbeat_interval=60.0)

        try:
            assert mgr.is_connected()
            assert mgr.device == "192.0.2.1:8009"
        finally:
            await mgr.close("closed")
