"""Unit tests for the TLSConnection socket abstraction.

Tests cover:
- Connection lifecycle (connect, send, recv, close)
- Error handling (timeouts, connection failures, cleanup errors)
- The ByteStream protocol contract
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from castlink.transport.exceptions import TransportIOError
from castlink.transport.socket_abstraction import ByteStream, TLSConnection, insecure_ssl_context
from tests.conftest import FakeStream
from tests.helpers.expectations import expect_async_exception


class TLSConnectionTestHarness(TLSConnection):
    """Expose protected connection state controls for testing."""

    def set_connected_state(
        self,
        connected: bool,
        *,
        reader: AsyncMock | MagicMock | None = None,
        writer: AsyncMock | MagicMock | None = None,
    ) -> None:
        self._connected = connected
        if reader is not None:
            self.reader = reader
        if writer is not None:
            self.writer = writer


@pytest.fixture
def tls_connection() -> TLSConnectionTestHarness:
    """Create TLSConnection instance for testing."""
    return TLSConnectionTestHarness(
        host="127.0.0.1",
        port=8009,
        connect_timeout=0.1,
        io_timeout=0.1,
    )


def test_insecure_context_skips_verification() -> None:
    """Test the default context accepts self-signed device certificates."""
    context = insecure_ssl_context()

    assert context.verify_mode == ssl.CERT_NONE
    assert context.check_hostname is False


def test_default_context_choice_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    """Test falling back to the non-verifying context leaves a debug line."""
    with caplog.at_level(logging.DEBUG, logger="castlink.transport.socket_abstraction"):
        connection = TLSConnection(host="192.0.2.4", port=8009)

    assert connection.ssl_context.verify_mode == ssl.CERT_NONE
    (record,) = [r for r in caplog.records if "will not be verified" in r.getMessage()]
    assert record.levelno == logging.DEBUG
    assert record.extra_data == {"device": "192.0.2.4:8009"}


def test_explicit_context_not_logged(caplog: pytest.LogCaptureFixture) -> None:
    """Test a caller-supplied context is used as is."""
    context = ssl.create_default_context()

    with caplog.at_level(logging.DEBUG, logger="castlink.transport.socket_abstraction"):
        connection = TLSConnection(host="192.0.2.4", ssl_context=context)

    assert connection.ssl_context is context
    assert not [r for r in caplog.records if "will not be verified" in r.getMessage()]


def test_stream_implementations_satisfy_protocol(tls_connection: TLSConnectionTestHarness) -> None:
    """Test TLSConnection and the test stream both satisfy ByteStream."""
    assert isinstance(tls_connection, ByteStream)
    assert isinstance(FakeStream(), ByteStream)


@pytest.mark.asyncio
async def test_connect_success(tls_connection: TLSConnectionTestHarness) -> None:
    """Test successful connection uses the TLS context."""
    with patch("asyncio.open_connection") as mock_open:
        mock_reader = AsyncMock(spec=asyncio.StreamReader)
        mock_writer = AsyncMock(spec=asyncio.StreamWriter)
        mock_open.return_value = (mock_reader, mock_writer)

        await tls_connection.connect()

        assert tls_connection.is_connected is True
        assert tls_connection.reader is mock_reader
        assert tls_connection.writer is mock_writer
        assert mock_open.call_args.kwargs["ssl"] is tls_connection.ssl_context


@pytest.mark.asyncio
async def test_connect_timeout(tls_connection: TLSConnectionTestHarness) -> None:
    """Test connection timeout."""
    with patch("asyncio.open_connection") as mock_open:

        async def slow_connect(*_args: object, **_kwargs: object) -> tuple[AsyncMock, AsyncMock]:
            await asyncio.sleep(1.0)  # Longer than timeout
            return (AsyncMock(spec=asyncio.StreamReader), AsyncMock(spec=asyncio.StreamWriter))

        mock_open.side_effect = slow_connect

        err = await expect_async_exception(tls_connection.connect, TransportIOError)

        assert err.reason == "timeout"
        assert err.operation == "connect"
        assert tls_connection.is_connected is False


@pytest.mark.asyncio
async def test_connect_refused(tls_connection: TLSConnectionTestHarness) -> None:
    """Test connection refused."""
    with patch("asyncio.open_connection", side_effect=ConnectionRefusedError("Connection refused")):
        err = await expect_async_exception(tls_connection.connect, TransportIOError)

    assert "refused" in err.reason
    assert tls_connection.is_connected is False


@pytest.mark.asyncio
async def test_connect_handshake_failure(tls_connection: TLSConnectionTestHarness) -> None:
    """Test TLS handshake errors surface as TransportIOError."""
    with patch("asyncio.open_connection", side_effect=ssl.SSLError("handshake failure")):
        _ = await expect_async_exception(tls_connection.connect, TransportIOError)


@pytest.mark.asyncio
async def test_send_success(tls_connection: TLSConnectionTestHarness) -> None:
    """Test successful send."""
    mock_writer = AsyncMock()
    mock_writer.write = MagicMock()
    mock_writer.drain = AsyncMock()
    tls_connection.set_connected_state(True, writer=mock_writer)

    await tls_connection.send(b"test data")

    mock_writer.write.assert_called_once_with(b"test data")
    mock_writer.drain.assert_called_once()


@pytest.mark.asyncio
async def test_send_not_connected(tls_connection: TLSConnectionTestHarness) -> None:
    """Test send when not connected."""
    err = await expect_async_exception(tls_connection.send, TransportIOError, b"test")

    assert err.reason == "not_connected"


@pytest.mark.asyncio
async def test_send_timeout(tls_connection: TLSConnectionTestHarness) -> None:
    """Test send timeout."""
    mock_writer = AsyncMock()
    mock_writer.write = MagicMock()

    async def slow_drain() -> None:
        await asyncio.sleep(1.0)  # Longer than timeout

    mock_writer.drain = slow_drain
    tls_connection.set_connected_state(True, writer=mock_writer)

    err = await expect_async_exception(tls_connection.send, TransportIOError, b"test")

    assert err.reason == "timeout"


@pytest.mark.asyncio
async def test_send_oserror(tls_connection: TLSConnectionTestHarness) -> None:
    """Test send with OSError marks the connection down."""
    mock_writer = AsyncMock()
    mock_writer.write = MagicMock(side_effect=OSError("Broken pipe"))
    tls_connection.set_connected_state(True, writer=mock_writer)

    err = await expect_async_exception(tls_connection.send, TransportIOError, b"test")

    assert err.reason == "Broken pipe"
    assert tls_connection.is_connected is False


@pytest.mark.asyncio
async def test_recv_success(tls_connection: TLSConnectionTestHarness) -> None:
    """Test successful receive."""
    mock_reader = AsyncMock()
    mock_reader.read = AsyncMock(return_value=b"received data")
    tls_connection.set_connected_state(True, reader=mock_reader)

    result = await tls_connection.recv()

    assert result == b"received data"
    mock_reader.read.assert_called_once_with(65536)


@pytest.mark.asyncio
async def test_recv_eof(tls_connection: TLSConnectionTestHarness) -> None:
    """Test end of stream returns empty bytes."""
    mock_reader = AsyncMock()
    mock_reader.read = AsyncMock(return_value=b"")
    tls_connection.set_connected_state(True, reader=mock_reader)

    assert await tls_connection.recv() == b""
    assert tls_connection.is_connected is False


@pytest.mark.asyncio
async def test_recv_oserror(tls_connection: TLSConnectionTestHarness) -> None:
    """Test receive with OSError."""
    mock_reader = AsyncMock()
    mock_reader.read = AsyncMock(side_effect=OSError("Connection reset"))
    tls_connection.set_connected_state(True, reader=mock_reader)

    err = await expect_async_exception(tls_connection.recv, TransportIOError)

    assert err.operation == "recv"


@pytest.mark.asyncio
async def test_close_success(tls_connection: TLSConnectionTestHarness) -> None:
    """Test successful close."""
    mock_writer = AsyncMock()
    mock_writer.close = MagicMock()
    mock_writer.wait_closed = AsyncMock()
    tls_connection.set_connected_state(True, writer=mock_writer)

    await tls_connection.close()

    assert tls_connection.is_connected is False
    assert tls_connection.writer is None
    mock_writer.close.assert_called_once()
    mock_writer.wait_closed.assert_called_once()


@pytest.mark.asyncio
async def test_close_twice(tls_connection: TLSConnectionTestHarness) -> None:
    """Test close is safe to repeat."""
    mock_writer = AsyncMock()
    mock_writer.close = MagicMock()
    tls_connection.set_connected_state(True, writer=mock_writer)

    await tls_connection.close()
    await tls_connection.close()

    mock_writer.close.assert_called_once()


@pytest.mark.asyncio
async def test_close_wait_closed_error_continues(tls_connection: TLSConnectionTestHarness) -> None:
    """Test that wait_closed errors don't fail cleanup."""
    mock_writer = AsyncMock()
    mock_writer.close = MagicMock()
    mock_writer.wait_closed = AsyncMock(side_effect=ssl.SSLError("bad record"))
    tls_connection.set_connected_state(True, writer=mock_writer)

    # Should not raise - cleanup is best-effort
    await tls_connection.close()

    assert tls_connection.is_connected is False
