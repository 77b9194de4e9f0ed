"""Encrypted byte stream used by the transport channel.

``ByteStream`` is the seam: the channel only needs ``recv``/``send``/``close``.
``TLSConnection`` is the stock implementation over ``asyncio.open_connection``.
Tests substitute an in-memory stream.
"""

from __future__ import annotations

import asyncio
import ssl
import time
from typing import Protocol, runtime_checkable

from castlink.const import CAST_CONNECT_TIMEOUT, CAST_PORT
from castlink.logging_abstraction import get_logger
from castlink.transport.exceptions import TransportIOError

logger = get_logger(__name__)


@runtime_checkable
class ByteStream(Protocol):
    """Encrypted duplex byte stream the channel runs over.

    ``recv`` returns ``b""`` on end of stream and raises ``TransportIOError`` on
    a fault. ``close`` must be safe to call more than once.
    """

    async def recv(self) -> bytes: ...

    async def send(self, data: bytes) -> None: ...

    async def close(self) -> None: ...

    @property
    def is_connected(self) -> bool: ...


def insecure_ssl_context() -> ssl.SSLContext:
    """TLS client context that skips certificate and hostname checks.

    Cast devices present self-signed certificates; whether to trust them is the
    caller's decision.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _error_reason(e: BaseException) -> str:
    return str(e) or type(e).__name__


class TLSConnection:
    """``ByteStream`` over an asyncio TLS connection.

    Connect (including the handshake) and each write are bounded by their
    timeouts. Reads block until data arrives; detecting a dead peer is the
    heartbeat's job.
    """

    def __init__(
        self,
        host: str,
        port: int = CAST_PORT,
        ssl_context: ssl.SSLContext | None = None,
        connect_timeout: float = CAST_CONNECT_TIMEOUT,
        io_timeout: float = 10.0,
        max_read_size: int = 65536,
    ):
        self.host = host
        self.port = port
        if ssl_context is None:
            logger.debug(
                "No SSL context given for %s:%s, device certificate will not be verified",
                host,
                port,
                extra={"device": f"{host}:{port}"},
            )
            ssl_context = insecure_ssl_context()
        self.ssl_context = ssl_context
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self.max_read_size = max_read_size
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None
        self._connected = False

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def connect(self) -> None:
        """Open the TCP connection and complete the TLS handshake.

        Raises:
            TransportIOError: Refused, unreachable, handshake failure, or timeout

        """
        started = time.perf_counter()
        logger.info("→ Connecting to %s", self.address, extra={"device": self.address, "timeout": self.connect_timeout})
        try:
            self.reader, self.writer = await asyncio.wait_for(
                asyncio.open_connection(
                    self.host,
                    self.port,
                    ssl=self.ssl_context,
                    ssl_handshake_timeout=self.connect_timeout,
                ),
                timeout=self.connect_timeout,
            )
        except TimeoutError as e:
            reason = "timeout"
            error: BaseException = e
        except (OSError, ssl.SSLError) as e:
            reason = _error_reason(e)
            error = e
        else:
            self._connected = True
            logger.info(
                "✓ Connected to %s",
                self.address,
                extra={"device": self.address, "elapsed_ms": round((time.perf_counter() - started) * 1000, 1)},
            )
            return

        logger.warning(
            "✗ Connection to %s failed: %s",
            self.address,
            reason,
            extra={"device": self.address, "elapsed_ms": round((time.perf_counter() - started) * 1000, 1)},
        )
        raise TransportIOError(reason, "connect") from error

    async def send(self, data: bytes) -> None:
        """Write ``data`` and wait for the buffer to drain.

        Raises:
            TransportIOError: Not connected, write failed, or drain timed out

        """
        if not self._connected or self.writer is None:
            raise TransportIOError("not_connected", "send")
        try:
            self.writer.write(data)
            await asyncio.wait_for(self.writer.drain(), timeout=self.io_timeout)
        except TimeoutError as e:
            raise TransportIOError("timeout", "send") from e
        except OSError as e:
            self._connected = False
            raise TransportIOError(_error_reason(e), "send") from e

    async def recv(self) -> bytes:
        """Read up to ``max_read_size`` bytes; ``b""`` means the peer closed.

        Raises:
            TransportIOError: Not connected or read failed

        """
        if not self._connected or self.reader is None:
            raise TransportIOError("not_connected", "recv")
        try:
            data = await self.reader.read(self.max_read_size)
        except OSError as e:
            self._connected = False
            raise TransportIOError(_error_reason(e), "recv") from e

        if not data:
            logger.info("Connection closed by %s", self.address, extra={"device": self.address})
            self._connected = False
        return data

    async def close(self) -> None:
        """Close the connection; errors while closing are logged, not raised."""
        writer = self.writer
        self.writer = None
        self.reader = None
        self._connected = False
        if writer is None:
            return
        writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=self.io_timeout)
        except (OSError, TimeoutError, ssl.SSLError) as e:
            logger.debug(
                "Error while closing %s: %s",
                self.address,
                e,
                extra={"device": self.address, "error_type": type(e).__name__},
            )

    @property
    def is_connected(self) -> bool:
        return self._connected

    def __repr__(self) -> str:
        return f"TLSConnection({self.address}, {'connected' if self._connected else 'disconnected'})"
