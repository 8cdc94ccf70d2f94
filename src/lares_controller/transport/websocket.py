"""aiohttp WebSocket wrapper for the panel endpoint.

Automatic ping handling is disabled: the heartbeat monitor sends its own
transport-level pings and needs to see every pong. Pings from the panel are
answered here, inside :meth:`PanelWebSocket.receive`.
"""

from __future__ import annotations

import asyncio
import contextlib
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import aiohttp

from lares_controller.const import DEFAULT_PLAIN_PORT, DEFAULT_TLS_PORT, TLS_CIPHERS, WS_PATH, WS_SUBPROTOCOL
from lares_controller.logging_abstraction import get_logger
from lares_controller.transport.exceptions import TransportError

logger = get_logger(__name__)

_CLOSED_TYPES = frozenset(
    {aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR},
)


def panel_url(host: str, port: int | None = None, use_tls: bool = True) -> str:
    """``wss://host:port/KseniaWsock/``; the port defaults by scheme."""
    scheme = "wss" if use_tls else "ws"
    if port is None:
        port = DEFAULT_TLS_PORT if use_tls else DEFAULT_PLAIN_PORT
    return f"{scheme}://{host}:{port}{WS_PATH}"


def build_ssl_context() -> ssl.SSLContext:
    """TLS settings the panel needs: self-signed certificate and legacy ciphers."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.options |= getattr(ssl, "OP_LEGACY_SERVER_CONNECT", 0x4)
    context.set_ciphers(TLS_CIPHERS)
    return context


class FrameKind(Enum):
    TEXT = "text"
    PONG = "pong"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class SocketEvent:
    """One thing the socket reported: a text frame, a pong, or closure."""

    kind: FrameKind
    data: str = ""


class PanelSocket(Protocol):
    """Socket surface the connection manager drives."""

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def send_text(self, text: str) -> None: ...

    async def ping(self) -> None: ...

    async def receive(self) -> SocketEvent: ...

    async def close(self) -> None: ...

    async def terminate(self) -> None: ...


class PanelWebSocket:
    """One WebSocket connection to the panel, negotiated with ``KS_WSOCK``."""

    def __init__(
        self,
        url: str,
        ssl_context: ssl.SSLContext | None = None,
        open_timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.ssl_context = ssl_context
        self.open_timeout = open_timeout
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def open(self) -> None:
        """Open the socket within ``open_timeout`` seconds.

        Raises:
            TransportError: Handshake failed, refused, or timed out

        """
        start_time = time.perf_counter()
        logger.info(
            "Connecting to %s (timeout: %.1fs)",
            self.url,
            self.open_timeout,
            extra={"url": self.url, "timeout": self.open_timeout},
        )
        self._session = aiohttp.ClientSession()
        try:
            self._ws = await asyncio.wait_for(
                self._session.ws_connect(
                    self.url,
                    protocols=(WS_SUBPROTOCOL,),
                    ssl=self.ssl_context if self.ssl_context is not None else True,
                    autoping=False,
                    heartbeat=None,
                ),
                timeout=self.open_timeout,
            )
        except TimeoutError as e:
            await self._close_session()
            raise TransportError("open_timeout", "connecting") from e
        except (aiohttp.ClientError, OSError) as e:
            await self._close_session()
            raise TransportError(f"open_failed: {e}", "connecting") from e

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Connected to %s in %.1fms",
            self.url,
            elapsed_ms,
            extra={"url": self.url, "elapsed_ms": elapsed_ms, "protocol": self._ws.protocol},
        )

    async def send_text(self, text: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportError("socket_closed", "sending")
        try:
            await ws.send_str(text)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"send_failed: {e}", "sending") from e

    async def ping(self) -> None:
        """Send a transport-level ping frame."""
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportError("socket_closed", "ping")
        try:
            await ws.ping()
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            raise TransportError(f"ping_failed: {e}", "ping") from e

    async def receive(self) -> SocketEvent:
        """Wait for the next text frame, pong, or closure."""
        ws = self._ws
        if ws is None:
            return SocketEvent(FrameKind.CLOSED, "not_open")
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return SocketEvent(FrameKind.TEXT, msg.data)
            if msg.type == aiohttp.WSMsgType.BINARY:
                return SocketEvent(FrameKind.TEXT, msg.data.decode("utf-8", errors="replace"))
            if msg.type == aiohttp.WSMsgType.PING:
                with contextlib.suppress(aiohttp.ClientError, ConnectionError, RuntimeError):
                    await ws.pong(msg.data)
                continue
            if msg.type == aiohttp.WSMsgType.PONG:
                return SocketEvent(FrameKind.PONG)
            if msg.type in _CLOSED_TYPES:
                reason = "error" if msg.type == aiohttp.WSMsgType.ERROR else f"closed:{ws.close_code}"
                return SocketEvent(FrameKind.CLOSED, reason)
            logger.debug("Ignoring websocket message of type %s", msg.type)

    async def close(self) -> None:
        """Graceful close with a close frame."""
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            with contextlib.suppress(aiohttp.ClientError, ConnectionError, RuntimeError, TimeoutError):
                await ws.close()
        await self._close_session()

    async def terminate(self) -> None:
        """Drop the connection without a close handshake."""
        self._ws = None
        await self._close_session()

    async def _close_session(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()
