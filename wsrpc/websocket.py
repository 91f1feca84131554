# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Bidirectional transport over WebSocket using aiohttp.

``AiohttpSocketConnector`` opens connections with
``aiohttp.ClientSession.ws_connect`` and wraps them as
``SocketConnection`` objects.  Frames map onto socket events:

- ``TEXT`` / ``BINARY`` → ``MESSAGE`` (binary frames decoded as UTF-8)
- ``ERROR`` → ``ERROR`` (counted by the health monitor)
- ``CLOSE`` / ``CLOSING`` / ``CLOSED`` → ``CLOSED``

Ping/pong is answered by aiohttp itself.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

import aiohttp

from wsrpc.rpc import SOCKET_CLOSED, SocketEvent, SocketEventType, TransportError
from wsrpc.rpc._debug import wire_socket_logger

__all__ = [
    "AiohttpSocketConnection",
    "AiohttpSocketConnector",
]

_CLOSE_TYPES = frozenset({aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED})


class AiohttpSocketConnection:
    """``SocketConnection`` backed by an ``aiohttp.ClientWebSocketResponse``."""

    __slots__ = ("_ws",)

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Wrap an open WebSocket."""
        self._ws = ws

    @property
    def closed(self) -> bool:
        """Whether the WebSocket has been closed."""
        return self._ws.closed

    async def send(self, data: str) -> None:
        """Send one text frame.

        Raises:
            TransportError: If the frame cannot be written.

        """
        try:
            await self._ws.send_str(data)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise TransportError(f"WebSocket send failed: {exc}") from exc

    async def receive(self) -> SocketEvent:
        """Wait for the next text, error or close event."""
        while True:
            msg = await self._ws.receive()
            if msg.type is aiohttp.WSMsgType.TEXT:
                return SocketEvent(SocketEventType.MESSAGE, msg.data)
            if msg.type is aiohttp.WSMsgType.BINARY:
                return SocketEvent(SocketEventType.MESSAGE, msg.data.decode("utf-8", errors="replace"))
            if msg.type is aiohttp.WSMsgType.ERROR:
                return SocketEvent(SocketEventType.ERROR, str(self._ws.exception() or msg.data))
            if msg.type in _CLOSE_TYPES:
                if wire_socket_logger.isEnabledFor(logging.DEBUG):
                    wire_socket_logger.debug("WebSocket closed (code=%s)", self._ws.close_code)
                return SOCKET_CLOSED

    async def close(self, code: int = 1000) -> None:
        """Close the WebSocket with *code*."""
        await self._ws.close(code=code)


class AiohttpSocketConnector:
    """``SocketConnector`` opening WebSockets to a fixed URL.

    Owns its ``aiohttp.ClientSession`` unless one is passed in; the owned
    session is created lazily on the first connection attempt.
    """

    __slots__ = ("_headers", "_heartbeat", "_owns_session", "_session", "_url")

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        headers: Mapping[str, str] | None = None,
        heartbeat: float | None = None,
    ) -> None:
        """Initialize the connector.

        Args:
            url: ``ws://`` or ``wss://`` URL.
            session: Session to connect through; owned and created lazily when omitted.
            headers: Headers sent with the opening handshake.
            heartbeat: Ping interval in seconds, or ``None`` to disable.

        """
        self._url = url
        self._session = session
        self._owns_session = session is None
        self._headers: dict[str, str] = dict(headers or {})
        self._heartbeat = heartbeat

    @property
    def url(self) -> str:
        """WebSocket URL."""
        return self._url

    async def connect(self) -> AiohttpSocketConnection:
        """Open a WebSocket.

        Raises:
            TransportError: If the handshake fails.

        """
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        if wire_socket_logger.isEnabledFor(logging.DEBUG):
            wire_socket_logger.debug("Connecting to %s", self._url)
        try:
            ws = await self._session.ws_connect(self._url, headers=self._headers, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, ConnectionError) as exc:
            raise TransportError(f"WebSocket connect to {self._url} failed: {exc}") from exc
        return AiohttpSocketConnection(ws)

    async def aclose(self) -> None:
        """Close the owned session."""
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
