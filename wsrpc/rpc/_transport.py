# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Transport protocols.

The engine talks to two external capabilities:

- a **bidirectional** transport (``SocketConnector`` producing a
  ``SocketConnection``), persistent and push-capable;
- a **discrete** transport (``DiscreteTransport``), one request/response
  round trip per exchange.

Concrete implementations live in :mod:`wsrpc.websocket` (aiohttp) and
:mod:`wsrpc.http` (httpx).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class SocketEventType(Enum):
    """What a ``SocketConnection.receive()`` call produced."""

    MESSAGE = "message"
    ERROR = "error"
    CLOSED = "closed"


@dataclass(frozen=True)
class SocketEvent:
    """One event read from a bidirectional connection.

    Attributes:
        type: The event kind.
        data: Message text for ``MESSAGE``, a description for ``ERROR``,
            otherwise ``None``.

    """

    type: SocketEventType
    data: str | None = None


SOCKET_CLOSED = SocketEvent(SocketEventType.CLOSED)


@runtime_checkable
class SocketConnection(Protocol):
    """An open bidirectional connection."""

    @property
    def closed(self) -> bool:
        """Whether the connection has been closed."""
        ...

    async def send(self, data: str) -> None:
        """Send one text frame."""
        ...

    async def receive(self) -> SocketEvent:
        """Wait for the next event; returns ``CLOSED`` once the connection ends."""
        ...

    async def close(self, code: int = 1000) -> None:
        """Close the connection with *code*."""
        ...


@runtime_checkable
class SocketConnector(Protocol):
    """Factory opening bidirectional connections."""

    async def connect(self) -> SocketConnection:
        """Open a new connection.

        Raises:
            TransportError: If the connection cannot be established.

        """
        ...

    async def aclose(self) -> None:
        """Release resources held by the connector."""
        ...


@runtime_checkable
class DiscreteTransport(Protocol):
    """Request/response transport with no server-initiated push."""

    async def exchange(self, data: str, headers: Mapping[str, str]) -> object:
        """Send one serialized payload and return the decoded response body.

        Raises:
            TransportError: On network-level failure.

        """
        ...

    async def aclose(self) -> None:
        """Release resources held by the transport."""
        ...
