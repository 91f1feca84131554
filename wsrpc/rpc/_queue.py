# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Outbound queue: decouples envelope production from transport availability."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

from wsrpc.rpc._common import TransportError, _logger
from wsrpc.rpc._debug import fmt_envelopes, fmt_payload, wire_queue_logger
from wsrpc.rpc._envelope import Envelope, serialize_group
from wsrpc.rpc._transport import DiscreteTransport, SocketConnection

_EMPTY_HEADERS: Mapping[str, str] = MappingProxyType({})


@dataclass(frozen=True)
class QueuedPayload:
    """One serialized envelope group awaiting transmission.

    Attributes:
        data: The JSON text (object for one envelope, array for several).
        headers: HTTP headers used when the item goes over the discrete transport.

    """

    data: str
    headers: Mapping[str, str] = field(default_factory=lambda: _EMPTY_HEADERS)


def _merge_headers(defaults: Mapping[str, str], envelopes: Sequence[Envelope]) -> Mapping[str, str]:
    """Layer every mapping-shaped envelope header over the default headers."""
    merged = dict(defaults)
    for envelope in envelopes:
        if isinstance(envelope.header, Mapping):
            merged.update({str(k): str(v) for k, v in envelope.header.items()})
    return merged


class OutboundQueue:
    """FIFO of serialized envelope groups drained onto whichever transport is viable.

    Draining is reentrancy-guarded: at most one drain pass runs at a time and
    triggers arriving during a pass collapse into it.  Items go over the live
    socket when there is one (each send awaited, so socket order is enqueue
    order), otherwise each item is launched as its own discrete exchange and
    the pass moves on; discrete responses may therefore arrive out of order.
    """

    __slots__ = (
        "_default_headers",
        "_discrete",
        "_drain_task",
        "_exchanges",
        "_live_connection",
        "_on_response",
        "_pending",
    )

    def __init__(
        self,
        discrete: DiscreteTransport,
        live_connection: Callable[[], SocketConnection | None],
        on_response: Callable[[object], None],
        *,
        default_headers: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            discrete: Transport used when no socket is live.
            live_connection: Returns the open socket, or ``None``.
            on_response: Receives every decoded discrete-transport response.
            default_headers: Headers for discrete exchanges.

        """
        self._discrete = discrete
        self._live_connection = live_connection
        self._on_response = on_response
        self._default_headers: Mapping[str, str] = dict(default_headers or {})
        self._pending: deque[QueuedPayload] = deque()
        self._drain_task: asyncio.Task[None] | None = None
        self._exchanges: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of items awaiting transmission."""
        return len(self._pending)

    @property
    def in_flight(self) -> int:
        """Number of discrete exchanges still awaiting a response."""
        return len(self._exchanges)

    @property
    def draining(self) -> bool:
        """Whether a drain pass is running."""
        return self._drain_task is not None and not self._drain_task.done()

    def prepare(self, envelopes: Sequence[Envelope]) -> QueuedPayload:
        """Serialize *envelopes* as one unit without queueing it.

        Raises:
            TypeError: If a ``params`` or ``header`` value is not JSON-serializable.
            ValueError: If *envelopes* is empty or contains a circular reference.

        """
        return QueuedPayload(serialize_group(envelopes), _merge_headers(self._default_headers, envelopes))

    def put(self, item: QueuedPayload) -> None:
        """Queue an already serialized item and trigger a drain."""
        self._pending.append(item)
        if wire_queue_logger.isEnabledFor(logging.DEBUG):
            wire_queue_logger.debug("Queued %s (pending=%d)", fmt_payload(item.data), len(self._pending))
        self.drain()

    def enqueue(self, envelopes: Sequence[Envelope]) -> None:
        """Serialize *envelopes* as one unit, queue it and trigger a drain.

        An empty group queues nothing but still triggers a drain.
        """
        if not envelopes:
            self.drain()
            return
        item = self.prepare(envelopes)
        if wire_queue_logger.isEnabledFor(logging.DEBUG):
            wire_queue_logger.debug("Enqueue %s", fmt_envelopes(envelopes))
        self.put(item)

    def drain(self) -> None:
        """Start a drain pass unless one is already running."""
        if self.draining or not self._pending:
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain(), name="wsrpc-drain")

    async def _drain(self) -> None:
        while self._pending:
            item = self._pending.popleft()
            connection = self._live_connection()
            if connection is not None:
                if wire_queue_logger.isEnabledFor(logging.DEBUG):
                    wire_queue_logger.debug("Drain -> socket: %s", fmt_payload(item.data))
                try:
                    await connection.send(item.data)
                except (TransportError, OSError) as exc:
                    # Registered resolvers are requeued when the socket loss is observed.
                    _logger.warning("Socket send failed, dropping queued item: %s", exc)
                continue
            if wire_queue_logger.isEnabledFor(logging.DEBUG):
                wire_queue_logger.debug("Drain -> discrete: %s", fmt_payload(item.data))
            task = asyncio.get_running_loop().create_task(self._exchange(item), name="wsrpc-exchange")
            self._exchanges.add(task)
            task.add_done_callback(self._exchanges.discard)

    async def _exchange(self, item: QueuedPayload) -> None:
        try:
            decoded = await self._discrete.exchange(item.data, item.headers)
        except TransportError as exc:
            _logger.warning("Discrete exchange failed: %s", exc.error_message)
            return
        self._on_response(decoded)

    async def flush(self) -> None:
        """Wait until the queue is empty and every discrete exchange has completed."""
        while self.draining or self._exchanges or self._pending:
            if self._pending and not self.draining:
                self.drain()
            waiters: list[asyncio.Task[None]] = list(self._exchanges)
            if self._drain_task is not None and not self._drain_task.done():
                waiters.append(self._drain_task)
            if waiters:
                await asyncio.wait(waiters)
            else:
                await asyncio.sleep(0)

    async def aclose(self) -> None:
        """Cancel the running drain pass and every in-flight exchange."""
        tasks = list(self._exchanges)
        if self._drain_task is not None:
            tasks.append(self._drain_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._pending.clear()
        self._drain_task = None
