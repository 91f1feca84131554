# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client engine: the public ``call`` / ``streamrx`` surface."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from wsrpc.rpc._common import _logger
from wsrpc.rpc._connection import ConnectionConfig, ConnectionManager, ConnectionState
from wsrpc.rpc._debug import fmt_envelopes, wire_queue_logger
from wsrpc.rpc._dispatch import MessageDispatcher
from wsrpc.rpc._envelope import Envelope, Kind, Response, new_batch_id
from wsrpc.rpc._queue import OutboundQueue
from wsrpc.rpc._registry import BatchTracker, CorrelationTable, Resolver
from wsrpc.rpc._sinks import CallbackStreamSink, CallCallback, DataCallback, FutureCallSink
from wsrpc.rpc._transport import DiscreteTransport, SocketConnection, SocketConnector


@dataclass(frozen=True)
class CallSpec:
    """One request inside a multi-request ``call`` / ``streamrx`` invocation."""

    method: str
    params: Any = None
    header: Any = None


def _collect(method: str | None, params: Any, header: Any, calls: Iterable[CallSpec] | None) -> list[CallSpec]:
    """Flatten ``calls`` plus the single ``method`` (appended last)."""
    specs = list(calls or ())
    if method:
        specs.append(CallSpec(method, params, header))
    if not specs:
        raise ValueError("nothing to send: pass method= and/or calls=")
    return specs


class RpcClient:
    """Client-side RPC engine over a persistent socket with a discrete fallback.

    Outstanding operations survive transport loss: every registered
    envelope is requeued when the socket opens and when it is lost, and
    envelopes issued while disconnected go over the discrete transport.
    The engine never gives up on a pending call or stream.

    Must be used from a running event loop; all state is owned by this
    instance and mutated only on that loop.

    Example::

        async with RpcClient(HttpDiscreteTransport(url), AiohttpSocketConnector(ws_url)) as client:
            pong = await client.call("ping")
            client.streamrx("ticker", {"symbol": "X"}, callback=on_tick)

    """

    def __init__(
        self,
        discrete: DiscreteTransport,
        connector: SocketConnector | None = None,
        *,
        config: ConnectionConfig | None = None,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            discrete: Request/response transport used whenever the socket is not live.
            connector: Opens the bidirectional transport; ``None`` selects
                discrete-only mode.
            config: Reconnection and health-monitoring parameters.
            default_headers: Headers for discrete exchanges whose envelopes
                carry no mapping header.

        """
        self._discrete = discrete
        self._table = CorrelationTable()
        self._batches = BatchTracker()
        self._connection = ConnectionManager(
            connector,
            on_message=self._on_message,
            on_open=self._requeue_outstanding,
            on_lost=self._requeue_outstanding,
            config=config,
        )
        self._queue = OutboundQueue(
            discrete,
            self._connection.live_connection,
            self._on_message,
            default_headers=default_headers,
        )
        self._dispatcher = MessageDispatcher(
            self._table,
            self._batches,
            enqueue=self._queue.enqueue,
            is_connected=self._connection.is_open,
        )
        self._started = False

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Begin connecting (no-op when already started)."""
        if self._started:
            return
        self._started = True
        self._connection.start()

    async def aclose(self) -> None:
        """Stop reconnecting and release both transports.

        Pending call futures are cancelled; streams are dropped.
        """
        await self._connection.aclose()
        await self._queue.aclose()
        await self._discrete.aclose()
        for job_id in self._table:
            resolver = self._table.remove(job_id)
            if resolver is not None and isinstance(resolver.sink, FutureCallSink):
                resolver.sink.future.cancel()

    async def __aenter__(self) -> RpcClient:
        """Start the engine."""
        self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the engine."""
        await self.aclose()

    # -- Accessors -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current state of the bidirectional transport."""
        return self._connection.state

    @property
    def initial_connection(self) -> asyncio.Future[SocketConnection | None]:
        """Future resolved by the first socket open (``None`` in discrete-only mode)."""
        return self._connection.initial_connection

    @property
    def outstanding(self) -> int:
        """Number of calls and streams still registered."""
        return len(self._table)

    @property
    def connection(self) -> ConnectionManager:
        """The connection manager."""
        return self._connection

    @property
    def queue(self) -> OutboundQueue:
        """The outbound queue."""
        return self._queue

    def is_open(self) -> bool:
        """Whether traffic currently flows over the bidirectional transport."""
        return self._connection.is_open()

    def manual_reconnect(self) -> None:
        """Skip the remaining backoff delay and reconnect now."""
        self._connection.manual_reconnect()

    # -- Public operations ---------------------------------------------------

    def call(
        self,
        method: str | None = None,
        params: Any = None,
        header: Any = None,
        *,
        calls: Iterable[CallSpec] | None = None,
        callback: CallCallback | None = None,
        catch_callback: CallCallback | None = None,
    ) -> asyncio.Future[Response] | list[asyncio.Future[Response]]:
        """Issue one or more one-shot requests.

        Args:
            method: Single method to call (sent after ``calls``).
            params: Parameters for *method*.
            header: Header for *method*.
            calls: Additional requests issued in the same batch.
            callback: Invoked with each successful response before its future resolves.
            catch_callback: Invoked with each error response before its future fails.

        Returns:
            A future when exactly one request was issued, otherwise one future
            per request in issue order.  Futures resolve with the
            :class:`Response`, or fail with :class:`CallError`.

        Raises:
            ValueError: If neither *method* nor *calls* names a request.
            TypeError: If a ``params`` or ``header`` value is not JSON-serializable;
                nothing is registered or sent in that case.

        """
        specs = _collect(method, params, header, calls)
        loop = asyncio.get_running_loop()
        futures: list[asyncio.Future[Response]] = []
        sinks: list[FutureCallSink] = []
        for _ in specs:
            future: asyncio.Future[Response] = loop.create_future()
            futures.append(future)
            sinks.append(FutureCallSink(future, callback, catch_callback))
        self._issue(Kind.CALL, specs, sinks)
        return futures[0] if len(futures) == 1 else futures

    def streamrx(
        self,
        method: str | None = None,
        params: Any = None,
        header: Any = None,
        *,
        calls: Iterable[CallSpec] | None = None,
        callback: DataCallback | None = None,
        catch_callback: CallCallback | None = None,
        final_callback: CallCallback | None = None,
    ) -> str:
        """Open one or more server-push streams.

        Fire-and-forget: data increments reach ``callback(response, token)``,
        per-message errors reach ``catch_callback(response)`` without ending
        the stream, and the terminal response (``error.code == 205``) reaches
        ``final_callback(response)``.

        Returns:
            The batch id the streams were issued in.

        Raises:
            ValueError: If neither *method* nor *calls* names a request.
            TypeError: If a ``params`` or ``header`` value is not JSON-serializable;
                nothing is registered or sent in that case.

        """
        specs = _collect(method, params, header, calls)
        sink = CallbackStreamSink(callback, catch_callback, final_callback)
        return self._issue(Kind.STREAM, specs, [sink] * len(specs))

    # -- Internals -----------------------------------------------------------

    def _issue(self, kind: Kind, specs: Sequence[CallSpec], sinks: Sequence[FutureCallSink | CallbackStreamSink]) -> str:
        batch_id = new_batch_id()
        envelopes = [Envelope.create(kind, spec.method, spec.params, spec.header) for spec in specs]
        # Nothing is registered until the group serializes.
        item = self._queue.prepare(envelopes)
        for envelope, sink in zip(envelopes, sinks, strict=True):
            self._table.register(envelope.job_id, Resolver(kind, batch_id, envelope, sink))
        self._batches.register_batch(batch_id, [e.job_id for e in envelopes])
        if wire_queue_logger.isEnabledFor(logging.DEBUG):
            wire_queue_logger.debug("Issue %s batch %s: %s", kind.value, batch_id, fmt_envelopes(envelopes))
        self._queue.put(item)
        return batch_id

    def _on_message(self, decoded: object) -> None:
        self._dispatcher.feed(decoded)

    def _requeue_outstanding(self) -> None:
        envelopes = self._table.envelopes()
        if envelopes:
            _logger.info("Requeueing %d outstanding request(s)", len(envelopes), extra={"outstanding": len(envelopes)})
        for envelope in envelopes:
            self._queue.enqueue([envelope])
