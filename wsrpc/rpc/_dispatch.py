# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Message dispatcher: demultiplexes responses and runs the call/stream protocol.

Call semantics
--------------
A call is terminal after one response: the resolver is removed first,
then the sink is rejected (``error`` present) or fulfilled.

Stream semantics
----------------
A stream stays registered until the server sends ``error.code == 205``.

- **Socket connected** — the server pushes increments directly: ``205``
  removes the resolver and completes the sink, any other error is reported
  without ending the stream, everything else is a data increment.
- **Socket not connected** — the response came back from a discrete
  exchange, so keeping the stream alive means re-issuing it.  The batch is
  rebuilt from its still-registered members: the other members are
  requeued unchanged, the responding member gets the same terminal / error
  / data treatment and, when it survives as data, is requeued with the
  response header.  A member that errored stays registered but leaves the
  rebuilt batch.  The rebuilt batch is requeued as one group, once per
  inbound message.

An errored member left out of its batch is still re-sent by the next
connect or disconnect requeue, but while the socket stays down its later
responses are ignored: the rebuild only walks current batch members.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from wsrpc.rpc._common import _logger
from wsrpc.rpc._debug import fmt_response, wire_dispatch_logger
from wsrpc.rpc._envelope import Envelope, Kind, Response, iter_responses
from wsrpc.rpc._registry import BatchTracker, CorrelationTable, Resolver
from wsrpc.rpc._sinks import CallSink, CancelToken, StreamSink


class MessageDispatcher:
    """Applies inbound responses to the resolvers they correlate with."""

    __slots__ = ("_batches", "_enqueue", "_is_connected", "_table")

    def __init__(
        self,
        table: CorrelationTable,
        batches: BatchTracker,
        *,
        enqueue: Callable[[Sequence[Envelope]], None],
        is_connected: Callable[[], bool],
    ) -> None:
        """Initialize the dispatcher.

        Args:
            table: Pending resolvers keyed by job id.
            batches: Batch membership used to rebuild redeliveries.
            enqueue: Queues a group of envelopes for transmission.
            is_connected: Whether the bidirectional transport is live.

        """
        self._table = table
        self._batches = batches
        self._enqueue = enqueue
        self._is_connected = is_connected

    def feed(self, decoded: object) -> None:
        """Dispatch one inbound message (a single response object or an array)."""
        redeliver: dict[str, None] = {}
        for response in iter_responses(decoded):
            self._dispatch(response, redeliver)
        for batch_id in redeliver:
            self._requeue_batch(batch_id)

    def _dispatch(self, response: Response, redeliver: dict[str, None]) -> None:
        if wire_dispatch_logger.isEnabledFor(logging.DEBUG):
            wire_dispatch_logger.debug("Dispatch %s", fmt_response(response))
        if response.job_id is None:
            _logger.warning("Dropping response without a job id (error=%s)", response.error)
            return
        resolver = self._table.lookup(response.job_id)
        if resolver is None:
            if wire_dispatch_logger.isEnabledFor(logging.DEBUG):
                wire_dispatch_logger.debug("No resolver for job %s, ignoring", response.job_id)
            return
        if resolver.kind is Kind.CALL:
            self._resolve_call(resolver, response)
        elif self._is_connected():
            self._resolve_stream(resolver, response)
        else:
            self._rebuild_batch(resolver, response)
            redeliver[resolver.batch_id] = None

    # -- Call ----------------------------------------------------------------

    def _resolve_call(self, resolver: Resolver, response: Response) -> None:
        self._forget(resolver)
        sink: CallSink = resolver.sink  # type: ignore[assignment]
        if response.error is not None:
            sink.reject(response)
        else:
            sink.fulfill(response)

    # -- Stream --------------------------------------------------------------

    def _apply_stream(self, resolver: Resolver, response: Response) -> bool:
        """Apply one stream response; return whether it was a data increment."""
        sink: StreamSink = resolver.sink  # type: ignore[assignment]
        if response.is_stream_complete:
            self._table.remove(resolver.job_id)
            if wire_dispatch_logger.isEnabledFor(logging.DEBUG):
                wire_dispatch_logger.debug("Stream %s complete", resolver.job_id)
            sink.on_complete(response)
            return False
        if response.error is not None:
            sink.on_error(response)
            return False
        sink.on_data(response, CancelToken())
        return True

    def _resolve_stream(self, resolver: Resolver, response: Response) -> None:
        self._apply_stream(resolver, response)
        if resolver.job_id not in self._table:
            self._batches.remove_member(resolver.batch_id, resolver.job_id)

    def _rebuild_batch(self, resolver: Resolver, response: Response) -> None:
        survivors: list[str] = []
        for job_id in self._batches.members_of(resolver.batch_id):
            if job_id != response.job_id:
                if job_id in self._table:
                    survivors.append(job_id)
                continue
            if not self._apply_stream(resolver, response):
                continue
            if response.header is not None:
                resolver.envelope = resolver.envelope.with_header(response.header)
            survivors.append(job_id)
        self._batches.replace(resolver.batch_id, survivors)

    def _requeue_batch(self, batch_id: str) -> None:
        envelopes: list[Envelope] = []
        for job_id in self._batches.members_of(batch_id):
            resolver = self._table.lookup(job_id)
            if resolver is not None:
                envelopes.append(resolver.envelope)
        if envelopes:
            if wire_dispatch_logger.isEnabledFor(logging.DEBUG):
                wire_dispatch_logger.debug("Redelivering %d member(s) of batch %s", len(envelopes), batch_id)
            self._enqueue(envelopes)

    # -- Helpers -------------------------------------------------------------

    def _forget(self, resolver: Resolver) -> None:
        self._table.remove(resolver.job_id)
        self._batches.remove_member(resolver.batch_id, resolver.job_id)
