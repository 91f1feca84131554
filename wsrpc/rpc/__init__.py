# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client-side RPC engine with a persistent socket and a discrete fallback.

Callers get two operation modes over one logically persistent connection:

- **Call** — one request, one response, delivered through a future.
- **Stream** — one request, many server-pushed responses, delivered
  through callbacks until the server signals completion.

Wire Protocol
-------------
Requests are JSON objects (or arrays of objects when issued together)::

    {"jsonrpc": "2.0", "jobId": "<uuid>", "type": "CALL"|"STREAM",
     "method": "<string>", "params": <any>, "header": <any|absent>}

Responses carry the same ``jobId``, an optional ``header`` and an optional
``error`` object::

    {"jobId": "<uuid>", "header": <any|absent>, "error": {"code": <int>, ...}|absent, ...}

``error.code == 205`` ends a stream normally.

Transports
----------
While the bidirectional socket is open, requests are sent on it and the
server pushes responses back.  Otherwise every queued request goes out as
one discrete POST whose response body is dispatched exactly like a socket
message; streams are kept alive by re-issuing them after each reply.

Redelivery
----------
Every outstanding request is requeued when the socket opens and again when
it is lost, so requests issued while disconnected are never lost.  Stream
batches are rebuilt on each discrete reply so members that already ended
are not resent.

"""

from __future__ import annotations

from wsrpc.rpc._client import CallSpec, RpcClient
from wsrpc.rpc._common import CallError, RpcError, TransportError
from wsrpc.rpc._connection import (
    ConnectionConfig,
    ConnectionManager,
    ConnectionState,
    HealthMonitor,
    ReconnectBackoff,
    check_transition,
)
from wsrpc.rpc._dispatch import MessageDispatcher
from wsrpc.rpc._envelope import (
    PROTOCOL_VERSION,
    STREAM_COMPLETE,
    Envelope,
    Kind,
    Response,
    iter_responses,
    new_batch_id,
    new_job_id,
    serialize_group,
)
from wsrpc.rpc._queue import OutboundQueue, QueuedPayload
from wsrpc.rpc._registry import BatchTracker, CorrelationTable, Resolver
from wsrpc.rpc._sinks import CallbackStreamSink, CallSink, CancelToken, FutureCallSink, StreamSink
from wsrpc.rpc._transport import (
    SOCKET_CLOSED,
    DiscreteTransport,
    SocketConnection,
    SocketConnector,
    SocketEvent,
    SocketEventType,
)

__all__ = [
    # Engine
    "RpcClient",
    "CallSpec",
    # Errors
    "RpcError",
    "CallError",
    "TransportError",
    # Connection
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionState",
    "HealthMonitor",
    "ReconnectBackoff",
    "check_transition",
    # Wire
    "PROTOCOL_VERSION",
    "STREAM_COMPLETE",
    "Envelope",
    "Kind",
    "Response",
    "iter_responses",
    "new_batch_id",
    "new_job_id",
    "serialize_group",
    # Components
    "BatchTracker",
    "CorrelationTable",
    "MessageDispatcher",
    "OutboundQueue",
    "QueuedPayload",
    "Resolver",
    # Sinks
    "CallSink",
    "StreamSink",
    "CancelToken",
    "FutureCallSink",
    "CallbackStreamSink",
    # Transports
    "DiscreteTransport",
    "SocketConnection",
    "SocketConnector",
    "SocketEvent",
    "SocketEventType",
    "SOCKET_CLOSED",
]
