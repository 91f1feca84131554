# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Client-side RPC engine over WebSocket with an HTTP fallback."""

import logging

from wsrpc.client import connect, derive_urls
from wsrpc.http import HttpDiscreteTransport, HttpRetryConfig, HttpTransientError
from wsrpc.rpc import (
    PROTOCOL_VERSION,
    STREAM_COMPLETE,
    CallError,
    CallSpec,
    CancelToken,
    ConnectionConfig,
    ConnectionState,
    DiscreteTransport,
    Envelope,
    Kind,
    Response,
    RpcClient,
    RpcError,
    SocketConnection,
    SocketConnector,
    SocketEvent,
    SocketEventType,
    TransportError,
)
from wsrpc.websocket import AiohttpSocketConnection, AiohttpSocketConnector

__all__ = [
    # Core
    "RpcClient",
    "CallSpec",
    "connect",
    "derive_urls",
    # Errors
    "RpcError",
    "CallError",
    "TransportError",
    "HttpTransientError",
    # Configuration
    "ConnectionConfig",
    "HttpRetryConfig",
    "ConnectionState",
    # Wire
    "PROTOCOL_VERSION",
    "STREAM_COMPLETE",
    "Envelope",
    "Kind",
    "Response",
    "CancelToken",
    # Transports
    "DiscreteTransport",
    "SocketConnection",
    "SocketConnector",
    "SocketEvent",
    "SocketEventType",
    "HttpDiscreteTransport",
    "AiohttpSocketConnection",
    "AiohttpSocketConnector",
]

# Attach NullHandler to the root logger so library users don't get
# "No handler found" warnings.  Must come after all imports so the
# logger hierarchy is fully populated.
logging.getLogger("wsrpc").addHandler(logging.NullHandler())
