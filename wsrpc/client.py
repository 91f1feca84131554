# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""``connect()``: an ``RpcClient`` wired to the aiohttp and httpx transports."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator, Mapping
from urllib.parse import urlsplit, urlunsplit

from wsrpc.http import HttpDiscreteTransport, HttpRetryConfig
from wsrpc.rpc import ConnectionConfig, RpcClient
from wsrpc.websocket import AiohttpSocketConnector

__all__ = ["connect", "derive_urls"]

_WS_FOR_HTTP = {"http": "ws", "https": "wss"}
_HTTP_FOR_WS = {v: k for k, v in _WS_FOR_HTTP.items()}


def derive_urls(url: str) -> tuple[str, str]:
    """Return the ``(websocket_url, http_url)`` pair for one service URL.

    Either scheme family may be given; the other is derived with the same
    security level (``https`` pairs with ``wss``).

    Raises:
        ValueError: If the scheme is not http, https, ws or wss.

    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme in _WS_FOR_HTTP:
        ws_scheme, http_scheme = _WS_FOR_HTTP[scheme], scheme
    elif scheme in _HTTP_FOR_WS:
        ws_scheme, http_scheme = scheme, _HTTP_FOR_WS[scheme]
    else:
        raise ValueError(f"unsupported URL scheme {parts.scheme!r} in {url!r}")
    return urlunsplit(parts._replace(scheme=ws_scheme)), urlunsplit(parts._replace(scheme=http_scheme))


@contextlib.asynccontextmanager
async def connect(
    url: str,
    *,
    default_headers: Mapping[str, str] | None = None,
    disable_websocket: bool = False,
    config: ConnectionConfig | None = None,
    retry_config: HttpRetryConfig | None = None,
    timeout: float = 30.0,
) -> AsyncIterator[RpcClient]:
    """Open an engine against *url*, started on entry and closed on exit.

    Args:
        url: Service URL (``http(s)://`` or ``ws(s)://``).
        default_headers: Headers for discrete exchanges and the socket handshake.
        disable_websocket: Operate permanently over the discrete transport.
        config: Reconnection and health-monitoring parameters.
        retry_config: Retry policy for transient HTTP failures.
        timeout: HTTP request timeout in seconds.

    Yields:
        The started ``RpcClient``.

    """
    ws_url, http_url = derive_urls(url)
    discrete = HttpDiscreteTransport(http_url, retry_config=retry_config, timeout=timeout)
    connector = None if disable_websocket else AiohttpSocketConnector(ws_url, headers=default_headers)
    client = RpcClient(discrete, connector, config=config, default_headers=dict(default_headers or {}))
    async with client:
        yield client
