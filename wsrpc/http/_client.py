# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Discrete transport: one HTTP POST per drained queue item, using httpx."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

import httpx

from wsrpc.rpc import TransportError
from wsrpc.rpc._debug import fmt_payload, wire_http_logger

from ._common import _JSON_CONTENT_TYPE, _synthetic_error
from ._retry import HttpRetryConfig, _body_preview, _post_with_retry


class HttpDiscreteTransport:
    """POSTs serialized envelopes and decodes the JSON reply.

    The body is parsed as JSON whatever the status code, since servers
    report per-job errors inside the body.  A body that is not JSON is
    turned into a synthetic ``{"error": {...}}`` object without a job id,
    which the dispatcher drops.  Network failures raise ``TransportError``.

    Owns its ``httpx.AsyncClient`` unless one is passed in.
    """

    __slots__ = ("_client", "_default_headers", "_owns_client", "_retry_config", "_url")

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        default_headers: Mapping[str, str] | None = None,
        retry_config: HttpRetryConfig | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the transport.

        Args:
            url: Endpoint receiving the POSTs.
            client: Client to use; a new one is created (and owned) when omitted.
            default_headers: Headers sent with every request, under any
                per-request headers.
            retry_config: Retry policy for transient failures, or ``None``.
            timeout: Request timeout in seconds for an owned client.

        """
        self._url = url
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self._default_headers: dict[str, str] = dict(default_headers or {})
        self._retry_config = retry_config

    @property
    def url(self) -> str:
        """Endpoint receiving the POSTs."""
        return self._url

    async def exchange(self, data: str, headers: Mapping[str, str]) -> object:
        """POST *data* and return the decoded response body.

        Raises:
            TransportError: On connection failure, timeout, or exhausted retries.

        """
        merged = {"Content-Type": _JSON_CONTENT_TYPE, **self._default_headers, **headers}
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug("POST %s: %s", self._url, fmt_payload(data))
        try:
            resp = await _post_with_retry(
                self._client,
                self._url,
                content=data.encode(),
                headers=merged,
                config=self._retry_config,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"POST {self._url} failed: {exc}") from exc
        if wire_http_logger.isEnabledFor(logging.DEBUG):
            wire_http_logger.debug("POST %s -> %d (%d bytes)", self._url, resp.status_code, len(resp.content))
        try:
            return json.loads(resp.content)
        except ValueError:
            return _synthetic_error(resp.status_code, _body_preview(resp.content))

    async def aclose(self) -> None:
        """Close the owned client."""
        if self._owns_client:
            await self._client.aclose()
