# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Retry of transient failures on the discrete transport.

A discrete exchange that hits a proxy hiccup (429/502/503/504, a refused
connection, a timeout) is retried a few times before the queue sees a
``TransportError``.  Whatever still fails is left to redelivery: the
job stays registered and is re-sent on the next connect or disconnect.

Logger: ``wsrpc.http.retry`` (DEBUG, one record per retried attempt).
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

import httpx

from wsrpc.rpc import TransportError

_logger = logging.getLogger("wsrpc.http.retry")

_RETRYABLE_STATUSES: frozenset[int] = frozenset({429, 502, 503, 504})
_NETWORK_ERRORS = (httpx.ConnectError, httpx.TimeoutException)


@dataclass(frozen=True)
class HttpRetryConfig:
    """How a discrete exchange retries before giving up.

    Attributes:
        max_retries: Extra attempts after the first POST.
        backoff_base: Upper bound of the first jittered delay, in seconds;
            doubles with every attempt.
        backoff_max: Ceiling for any single delay, ``Retry-After`` included.
        retryable_status_codes: Statuses treated as transient.
        retry_on_connection_error: Retry refused connections and timeouts.
        respect_retry_after: Never sleep less than the server's ``Retry-After``.

    Raises:
        ValueError: If a count or duration is negative.

    """

    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    retryable_status_codes: frozenset[int] = field(default_factory=lambda: _RETRYABLE_STATUSES)
    retry_on_connection_error: bool = True
    respect_retry_after: bool = True

    def __post_init__(self) -> None:
        """Reject negative values."""
        for name in ("max_retries", "backoff_base", "backoff_max"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")


class HttpTransientError(TransportError):
    """The service kept answering with a transient status.

    Being a ``TransportError``, it is absorbed by the outbound queue like
    any other failed exchange.

    Attributes:
        status_code: Status of the last attempt.
        retry_after: ``Retry-After`` of the last attempt in seconds, if any.

    """

    def __init__(self, status_code: int, body_preview: str, retry_after: float | None = None) -> None:
        """Record the final status and a preview of its body."""
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(f"HTTP {status_code} after retries exhausted (body: {body_preview!r})")
        self.error_type = "HttpTransientError"


def _parse_retry_after(header_value: str) -> float | None:
    """Seconds to wait from a ``Retry-After`` value, or ``None`` if unparseable.

    Accepts delta-seconds and HTTP-dates; dates in the past yield ``0.0``.
    """
    try:
        return float(header_value)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(header_value)
    except (TypeError, ValueError):
        return None
    return max(0.0, (when - datetime.now(tz=UTC)).total_seconds())


def _get_retry_after(headers: Mapping[str, str] | httpx.Headers) -> float | None:
    """``Retry-After`` from response headers, in seconds."""
    raw = headers.get("Retry-After", headers.get("retry-after"))
    return None if raw is None else _parse_retry_after(raw)


def _compute_delay(attempt: int, config: HttpRetryConfig, retry_after: float | None) -> float:
    """Full-jitter exponential delay for zero-based *attempt*.

    The jittered value is drawn from ``[0, backoff_base * 2**attempt]`` and
    capped at ``backoff_max``; a server ``Retry-After`` (also capped) acts
    as a floor when ``respect_retry_after`` is set.
    """
    delay = min(random.uniform(0, config.backoff_base * 2**attempt), config.backoff_max)
    if retry_after is not None and config.respect_retry_after:
        delay = max(delay, min(retry_after, config.backoff_max))
    return delay


def _body_preview(content: bytes) -> str:
    """First 200 bytes of a body, decoded leniently."""
    return content[:200].decode(errors="replace") if content else ""


async def _post_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    content: bytes,
    headers: Mapping[str, str],
    config: HttpRetryConfig | None,
    _sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> httpx.Response:
    """POST *content* to *url*, retrying transient failures per *config*.

    With ``config=None`` this is a single ``client.post()``.  ``_sleep`` is
    injectable so tests can record delays.

    Raises:
        HttpTransientError: The last allowed attempt still got a retryable status.
        httpx.ConnectError: Connection failures outlasted the retries (or
            ``retry_on_connection_error`` is off).
        httpx.TimeoutException: Same, for timeouts.

    """
    request_headers = dict(headers)
    if config is None:
        return await client.post(url, content=content, headers=request_headers)

    attempts = config.max_retries + 1
    for attempt in range(attempts):
        last = attempt == attempts - 1
        try:
            resp = await client.post(url, content=content, headers=request_headers)
        except _NETWORK_ERRORS as exc:
            if last or not config.retry_on_connection_error:
                raise
            delay = _compute_delay(attempt, config, None)
            _logger.debug("POST %s failed (%s), attempt %d/%d, next in %.2fs", url, exc, attempt + 1, attempts, delay)
            await _sleep(delay)
            continue

        if resp.status_code not in config.retryable_status_codes:
            return resp
        retry_after = _get_retry_after(resp.headers)
        if last:
            raise HttpTransientError(resp.status_code, _body_preview(resp.content), retry_after)
        delay = _compute_delay(attempt, config, retry_after)
        _logger.debug(
            "POST %s -> %d, attempt %d/%d, next in %.2fs", url, resp.status_code, attempt + 1, attempts, delay
        )
        await _sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
