# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Notification capabilities for pending operations.

A call delivers through a :class:`CallSink` (satisfied by a future), a
stream through a :class:`StreamSink` (satisfied by three callbacks).
User callbacks that raise are logged and absorbed so one faulty consumer
cannot break the dispatch loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol

from wsrpc.rpc._common import CallError, _logger
from wsrpc.rpc._envelope import Response

CallCallback = Callable[[Response], object]
DataCallback = Callable[[Response, "CancelToken"], object]


class CancelToken:
    """Handed to stream data callbacks so a consumer can request cancellation.

    The request is recorded but not enforced: no cancel message is sent to
    the server and redelivery does not consult the flag.
    """

    __slots__ = ("_cancelled",)

    def __init__(self) -> None:
        """Initialize an un-cancelled token."""
        self._cancelled = False

    def cancel(self) -> None:
        """Flag the stream as no longer wanted."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel()`` was called."""
        return self._cancelled


class CallSink(Protocol):
    """Receiver of a call's single terminal response."""

    def fulfill(self, response: Response) -> None:
        """Deliver a successful response."""
        ...

    def reject(self, response: Response) -> None:
        """Deliver a response carrying ``error``."""
        ...


class StreamSink(Protocol):
    """Receiver of a stream's incremental responses."""

    def on_data(self, response: Response, token: CancelToken) -> None:
        """Deliver one data increment."""
        ...

    def on_error(self, response: Response) -> None:
        """Deliver a non-terminal per-message error."""
        ...

    def on_complete(self, response: Response) -> None:
        """Deliver the terminal response (``error.code == 205``)."""
        ...


def _invoke(callback: Callable[..., object] | None, *args: object) -> None:
    """Run a user callback, logging anything it raises."""
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        _logger.exception("User callback %r raised", callback)


class FutureCallSink:
    """``CallSink`` that settles an ``asyncio.Future`` after the optional callbacks."""

    __slots__ = ("_callback", "_catch_callback", "future")

    def __init__(
        self,
        future: asyncio.Future[Response],
        callback: CallCallback | None = None,
        catch_callback: CallCallback | None = None,
    ) -> None:
        """Initialize with the future to settle and the optional callbacks."""
        self.future = future
        self._callback = callback
        self._catch_callback = catch_callback

    def fulfill(self, response: Response) -> None:
        """Invoke the success callback, then resolve the future."""
        _invoke(self._callback, response)
        if not self.future.done():
            self.future.set_result(response)

    def reject(self, response: Response) -> None:
        """Invoke the error callback, then fail the future with ``CallError``."""
        _invoke(self._catch_callback, response)
        if not self.future.done():
            self.future.set_exception(CallError(response))


class CallbackStreamSink:
    """``StreamSink`` forwarding to user callbacks, any of which may be omitted."""

    __slots__ = ("_callback", "_catch_callback", "_final_callback")

    def __init__(
        self,
        callback: DataCallback | None = None,
        catch_callback: CallCallback | None = None,
        final_callback: CallCallback | None = None,
    ) -> None:
        """Initialize with the data, error and completion callbacks."""
        self._callback = callback
        self._catch_callback = catch_callback
        self._final_callback = final_callback

    def on_data(self, response: Response, token: CancelToken) -> None:
        """Forward a data increment."""
        _invoke(self._callback, response, token)

    def on_error(self, response: Response) -> None:
        """Forward a per-message error."""
        _invoke(self._catch_callback, response)

    def on_complete(self, response: Response) -> None:
        """Forward the terminal response."""
        _invoke(self._final_callback, response)
