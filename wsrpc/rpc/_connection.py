# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Connection manager: transport lifecycle, reconnection backoff and health monitoring."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Final

from wsrpc.rpc._common import TransportError, _logger
from wsrpc.rpc._debug import fmt_payload, wire_socket_logger
from wsrpc.rpc._transport import SocketConnection, SocketConnector, SocketEventType

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """Reconnection and health-monitoring parameters.

    Attributes:
        reconnect_floor: First reconnect delay in seconds, restored on every
            successful open.
        reconnect_ceiling: Maximum reconnect delay in seconds.
        health_interval: Length of one health-monitoring window in seconds.
        health_error_threshold: Transport errors within one window that
            force the socket closed.
        unhealthy_close_code: Close code used when the socket is abandoned.

    Raises:
        ValueError: If a delay or interval is not positive, the ceiling is
            below the floor, or the threshold is below 1.

    """

    reconnect_floor: float = 0.1
    reconnect_ceiling: float = 1200.0
    health_interval: float = 5.0
    health_error_threshold: int = 10
    unhealthy_close_code: int = 4000

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.reconnect_floor <= 0:
            raise ValueError(f"reconnect_floor must be > 0, got {self.reconnect_floor}")
        if self.reconnect_ceiling < self.reconnect_floor:
            raise ValueError(
                f"reconnect_ceiling must be >= reconnect_floor, got {self.reconnect_ceiling} < {self.reconnect_floor}"
            )
        if self.health_interval <= 0:
            raise ValueError(f"health_interval must be > 0, got {self.health_interval}")
        if self.health_error_threshold < 1:
            raise ValueError(f"health_error_threshold must be >= 1, got {self.health_error_threshold}")


# ---------------------------------------------------------------------------
# Connection state
# ---------------------------------------------------------------------------


class ConnectionState(Enum):
    """Lifecycle of the bidirectional transport."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_TRANSITIONS: Final[dict[ConnectionState, frozenset[ConnectionState]]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset({ConnectionState.CONNECTED, ConnectionState.DISCONNECTED}),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED}),
}


def check_transition(current: ConnectionState, target: ConnectionState) -> None:
    """Validate a state change.

    Raises:
        RuntimeError: If *target* is not reachable from *current*.

    """
    if target not in _TRANSITIONS[current]:
        raise RuntimeError(f"illegal connection state transition {current.value} -> {target.value}")


# ---------------------------------------------------------------------------
# Backoff + health
# ---------------------------------------------------------------------------


class ReconnectBackoff:
    """Unconditional exponential backoff with a cap; no jitter, no attempt limit."""

    __slots__ = ("_current", "ceiling", "floor")

    def __init__(self, floor: float, ceiling: float) -> None:
        """Initialize at *floor*."""
        self.floor = floor
        self.ceiling = ceiling
        self._current = floor

    @property
    def current(self) -> float:
        """The delay the next ``next_delay()`` call returns."""
        return self._current

    def next_delay(self) -> float:
        """Return the delay for this attempt and double it for the next one."""
        delay = self._current
        self._current = min(self._current * 2, self.ceiling)
        return delay

    def reset(self) -> None:
        """Restore the floor after a successful open."""
        self._current = self.floor


class HealthMonitor:
    """Counts transport errors per monitoring window."""

    __slots__ = ("_errors", "threshold")

    def __init__(self, threshold: int) -> None:
        """Initialize with the per-window error threshold."""
        self.threshold = threshold
        self._errors = 0

    @property
    def errors(self) -> int:
        """Errors recorded since the last window boundary."""
        return self._errors

    def record_error(self) -> None:
        """Count one transport error."""
        self._errors += 1

    def tick(self) -> bool:
        """Close the current window.

        Returns:
            ``True`` when the window reached the threshold.  The counter is
            reset either way.

        """
        unhealthy = self._errors >= self.threshold
        self._errors = 0
        return unhealthy

    def reset(self) -> None:
        """Discard errors counted so far."""
        self._errors = 0


# ---------------------------------------------------------------------------
# ConnectionManager
# ---------------------------------------------------------------------------


def _consume_exception(future: asyncio.Future[SocketConnection | None]) -> None:
    """Mark a rejected initial-connection future as retrieved."""
    if not future.cancelled():
        future.exception()


class ConnectionManager:
    """Owns the bidirectional transport.

    A supervisor task connects, pumps inbound messages to ``on_message``
    while the socket stays open, and reconnects forever with
    :class:`ReconnectBackoff` after every loss or failed attempt.  With
    ``connector=None`` the manager stays in discrete-only mode and never
    connects.

    ``on_open`` runs exactly once per successful open, ``on_lost`` exactly
    once per loss of an open connection; the engine uses both to requeue
    outstanding work.  A hook that raises is logged and does not stop the
    supervisor.
    """

    def __init__(
        self,
        connector: SocketConnector | None,
        *,
        on_message: Callable[[object], None],
        on_open: Callable[[], None],
        on_lost: Callable[[], None],
        config: ConnectionConfig | None = None,
    ) -> None:
        """Initialize the manager; nothing happens until :meth:`start`."""
        self._connector = connector
        self._on_message = on_message
        self._on_open = on_open
        self._on_lost = on_lost
        self._config = config or ConnectionConfig()
        self._state = ConnectionState.DISCONNECTED
        self._connection: SocketConnection | None = None
        self._backoff = ReconnectBackoff(self._config.reconnect_floor, self._config.reconnect_ceiling)
        self._health = HealthMonitor(self._config.health_error_threshold)
        self._supervisor: asyncio.Task[None] | None = None
        self._monitor: asyncio.Task[None] | None = None
        self._wake = asyncio.Event()
        self._closing = False
        self._initial: asyncio.Future[SocketConnection | None] | None = None

    # -- Accessors -----------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def discrete_only(self) -> bool:
        """Whether the manager never opens a socket."""
        return self._connector is None

    @property
    def backoff(self) -> ReconnectBackoff:
        """The reconnect backoff policy."""
        return self._backoff

    @property
    def health(self) -> HealthMonitor:
        """The transport error counter."""
        return self._health

    @property
    def initial_connection(self) -> asyncio.Future[SocketConnection | None]:
        """Future settled by the first open (or immediately in discrete-only mode).

        Rejected with ``TransportError`` when the very first attempt fails
        before ever opening; later failures never touch it.
        """
        if self._initial is None:
            self._initial = asyncio.get_running_loop().create_future()
            self._initial.add_done_callback(_consume_exception)
        return self._initial

    def is_open(self) -> bool:
        """Whether the socket is open and its open event has been processed."""
        return self._state is ConnectionState.CONNECTED

    def live_connection(self) -> SocketConnection | None:
        """The open socket, or ``None`` when traffic must use the discrete transport."""
        if self._state is ConnectionState.CONNECTED and self._connection is not None and not self._connection.closed:
            return self._connection
        return None

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Launch the supervisor (or settle the initial future in discrete-only mode)."""
        initial = self.initial_connection
        if self._connector is None:
            if not initial.done():
                initial.set_result(None)
            _logger.info("Discrete-only mode: bidirectional transport disabled")
            return
        if self._supervisor is None or self._supervisor.done():
            self._supervisor = asyncio.get_running_loop().create_task(self._supervise(), name="wsrpc-connection")

    def manual_reconnect(self) -> None:
        """Reconnect now instead of waiting out the current backoff delay."""
        if self._connector is None or self._state is not ConnectionState.DISCONNECTED:
            return
        _logger.info("Manual reconnect requested")
        if self._supervisor is None or self._supervisor.done():
            self.start()
        else:
            self._wake.set()

    async def aclose(self) -> None:
        """Stop reconnecting and close the socket."""
        self._closing = True
        self._wake.set()
        if self._connection is not None and not self._connection.closed:
            with contextlib.suppress(TransportError, OSError):
                await self._connection.close()
        for task in (self._supervisor, self._monitor):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if self._connector is not None:
            await self._connector.aclose()
        if self._initial is not None and not self._initial.done():
            self._initial.cancel()

    # -- Internals -----------------------------------------------------------

    def _set_state(self, target: ConnectionState) -> None:
        check_transition(self._state, target)
        if wire_socket_logger.isEnabledFor(logging.DEBUG):
            wire_socket_logger.debug("State %s -> %s", self._state.value, target.value)
        self._state = target

    async def _supervise(self) -> None:
        while not self._closing:
            await self._connect_once()
            if self._closing:
                break
            delay = self._backoff.next_delay()
            _logger.info("Reconnecting in %.2fs", delay, extra={"delay": delay})
            self._wake.clear()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._wake.wait(), timeout=delay)

    async def _connect_once(self) -> None:
        assert self._connector is not None
        self._set_state(ConnectionState.CONNECTING)
        try:
            connection = await self._connector.connect()
        except (TransportError, OSError) as exc:
            self._set_state(ConnectionState.DISCONNECTED)
            _logger.warning("Connection attempt failed: %s", exc)
            initial = self.initial_connection
            if not initial.done():
                initial.set_exception(exc if isinstance(exc, TransportError) else TransportError(str(exc)))
            return
        self._connection = connection
        self._opened(connection)
        try:
            await self._pump(connection)
        finally:
            self._lost()

    def _opened(self, connection: SocketConnection) -> None:
        self._set_state(ConnectionState.CONNECTED)
        self._backoff.reset()
        self._start_monitor(connection)
        _logger.info("Bidirectional transport open")
        self._run_hook("on_open", self._on_open)
        initial = self.initial_connection
        if not initial.done():
            initial.set_result(connection)

    def _lost(self) -> None:
        self._stop_monitor()
        self._connection = None
        was_connected = self._state is ConnectionState.CONNECTED
        self._set_state(ConnectionState.DISCONNECTED)
        if was_connected:
            _logger.info("Bidirectional transport lost")
            if not self._closing:
                self._run_hook("on_lost", self._on_lost)

    @staticmethod
    def _run_hook(name: str, hook: Callable[[], None]) -> None:
        try:
            hook()
        except Exception:
            _logger.exception("%s hook raised; connection handling continues", name)

    async def _pump(self, connection: SocketConnection) -> None:
        while True:
            try:
                event = await connection.receive()
            except (TransportError, OSError) as exc:
                _logger.warning("Socket receive failed: %s", exc)
                return
            if event.type is SocketEventType.CLOSED:
                return
            if event.type is SocketEventType.ERROR:
                # Errors are counted; the health monitor decides whether the socket goes.
                self._health.record_error()
                if wire_socket_logger.isEnabledFor(logging.DEBUG):
                    wire_socket_logger.debug("Socket error event (%d this window): %s", self._health.errors, event.data)
                continue
            self._deliver(event.data or "")

    def _deliver(self, text: str) -> None:
        if wire_socket_logger.isEnabledFor(logging.DEBUG):
            wire_socket_logger.debug("Socket message: %s", fmt_payload(text))
        try:
            decoded = json.loads(text)
        except ValueError:
            _logger.warning("Dropping undecodable socket message: %s", fmt_payload(text))
            return
        self._on_message(decoded)

    def _start_monitor(self, connection: SocketConnection) -> None:
        self._stop_monitor()
        self._health.reset()
        self._monitor = asyncio.get_running_loop().create_task(self._watch(connection), name="wsrpc-health")

    def _stop_monitor(self) -> None:
        if self._monitor is not None and not self._monitor.done() and self._monitor is not asyncio.current_task():
            self._monitor.cancel()
        self._monitor = None

    async def _watch(self, connection: SocketConnection) -> None:
        while not connection.closed:
            await asyncio.sleep(self._config.health_interval)
            errors = self._health.errors
            if self._health.tick():
                _logger.warning(
                    "Socket unhealthy (%d errors in %.1fs), falling back to discrete transport",
                    errors,
                    self._config.health_interval,
                    extra={"errors": errors},
                )
                # Detach so the loss path does not cancel the close handshake.
                self._monitor = None
                with contextlib.suppress(TransportError, OSError):
                    await connection.close(self._config.unhealthy_close_code)
                return
