# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""One-JSON-object-per-line log output.

:class:`WsrpcJsonFormatter` turns every record into a single JSON line.
Fields the engine attaches through ``extra`` (``delay`` on reconnects,
``outstanding`` on requeues, ``job_id`` on dropped responses) become
top-level keys.  The engine runs its supervisor, health monitor, drain
pass and discrete exchanges as named asyncio tasks (``wsrpc-connection``,
``wsrpc-health``, ``wsrpc-drain``, ``wsrpc-exchange``); the formatter can
add that name so interleaved records can be told apart.

Not imported by ``wsrpc`` itself::

    from wsrpc.logging_utils import WsrpcJsonFormatter
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime

__all__ = ["WsrpcJsonFormatter"]

_BUILTIN_ATTRS: frozenset[str] = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}
_OUTPUT_KEYS: frozenset[str] = frozenset({"timestamp", "level", "logger", "message", "task", "exception", "stack_info"})


class WsrpcJsonFormatter(logging.Formatter):
    """Format records as JSON lines carrying their ``extra`` fields.

    ``timestamp`` is ISO-8601 in UTC.  Extras never shadow the fixed output
    keys, and values ``json`` cannot encode are written with ``str()``.
    """

    def __init__(self, *, include_task: bool = False) -> None:
        """Create the formatter.

        Args:
            include_task: Add a ``task`` key with the asyncio task name
                when the record was emitted inside a task.

        """
        super().__init__()
        self._include_task = include_task

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as one line of JSON."""
        record.message = record.getMessage()
        out: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }
        task_name = getattr(record, "taskName", None)
        if self._include_task and task_name:
            out["task"] = task_name
        for key, value in vars(record).items():
            if key not in _BUILTIN_ATTRS and key not in _OUTPUT_KEYS:
                out[key] = value
        if record.exc_info and record.exc_info[1] is not None:
            out["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            out["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(out, default=str)
