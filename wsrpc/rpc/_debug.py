# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Debug logging infrastructure for wire protocol diagnostics.

Provides logger instances under the ``wsrpc.wire.*`` hierarchy and
formatting helpers for envelopes and responses.  Enabling
``logging.getLogger("wsrpc.wire").setLevel(logging.DEBUG)`` gives
full visibility into what is queued, sent and dispatched.

All formatting helpers return ``str`` and never log directly.
They are designed to be called inside ``isEnabledFor`` guards so
there is zero overhead when debug logging is disabled.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from wsrpc.rpc._envelope import Envelope, Response

# ---------------------------------------------------------------------------
# Logger hierarchy: wsrpc.wire.*
# ---------------------------------------------------------------------------

wire_queue_logger = logging.getLogger("wsrpc.wire.queue")
"""Outbound queue: enqueue, drain passes, transport selection."""

wire_dispatch_logger = logging.getLogger("wsrpc.wire.dispatch")
"""Inbound responses: correlation and call/stream state machine."""

wire_socket_logger = logging.getLogger("wsrpc.wire.socket")
"""Bidirectional transport lifecycle and frames."""

wire_http_logger = logging.getLogger("wsrpc.wire.http")
"""Discrete transport requests / responses."""

# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

_MAX_VALUE_LEN = 80
"""Maximum repr length for individual values."""


def _truncate(text: str) -> str:
    if len(text) > _MAX_VALUE_LEN:
        return text[:_MAX_VALUE_LEN] + "..."
    return text


def fmt_envelope(envelope: Envelope) -> str:
    """Format an envelope compactly.

    Returns:
        ``"Envelope(STREAM ticker job=3f2a.. params={'sym': 'X'})"``

    """
    params = _truncate(repr(envelope.params))
    return f"Envelope({envelope.kind.value} {envelope.method} job={envelope.job_id[:8]} params={params})"


def fmt_envelopes(envelopes: Sequence[Envelope]) -> str:
    """Format a group of envelopes as a bracketed, comma-separated list."""
    return "[" + ", ".join(fmt_envelope(e) for e in envelopes) + "]"


def fmt_response(response: Response) -> str:
    """Format a response summary.

    Returns:
        ``"Response(job=3f2a.., error=205, header=True)"``

    """
    job = response.job_id[:8] if response.job_id else None
    return f"Response(job={job}, error={response.error_code}, header={response.header is not None})"


def fmt_payload(data: str) -> str:
    """Format a serialized payload, truncated to a readable length."""
    return f"{_truncate(data)} ({len(data)} chars)"
