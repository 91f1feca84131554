# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Discrete HTTP transport for wsrpc using httpx.

HTTP Wire Protocol
------------------
Each drained queue item is one ``POST`` to the service URL with
``Content-Type: application/json``.  The body is the serialized envelope
(or array of envelopes); request headers are the transport defaults
overlaid with any mapping-shaped envelope ``header``.  The response body
is a response object or an array of them, dispatched exactly like a
socket message.
"""

from wsrpc.http._client import HttpDiscreteTransport
from wsrpc.http._retry import HttpRetryConfig, HttpTransientError

__all__ = [
    "HttpDiscreteTransport",
    "HttpRetryConfig",
    "HttpTransientError",
]
