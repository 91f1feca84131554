# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Constants, loggers, and errors shared by the engine components."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from wsrpc.rpc._envelope import Response

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_logger = logging.getLogger("wsrpc.rpc")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class RpcError(Exception):
    """Base class for every error raised by the engine."""

    def __init__(self, error_type: str, error_message: str, *, job_id: str = "") -> None:
        """Initialize with an error category, a message and the related job id."""
        self.error_type = error_type
        self.error_message = error_message
        self.job_id = job_id
        super().__init__(f"{error_type}: {error_message}")


class CallError(RpcError):
    """Raised into a call's future when the server answered with an ``error`` object.

    Attributes:
        code: The ``error.code`` value, or ``None`` when absent.
        data: The complete ``error`` object.
        response: The full response the error arrived in.

    """

    def __init__(self, response: Response) -> None:
        """Initialize from the response carrying the error."""
        error: Mapping[str, Any] = response.error or {}
        self.code = response.error_code
        self.data = error
        self.response = response
        message = error.get("message")
        super().__init__(
            "CallError",
            str(message) if message is not None else f"remote error (code={self.code})",
            job_id=response.job_id or "",
        )


class TransportError(RpcError):
    """A transport could not be opened, or an exchange failed at the network level."""

    def __init__(self, error_message: str, *, job_id: str = "") -> None:
        """Initialize with a description of the failure."""
        super().__init__("TransportError", error_message, job_id=job_id)
