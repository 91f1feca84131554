# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared constants and helpers for the discrete HTTP transport."""

from __future__ import annotations

from typing import Any

_JSON_CONTENT_TYPE = "application/json"


def _synthetic_error(status_code: int, body_preview: str) -> dict[str, Any]:
    """Wrap a body that is not JSON into a response the dispatcher can drop safely.

    The result carries no ``jobId``, so it correlates with nothing.
    """
    return {"error": {"code": status_code, "message": body_preview}}
