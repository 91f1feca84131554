# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Envelope and response wire shapes, identifiers and serialization."""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Final

from wsrpc.rpc._common import _logger

PROTOCOL_VERSION: Final = "2.0"
STREAM_COMPLETE: Final = 205
"""Reserved ``error.code``: the server ended a stream normally."""

_JOB_ID_KEY: Final = "jobId"


class Kind(Enum):
    """Operation kind carried in the envelope ``type`` field."""

    CALL = "CALL"
    STREAM = "STREAM"


def new_job_id() -> str:
    """Generate a job id; random so it stays unique before any connection exists."""
    return uuid.uuid4().hex


def new_batch_id() -> str:
    """Generate a batch id for one ``call``/``streamrx`` invocation."""
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Envelope:
    """One outbound request.

    Immutable; the header is refreshed on redelivery by replacing the
    envelope through :meth:`with_header`.

    Attributes:
        job_id: Identifier correlating the envelope with its response(s).
        kind: ``CALL`` or ``STREAM``.
        method: Remote method name.
        params: JSON-serializable parameters.
        header: Opaque header echoed by the server, or ``None``.
        protocol_version: Value of the ``jsonrpc`` field.

    """

    job_id: str
    kind: Kind
    method: str
    params: Any = None
    header: Any = None
    protocol_version: str = PROTOCOL_VERSION

    @classmethod
    def create(cls, kind: Kind, method: str, params: Any = None, header: Any = None) -> Envelope:
        """Build an envelope with a freshly generated job id."""
        return cls(job_id=new_job_id(), kind=kind, method=method, params=params, header=header)

    def with_header(self, header: Any) -> Envelope:
        """Return a copy carrying *header*."""
        return replace(self, header=header)

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON object sent to the server (``header`` omitted when ``None``)."""
        wire: dict[str, Any] = {
            "jsonrpc": self.protocol_version,
            _JOB_ID_KEY: self.job_id,
            "type": self.kind.value,
            "method": self.method,
            "params": self.params,
        }
        if self.header is not None:
            wire["header"] = self.header
        return wire


def serialize_group(envelopes: Sequence[Envelope]) -> str:
    """Serialize envelopes issued together.

    More than one envelope becomes a JSON array; a single envelope is sent
    as a bare object.

    Raises:
        ValueError: If *envelopes* is empty.

    """
    if not envelopes:
        raise ValueError("cannot serialize an empty envelope group")
    if len(envelopes) > 1:
        return json.dumps([e.to_wire() for e in envelopes])
    return json.dumps(envelopes[0].to_wire())


# ---------------------------------------------------------------------------
# Response
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Response:
    """One inbound response object.

    Attributes:
        job_id: The correlated job id, or ``None`` when the server sent none.
        header: Header to carry on the next redelivery, or ``None``.
        error: The ``error`` object, or ``None`` on success.
        payload: The complete decoded object, result fields included.

    """

    job_id: str | None
    header: Any = None
    error: Mapping[str, Any] | None = None
    payload: Mapping[str, Any] | None = None

    @classmethod
    def from_wire(cls, obj: Mapping[str, Any]) -> Response:
        """Parse a decoded JSON object."""
        job_id = obj.get(_JOB_ID_KEY)
        error = obj.get("error")
        if error is not None and not isinstance(error, Mapping):
            error = {"message": error}
        return cls(
            job_id=str(job_id) if job_id is not None else None,
            header=obj.get("header"),
            error=error,
            payload=obj,
        )

    @property
    def error_code(self) -> int | None:
        """The ``error.code`` value, or ``None``."""
        if self.error is None:
            return None
        code = self.error.get("code")
        return code if isinstance(code, int) else None

    @property
    def is_stream_complete(self) -> bool:
        """Whether this response carries the terminal stream code."""
        return self.error_code == STREAM_COMPLETE

    def __getitem__(self, key: str) -> Any:
        """Access a raw field of the decoded object."""
        if self.payload is None:
            raise KeyError(key)
        return self.payload[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Return a raw field of the decoded object, or *default*."""
        if self.payload is None:
            return default
        return self.payload.get(key, default)


def iter_responses(decoded: object) -> Iterator[Response]:
    """Yield the responses of an inbound message (single object or array)."""
    items = decoded if isinstance(decoded, list) else [decoded]
    for item in items:
        if not isinstance(item, Mapping):
            _logger.warning("Dropping non-object response item of type %s", type(item).__name__)
            continue
        yield Response.from_wire(item)
