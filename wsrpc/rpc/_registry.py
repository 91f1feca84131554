# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Correlation table and batch tracker.

Identity and grouping bookkeeping only; neither class knows about
transports.  Both are owned by one engine instance.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from wsrpc.rpc._envelope import Envelope, Kind
from wsrpc.rpc._sinks import CallSink, StreamSink


@dataclass
class Resolver:
    """Engine-side record of a pending operation.

    Attributes:
        kind: ``CALL`` or ``STREAM``.
        batch_id: The batch the job was issued in.
        envelope: The envelope to re-send on redelivery.
        sink: Where responses are delivered.

    """

    kind: Kind
    batch_id: str
    envelope: Envelope
    sink: CallSink | StreamSink

    @property
    def job_id(self) -> str:
        """The job id of the pending operation."""
        return self.envelope.job_id


class CorrelationTable:
    """Maps job ids to their pending resolvers, preserving registration order."""

    __slots__ = ("_resolvers",)

    def __init__(self) -> None:
        """Initialize an empty table."""
        self._resolvers: dict[str, Resolver] = {}

    def register(self, job_id: str, resolver: Resolver) -> None:
        """Register *resolver* under *job_id*.

        Raises:
            ValueError: If *job_id* is already registered.

        """
        if job_id in self._resolvers:
            raise ValueError(f"job id {job_id!r} is already registered")
        self._resolvers[job_id] = resolver

    def lookup(self, job_id: str) -> Resolver | None:
        """Return the resolver for *job_id*, or ``None``."""
        return self._resolvers.get(job_id)

    def remove(self, job_id: str) -> Resolver | None:
        """Remove and return the resolver for *job_id*, or ``None``."""
        return self._resolvers.pop(job_id, None)

    def envelopes(self) -> list[Envelope]:
        """Envelopes of every outstanding operation, oldest registration first."""
        return [r.envelope for r in self._resolvers.values()]

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._resolvers

    def __len__(self) -> int:
        return len(self._resolvers)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._resolvers))


class BatchTracker:
    """Groups the job ids issued by one caller invocation.

    A batch that loses its last member is dropped.
    """

    __slots__ = ("_batches",)

    def __init__(self) -> None:
        """Initialize with no batches."""
        self._batches: dict[str, list[str]] = {}

    def register_batch(self, batch_id: str, job_ids: Iterable[str]) -> None:
        """Record the members of a new batch."""
        self.replace(batch_id, job_ids)

    def members_of(self, batch_id: str) -> list[str]:
        """Return a copy of the batch's members (empty when unknown)."""
        return list(self._batches.get(batch_id, ()))

    def remove_member(self, batch_id: str, job_id: str) -> None:
        """Drop *job_id* from its batch, dropping the batch once empty."""
        members = self._batches.get(batch_id)
        if members is None:
            return
        if job_id in members:
            members.remove(job_id)
        if not members:
            del self._batches[batch_id]

    def replace(self, batch_id: str, job_ids: Iterable[str]) -> None:
        """Replace the batch's members with *job_ids* (dropping it when empty)."""
        members = list(job_ids)
        if members:
            self._batches[batch_id] = members
        else:
            self._batches.pop(batch_id, None)

    def __contains__(self, batch_id: object) -> bool:
        return batch_id in self._batches

    def __len__(self) -> int:
        return len(self._batches)
