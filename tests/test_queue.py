"""Tests for OutboundQueue transport selection, ordering and grouping."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from tests.fakes import FakeDiscreteTransport, FakeSocketConnection, job_ids, result_for, settle
from wsrpc.rpc import Envelope, Kind, OutboundQueue, TransportError


def _env(job_id: str, header: object = None) -> Envelope:
    return Envelope(job_id, Kind.CALL, f"m-{job_id}", header=header)


class _FlakySocket(FakeSocketConnection):
    """Fails the first send, then behaves normally."""

    def __init__(self) -> None:
        super().__init__()
        self.failures = 1

    async def send(self, data: str) -> None:
        if self.failures:
            self.failures -= 1
            raise TransportError("write failed")
        await super().send(data)


# ---------------------------------------------------------------------------
# Transport selection
# ---------------------------------------------------------------------------


class TestTransportSelection:
    """Items go over the socket when live, otherwise over the discrete transport."""

    def test_discrete_when_no_socket(self) -> None:
        """Without a live socket each item becomes one exchange whose reply is dispatched."""

        async def run() -> None:
            discrete = FakeDiscreteTransport(result_for)
            replies: list[object] = []
            queue = OutboundQueue(discrete, lambda: None, replies.append)
            queue.enqueue([_env("a")])
            await queue.flush()
            assert job_ids(discrete.payloads[0]) == ["a"]
            assert replies == [{"jobId": "a", "result": "m-a"}]
            assert queue.pending == 0
            assert queue.in_flight == 0

        asyncio.run(run())

    def test_socket_when_live(self) -> None:
        """With a live socket nothing reaches the discrete transport."""

        async def run() -> None:
            discrete = FakeDiscreteTransport()
            socket = FakeSocketConnection()
            queue = OutboundQueue(discrete, lambda: socket, lambda _: None)
            queue.enqueue([_env("a")])
            await queue.flush()
            assert [job_ids(d) for d in socket.sent] == [["a"]]
            assert discrete.requests == []

        asyncio.run(run())

    def test_selection_per_item(self) -> None:
        """The live connection is consulted for every item."""

        async def run() -> None:
            discrete = FakeDiscreteTransport()
            socket = FakeSocketConnection()
            live: list[FakeSocketConnection | None] = [None]
            queue = OutboundQueue(discrete, lambda: live[0], lambda _: None)
            queue.enqueue([_env("a")])
            await queue.flush()
            live[0] = socket
            queue.enqueue([_env("b")])
            await queue.flush()
            assert job_ids(discrete.payloads[0]) == ["a"]
            assert job_ids(socket.sent[0]) == ["b"]

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Ordering and reentrancy
# ---------------------------------------------------------------------------


class TestOrdering:
    """Tests for FIFO order and the single-drain guard."""

    def test_socket_fifo(self) -> None:
        """Socket sends follow enqueue order."""

        async def run() -> None:
            socket = FakeSocketConnection()
            queue = OutboundQueue(FakeDiscreteTransport(), lambda: socket, lambda _: None)
            for job_id in "abcdef":
                queue.enqueue([_env(job_id)])
            await queue.flush()
            assert [job_ids(d)[0] for d in socket.sent] == list("abcdef")

        asyncio.run(run())

    def test_single_drain_pass(self) -> None:
        """Triggers arriving during a pass collapse into it."""

        async def run() -> None:
            socket = FakeSocketConnection()
            queue = OutboundQueue(FakeDiscreteTransport(), lambda: socket, lambda _: None)
            queue.enqueue([_env("a")])
            first = queue._drain_task
            queue.enqueue([_env("b")])
            queue.drain()
            assert queue._drain_task is first
            assert queue.pending == 2
            await queue.flush()
            assert len(socket.sent) == 2

        asyncio.run(run())

    def test_discrete_exchanges_concurrent(self) -> None:
        """The pass launches every discrete exchange without waiting for replies."""

        async def run() -> None:
            discrete = FakeDiscreteTransport(result_for)
            discrete.hold = asyncio.Event()
            replies: list[object] = []
            queue = OutboundQueue(discrete, lambda: None, replies.append)
            queue.enqueue([_env("a")])
            queue.enqueue([_env("b")])
            await settle()
            assert queue.in_flight == 2
            assert not queue.draining
            assert replies == []
            discrete.hold.set()
            await queue.flush()
            assert len(replies) == 2

        asyncio.run(run())

    def test_drain_with_nothing_pending(self) -> None:
        """drain() on an empty queue starts nothing."""

        async def run() -> None:
            queue = OutboundQueue(FakeDiscreteTransport(), lambda: None, lambda _: None)
            queue.drain()
            assert not queue.draining

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Grouping and headers
# ---------------------------------------------------------------------------


class TestGrouping:
    """Tests for how envelope groups are serialized."""

    def test_group_is_one_array(self) -> None:
        """Envelopes enqueued together travel as one array."""

        async def run() -> None:
            socket = FakeSocketConnection()
            queue = OutboundQueue(FakeDiscreteTransport(), lambda: socket, lambda _: None)
            queue.enqueue([_env("a"), _env("b"), _env("c")])
            await queue.flush()
            assert len(socket.sent) == 1
            assert isinstance(json.loads(socket.sent[0]), list)
            assert job_ids(socket.sent[0]) == ["a", "b", "c"]

        asyncio.run(run())

    def test_empty_group_queues_nothing(self) -> None:
        """An empty group adds no item."""

        async def run() -> None:
            discrete = FakeDiscreteTransport()
            queue = OutboundQueue(discrete, lambda: None, lambda _: None)
            queue.enqueue([])
            await queue.flush()
            assert discrete.requests == []

        asyncio.run(run())

    def test_prepare_raises_before_queueing(self) -> None:
        """An unencodable group raises from prepare() and queues nothing."""

        async def run() -> None:
            discrete = FakeDiscreteTransport()
            queue = OutboundQueue(discrete, lambda: None, lambda _: None)
            with pytest.raises(TypeError):
                queue.prepare([Envelope("a", Kind.CALL, "m", params=object())])
            with pytest.raises(TypeError):
                queue.enqueue([_env("b"), Envelope("c", Kind.CALL, "m", params=object())])
            assert queue.pending == 0
            queue.put(queue.prepare([_env("d")]))
            await queue.flush()
            assert [job_ids(p) for p in discrete.payloads] == [["d"]]

        asyncio.run(run())

    def test_headers_merged(self) -> None:
        """Mapping-shaped envelope headers overlay the defaults."""

        async def run() -> None:
            discrete = FakeDiscreteTransport()
            queue = OutboundQueue(
                discrete,
                lambda: None,
                lambda _: None,
                default_headers={"Authorization": "Bearer t", "X-Trace": "1"},
            )
            queue.enqueue([_env("a", header={"X-Trace": "2", "X-Count": 3})])
            await queue.flush()
            _, headers = discrete.requests[0]
            assert headers == {"Authorization": "Bearer t", "X-Trace": "2", "X-Count": "3"}

        asyncio.run(run())

    def test_opaque_header_not_an_http_header(self) -> None:
        """Non-mapping headers stay in the body only."""

        async def run() -> None:
            discrete = FakeDiscreteTransport()
            queue = OutboundQueue(discrete, lambda: None, lambda _: None, default_headers={"A": "1"})
            queue.enqueue([_env("a", header="cursor-7")])
            await queue.flush()
            data, headers = discrete.requests[0]
            assert headers == {"A": "1"}
            assert json.loads(data)["header"] == "cursor-7"

        asyncio.run(run())


# ---------------------------------------------------------------------------
# Failures and shutdown
# ---------------------------------------------------------------------------


class TestFailures:
    """Tests for failed sends and exchanges."""

    def test_socket_send_failure_drops_item(self, caplog: pytest.LogCaptureFixture) -> None:
        """A failed socket send is logged and the pass continues."""

        async def run() -> None:
            socket = _FlakySocket()
            queue = OutboundQueue(FakeDiscreteTransport(), lambda: socket, lambda _: None)
            queue.enqueue([_env("a")])
            queue.enqueue([_env("b")])
            await queue.flush()
            assert [job_ids(d)[0] for d in socket.sent] == ["b"]

        with caplog.at_level(logging.WARNING, logger="wsrpc.rpc"):
            asyncio.run(run())
        assert "Socket send failed" in caplog.text

    def test_exchange_failure_absorbed(self, caplog: pytest.LogCaptureFixture) -> None:
        """A TransportError from the discrete transport dispatches nothing."""

        async def run() -> None:
            discrete = FakeDiscreteTransport(result_for, fail=True)
            replies: list[object] = []
            queue = OutboundQueue(discrete, lambda: None, replies.append)
            queue.enqueue([_env("a")])
            await queue.flush()
            assert len(discrete.requests) == 1
            assert replies == []

        with caplog.at_level(logging.WARNING, logger="wsrpc.rpc"):
            asyncio.run(run())
        assert "Discrete exchange failed" in caplog.text

    def test_aclose_cancels_exchanges(self) -> None:
        """aclose() cancels in-flight exchanges and clears pending items."""

        async def run() -> None:
            discrete = FakeDiscreteTransport(result_for)
            discrete.hold = asyncio.Event()
            replies: list[object] = []
            queue = OutboundQueue(discrete, lambda: None, replies.append)
            queue.enqueue([_env("a")])
            await settle()
            assert queue.in_flight == 1
            await queue.aclose()
            discrete.hold.set()
            await settle()
            assert replies == []
            assert queue.pending == 0

        asyncio.run(run())


class TestWireDebug:
    """Tests for the wsrpc.wire.queue debug logger."""

    def test_enqueue_and_drain_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        """DEBUG on wsrpc.wire.queue shows enqueue and transport choice."""

        async def run() -> None:
            queue = OutboundQueue(FakeDiscreteTransport(), lambda: None, lambda _: None)
            queue.enqueue([_env("abcdef123")])
            await queue.flush()

        with caplog.at_level(logging.DEBUG, logger="wsrpc.wire.queue"):
            asyncio.run(run())
        assert "Enqueue [Envelope(CALL m-abcdef123 job=abcdef12" in caplog.text
        assert "Drain -> discrete" in caplog.text
