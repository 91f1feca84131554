# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Tests for the wsrpc CLI tool."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from typing import Any

import pytest
import typer
from typer.testing import CliRunner

import wsrpc.cli
from tests.fakes import FakeDiscreteTransport, Responder, result_for
from wsrpc.cli import _parse_headers, _parse_key_value_args, _parse_value, _resolve_params, app
from wsrpc.rpc import RpcClient

runner = CliRunner()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


class _FakeService:
    """Stands in for ``wsrpc.client.connect`` with an in-memory discrete transport."""

    def __init__(self, responder: Responder | None = result_for) -> None:
        self.responder = responder
        self.opened: list[dict[str, Any]] = []
        self.transports: list[FakeDiscreteTransport] = []

    @asynccontextmanager
    async def connect(
        self,
        url: str,
        *,
        default_headers: dict[str, str] | None = None,
        disable_websocket: bool = False,
        **kwargs: Any,
    ) -> AsyncIterator[RpcClient]:
        self.opened.append({"url": url, "headers": dict(default_headers or {}), "disable_websocket": disable_websocket})
        transport = FakeDiscreteTransport(self.responder)
        self.transports.append(transport)
        async with RpcClient(transport) as client:
            yield client

    def params(self, index: int = 0) -> Any:
        return json.loads(self.transports[index].payloads[0])["params"]


@pytest.fixture
def service(monkeypatch: pytest.MonkeyPatch) -> _FakeService:
    """Patch the CLI's ``connect`` with a fake echo service."""
    fake = _FakeService()
    monkeypatch.setattr(wsrpc.cli, "connect", fake.connect)
    return fake


@pytest.fixture(autouse=True)
def _restore_wsrpc_logger() -> Iterator[None]:
    """Undo handlers the CLI attaches for --verbose / --log-json."""
    logger = logging.getLogger("wsrpc")
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


def _invoke(args: list[str]) -> Any:
    """Invoke the CLI app with the given args.

    Returns ``Any`` because ``runner.invoke`` returns ``click.testing.Result``
    at runtime.
    """
    return runner.invoke(app, args, catch_exceptions=False)


_URL = ["--url", "http://svc.test/rpc"]


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


class TestParsing:
    """Tests for argument parsing helpers."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("1", 1), ("2.5", 2.5), ("true", True), ("null", None), ('"q"', "q"), ("[1,2]", [1, 2]), ("abc", "abc")],
    )
    def test_parse_value(self, raw: str, expected: object) -> None:
        """Values are JSON when they parse, raw strings otherwise."""
        assert _parse_value(raw) == expected

    def test_key_value_args(self) -> None:
        """key=value pairs become a params dict; '=' inside values is kept."""
        assert _parse_key_value_args(["a=1", "b=x=y", "c="]) == {"a": 1, "b": "x=y", "c": ""}

    @pytest.mark.parametrize("bad", ["novalue", "=1"])
    def test_key_value_rejects(self, bad: str) -> None:
        """Arguments without a key or '=' are rejected."""
        with pytest.raises(typer.BadParameter):
            _parse_key_value_args([bad])

    def test_headers(self) -> None:
        """Name=Value headers keep their value verbatim."""
        assert _parse_headers(["Authorization=Bearer a=b", "X-Empty="]) == {
            "Authorization": "Bearer a=b",
            "X-Empty": "",
        }

    def test_headers_reject(self) -> None:
        """A header without '=' is rejected."""
        with pytest.raises(typer.BadParameter):
            _parse_headers(["Authorization"])

    def test_resolve_params(self) -> None:
        """--json wins alone, key=value alone, neither gives None."""
        assert _resolve_params(None, '{"a": [1]}') == {"a": [1]}
        assert _resolve_params(["a=1"], None) == {"a": 1}
        assert _resolve_params(None, None) is None

    def test_resolve_params_conflict(self) -> None:
        """--json together with key=value args is rejected."""
        with pytest.raises(typer.BadParameter, match="mutually exclusive"):
            _resolve_params(["a=1"], '{"a": 2}')

    def test_resolve_params_bad_json(self) -> None:
        """Invalid --json is rejected."""
        with pytest.raises(typer.BadParameter, match="not valid JSON"):
            _resolve_params(None, "{nope")


# ---------------------------------------------------------------------------
# call
# ---------------------------------------------------------------------------


class TestCall:
    """Tests for the ``call`` command."""

    def test_call_prints_response(self, service: _FakeService) -> None:
        """The response object is printed as one JSON line."""
        result = _invoke([*_URL, "call", "ping"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        data = json.loads(result.output)
        assert data["result"] == "ping"
        assert service.opened[0]["url"] == "http://svc.test/rpc"

    def test_call_key_value_params(self, service: _FakeService) -> None:
        """key=value args are sent as the params object."""
        result = _invoke([*_URL, "call", "add", "a=1", "b=2.5", "label=sum"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        assert service.params() == {"a": 1, "b": 2.5, "label": "sum"}

    def test_call_json_params(self, service: _FakeService) -> None:
        """--json sends any JSON value as params."""
        result = _invoke([*_URL, "call", "sum", "--json", "[1, 2, 3]"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        assert service.params() == [1, 2, 3]

    def test_call_without_params(self, service: _FakeService) -> None:
        """No arguments sends null params."""
        _invoke([*_URL, "call", "ping"])
        assert service.params() is None

    def test_json_and_args_conflict(self, service: _FakeService) -> None:
        """Mixing --json and key=value is a usage error."""
        result = runner.invoke(app, [*_URL, "call", "add", "a=1", "--json", "{}"])
        assert result.exit_code == 2
        assert service.opened == []

    def test_pretty_format(self, service: _FakeService) -> None:
        """--format pretty indents the output."""
        result = _invoke([*_URL, "--format", "pretty", "call", "ping"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        assert '\n  "result": "ping"' in result.output

    def test_headers_and_no_websocket(self, service: _FakeService) -> None:
        """-H and --no-websocket reach connect()."""
        result = _invoke([*_URL, "-H", "Authorization=Bearer t", "--no-websocket", "call", "ping"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        assert service.opened[0]["headers"] == {"Authorization": "Bearer t"}
        assert service.opened[0]["disable_websocket"] is True

    def test_remote_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """An error reply exits 1 with the error as JSON on stderr."""

        def responder(req: Any) -> Any:
            return {"jobId": req["jobId"], "error": {"code": 404, "message": "unknown method"}}

        fake = _FakeService(responder)
        monkeypatch.setattr(wsrpc.cli, "connect", fake.connect)
        result = _invoke([*_URL, "call", "nope"])
        assert result.exit_code == 1
        err = json.loads(result.output.strip().splitlines()[-1])
        assert err["error"]["type"] == "CallError"
        assert err["error"]["code"] == 404
        assert err["error"]["message"] == "unknown method"

    def test_missing_url(self) -> None:
        """--url is required."""
        result = runner.invoke(app, ["call", "ping"])
        assert result.exit_code == 2

    def test_log_json(self, service: _FakeService) -> None:
        """--log-json writes engine log records as JSON lines to stderr."""
        result = _invoke([*_URL, "--log-json", "call", "ping"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        log_lines = [json.loads(line) for line in result.output.splitlines() if '"logger"' in line]
        assert any(rec["logger"] == "wsrpc.rpc" and rec["level"] == "INFO" for rec in log_lines)


# ---------------------------------------------------------------------------
# stream
# ---------------------------------------------------------------------------


class TestStream:
    """Tests for the ``stream`` command."""

    def test_stream_until_complete(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Each increment prints one line; 205 ends the command."""
        sent = 0

        def responder(req: Any) -> Any:
            nonlocal sent
            sent += 1
            if sent <= 3:
                return {"jobId": req["jobId"], "header": sent, "tick": sent}
            return {"jobId": req["jobId"], "error": {"code": 205}}

        fake = _FakeService(responder)
        monkeypatch.setattr(wsrpc.cli, "connect", fake.connect)
        result = _invoke([*_URL, "stream", "ticker", "symbol=X"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        ticks = [json.loads(line)["tick"] for line in result.output.strip().splitlines()]
        assert ticks == [1, 2, 3]
        assert fake.params() == {"symbol": "X"}

    def test_stream_count(self, service: _FakeService) -> None:
        """--count stops after N messages even if the stream never completes."""
        result = _invoke([*_URL, "stream", "ticker", "--count", "2"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        assert len(result.output.strip().splitlines()) == 2

    def test_stream_error_ends_http_only(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """With --no-websocket a per-message error is printed and ends the command."""

        def responder(req: Any) -> Any:
            return {"jobId": req["jobId"], "error": {"code": 503, "message": "later"}}

        fake = _FakeService(responder)
        monkeypatch.setattr(wsrpc.cli, "connect", fake.connect)
        result = _invoke([*_URL, "--no-websocket", "stream", "ticker"])
        assert result.exit_code == 0, f"Failed: {result.output}"
        assert json.loads(result.output.strip().splitlines()[-1]) == {"error": {"code": 503, "message": "later"}}
