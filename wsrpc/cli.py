# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Command-line interface for wsrpc services.

Provides ``call`` and ``stream`` commands for invoking methods on any
service speaking the wsrpc envelope protocol.

Usage::

    wsrpc --url http://localhost:8000/rpc call ping
    wsrpc --url http://localhost:8000/rpc call add a=1 b=2
    wsrpc --url https://example.com/rpc --no-websocket stream ticker symbol=X --count 5

"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Annotated, Any

import typer

from wsrpc.client import connect
from wsrpc.logging_utils import WsrpcJsonFormatter
from wsrpc.rpc import CallError, CancelToken, Response, RpcClient, RpcError, TransportError

# ---------------------------------------------------------------------------
# Output format enum
# ---------------------------------------------------------------------------


class OutputFormat(StrEnum):
    """Output format for CLI commands."""

    json = "json"
    pretty = "pretty"


# ---------------------------------------------------------------------------
# CLI config
# ---------------------------------------------------------------------------


@dataclass
class _CliConfig:
    """Holds resolved CLI options."""

    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    disable_websocket: bool = False
    format: OutputFormat = OutputFormat.json
    verbose: bool = False
    log_json: bool = False


app = typer.Typer(
    name="wsrpc",
    help="CLI client for wsrpc services.",
    add_completion=False,
    no_args_is_help=True,
)


# ---------------------------------------------------------------------------
# Global callback
# ---------------------------------------------------------------------------


@app.callback()
def _main(
    ctx: typer.Context,
    url: Annotated[str, typer.Option("--url", "-u", help="Service URL (http(s):// or ws(s)://)")],
    header: Annotated[list[str] | None, typer.Option("--header", "-H", help="Default header as Name=Value")] = None,
    no_websocket: Annotated[bool, typer.Option("--no-websocket", help="Use the HTTP transport only")] = False,
    fmt: Annotated[OutputFormat, typer.Option("--format", "-f", help="Output format")] = OutputFormat.json,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log engine activity to stderr")] = False,
    log_json: Annotated[bool, typer.Option("--log-json", help="Emit stderr logs as JSON lines")] = False,
) -> None:
    """Configure transport and output options."""
    ctx.obj = _CliConfig(
        url=url,
        headers=_parse_headers(header or []),
        disable_websocket=no_websocket,
        format=fmt,
        verbose=verbose,
        log_json=log_json,
    )
    _configure_logging(ctx.obj)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _parse_value(raw: str) -> object:
    """Parse a CLI value as JSON, falling back to the raw string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def _parse_key_value_args(args: list[str]) -> dict[str, object]:
    """Parse ``key=value`` arguments into a params dict.

    Raises:
        typer.BadParameter: If an argument has no ``=`` or an empty key.

    """
    result: dict[str, object] = {}
    for arg in args:
        key, sep, value = arg.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got: {arg}")
        result[key] = _parse_value(value)
    return result


def _parse_headers(values: list[str]) -> dict[str, str]:
    """Parse ``Name=Value`` header options.

    Raises:
        typer.BadParameter: If a header has no ``=`` or an empty name.

    """
    headers: dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"Expected Name=Value header, got: {value}")
        headers[name] = content
    return headers


def _resolve_params(args: list[str] | None, json_input: str | None) -> Any:
    """Build the request params from ``--json`` or ``key=value`` arguments."""
    if json_input and args:
        raise typer.BadParameter("--json and key=value args are mutually exclusive")
    if json_input:
        try:
            return json.loads(json_input)
        except ValueError as exc:
            raise typer.BadParameter(f"--json is not valid JSON: {exc}") from None
    if args:
        return _parse_key_value_args(args)
    return None


def _configure_logging(config: _CliConfig) -> None:
    """Attach a stderr handler to the ``wsrpc`` logger when requested."""
    if not config.verbose and not config.log_json:
        return
    handler = logging.StreamHandler(sys.stderr)
    if config.log_json:
        handler.setFormatter(WsrpcJsonFormatter(include_task=True))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("wsrpc")
    root.addHandler(handler)
    root.setLevel(logging.DEBUG if config.verbose else logging.INFO)


def _print_json(data: object, config: _CliConfig, *, err: bool = False) -> None:
    """Print JSON in the configured format."""
    if config.format == OutputFormat.pretty:
        typer.echo(json.dumps(data, indent=2, default=str), err=err)
    else:
        typer.echo(json.dumps(data, default=str), err=err)


def _emit_rpc_error(e: RpcError) -> None:
    """Write an RpcError to stderr as JSON."""
    err: dict[str, object] = {"type": e.error_type, "message": e.error_message}
    if isinstance(e, CallError):
        err["code"] = e.code
        err["data"] = dict(e.data)
    typer.echo(json.dumps({"error": err}, default=str), err=True)


def _response_body(response: Response) -> object:
    """The decoded response object, for printing."""
    return dict(response.payload) if response.payload is not None else None


async def _await_socket(client: RpcClient) -> None:
    """Give the socket a chance to open before the first request is issued."""
    with contextlib.suppress(TransportError):
        await client.initial_connection


def _open(config: _CliConfig) -> contextlib.AbstractAsyncContextManager[RpcClient]:
    return connect(config.url, default_headers=config.headers, disable_websocket=config.disable_websocket)


# ---------------------------------------------------------------------------
# call command
# ---------------------------------------------------------------------------


async def _run_call(config: _CliConfig, method: str, params: Any) -> Response:
    async with _open(config) as client:
        await _await_socket(client)
        future = client.call(method, params)
        assert not isinstance(future, list)
        return await future


@app.command()
def call(
    ctx: typer.Context,
    method: Annotated[str, typer.Argument(help="Method name to call")],
    args: Annotated[list[str] | None, typer.Argument(help="key=value parameters")] = None,
    json_input: Annotated[str | None, typer.Option("--json", "-j", help="JSON params")] = None,
) -> None:
    """Call a method and print its response."""
    config: _CliConfig = ctx.obj
    params = _resolve_params(args, json_input)
    try:
        response = asyncio.run(_run_call(config, method, params))
    except RpcError as e:
        _emit_rpc_error(e)
        raise typer.Exit(1) from None
    _print_json(_response_body(response), config)


# ---------------------------------------------------------------------------
# stream command
# ---------------------------------------------------------------------------


async def _run_stream(config: _CliConfig, method: str, params: Any, count: int | None) -> int:
    done = asyncio.Event()
    received = 0

    def on_data(response: Response, token: CancelToken) -> None:
        nonlocal received
        if done.is_set():
            return
        received += 1
        _print_json(_response_body(response), config)
        if count is not None and received >= count:
            token.cancel()
            done.set()

    def on_error(response: Response) -> None:
        _print_json({"error": dict(response.error or {})}, config, err=True)
        # Without a socket an errored stream is never re-issued.
        if config.disable_websocket:
            done.set()

    def on_final(response: Response) -> None:
        done.set()

    async with _open(config) as client:
        await _await_socket(client)
        client.streamrx(method, params, callback=on_data, catch_callback=on_error, final_callback=on_final)
        await done.wait()
    return received


@app.command()
def stream(
    ctx: typer.Context,
    method: Annotated[str, typer.Argument(help="Stream method name")],
    args: Annotated[list[str] | None, typer.Argument(help="key=value parameters")] = None,
    json_input: Annotated[str | None, typer.Option("--json", "-j", help="JSON params")] = None,
    count: Annotated[int | None, typer.Option("--count", "-n", min=1, help="Stop after N messages")] = None,
) -> None:
    """Open a stream and print each message as one JSON line until it completes."""
    config: _CliConfig = ctx.obj
    params = _resolve_params(args, json_input)
    try:
        asyncio.run(_run_stream(config, method, params, count))
    except RpcError as e:
        _emit_rpc_error(e)
        raise typer.Exit(1) from None
