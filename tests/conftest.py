# © Copyright 2025-2026, Query.Farm LLC - https://query.farm
# SPDX-License-Identifier: Apache-2.0

"""Shared test fixtures for wsrpc tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator

import pytest

from tests.fakes import FAST_CONFIG, FakeDiscreteTransport, FakeSocketConnector, result_for
from wsrpc.rpc import ConnectionConfig


@pytest.fixture
def fast_config() -> ConnectionConfig:
    """Connection config with millisecond-scale delays."""
    return FAST_CONFIG


@pytest.fixture
def echo_discrete() -> FakeDiscreteTransport:
    """Discrete transport answering every envelope with its method name."""
    return FakeDiscreteTransport(result_for)


@pytest.fixture
def echo_connector() -> FakeSocketConnector:
    """Socket connector whose connections answer every envelope with its method name."""
    return FakeSocketConnector(result_for)


@pytest.fixture(autouse=True)
def _quiet_wsrpc_logger() -> Iterator[None]:
    """Restore the ``wsrpc`` logger's level after each test."""
    logger = logging.getLogger("wsrpc")
    previous = logger.level
    yield
    logger.setLevel(previous)
