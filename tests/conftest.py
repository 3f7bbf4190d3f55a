# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""Shared fixtures for the mcp-aggregator tests."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

from mcp_aggregator.config import BackendDescriptor
from mcp_aggregator.supervisor import ProcessSupervisor

BACKENDS_DIR = Path(__file__).parent / "backends"
FAKE_BACKEND = BACKENDS_DIR / "fake_backend.py"
CALCULATOR_BACKEND = BACKENDS_DIR / "calculator_backend.py"


def fake_descriptor(
    name: str,
    tools: str = "echo",
    *extra_args: str,
    tool_prefix: str | None = None,
    timeout: float | None = 10.0,
    handshake: bool = True,
) -> BackendDescriptor:
    """Descriptor for a fake backend exposing the comma separated ``tools``."""
    return BackendDescriptor(
        name=name,
        command=sys.executable,
        args=[str(FAKE_BACKEND), "--tools", tools, *extra_args],
        tool_prefix=tool_prefix or name,
        timeout=timeout,
        handshake=handshake,
    )


@pytest.fixture
def make_descriptor():
    return fake_descriptor


@pytest_asyncio.fixture
async def supervisor():
    supervisor = ProcessSupervisor(client_name="test-proxy", client_version="0.0.1")
    yield supervisor
    await supervisor.stop_all(timeout=2.0)


@pytest.fixture
def calculator_descriptor():
    """Descriptor for the FastMCP calculator backend, exposed as ``calc_*``."""
    return BackendDescriptor(
        name="calculator",
        command=sys.executable,
        args=[str(CALCULATOR_BACKEND)],
        tool_prefix="calc",
        timeout=30.0,
    )
