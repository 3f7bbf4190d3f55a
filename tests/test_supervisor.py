# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Tests for the process supervisor, run against real backend subprocesses.
"""

import json

import pytest

from mcp_aggregator.config import BackendDescriptor
from mcp_aggregator.exceptions import BackendUnavailable, LaunchError, MalformedMessage
from mcp_aggregator.process import ProcessState
from mcp_aggregator.registry import BackendRegistry
from mcp_aggregator.supervisor import ProcessSupervisor
from mcp_aggregator.wire import make_request


def _call(name: str, arguments: dict | None = None):
    return make_request("tools/call", {"name": name, "arguments": arguments or {}})


def _payload(response) -> dict:
    return json.loads(response.result["content"][0]["text"])


class TestStart:
    """Tests for launching backends."""

    @pytest.mark.asyncio
    async def test_start_and_handshake(self, supervisor, make_descriptor):
        handle = await supervisor.start(make_descriptor("weather", "forecast"))

        assert handle.state == ProcessState.RUNNING
        assert handle.pid is not None
        assert supervisor.is_alive("weather")
        assert supervisor.list_processes() == ["weather"]

    @pytest.mark.asyncio
    async def test_start_twice_returns_same_process(self, supervisor, make_descriptor):
        descriptor = make_descriptor("weather", "forecast")
        first = await supervisor.start(descriptor)
        second = await supervisor.start(descriptor)

        assert first is second

    @pytest.mark.asyncio
    async def test_handshake_marks_backend_initialized(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("db", "query", "--require-init"))

        response = await supervisor.exchange("db", make_request("tools/list"))

        assert not response.has_error
        assert [tool["name"] for tool in response.result["tools"]] == ["query"]

    @pytest.mark.asyncio
    async def test_missing_executable(self, supervisor):
        descriptor = BackendDescriptor(name="ghost", command="/nonexistent/mcp-server-binary")

        with pytest.raises(LaunchError) as exc_info:
            await supervisor.start(descriptor)

        assert exc_info.value.backend_name == "ghost"
        assert not supervisor.is_alive("ghost")

    @pytest.mark.asyncio
    async def test_backend_exiting_during_handshake(self, supervisor, make_descriptor):
        with pytest.raises(LaunchError) as exc_info:
            await supervisor.start(make_descriptor("flaky", "x", "--exit-immediately"))

        assert "Handshake with backend 'flaky' failed" in exc_info.value.message
        assert not supervisor.is_alive("flaky")

    @pytest.mark.asyncio
    async def test_start_all_isolates_failures(self, supervisor, make_descriptor):
        registry = BackendRegistry([
            make_descriptor("weather", "forecast"),
            BackendDescriptor(name="ghost", command="/nonexistent/mcp-server-binary"),
            make_descriptor("db", "query"),
        ])

        failures = await supervisor.start_all(registry)

        assert list(failures) == ["ghost"]
        assert supervisor.is_alive("weather")
        assert supervisor.is_alive("db")

    @pytest.mark.asyncio
    async def test_start_all_skips_disabled(self, supervisor, make_descriptor):
        disabled = make_descriptor("db", "query").model_copy(update={"enabled": False})
        registry = BackendRegistry([make_descriptor("weather", "forecast"), disabled])

        failures = await supervisor.start_all(registry)

        assert failures == {}
        assert supervisor.list_processes() == ["weather"]


class TestExchange:
    """Tests for request/response exchanges."""

    @pytest.mark.asyncio
    async def test_round_trip(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("weather", "forecast"))
        request = _call("forecast", {"city": "Oslo"})

        response = await supervisor.exchange("weather", request)

        assert response.id == request.id
        assert _payload(response) == {"tool": "forecast", "arguments": {"city": "Oslo"}}

    @pytest.mark.asyncio
    async def test_backend_error_is_returned_not_raised(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("weather", "forecast"))

        response = await supervisor.exchange("weather", _call("missing"))

        assert response.has_error
        assert response.error.code == -32602

    @pytest.mark.asyncio
    async def test_without_handshake(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("weather", "forecast", handshake=False))

        response = await supervisor.exchange("weather", _call("forecast"))

        assert _payload(response)["tool"] == "forecast"

    @pytest.mark.asyncio
    async def test_notifications_are_skipped(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("chatty", "echo", "--notify"))
        request = _call("echo", {"value": "hi"})

        response = await supervisor.exchange("chatty", request)

        assert response.id == request.id
        assert _payload(response)["arguments"] == {"value": "hi"}

    @pytest.mark.asyncio
    async def test_backend_requests_are_refused(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("curious", "echo", "--ask-client"))
        request = _call("echo")

        response = await supervisor.exchange("curious", request)

        assert response.id == request.id
        assert _payload(response)["tool"] == "echo"

    @pytest.mark.asyncio
    async def test_mismatched_id(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("weather", "forecast"))

        with pytest.raises(MalformedMessage):
            await supervisor.exchange("weather", _call("wrong_id"))

        assert supervisor.get("weather").state == ProcessState.UNRESPONSIVE
        assert not supervisor.is_alive("weather")

    @pytest.mark.asyncio
    async def test_stray_output_takes_backend_out_of_service(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("noisy", "echo", "--noise"))

        with pytest.raises(MalformedMessage):
            await supervisor.exchange("noisy", _call("echo"))

        assert supervisor.get("noisy").state == ProcessState.UNRESPONSIVE
        assert not supervisor.is_alive("noisy")
        with pytest.raises(BackendUnavailable):
            await supervisor.exchange("noisy", _call("echo"))
        with pytest.raises(BackendUnavailable):
            await supervisor.exchange("noisy", make_request("tools/list"))

    @pytest.mark.asyncio
    async def test_invalid_utf8(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("weather", "forecast"))

        with pytest.raises(MalformedMessage) as exc_info:
            await supervisor.exchange("weather", _call("bad_bytes"))

        assert "not valid UTF-8" in exc_info.value.message
        assert supervisor.get("weather").state == ProcessState.UNRESPONSIVE

    @pytest.mark.asyncio
    async def test_garbage_output(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("noisy", "x", "--list-mode", "garbage"))

        with pytest.raises(MalformedMessage):
            await supervisor.exchange("noisy", make_request("tools/list"))

        assert not supervisor.is_alive("noisy")

    @pytest.mark.asyncio
    async def test_unknown_backend(self, supervisor):
        with pytest.raises(BackendUnavailable) as exc_info:
            await supervisor.exchange("nowhere", _call("anything"))

        assert exc_info.value.backend_name == "nowhere"

    @pytest.mark.asyncio
    async def test_crashed_backend(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("weather", "forecast"))

        with pytest.raises(BackendUnavailable):
            await supervisor.exchange("weather", _call("crash"))

        assert supervisor.get("weather").state == ProcessState.CRASHED
        assert not supervisor.is_alive("weather")
        with pytest.raises(BackendUnavailable):
            await supervisor.exchange("weather", _call("forecast"))

    @pytest.mark.asyncio
    async def test_unresponsive_backend(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("slow", "echo", timeout=0.5))

        with pytest.raises(BackendUnavailable) as exc_info:
            await supervisor.exchange("slow", _call("hang"))

        assert "did not respond" in exc_info.value.message
        assert supervisor.get("slow").state == ProcessState.UNRESPONSIVE
        with pytest.raises(BackendUnavailable):
            await supervisor.exchange("slow", _call("echo"))

    @pytest.mark.asyncio
    async def test_one_backend_failing_leaves_others_usable(self, supervisor, make_descriptor):
        await supervisor.start(make_descriptor("weather", "forecast"))
        await supervisor.start(make_descriptor("db", "query"))

        with pytest.raises(BackendUnavailable):
            await supervisor.exchange("weather", _call("crash"))

        response = await supervisor.exchange("db", _call("query", {"sql": "select 1"}))
        assert _payload(response)["arguments"] == {"sql": "select 1"}


class TestStop:
    """Tests for shutting backends down."""

    @pytest.mark.asyncio
    async def test_stop_all(self, make_descriptor):
        supervisor = ProcessSupervisor()
        await supervisor.start(make_descriptor("weather", "forecast"))
        await supervisor.start(make_descriptor("db", "query"))

        await supervisor.stop_all(timeout=2.0)

        info = supervisor.get_all_process_info()
        assert {entry["state"] for entry in info.values()} == {"stopped"}
        assert all(entry["returncode"] is not None for entry in info.values())

    @pytest.mark.asyncio
    async def test_stop_all_is_idempotent(self, make_descriptor):
        supervisor = ProcessSupervisor()
        await supervisor.start(make_descriptor("weather", "forecast"))

        await supervisor.stop_all(timeout=2.0)
        await supervisor.stop_all(timeout=2.0)

        assert not supervisor.is_alive("weather")

    @pytest.mark.asyncio
    async def test_stop_after_crash(self, make_descriptor):
        supervisor = ProcessSupervisor()
        await supervisor.start(make_descriptor("weather", "forecast"))
        with pytest.raises(BackendUnavailable):
            await supervisor.exchange("weather", _call("crash"))

        await supervisor.stop_all(timeout=2.0)

        assert supervisor.get("weather").state == ProcessState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_without_backends(self):
        await ProcessSupervisor().stop_all()
