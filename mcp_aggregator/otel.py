# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
OpenTelemetry instrumentation for mcp-aggregator.

Wraps tool discovery, backend exchanges and client request handling with
spans.

Usage:
    from opentelemetry import trace
    from mcp_aggregator.otel import instrument_mcp_aggregator

    instrument_mcp_aggregator(tracer_provider=trace.get_tracer_provider())
"""

from __future__ import annotations

import functools
import json
import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode, TracerProvider

from .__version__ import __version__

logger = logging.getLogger(__name__)

_originals: dict[tuple[type, str], Any] = {}


def instrument_mcp_aggregator(
    *,
    tracer_provider: TracerProvider | None = None,
    capture_tool_arguments: bool = True,
) -> None:
    """
    Instrument mcp-aggregator for OpenTelemetry tracing.

    Args:
        tracer_provider: OpenTelemetry TracerProvider. Defaults to the global one.
        capture_tool_arguments: Whether to record tool call arguments on spans.
    """
    if _originals:
        logger.warning("mcp-aggregator is already instrumented")
        return

    if tracer_provider is None:
        tracer_provider = trace.get_tracer_provider()
    tracer = tracer_provider.get_tracer("mcp_aggregator", __version__)

    _instrument_router(tracer)
    _instrument_supervisor(tracer, capture_tool_arguments)
    _instrument_dispatcher(tracer)
    logger.info("mcp-aggregator instrumentation enabled")


def uninstrument_mcp_aggregator() -> None:
    """Restore the uninstrumented methods."""
    for (owner, attribute), original in _originals.items():
        setattr(owner, attribute, original)
    _originals.clear()
    logger.info("mcp-aggregator instrumentation disabled")


def _record_error(span: Any, error: BaseException) -> None:
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


def _instrument_router(tracer: Any) -> None:
    from .router import ToolNamespaceRouter

    original = ToolNamespaceRouter.discover_backend
    _originals[(ToolNamespaceRouter, "discover_backend")] = original

    @functools.wraps(original)
    async def traced_discover_backend(self: Any, descriptor: Any) -> Any:
        with tracer.start_as_current_span(
            f"mcp.discover_tools {descriptor.name}",
            kind=trace.SpanKind.CLIENT,
        ) as span:
            span.set_attribute("mcp.server.name", descriptor.name)
            span.set_attribute("mcp.operation", "discover_tools")
            span.set_attribute("rpc.system", "jsonrpc")
            try:
                tools = await original(self, descriptor)
            except Exception as e:
                _record_error(span, e)
                raise
            span.set_attribute("mcp.tools.discovered_count", len(tools))
            span.set_status(Status(StatusCode.OK))
            return tools

    ToolNamespaceRouter.discover_backend = traced_discover_backend


def _instrument_supervisor(tracer: Any, capture_arguments: bool) -> None:
    from .supervisor import ProcessSupervisor

    original = ProcessSupervisor.exchange
    _originals[(ProcessSupervisor, "exchange")] = original

    @functools.wraps(original)
    async def traced_exchange(self: Any, name: str, request: Any) -> Any:
        method = request.method or "unknown"
        with tracer.start_as_current_span(
            f"mcp.request {method}",
            kind=trace.SpanKind.CLIENT,
        ) as span:
            span.set_attribute("rpc.system", "jsonrpc")
            span.set_attribute("rpc.method", method)
            span.set_attribute("rpc.jsonrpc.version", "2.0")
            span.set_attribute("mcp.server.name", name)

            if method == "tools/call" and isinstance(request.params, dict):
                span.set_attribute("mcp.tool.name", str(request.params.get("name")))
                if capture_arguments:
                    try:
                        arguments = json.dumps(request.params.get("arguments"))
                    except (TypeError, ValueError):
                        arguments = str(request.params.get("arguments"))
                    span.set_attribute("mcp.tool.arguments", arguments[:4096])

            try:
                response = await original(self, name, request)
            except Exception as e:
                _record_error(span, e)
                raise

            if response.has_error:
                span.set_status(Status(StatusCode.ERROR, response.error.message))
                span.set_attribute("rpc.jsonrpc.error_code", response.error.code)
                span.set_attribute("rpc.jsonrpc.error_message", response.error.message)
            else:
                span.set_status(Status(StatusCode.OK))
            return response

    ProcessSupervisor.exchange = traced_exchange


def _instrument_dispatcher(tracer: Any) -> None:
    from .dispatcher import Dispatcher

    original = Dispatcher.handle
    _originals[(Dispatcher, "handle")] = original

    @functools.wraps(original)
    async def traced_handle(self: Any, request: Any) -> Any:
        with tracer.start_as_current_span(
            f"mcp.server.{request.method}",
            kind=trace.SpanKind.SERVER,
        ) as span:
            span.set_attribute("rpc.system", "jsonrpc")
            span.set_attribute("rpc.method", str(request.method))
            if isinstance(request.params, dict) and request.method == "tools/call":
                span.set_attribute("mcp.tool.name", str(request.params.get("name")))

            response = await original(self, request)
            if response is not None and response.has_error:
                span.set_status(Status(StatusCode.ERROR, response.error.message))
                span.set_attribute("rpc.jsonrpc.error_code", response.error.code)
            else:
                span.set_status(Status(StatusCode.OK))
            return response

    Dispatcher.handle = traced_handle
