# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Request dispatcher.

Interprets one client envelope at a time and produces the response envelope.
It keeps no state between requests; every failure is turned into a JSON-RPC
error carrying the client's id (or null when the id cannot be recovered).
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.types import (
    INTERNAL_ERROR,
    Implementation,
    InitializeResult,
    ServerCapabilities,
    ToolsCapability,
)

from .config import DEFAULT_PROTOCOL_VERSION
from .exceptions import InvalidParams, MalformedMessage, MCPAggregatorError, UnknownMethod
from .router import ToolNamespaceRouter
from .supervisor import ProcessSupervisor
from .wire import Envelope, decode, encode, make_error, make_request, make_result

logger = logging.getLogger(__name__)

Handler = Callable[[Envelope], Awaitable[Envelope]]


class Dispatcher:
    """Routes client requests to the router and the supervisor."""

    def __init__(
        self,
        router: ToolNamespaceRouter,
        supervisor: ProcessSupervisor,
        server_name: str = "mcp-aggregator",
        server_version: str = "0.0.0",
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
    ) -> None:
        self.router = router
        self.supervisor = supervisor
        self.server_name = server_name
        self.server_version = server_version
        self.protocol_version = protocol_version
        self._handlers: dict[str, Handler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
        }

    async def handle_line(self, line: str) -> str | None:
        """Decode a client line, handle it and encode the reply, if any."""
        try:
            request = decode(line, expect="request")
        except MalformedMessage as e:
            logger.warning(f"Malformed client message: {e.message}")
            return encode(make_error(e.request_id, e.code, e.message))

        response = await self.handle(request)
        if response is None:
            return None
        return encode(response)

    async def handle(self, request: Envelope) -> Envelope | None:
        """
        Handle one request envelope.

        Returns:
            The response envelope, or None for notifications.
        """
        if request.is_notification:
            logger.debug(f"Received notification: {request.method}")
            return None

        try:
            handler = self._handlers.get(request.method)
            if handler is None:
                raise UnknownMethod(request.method)
            return await handler(request)
        except MCPAggregatorError as e:
            logger.warning(f"{request.method} failed: {e.message}")
            return make_error(request.id, e.code, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error handling {request.method}")
            return make_error(request.id, INTERNAL_ERROR, str(e) or type(e).__name__)

    async def _handle_initialize(self, request: Envelope) -> Envelope:
        result = InitializeResult(
            protocolVersion=self.protocol_version,
            capabilities=ServerCapabilities(tools=ToolsCapability()),
            serverInfo=Implementation(name=self.server_name, version=self.server_version),
        )
        return make_result(
            request.id, result.model_dump(mode="json", by_alias=True, exclude_none=True)
        )

    async def _handle_ping(self, request: Envelope) -> Envelope:
        return make_result(request.id, {})

    async def _handle_list_tools(self, request: Envelope) -> Envelope:
        tools = await self.router.discover_all()
        return make_result(request.id, {"tools": tools})

    async def _handle_call_tool(self, request: Envelope) -> Envelope:
        params = request.params
        if not isinstance(params, dict) or not isinstance(params.get("name"), str):
            raise InvalidParams("tools/call requires a string 'params.name'")

        tool_name = params["name"]
        route = self.router.resolve(tool_name)
        arguments: Any = params.get("arguments")
        forward = make_request(
            "tools/call",
            {"name": route.local_name, "arguments": arguments if arguments is not None else {}},
        )
        logger.debug(f"Forwarding {tool_name} to {route.backend_name} as {route.local_name}")

        response = await self.supervisor.exchange(route.backend_name, forward)
        return response.with_id(request.id)
