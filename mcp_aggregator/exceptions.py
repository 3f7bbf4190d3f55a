# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Custom exceptions for MCP Aggregator.

Every exception carries the JSON-RPC error ``code`` used when the dispatcher
turns it into an error envelope for the client.
"""

from typing import Any

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND


class MCPAggregatorError(Exception):
    """Base exception for MCP Aggregator errors."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MCPConfigurationError(MCPAggregatorError):
    """Raised when configuration loading or validation fails."""

    def __init__(
        self,
        message: str,
        config_path: str | None = None,
        validation_errors: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.config_path = config_path
        self.validation_errors = validation_errors or []


class PrefixConflictError(MCPConfigurationError):
    """Raised when two backends would claim the same tool names."""

    def __init__(self, backend_name: str, tool_prefix: str, conflicting_backend: str) -> None:
        message = (
            f"Tool prefix '{tool_prefix}' of backend '{backend_name}' overlaps "
            f"with the prefix of backend '{conflicting_backend}'"
        )
        super().__init__(message)
        self.backend_name = backend_name
        self.tool_prefix = tool_prefix
        self.conflicting_backend = conflicting_backend


class LaunchError(MCPAggregatorError):
    """Raised when a backend process cannot be started."""

    def __init__(
        self,
        message: str,
        backend_name: str | None = None,
        command: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.backend_name = backend_name
        self.command = command or []


class BackendUnavailable(MCPAggregatorError):
    """Raised when talking to a backend that is unknown, dead or unresponsive."""

    def __init__(self, backend_name: str, reason: str | None = None) -> None:
        message = reason or f"Backend '{backend_name}' is not running"
        super().__init__(message)
        self.backend_name = backend_name


class BackendError(MCPAggregatorError):
    """Raised when a backend answers a proxy-originated request with an error."""

    def __init__(self, backend_name: str, error: dict[str, Any]) -> None:
        message = f"Backend '{backend_name}' returned error: {error.get('message', error)}"
        super().__init__(message)
        self.backend_name = backend_name
        self.error = error


class MalformedMessage(MCPAggregatorError):
    """Raised when a line is not a well-formed JSON-RPC envelope."""

    def __init__(
        self,
        message: str,
        line: str | None = None,
        request_id: str | int | float | None = None,
    ) -> None:
        super().__init__(message)
        self.line = line
        self.request_id = request_id


class UnknownMethod(MCPAggregatorError):
    """Raised when the client calls a method the proxy does not implement."""

    code = METHOD_NOT_FOUND

    def __init__(self, method: str) -> None:
        super().__init__(f"Unknown method: {method}")
        self.method = method


class UnknownTool(MCPAggregatorError):
    """Raised when no backend prefix matches a tool name."""

    code = INVALID_PARAMS

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class InvalidParams(MCPAggregatorError):
    """Raised when request params do not have the expected shape."""

    code = INVALID_PARAMS
