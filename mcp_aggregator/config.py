# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Configuration models for MCP Aggregator.

Backends are described by immutable ``BackendDescriptor`` models; proxy-wide
settings live in ``ProxySettings``. Both are usually built from a TOML file by
``config_loader``.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .__version__ import __version__

DEFAULT_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_BACKEND_TIMEOUT = 60.0
DEFAULT_MAX_LINE_BYTES = 16 * 1024 * 1024


class LogLevel(str, Enum):
    """Log level enum."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BackendDescriptor(BaseModel):
    """A backend MCP server reached over its stdin/stdout."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, description="Unique backend name")
    command: str = Field(min_length=1, description="Executable to launch")
    args: tuple[str, ...] = Field(default=(), description="Command line arguments")
    tool_prefix: str = Field(min_length=1, description="Prefix for proxy-visible tool names")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment variables")
    cwd: str | None = Field(default=None, description="Working directory")
    timeout: float | None = Field(
        default=DEFAULT_BACKEND_TIMEOUT,
        gt=0,
        description="Seconds to wait for one response line, None waits forever",
    )
    handshake: bool = Field(default=True, description="Send MCP initialize after launch")
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        command = data.get("command")
        if isinstance(command, (list, tuple)):
            if not command:
                raise ValueError("command must not be empty")
            data["command"] = command[0]
            data["args"] = [*command[1:], *data.get("args", ())]
        if not data.get("tool_prefix") and data.get("name"):
            data["tool_prefix"] = data["name"]
        return data

    @property
    def argv(self) -> list[str]:
        """Full command line used to launch the backend."""
        return [self.command, *self.args]


class ProxySettings(BaseModel):
    """Proxy-wide settings."""

    model_config = ConfigDict(extra="forbid")

    name: str = "mcp-aggregator"
    version: str = __version__
    protocol_version: str = DEFAULT_PROTOCOL_VERSION
    log_level: LogLevel = LogLevel.INFO
    allow_overlapping_prefixes: bool = False
    shutdown_timeout: float = Field(default=5.0, gt=0)
    max_line_bytes: int = Field(default=DEFAULT_MAX_LINE_BYTES, gt=0)


class AggregatorConfig(BaseModel):
    """Root configuration model."""

    model_config = ConfigDict(extra="forbid")

    proxy: ProxySettings = Field(default_factory=ProxySettings)
    backends: list[BackendDescriptor] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_names(self) -> "AggregatorConfig":
        seen: set[str] = set()
        for backend in self.backends:
            if backend.name in seen:
                raise ValueError(f"Duplicate backend name: {backend.name}")
            seen.add(backend.name)
        return self

    @property
    def enabled_backends(self) -> list[BackendDescriptor]:
        return [backend for backend in self.backends if backend.enabled]
