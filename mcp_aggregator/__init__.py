# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""MCP Aggregator

An aggregating proxy for Model Context Protocol (MCP) servers.

The proxy speaks MCP over its own stdin/stdout, launches several backend MCP
servers as subprocesses, merges their tools into one catalog under per-backend
name prefixes and routes every tool call to the backend that owns it.
"""

from .__version__ import __version__
from .aggregator import MCPAggregator
from .config import AggregatorConfig, BackendDescriptor, ProxySettings
from .config_loader import find_config_file, load_config, load_config_from_dict
from .dispatcher import Dispatcher
from .exceptions import (
    BackendError,
    BackendUnavailable,
    InvalidParams,
    LaunchError,
    MalformedMessage,
    MCPAggregatorError,
    MCPConfigurationError,
    PrefixConflictError,
    UnknownMethod,
    UnknownTool,
)
from .process import BackendProcess, ProcessState
from .registry import BackendRegistry
from .router import RouteEntry, ToolNamespaceRouter
from .supervisor import ProcessSupervisor
from .wire import Envelope, ErrorObject, decode, encode

__all__ = [
    "MCPAggregator",
    "AggregatorConfig",
    "BackendDescriptor",
    "ProxySettings",
    "find_config_file",
    "load_config",
    "load_config_from_dict",
    "BackendRegistry",
    "ProcessSupervisor",
    "BackendProcess",
    "ProcessState",
    "ToolNamespaceRouter",
    "RouteEntry",
    "Dispatcher",
    "Envelope",
    "ErrorObject",
    "encode",
    "decode",
    "MCPAggregatorError",
    "MCPConfigurationError",
    "PrefixConflictError",
    "LaunchError",
    "BackendUnavailable",
    "BackendError",
    "MalformedMessage",
    "UnknownMethod",
    "UnknownTool",
    "InvalidParams",
    "__version__",
]
