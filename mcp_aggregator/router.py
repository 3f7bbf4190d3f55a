# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Tool namespace router.

Builds the merged tool catalog by asking every backend for its tools, and maps
proxy-visible tool names (``<prefix>_<tool>``) back to the backend that owns
them.
"""

import logging
from dataclasses import dataclass
from typing import Any

from .config import BackendDescriptor
from .exceptions import BackendError, MalformedMessage, MCPAggregatorError, UnknownTool
from .registry import PREFIX_SEPARATOR, BackendRegistry
from .supervisor import ProcessSupervisor
from .wire import make_request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteEntry:
    """Where a proxy-visible tool name is served."""

    backend_name: str
    local_name: str


def expose_tool(descriptor: BackendDescriptor, tool: dict[str, Any]) -> dict[str, Any]:
    """Rewrite a backend tool descriptor into its proxy-visible form."""
    exposed = dict(tool)
    exposed["name"] = f"{descriptor.tool_prefix}{PREFIX_SEPARATOR}{tool['name']}"
    exposed["description"] = f"[{descriptor.name}] {tool.get('description') or ''}"
    return exposed


class ToolNamespaceRouter:
    """Discovers backend tools and routes prefixed names back to backends."""

    def __init__(self, registry: BackendRegistry, supervisor: ProcessSupervisor) -> None:
        self.registry = registry
        self.supervisor = supervisor
        self.catalog: list[dict[str, Any]] = []
        self.source_mapping: dict[str, str] = {}

    async def discover_all(self) -> list[dict[str, Any]]:
        """
        Query every backend, in registry order, and merge the results.

        A backend that fails to answer is skipped; discovery itself never fails.
        """
        catalog: list[dict[str, Any]] = []
        sources: dict[str, str] = {}
        for descriptor in self.registry.all():
            if not descriptor.enabled:
                continue
            try:
                tools = await self.discover_backend(descriptor)
            except MCPAggregatorError as e:
                logger.error(f"Error fetching tools from {descriptor.name}: {e.message}")
                continue

            for tool in tools:
                exposed = expose_tool(descriptor, tool)
                catalog.append(exposed)
                sources[exposed["name"]] = descriptor.name
            logger.debug(f"Discovered {len(tools)} tools from {descriptor.name}")

        self.catalog = catalog
        self.source_mapping = sources
        logger.info(f"Tool catalog has {len(catalog)} tools")
        return catalog

    async def discover_backend(self, descriptor: BackendDescriptor) -> list[dict[str, Any]]:
        """
        Fetch one backend's tool list, following ``nextCursor`` pages.

        Returns:
            The backend's tool descriptors with their local names.

        Raises:
            BackendUnavailable: If the backend is not running.
            BackendError: If the backend answers with an error.
            MalformedMessage: If the response has no ``result.tools`` list.
        """
        tools: list[dict[str, Any]] = []
        cursor: str | None = None
        seen_cursors: set[str] = set()

        while True:
            params = {"cursor": cursor} if cursor is not None else None
            response = await self.supervisor.exchange(
                descriptor.name, make_request("tools/list", params)
            )
            if response.has_error:
                raise BackendError(descriptor.name, response.error.model_dump(exclude_unset=True))

            result = response.result
            if not isinstance(result, dict) or not isinstance(result.get("tools"), list):
                raise MalformedMessage(
                    f"Backend '{descriptor.name}' returned no 'result.tools' list"
                )

            for tool in result["tools"]:
                if not isinstance(tool, dict) or not isinstance(tool.get("name"), str):
                    logger.warning(f"Skipping invalid tool entry from {descriptor.name}: {tool!r}")
                    continue
                tools.append(tool)

            cursor = result.get("nextCursor")
            if not cursor or not isinstance(cursor, str):
                return tools
            if cursor in seen_cursors:
                logger.warning(f"Backend {descriptor.name} repeated cursor {cursor!r}, stopping")
                return tools
            seen_cursors.add(cursor)

    def resolve(self, tool_name: str) -> RouteEntry:
        """
        Map a proxy-visible tool name to its backend and local name.

        The first backend, in registry order, whose ``prefix + "_"`` starts the
        name wins.

        Raises:
            UnknownTool: If no backend prefix matches.
        """
        for descriptor in self.registry.all():
            marker = descriptor.tool_prefix + PREFIX_SEPARATOR
            if tool_name.startswith(marker) and len(tool_name) > len(marker):
                return RouteEntry(descriptor.name, tool_name[len(marker):])
        raise UnknownTool(tool_name)

    def get_tool_source(self, tool_name: str) -> str | None:
        """Backend that contributed ``tool_name`` in the last discovery."""
        return self.source_mapping.get(tool_name)

    def list_tools(self) -> list[str]:
        return [tool["name"] for tool in self.catalog]
