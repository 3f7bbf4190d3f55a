# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Configuration loading for MCP Aggregator.

Reads ``mcp_aggregator.toml`` (or a JSON file, including the common
``mcpServers`` client layout) and validates it into an ``AggregatorConfig``.
"""

import json
import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import AggregatorConfig
from .exceptions import MCPConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("mcp_aggregator.toml", "mcp_aggregator.json")
USER_CONFIG_DIR = Path.home() / ".config" / "mcp-aggregator"


def find_config_file(start: str | Path | None = None) -> Path | None:
    """
    Find a configuration file.

    Looks in ``start`` (default: the working directory) and then in
    ``~/.config/mcp-aggregator``.

    Returns:
        Path to the first configuration file found, or None.
    """
    search_dirs = [Path(start) if start else Path.cwd(), USER_CONFIG_DIR]
    for directory in search_dirs:
        for filename in CONFIG_FILENAMES:
            candidate = directory / filename
            if candidate.is_file():
                logger.debug(f"Found configuration file: {candidate}")
                return candidate
    return None


def load_config(path: str | Path) -> AggregatorConfig:
    """
    Load and validate a configuration file.

    Args:
        path: Path to a ``.toml`` or ``.json`` file.

    Raises:
        MCPConfigurationError: If the file cannot be read, parsed or validated.
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise MCPConfigurationError(
            f"Cannot read configuration file: {e}", config_path=str(config_path)
        ) from e

    try:
        if config_path.suffix == ".json":
            data = json.loads(text)
        else:
            data = tomllib.loads(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise MCPConfigurationError(
            f"Cannot parse configuration file: {e}", config_path=str(config_path)
        ) from e

    return load_config_from_dict(data, config_path=str(config_path))


def load_config_from_dict(
    data: dict[str, Any], config_path: str | None = None
) -> AggregatorConfig:
    """Validate a configuration mapping."""
    if not isinstance(data, dict):
        raise MCPConfigurationError(
            "Configuration must be a table/object", config_path=config_path
        )
    if "mcpServers" in data:
        data = _from_mcp_servers(data)

    try:
        return AggregatorConfig.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise MCPConfigurationError(
            f"Invalid configuration: {'; '.join(errors)}",
            config_path=config_path,
            validation_errors=errors,
        ) from e


def _from_mcp_servers(data: dict[str, Any]) -> dict[str, Any]:
    """Convert the ``{"mcpServers": {...}}`` client layout to ours."""
    servers = data["mcpServers"]
    if not isinstance(servers, dict):
        raise MCPConfigurationError("'mcpServers' must be an object")

    backends = []
    for name, server in servers.items():
        if not isinstance(server, dict):
            raise MCPConfigurationError(f"Server '{name}' must be an object")
        backend = {"name": name, **server}
        # Claude Desktop style files carry keys we do not model.
        backend.pop("type", None)
        backend.pop("disabled", None)
        if server.get("disabled"):
            backend["enabled"] = False
        backends.append(backend)

    converted = {key: value for key, value in data.items() if key != "mcpServers"}
    converted["backends"] = [*converted.get("backends", []), *backends]
    return converted
