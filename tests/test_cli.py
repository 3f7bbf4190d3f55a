# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Tests for the mcp-aggregator command line.
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from mcp_aggregator.cli import create_parser, main

CONFIG = """
[proxy]
name = "cli-proxy"

[[backends]]
name = "weather"
command = ["python", "weather.py"]

[[backends]]
name = "db"
command = "python"
args = ["db.py"]
tool_prefix = "sql"
enabled = false
"""

CONFLICTING_CONFIG = """
[[backends]]
name = "db"
command = "db-server"

[[backends]]
name = "db-admin"
command = "db-admin-server"
tool_prefix = "db_admin"
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "mcp_aggregator.toml"
    path.write_text(CONFIG)
    return path


class TestParser:
    """Tests for create_parser()."""

    def test_serve(self):
        args = create_parser().parse_args(["serve", "-c", "proxy.toml", "--otel"])

        assert args.command == "serve"
        assert args.config == "proxy.toml"
        assert args.otel is True

    def test_tools_defaults(self):
        args = create_parser().parse_args(["tools"])

        assert args.config is None
        assert args.output_format == "text"

    def test_verbose(self):
        args = create_parser().parse_args(["-v", "validate", "--output-format", "json"])

        assert args.verbose is True
        assert args.output_format == "json"


class TestMain:
    """Tests for main()."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_validate_text(self, config_file, capsys):
        assert main(["validate", "-c", str(config_file)]) == 0

        out = capsys.readouterr().out
        assert "Proxy: cli-proxy" in out
        assert "Backends: 2" in out
        assert "Command: python weather.py" in out
        assert "Tool prefix: sql_" in out
        assert "db (disabled)" in out

    def test_validate_json(self, config_file, capsys):
        assert main(["validate", "-c", str(config_file), "--output-format", "json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["proxy"] == "cli-proxy"
        assert data["backends"][0] == {
            "name": "weather",
            "command": ["python", "weather.py"],
            "tool_prefix": "weather",
            "timeout": 60.0,
            "enabled": True,
        }
        assert data["backends"][1]["enabled"] is False

    def test_validate_missing_file(self, tmp_path, capsys):
        assert main(["validate", "-c", str(tmp_path / "missing.toml")]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_validate_prefix_conflict(self, tmp_path, capsys):
        path = tmp_path / "conflict.toml"
        path.write_text(CONFLICTING_CONFIG)

        assert main(["validate", "-c", str(path)]) == 1
        assert "db_admin" in capsys.readouterr().err

    def test_auto_detect_without_config(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("mcp_aggregator.config_loader.USER_CONFIG_DIR", tmp_path / "none")

        assert main(["validate"]) == 1
        assert "No configuration file found" in capsys.readouterr().err

    def test_auto_detect_in_current_directory(self, config_file, monkeypatch, capsys):
        monkeypatch.chdir(config_file.parent)

        assert main(["validate", "--output-format", "json"]) == 0
        assert json.loads(capsys.readouterr().out)["proxy"] == "cli-proxy"

    def test_serve_runs_server(self, config_file):
        with patch("mcp_aggregator.cli.run_server", new=AsyncMock(return_value=0)) as run_server:
            assert main(["serve", "-c", str(config_file)]) == 0

        config = run_server.await_args.args[0]
        assert config.proxy.name == "cli-proxy"

    def test_serve_with_bad_config(self, tmp_path):
        path = tmp_path / "broken.toml"
        path.write_text("[[backends]]\nname = 'x'\n")

        assert main(["serve", "-c", str(path)]) == 1

    def test_tools_json(self, config_file, capsys):
        tools = [{"name": "weather_forecast", "inputSchema": {"properties": {"city": {}}}}]
        with patch(
            "mcp_aggregator.cli._collect_tools",
            new=AsyncMock(return_value=(tools, {"weather_forecast": "weather"})),
        ):
            assert main(["tools", "-c", str(config_file), "--output-format", "json"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data == {"tools": tools, "total": 1}

    def test_tools_text(self, config_file, capsys):
        tools = [{"name": "weather_forecast", "inputSchema": {"properties": {"city": {}}}}]
        with patch(
            "mcp_aggregator.cli._collect_tools",
            new=AsyncMock(return_value=(tools, {"weather_forecast": "weather"})),
        ):
            assert main(["tools", "-c", str(config_file)]) == 0

        out = capsys.readouterr().out
        assert "Discovered 1 tools" in out
        assert "weather_forecast(city)  [weather]" in out
