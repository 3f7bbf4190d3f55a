"""
MCP Aggregator CLI.

Command-line interface for running and inspecting the aggregating proxy.
Protocol frames are the only thing ever written to stdout by ``serve``;
everything else goes to stderr.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .aggregator import MCPAggregator
from .config import AggregatorConfig
from .config_loader import find_config_file, load_config
from .exceptions import MCPAggregatorError, MCPConfigurationError

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False, level: str | None = None) -> None:
    """Set up logging configuration on stderr."""
    if verbose:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


def resolve_config(args: argparse.Namespace) -> AggregatorConfig:
    """Load the configuration named on the command line, or auto-detect it."""
    if args.config:
        config_path = Path(args.config)
    else:
        config_path = find_config_file()
        if config_path is None:
            raise MCPConfigurationError(
                "No configuration file found. Create mcp_aggregator.toml in the "
                "current directory or use --config"
            )
    logger.info(f"Loading configuration from: {config_path}")
    return load_config(config_path)


def serve_command(args: argparse.Namespace) -> int:
    """Handle the serve command."""
    try:
        config = resolve_config(args)
    except MCPConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        for error in e.validation_errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    if not args.verbose:
        setup_logging(level=config.proxy.log_level.value)

    if args.otel:
        from .otel import instrument_mcp_aggregator

        instrument_mcp_aggregator()

    try:
        return asyncio.run(run_server(config))
    except MCPAggregatorError as e:
        print(f"Startup error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 0


async def run_server(config: AggregatorConfig) -> int:
    """Run the proxy on stdio until the client closes its input."""
    aggregator = MCPAggregator(config)
    try:
        failures = await aggregator.start()
        for name, error in failures.items():
            logger.warning(f"Backend {name} unavailable: {error.message}")
        logger.info("Awaiting JSON-RPC messages on stdin")
        await aggregator.serve_stdio()
    finally:
        await aggregator.stop()
    return 0


def tools_command(args: argparse.Namespace) -> int:
    """Handle the tools command."""
    try:
        config = resolve_config(args)
        tools, sources = asyncio.run(_collect_tools(config))
    except MCPAggregatorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.output_format == "json":
        print(json.dumps({"tools": tools, "total": len(tools)}, indent=2))
    else:
        print_tools(tools, sources)
    return 0


async def _collect_tools(config: AggregatorConfig) -> tuple[list[dict], dict[str, str]]:
    async with MCPAggregator(config) as aggregator:
        tools = await aggregator.router.discover_all()
        return tools, dict(aggregator.router.source_mapping)


def print_tools(tools: list[dict], sources: dict[str, str]) -> None:
    """Print the merged tool catalog in human-readable format."""
    if not tools:
        print("No tools discovered.")
        return

    print(f"Discovered {len(tools)} tools:")
    print()
    for tool in tools:
        params = list((tool.get("inputSchema") or {}).get("properties", {}).keys())
        params_str = f"({', '.join(params)})" if params else "()"
        print(f"  • {tool['name']}{params_str}  [{sources.get(tool['name'], '?')}]")


def validate_command(args: argparse.Namespace) -> int:
    """Handle the validate command."""
    try:
        config = resolve_config(args)
        # Building the aggregator applies the prefix overlap check.
        MCPAggregator(config)
    except MCPConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        for error in e.validation_errors:
            print(f"  - {error}", file=sys.stderr)
        return 1

    backends = [
        {
            "name": backend.name,
            "command": backend.argv,
            "tool_prefix": backend.tool_prefix,
            "timeout": backend.timeout,
            "enabled": backend.enabled,
        }
        for backend in config.backends
    ]
    if args.output_format == "json":
        print(json.dumps({"proxy": config.proxy.name, "backends": backends}, indent=2))
    else:
        print(f"Proxy: {config.proxy.name} (v{config.proxy.version})")
        print(f"Backends: {len(backends)}")
        for backend in backends:
            status = "" if backend["enabled"] else " (disabled)"
            print(f"  • {backend['name']}{status}")
            print(f"    Command: {' '.join(backend['command'])}")
            print(f"    Tool prefix: {backend['tool_prefix']}_")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="mcp-aggregator",
        description="Serve several stdio MCP servers as a single one",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the proxy on stdin/stdout",
    )
    serve_parser.add_argument(
        "-c", "--config",
        type=str,
        help="Path to mcp_aggregator.toml (default: auto-detect)",
    )
    serve_parser.add_argument(
        "--otel",
        action="store_true",
        help="Enable OpenTelemetry tracing with the globally configured provider",
    )

    for name, help_text in (
        ("tools", "Start the backends and print the merged tool catalog"),
        ("validate", "Check the configuration and list the backends"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "-c", "--config",
            type=str,
            help="Path to mcp_aggregator.toml (default: auto-detect)",
        )
        sub.add_argument(
            "--output-format",
            type=str,
            choices=["text", "json"],
            default="text",
            help="Output format for results (default: text)",
        )

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    if args.command == "serve":
        return serve_command(args)
    elif args.command == "tools":
        return tools_command(args)
    elif args.command == "validate":
        return validate_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
