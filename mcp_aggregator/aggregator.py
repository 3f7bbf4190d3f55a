# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
MCP Aggregator Module.

Wires the registry, supervisor, router and dispatcher together and runs the
line-oriented read loop on the proxy's own stdio.
"""

import asyncio
import logging
import signal
import sys
import threading
from collections.abc import AsyncIterator, Callable
from typing import Any, TextIO

from .config import AggregatorConfig, BackendDescriptor
from .dispatcher import Dispatcher
from .exceptions import LaunchError
from .registry import BackendRegistry
from .router import ToolNamespaceRouter
from .supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class MCPAggregator:
    """Presents several stdio MCP servers as a single one."""

    def __init__(self, config: AggregatorConfig | None = None) -> None:
        """
        Initialize the aggregator.

        Args:
            config: Aggregator configuration. Backends listed here are
                registered immediately; more can be added with ``add_backend``.

        Raises:
            PrefixConflictError: If two configured backends have overlapping
                tool prefixes and overlapping prefixes are not allowed.
        """
        self.config = config or AggregatorConfig()
        settings = self.config.proxy

        self.registry = BackendRegistry(
            self.config.enabled_backends,
            allow_overlapping_prefixes=settings.allow_overlapping_prefixes,
        )
        self.supervisor = ProcessSupervisor(
            client_name=settings.name,
            client_version=settings.version,
            protocol_version=settings.protocol_version,
            max_line_bytes=settings.max_line_bytes,
        )
        self.router = ToolNamespaceRouter(self.registry, self.supervisor)
        self.dispatcher = Dispatcher(
            self.router,
            self.supervisor,
            server_name=settings.name,
            server_version=settings.version,
            protocol_version=settings.protocol_version,
        )
        self.launch_failures: dict[str, LaunchError] = {}
        self._shutting_down = False

    @property
    def name(self) -> str:
        return self.config.proxy.name

    def add_backend(self, descriptor: BackendDescriptor) -> None:
        self.registry.register(descriptor)

    async def start(self) -> dict[str, LaunchError]:
        """Start all registered backends; failures are logged and returned."""
        logger.info(f"Starting {len(self.registry)} backend(s) for {self.name}")
        self.launch_failures = await self.supervisor.start_all(self.registry)
        started = len(self.registry) - len(self.launch_failures)
        logger.info(f"Aggregator {self.name} started with {started} running backend(s)")
        return self.launch_failures

    async def serve(
        self,
        lines: AsyncIterator[str],
        write: Callable[[str], None],
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """
        Handle client lines until the input ends or ``stop_event`` is set.

        Args:
            lines: Client input, one JSON-RPC message per item.
            write: Called with each response line, terminator excluded.
            stop_event: Optional event that ends the loop early.
        """
        iterator = aiter(lines)
        while True:
            next_line = asyncio.ensure_future(anext(iterator))
            if stop_event is None:
                waiting = {next_line}
            else:
                waiting = {next_line, asyncio.ensure_future(stop_event.wait())}
            done, pending = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()

            if next_line not in done:
                logger.info("Stop requested, leaving read loop")
                return
            try:
                line = next_line.result()
            except StopAsyncIteration:
                logger.info("Client input closed")
                return

            if not line.strip():
                continue
            response = await self.dispatcher.handle_line(line)
            if response is not None:
                write(response)

    async def serve_stdio(
        self,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        """Run the read loop on the process stdio until EOF or SIGTERM/SIGINT."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()
        installed = _install_signal_handlers(loop, stop_event)

        def write(line: str) -> None:
            stdout.write(line + "\n")
            stdout.flush()

        try:
            await self.serve(_read_lines(stdin), write, stop_event)
        finally:
            _uninstall_signal_handlers(loop, installed)

    async def stop(self) -> None:
        """Stop every backend. Safe to call multiple times."""
        if self._shutting_down:
            logger.debug(f"Aggregator {self.name} shutdown already in progress, skipping")
            return
        self._shutting_down = True
        await self.supervisor.stop_all(self.config.proxy.shutdown_timeout)
        logger.info(f"Aggregator {self.name} stopped")

    def get_status(self) -> dict[str, Any]:
        """Summary of backends and the last discovered catalog."""
        return {
            "name": self.name,
            "backends": self.supervisor.get_all_process_info(),
            "launch_failures": {
                name: error.message for name, error in self.launch_failures.items()
            },
            "total_tools": len(self.router.catalog),
            "tool_sources": dict(self.router.source_mapping),
        }

    async def __aenter__(self) -> "MCPAggregator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()


async def _read_lines(stream: TextIO) -> AsyncIterator[str]:
    """Yield lines from a blocking text stream without blocking the loop.

    A daemon thread does the blocking reads, so a pending read never holds
    up interpreter exit.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue[str | None] = asyncio.Queue()

    def publish(item: str | None) -> bool:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            # Event loop already closed.
            return False
        return True

    def pump() -> None:
        for line in iter(stream.readline, ""):
            if not publish(line):
                return
        publish(None)

    threading.Thread(target=pump, name="mcp-aggregator-stdin", daemon=True).start()
    while True:
        line = await queue.get()
        if line is None:
            return
        yield line


def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event
) -> list[signal.Signals]:
    """Make SIGTERM/SIGINT end the read loop. Returns the signals handled."""
    installed = []
    for sig in (getattr(signal, "SIGTERM", None), signal.SIGINT):
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, _on_signal, sig, stop_event)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug(f"Could not install handler for {sig!r}")
    return installed


def _on_signal(sig: signal.Signals, stop_event: asyncio.Event) -> None:
    logger.info(f"Received signal {sig!r}, shutting down")
    stop_event.set()


def _uninstall_signal_handlers(
    loop: asyncio.AbstractEventLoop, installed: list[signal.Signals]
) -> None:
    for sig in installed:
        try:
            loop.remove_signal_handler(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.debug(f"Could not remove handler for {sig!r}")
