# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
Process supervisor for backend MCP servers.

Owns one ``BackendProcess`` per started backend and provides the
line-level primitives (``send_line``/``read_line``) plus the locked
request/response ``exchange`` built on top of them.
"""

import asyncio
import logging
from typing import Any

from mcp.types import METHOD_NOT_FOUND

from .config import DEFAULT_MAX_LINE_BYTES, DEFAULT_PROTOCOL_VERSION, BackendDescriptor
from .exceptions import BackendUnavailable, LaunchError, MalformedMessage, MCPAggregatorError
from .process import BackendProcess
from .registry import BackendRegistry
from .wire import Envelope, decode, encode, make_error, make_notification, make_request

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """Starts, talks to and stops backend processes."""

    def __init__(
        self,
        client_name: str = "mcp-aggregator",
        client_version: str = "0.0.0",
        protocol_version: str = DEFAULT_PROTOCOL_VERSION,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> None:
        self.client_name = client_name
        self.client_version = client_version
        self.protocol_version = protocol_version
        self.max_line_bytes = max_line_bytes
        self._processes: dict[str, BackendProcess] = {}
        self._stopped = False

    async def start(self, descriptor: BackendDescriptor) -> BackendProcess:
        """
        Launch a backend and, if configured, perform the MCP handshake.

        Raises:
            LaunchError: If the process cannot be started or the handshake fails.
        """
        existing = self._processes.get(descriptor.name)
        if existing is not None and existing.is_alive:
            return existing

        handle = BackendProcess(descriptor, max_line_bytes=self.max_line_bytes)
        await handle.start()
        self._processes[descriptor.name] = handle
        self._stopped = False

        if descriptor.handshake:
            try:
                await self._handshake(handle)
            except MCPAggregatorError as e:
                await handle.stop()
                raise LaunchError(
                    f"Handshake with backend '{descriptor.name}' failed: {e.message}",
                    backend_name=descriptor.name,
                    command=descriptor.argv,
                ) from e
        return handle

    async def _handshake(self, handle: BackendProcess) -> None:
        request = make_request(
            "initialize",
            {
                "protocolVersion": self.protocol_version,
                "capabilities": {},
                "clientInfo": {"name": self.client_name, "version": self.client_version},
            },
        )
        response = await self.exchange(handle.name, request)
        if response.has_error:
            raise MalformedMessage(f"initialize rejected: {response.error.message}")
        server_info = {}
        if isinstance(response.result, dict):
            server_info = response.result.get("serverInfo") or {}
        logger.debug(
            f"Backend {handle.name} initialized: "
            f"{server_info.get('name', 'unknown')} {server_info.get('version', '')}".rstrip()
        )
        await self.notify(handle.name, make_notification("notifications/initialized"))

    async def start_all(self, registry: BackendRegistry) -> dict[str, LaunchError]:
        """
        Start every enabled backend in registry order.

        Returns:
            Launch failures keyed by backend name. Other backends are unaffected.
        """
        failures: dict[str, LaunchError] = {}
        for descriptor in registry.all():
            if not descriptor.enabled:
                logger.info(f"Skipping disabled backend: {descriptor.name}")
                continue
            try:
                await self.start(descriptor)
            except LaunchError as e:
                logger.error(f"Failed to start backend {descriptor.name}: {e.message}")
                failures[descriptor.name] = e
        return failures

    def get(self, name: str) -> BackendProcess:
        handle = self._processes.get(name)
        if handle is None:
            raise BackendUnavailable(name, f"Backend '{name}' is not started")
        return handle

    def is_alive(self, name: str) -> bool:
        handle = self._processes.get(name)
        return handle is not None and handle.is_alive

    async def send_line(self, name: str, text: str) -> None:
        await self.get(name).send_line(text)

    async def read_line(self, name: str) -> str:
        handle = self.get(name)
        return await handle.read_line(handle.descriptor.timeout)

    async def notify(self, name: str, envelope: Envelope) -> None:
        """Send a notification; no reply is read."""
        handle = self.get(name)
        async with handle.lock:
            await handle.send_line(encode(envelope))

    async def exchange(self, name: str, request: Envelope) -> Envelope:
        """
        Send a request and return the backend's response.

        The backend's lock is held for the whole exchange. Notifications the
        backend emits meanwhile are skipped; requests it emits are refused.

        Raises:
            BackendUnavailable: If the backend is unknown, dead or times out.
            MalformedMessage: If the backend sends something unparseable or a
                response for a different id. Its output is then out of step
                with its input, so the backend is marked unresponsive and
                later exchanges raise ``BackendUnavailable``.
        """
        handle = self.get(name)
        async with handle.lock:
            await handle.send_line(encode(request))
            try:
                return await self._read_response(handle, request)
            except MalformedMessage as e:
                handle.mark_unresponsive(e.message)
                raise

    async def _read_response(self, handle: BackendProcess, request: Envelope) -> Envelope:
        timeout = handle.descriptor.timeout
        while True:
            line = await handle.read_line(timeout)
            if not line.strip():
                continue
            message = decode(line)
            if message.is_notification:
                logger.debug(f"Skipping notification from {handle.name}: {message.method}")
                continue
            if message.is_request:
                logger.warning(f"Refusing request from backend {handle.name}: {message.method}")
                refusal = make_error(
                    message.id, METHOD_NOT_FOUND, f"Method not supported: {message.method}"
                )
                await handle.send_line(encode(refusal))
                continue
            if message.id != request.id:
                raise MalformedMessage(
                    f"Backend '{handle.name}' answered id {message.id!r}, "
                    f"expected {request.id!r}",
                    line=line,
                )
            return message

    def list_processes(self) -> list[str]:
        return list(self._processes)

    def get_all_process_info(self) -> dict[str, dict[str, Any]]:
        return {name: handle.get_info() for name, handle in self._processes.items()}

    async def stop_all(self, timeout: float = 5.0) -> None:
        """Stop every tracked backend. Idempotent."""
        if self._stopped:
            logger.debug("Backends already stopped, skipping")
            return
        self._stopped = True
        if not self._processes:
            return
        logger.info(f"Stopping {len(self._processes)} backend(s)")
        results = await asyncio.gather(
            *(handle.stop(timeout) for handle in self._processes.values()),
            return_exceptions=True,
        )
        for handle, result in zip(self._processes.values(), results):
            if isinstance(result, BaseException):
                logger.error(f"Error stopping backend {handle.name}: {result}")
