# Copyright (c) 2025-2026 Datalayer, Inc.
# Distributed under the terms of the Modified BSD License.

"""
A single backend MCP server process.

``BackendProcess`` owns the operating-system process and its stdin/stdout
pipes. Liveness is only checked lazily, when a line is written or read.
"""

import asyncio
import logging
import os
import time
from enum import Enum
from typing import Any

from .config import DEFAULT_MAX_LINE_BYTES, BackendDescriptor
from .exceptions import BackendUnavailable, LaunchError, MalformedMessage

logger = logging.getLogger(__name__)


class ProcessState(str, Enum):
    """Lifecycle state of a backend process."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"
    UNRESPONSIVE = "unresponsive"


class BackendProcess:
    """Handle on one running backend."""

    def __init__(
        self,
        descriptor: BackendDescriptor,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> None:
        self.descriptor = descriptor
        self.max_line_bytes = max_line_bytes
        self.process: asyncio.subprocess.Process | None = None
        self.state = ProcessState.STOPPED
        self.started_at: float | None = None
        # One request/response exchange at a time per backend.
        self.lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process else None

    @property
    def is_alive(self) -> bool:
        if self.process is None or self.state != ProcessState.RUNNING:
            return False
        if self.process.returncode is not None:
            self._mark(ProcessState.CRASHED, f"exited with code {self.process.returncode}")
            return False
        return True

    def _build_env(self) -> dict[str, str] | None:
        if not self.descriptor.env:
            return None
        env = dict(os.environ)
        env.update(self.descriptor.env)
        return env

    def _mark(self, state: ProcessState, reason: str) -> None:
        if self.state != state:
            logger.warning(f"Backend {self.name} is now {state.value}: {reason}")
        self.state = state

    def mark_unresponsive(self, reason: str) -> None:
        """Take the backend out of service; its output can no longer be trusted."""
        self._mark(ProcessState.UNRESPONSIVE, reason)

    async def start(self) -> None:
        """
        Launch the backend with piped stdin/stdout.

        Stderr is inherited so backend diagnostics reach the proxy's error
        stream.

        Raises:
            LaunchError: If the executable cannot be started.
        """
        if self.is_alive:
            logger.debug(f"Backend {self.name} already running (PID {self.pid})")
            return

        argv = self.descriptor.argv
        self.state = ProcessState.STARTING
        try:
            self.process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,
                env=self._build_env(),
                cwd=self.descriptor.cwd,
                limit=self.max_line_bytes,
            )
        except OSError as e:
            self.state = ProcessState.STOPPED
            self.process = None
            raise LaunchError(
                f"Cannot start backend '{self.name}': {e}",
                backend_name=self.name,
                command=argv,
            ) from e

        self.state = ProcessState.RUNNING
        self.started_at = time.monotonic()
        logger.info(f"Started backend {self.name} (PID {self.pid}): {' '.join(argv)}")

    def _require_alive(self) -> asyncio.subprocess.Process:
        if not self.is_alive:
            raise BackendUnavailable(self.name)
        assert self.process is not None
        return self.process

    async def send_line(self, text: str) -> None:
        """Write one newline-terminated line to the backend's stdin."""
        process = self._require_alive()
        if process.stdin is None:
            raise BackendUnavailable(self.name, f"Backend '{self.name}' has no stdin pipe")
        try:
            process.stdin.write(text.encode("utf-8") + b"\n")
            await process.stdin.drain()
        except (ConnectionError, RuntimeError) as e:
            self._mark(ProcessState.CRASHED, f"write failed: {e}")
            raise BackendUnavailable(
                self.name, f"Backend '{self.name}' stopped accepting input: {e}"
            ) from e

    async def read_line(self, timeout: float | None = None) -> str:
        """
        Read one line from the backend's stdout.

        Args:
            timeout: Seconds to wait; None waits forever.

        Raises:
            BackendUnavailable: On EOF, or when the timeout expires. A timed-out
                backend is marked unresponsive and refuses further exchanges.
            MalformedMessage: If the line exceeds the configured size limit or is
                not valid UTF-8.
        """
        process = self._require_alive()
        if process.stdout is None:
            raise BackendUnavailable(self.name, f"Backend '{self.name}' has no stdout pipe")
        try:
            raw = await asyncio.wait_for(process.stdout.readline(), timeout)
        except asyncio.TimeoutError as e:
            self._mark(ProcessState.UNRESPONSIVE, f"no response within {timeout}s")
            raise BackendUnavailable(
                self.name, f"Backend '{self.name}' did not respond within {timeout}s"
            ) from e
        except ValueError as e:
            # The stream is left mid-line; nothing after this can be trusted.
            self._mark(ProcessState.UNRESPONSIVE, "line limit exceeded")
            raise MalformedMessage(
                f"Backend '{self.name}' sent a line longer than {self.max_line_bytes} bytes"
            ) from e

        if not raw:
            self._mark(ProcessState.CRASHED, "closed its output")
            raise BackendUnavailable(self.name, f"Backend '{self.name}' closed its output")
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(
                f"Backend '{self.name}' sent a line that is not valid UTF-8: {e.reason}",
                line=raw.decode("utf-8", errors="backslashreplace"),
            ) from e
        return text.rstrip("\r\n")

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Terminate the process, escalating to kill after ``timeout`` seconds.

        Safe to call on a process that is already gone.
        """
        process = self.process
        if process is None:
            self.state = ProcessState.STOPPED
            return

        if process.returncode is None:
            self.state = ProcessState.STOPPING
            logger.info(f"Terminating backend {self.name} (PID {process.pid})")
            try:
                if process.stdin is not None and not process.stdin.is_closing():
                    process.stdin.close()
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout)
                    logger.info(f"Backend {self.name} (PID {process.pid}) terminated gracefully")
                except asyncio.TimeoutError:
                    logger.warning(
                        f"Backend {self.name} (PID {process.pid}) did not terminate "
                        f"gracefully, sending SIGKILL"
                    )
                    process.kill()
                    await asyncio.wait_for(process.wait(), 2.0)
            except ProcessLookupError:
                logger.debug(f"Backend {self.name} already exited")
            except (OSError, asyncio.TimeoutError) as e:
                logger.error(f"Error stopping backend {self.name} (PID {process.pid}): {e}")
        else:
            logger.debug(f"Backend {self.name} already exited with code {process.returncode}")

        self.state = ProcessState.STOPPED

    def get_info(self) -> dict[str, Any]:
        uptime = None
        if self.started_at is not None and self.is_alive:
            uptime = time.monotonic() - self.started_at
        return {
            "name": self.name,
            "state": self.state.value,
            "pid": self.pid,
            "returncode": self.returncode,
            "command": self.descriptor.argv,
            "tool_prefix": self.descriptor.tool_prefix,
            "uptime_seconds": uptime,
        }
