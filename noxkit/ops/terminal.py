"""Shell command execution for terminal capabilities.

The runner takes the literal command string that was already checked against
the registry's restricted and allowed lists. It never builds pipelines itself.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120.0  # seconds
DEFAULT_HISTORY_SIZE = 100


class CommandTimeoutError(Exception):
    """A command ran past its timeout and was killed."""


@dataclass
class CommandResult:
    command: str
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: float

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class HistoryEntry:
    command: str
    status: str  # "completed" | "failed" | "timeout"
    exit_code: int | None
    timestamp: datetime


class ProcessRunner:
    """Runs shell commands in the workspace directory."""

    def __init__(
        self,
        cwd: Path,
        timeout: float = DEFAULT_TIMEOUT,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        self._cwd = Path(cwd)
        self._timeout = timeout
        self._history: deque[HistoryEntry] = deque(maxlen=history_size)

    @property
    def history(self) -> list[HistoryEntry]:
        return list(self._history)

    async def run(self, command: str, timeout: float | None = None) -> CommandResult:
        """Run a command and capture its output.

        A non-zero exit is returned, not raised. Only a timeout raises.
        """
        if not command.strip():
            raise ValueError("Command must be a non-empty string")

        timeout = timeout or self._timeout
        logger.info(f"Executing command: {command}")
        started = time.monotonic()
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=self._cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self._record(command, "timeout", None)
            raise CommandTimeoutError(f"Command timed out after {timeout:g}s: {command}")

        result = CommandResult(
            command=command,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            exit_code=process.returncode if process.returncode is not None else -1,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        self._record(command, "completed" if result.ok else "failed", result.exit_code)
        if not result.ok:
            logger.warning(f"Command exited with {result.exit_code}: {command}")
        return result

    def _record(self, command: str, status: str, exit_code: int | None) -> None:
        self._history.append(HistoryEntry(command, status, exit_code, datetime.now()))

    def clear_history(self) -> None:
        self._history.clear()
