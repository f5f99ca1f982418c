"""Async tmux execution backend."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Protocol

from .commands import WorkerCommand

logger = logging.getLogger(__name__)

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# stderr of a tmux client whose server has exited, taking every pane with it
_SERVER_GONE = ("no server running", "error connecting to")


class BackendError(RuntimeError):
    """Base class for execution backend errors."""


class TmuxNotFoundError(BackendError):
    """Raised when the tmux executable cannot be located."""


class SpawnError(BackendError):
    """Raised when tmux refuses to start a worker window."""


class ExecutionBackend(Protocol):
    """What the orchestrator needs from whatever hosts the workers."""

    async def spawn(self, command: WorkerCommand, label: str) -> str:
        ...

    async def is_alive(self, handle: str) -> bool:
        """False once ``handle`` is gone; raises BackendError when liveness is unknown."""

        ...


@dataclass(slots=True)
class TmuxResult:
    """Holds the outcome of a tmux invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return the environment tmux is invoked with, minus the server's virtualenv."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


class TmuxBackend:
    """Run workers in detached tmux windows and poll their panes."""

    def __init__(self, executable: Path | None = None) -> None:
        self._explicit = Path(executable) if executable is not None else None
        self._executable_path: Path | None = None

    def _resolve_executable(self) -> Path:
        if self._executable_path is not None:
            return self._executable_path

        if self._explicit is not None:
            if self._explicit.exists() and self._explicit.is_file():
                self._executable_path = self._explicit
                return self._executable_path
            raise TmuxNotFoundError(f"tmux executable not found at {self._explicit}")

        binary = shutil.which("tmux")
        if binary is None:
            raise TmuxNotFoundError("tmux executable not found on PATH")
        self._executable_path = Path(binary)
        return self._executable_path

    @property
    def available(self) -> bool:
        try:
            self._resolve_executable()
        except TmuxNotFoundError:
            return False
        return True

    @staticmethod
    def inside_tmux() -> bool:
        return bool(os.environ.get("TMUX"))

    async def spawn(self, command: WorkerCommand, label: str) -> str:
        """Start ``command`` in a new detached window and return its pane id."""

        shell_argv = ("sh", "-c", command.render_script())
        target = ("-P", "-F", "#{pane_id}", "-c", str(command.cwd))

        result = await self._invoke("new-window", "-d", "-n", label, *target, *shell_argv)
        if not result.ok:
            logger.debug(
                "tmux new-window failed; starting a detached session",
                extra={"label": label, "stderr": result.stderr.strip()},
            )
            result = await self._invoke("new-session", "-d", "-s", label, *target, *shell_argv)
        if not result.ok:
            raise SpawnError(
                f"Failed to create tmux window '{label}': {result.stderr.strip() or result.returncode}"
            )

        pane_id = result.stdout.strip()
        if not pane_id:
            raise SpawnError(f"tmux did not report a pane id for '{label}'")
        return pane_id

    async def is_alive(self, handle: str) -> bool:
        result = await self._invoke("list-panes", "-a", "-F", "#{pane_id}")
        if not result.ok:
            if any(marker in result.stderr for marker in _SERVER_GONE):
                return False
            raise BackendError(f"tmux list-panes failed: {result.stderr.strip() or result.returncode}")
        return any(line.strip() == handle for line in result.stdout.splitlines())

    async def version(self) -> TmuxResult:
        return await self._invoke("-V")

    async def _invoke(self, *args: str) -> TmuxResult:
        cmd = [str(self._resolve_executable()), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(),
            )
        except OSError as exc:
            raise BackendError(f"Unable to execute tmux: {exc}") from exc
        stdout_bytes, stderr_bytes = await process.communicate()
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return TmuxResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


__all__ = [
    "BackendError",
    "ExecutionBackend",
    "SpawnError",
    "TmuxBackend",
    "TmuxNotFoundError",
    "TmuxResult",
    "sanitize_environment",
]
