"""Completion and liveness checks for running tasks."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from ..backend import BackendError, ExecutionBackend
from .models import RunState, TaskState, utcnow

logger = logging.getLogger(__name__)


def parse_exit_code(raw: str) -> int:
    """Exit code from exit-signal content; anything unparseable counts as 1."""

    tokens = raw.split()
    if not tokens:
        return 1
    try:
        return int(tokens[0])
    except ValueError:
        return 1


class CompletionDetector:
    """Decide whether running tasks have finished or died."""

    def __init__(
        self,
        backend: ExecutionBackend,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._clock = clock or utcnow

    @staticmethod
    def read_exit_signal(task: TaskState) -> int | None:
        path = task.exit_code_path
        if not path.exists():
            return None
        try:
            raw = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None
        return parse_exit_code(raw)

    async def refresh(self, task: TaskState) -> bool:
        """Apply the exit-signal and liveness checks; True when ``task`` became terminal."""

        if task.terminal:
            return False

        code = self.read_exit_signal(task)
        if code is not None:
            return task.finish(code, at=self._clock())

        if task.backend_handle and not await self._pane_alive(task):
            # the worker may have exited between the two checks
            code = self.read_exit_signal(task)
            return task.finish(1 if code is None else code, at=self._clock())

        return False

    async def _pane_alive(self, task: TaskState) -> bool:
        try:
            return await self._backend.is_alive(task.backend_handle)
        except BackendError as exc:
            logger.warning(
                "Liveness check failed; task left running",
                extra={"task_id": task.id, "handle": task.backend_handle, "error": str(exc)},
            )
            return True

    async def refresh_run(self, run: RunState) -> bool:
        pending = [task for task in run.tasks if not task.terminal]
        changed = False
        if pending:
            results = await asyncio.gather(*(self.refresh(task) for task in pending))
            changed = any(results)
        run.updated_at = self._clock()
        return changed


__all__ = ["CompletionDetector", "parse_exit_code"]
