"""Launch one worker per task through the execution backend."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable
from uuid import uuid4

from ..backend import BackendError, ExecutionBackend, WorkerCommand
from ..profiles import AgentProfile
from .models import LinkedSession, TaskSpec, TaskState, utcnow

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "task"


def task_paths(run_dir: Path, index: int) -> tuple[Path, Path, Path]:
    """Output, exit-signal and prompt file paths for the task at ``index``."""

    return (
        run_dir / f"task-{index}-output.txt",
        run_dir / f"task-{index}-exitcode.txt",
        run_dir / f"task-{index}-prompt.md",
    )


def build_worker_args(
    instruction: str,
    *,
    profile: AgentProfile | None = None,
    linked_session: LinkedSession | None = None,
    prompt_file: Path | None = None,
) -> tuple[str, ...]:
    args: list[str] = ["-p", "--mode", "text"]
    if profile is not None and profile.model:
        args.extend(["--model", profile.model])
    if profile is not None and profile.tools:
        args.extend(["--tools", ",".join(profile.tools)])
    if linked_session is not None:
        args.extend(["--session-dir", str(linked_session.session_file.parent)])
        args.extend(["--session", str(linked_session.session_file)])
    if prompt_file is not None:
        args.extend(["--append-system-prompt", str(prompt_file)])
    args.append(f"Task: {instruction}")
    return tuple(args)


def _write_prompt(path: Path, text: str) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(text)


class TaskLauncher:
    """Turns a task spec into a running (or immediately failed) task."""

    def __init__(
        self,
        backend: ExecutionBackend,
        worker_executable: str = "pi",
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._backend = backend
        self._worker_executable = worker_executable
        self._clock = clock or utcnow

    async def launch(
        self,
        index: int,
        spec: TaskSpec,
        *,
        cwd: Path,
        run_dir: Path,
        profile: AgentProfile | None = None,
        linked_session: LinkedSession | None = None,
    ) -> TaskState:
        task_id = uuid4().hex[:8]
        label = spec.agent or DEFAULT_LABEL
        window_name = f"delegate:{label}:{task_id}"
        output_path, exit_code_path, prompt_path = task_paths(run_dir, index)

        task = TaskState(
            id=task_id,
            label=label,
            instruction=spec.instruction,
            cwd=cwd,
            window_name=window_name,
            output_path=output_path,
            exit_code_path=exit_code_path,
            linked_session=linked_session,
            model=profile.model if profile is not None else None,
            started_at=self._clock(),
        )

        try:
            prompt_file: Path | None = None
            if profile is not None and profile.system_prompt.strip():
                _write_prompt(prompt_path, profile.system_prompt)
                prompt_file = prompt_path

            command = WorkerCommand(
                program=self._worker_executable,
                args=build_worker_args(
                    spec.instruction,
                    profile=profile,
                    linked_session=linked_session,
                    prompt_file=prompt_file,
                ),
                cwd=cwd,
                output_path=output_path,
                exit_code_path=exit_code_path,
            )
            task.backend_handle = await self._backend.spawn(command, window_name)
        except (BackendError, OSError) as exc:
            logger.warning(
                "Task launch failed",
                extra={"task_id": task_id, "label": label, "error": str(exc)},
            )
            task.window_name = None
            task.backend_handle = None
            task.finish(1, at=self._clock())
            return task

        logger.debug(
            "Launched task",
            extra={"task_id": task_id, "label": label, "pane_id": task.backend_handle},
        )
        return task


__all__ = ["DEFAULT_LABEL", "TaskLauncher", "build_worker_args", "task_paths"]
