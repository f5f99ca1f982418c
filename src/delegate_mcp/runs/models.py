"""Run and task state models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ..profiles import AgentScope


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self is not TaskStatus.RUNNING


class RunMode(str, Enum):
    ASYNC = "async"
    SYNC = "sync"


class TaskSpec(BaseModel):
    """One requested unit of delegated work."""

    instruction: str = Field(..., description="Task text handed to the worker.")
    agent: str | None = Field(default=None, description="Profile name; also used as the task label.")
    cwd: Path | None = Field(default=None, description="Working directory, relative to the run default.")

    @field_validator("instruction")
    @classmethod
    def _require_instruction(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Task instruction must not be empty")
        return value

    @field_validator("agent", mode="before")
    @classmethod
    def _blank_agent(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


class RunDefaults(BaseModel):
    """Values shared by every task in a run unless a task overrides them."""

    cwd: Path | None = None
    agent_scope: AgentScope | None = None


class LinkedSession(BaseModel):
    """Child session a task's worker records its conversation into."""

    model_config = ConfigDict(frozen=True)

    session_file: Path
    session_id: str


class TaskState(BaseModel):
    """Tracked lifecycle of one worker process."""

    id: str = Field(..., frozen=True)
    label: str = "task"
    instruction: str = Field(..., frozen=True)
    cwd: Path
    status: TaskStatus = TaskStatus.RUNNING
    window_name: str | None = None
    backend_handle: str | None = None
    output_path: Path
    exit_code_path: Path
    linked_session: LinkedSession | None = None
    model: str | None = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    exit_code: int | None = None

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def finish(self, exit_code: int, *, at: datetime | None = None) -> bool:
        """Move to the terminal status matching ``exit_code``.

        Returns False, changing nothing, when the task is already terminal.
        """

        if self.terminal:
            return False
        self.exit_code = exit_code
        self.finished_at = at or utcnow()
        self.status = TaskStatus.COMPLETED if exit_code == 0 else TaskStatus.FAILED
        return True


def derive_run_status(tasks: Iterable[TaskState]) -> TaskStatus:
    statuses = [task.status for task in tasks]
    if any(status is TaskStatus.RUNNING for status in statuses):
        return TaskStatus.RUNNING
    if any(status is TaskStatus.FAILED for status in statuses):
        return TaskStatus.FAILED
    return TaskStatus.COMPLETED


class RunState(BaseModel):
    """A batch of tasks launched by one request.

    ``status`` is always derived from the tasks; a persisted ``status`` key is
    ignored on load.
    """

    id: str = Field(..., frozen=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    tasks: list[TaskState] = Field(default_factory=list)
    run_dir: Path

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> TaskStatus:
        return derive_run_status(self.tasks)

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def task(self, task_id: str) -> TaskState:
        for task in self.tasks:
            if task.id == task_id:
                return task
        raise KeyError(task_id)

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in TaskStatus}
        for task in self.tasks:
            counts[task.status.value] += 1
        return counts


__all__ = [
    "LinkedSession",
    "RunDefaults",
    "RunMode",
    "RunState",
    "TaskSpec",
    "TaskState",
    "TaskStatus",
    "derive_run_status",
    "utcnow",
]
