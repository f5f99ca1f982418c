"""Execution backend for delegated workers."""

from .commands import WorkerCommand
from .tmux import (
    BackendError,
    ExecutionBackend,
    SpawnError,
    TmuxBackend,
    TmuxNotFoundError,
    TmuxResult,
    sanitize_environment,
)

__all__ = [
    "BackendError",
    "ExecutionBackend",
    "SpawnError",
    "TmuxBackend",
    "TmuxNotFoundError",
    "TmuxResult",
    "WorkerCommand",
    "sanitize_environment",
]
