"""Run orchestration: state, launching, completion detection and reconciliation."""

from .detector import CompletionDetector, parse_exit_code
from .errors import DelegateError, NoTasksError, RunNotFoundError, RunValidationError, TooManyTasksError
from .launcher import TaskLauncher, build_worker_args
from .models import (
    LinkedSession,
    RunDefaults,
    RunMode,
    RunState,
    TaskSpec,
    TaskState,
    TaskStatus,
    derive_run_status,
)
from .orchestrator import DelegateOrchestrator, RunResult, normalize_task_specs
from .reconciler import CompletionListener, Reconciler, RunRegistry
from .sessions import HostSession, link_session, should_link
from .store import RunStore

__all__ = [
    "CompletionDetector",
    "CompletionListener",
    "DelegateError",
    "DelegateOrchestrator",
    "HostSession",
    "LinkedSession",
    "NoTasksError",
    "Reconciler",
    "RunDefaults",
    "RunMode",
    "RunNotFoundError",
    "RunRegistry",
    "RunResult",
    "RunState",
    "RunStore",
    "RunValidationError",
    "TaskLauncher",
    "TaskSpec",
    "TaskState",
    "TaskStatus",
    "TooManyTasksError",
    "build_worker_args",
    "derive_run_status",
    "link_session",
    "normalize_task_specs",
    "parse_exit_code",
    "should_link",
]
