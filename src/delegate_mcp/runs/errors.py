"""Errors surfaced by the orchestration API."""

from __future__ import annotations

from typing import Iterable


class DelegateError(RuntimeError):
    """Base class for orchestration errors."""


class RunValidationError(DelegateError, ValueError):
    """Raised for malformed run requests, before anything is launched."""


class NoTasksError(RunValidationError):
    """Raised when a run request carries no tasks."""

    def __init__(self, available_agents: Iterable[str] = ()) -> None:
        self.available_agents = sorted(available_agents)
        listing = ", ".join(self.available_agents) or "none"
        super().__init__(f"No tasks provided. Available agents: {listing}")


class TooManyTasksError(RunValidationError):
    """Raised when a run request exceeds the parallel task ceiling."""

    def __init__(self, count: int, limit: int) -> None:
        self.count = count
        self.limit = limit
        super().__init__(f"Too many tasks ({count}). Max: {limit}.")


class RunNotFoundError(DelegateError, LookupError):
    """Raised when no persisted state exists for a run id."""

    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Run {run_id} not found.")


__all__ = [
    "DelegateError",
    "NoTasksError",
    "RunNotFoundError",
    "RunValidationError",
    "TooManyTasksError",
]
