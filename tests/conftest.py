from __future__ import annotations

from pathlib import Path

import pytest

from delegate_mcp.backend import SpawnError, WorkerCommand
from delegate_mcp.config import DelegateSettings


class FakeBackend:
    """In-memory stand-in for tmux: panes stay alive until killed."""

    def __init__(self, *, reject_labels: set[str] | None = None) -> None:
        self.reject_labels = set(reject_labels or ())
        self.spawned: list[tuple[WorkerCommand, str]] = []
        self.alive: set[str] = set()
        self.liveness_checks: list[str] = []
        self._counter = 0

    async def spawn(self, command: WorkerCommand, label: str) -> str:
        self.spawned.append((command, label))
        if any(f":{rejected}:" in label for rejected in self.reject_labels):
            raise SpawnError(f"rejected {label}")
        self._counter += 1
        handle = f"%{self._counter}"
        self.alive.add(handle)
        return handle

    async def is_alive(self, handle: str) -> bool:
        self.liveness_checks.append(handle)
        return handle in self.alive

    def kill(self, handle: str) -> None:
        self.alive.discard(handle)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_backend():
    return FakeBackend


@pytest.fixture
def settings(tmp_path: Path) -> DelegateSettings:
    return DelegateSettings(
        runs_dir=tmp_path / "runs",
        user_agents_dir=tmp_path / "agents",
        chroma_persist_path=tmp_path / "chroma",
        poll_interval=0.05,
    )


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path
