from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path

import pytest

from delegate_mcp.backend import BackendError
from delegate_mcp.runs import CompletionDetector, RunState, TaskState, TaskStatus, parse_exit_code

FIXED = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _task(tmp_path: Path, handle: str | None = "%1") -> TaskState:
    return TaskState(
        id="t1",
        instruction="x",
        cwd=tmp_path,
        backend_handle=handle,
        output_path=tmp_path / "out.txt",
        exit_code_path=tmp_path / "exit.txt",
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("0\n", 0), ("1", 1), ("42 extra", 42), ("0 1", 0), ("oops", 1), ("", 1), ("3abc", 1)],
)
def test_parse_exit_code(raw: str, expected: int) -> None:
    assert parse_exit_code(raw) == expected


def test_exit_signal_decides_outcome(tmp_path: Path, backend) -> None:
    task = _task(tmp_path)
    backend.alive.add("%1")
    task.exit_code_path.write_text("0\n", encoding="utf-8")

    detector = CompletionDetector(backend, clock=lambda: FIXED)
    assert asyncio.run(detector.refresh(task)) is True

    assert task.status is TaskStatus.COMPLETED
    assert task.exit_code == 0
    assert task.finished_at == FIXED
    assert backend.liveness_checks == []


def test_live_pane_without_signal_keeps_running(tmp_path: Path, backend) -> None:
    task = _task(tmp_path)
    backend.alive.add("%1")

    detector = CompletionDetector(backend)
    assert asyncio.run(detector.refresh(task)) is False
    assert task.status is TaskStatus.RUNNING


def test_dead_pane_without_signal_fails(tmp_path: Path, backend) -> None:
    task = _task(tmp_path)

    detector = CompletionDetector(backend, clock=lambda: FIXED)
    assert asyncio.run(detector.refresh(task)) is True

    assert task.status is TaskStatus.FAILED
    assert task.exit_code == 1
    assert task.finished_at == FIXED


def test_dead_pane_rechecks_signal(tmp_path: Path) -> None:
    task = _task(tmp_path)

    class LateWriter:
        async def is_alive(self, handle: str) -> bool:
            # the worker wrote its status just as the pane closed
            task.exit_code_path.write_text("0", encoding="utf-8")
            return False

    detector = CompletionDetector(LateWriter())
    asyncio.run(detector.refresh(task))

    assert task.status is TaskStatus.COMPLETED
    assert task.exit_code == 0


def test_terminal_tasks_are_left_alone(tmp_path: Path, backend) -> None:
    task = _task(tmp_path)
    task.finish(0, at=FIXED)
    task.exit_code_path.write_text("5", encoding="utf-8")

    detector = CompletionDetector(backend)
    assert asyncio.run(detector.refresh(task)) is False
    assert task.exit_code == 0
    assert task.finished_at == FIXED


def test_refresh_run_touches_updated_at(tmp_path: Path, backend) -> None:
    first = _task(tmp_path, handle="%1")
    second = TaskState(
        id="t2",
        instruction="y",
        cwd=tmp_path,
        backend_handle="%2",
        output_path=tmp_path / "out2.txt",
        exit_code_path=tmp_path / "exit2.txt",
    )
    backend.alive.update({"%1", "%2"})
    second.exit_code_path.write_text("9", encoding="utf-8")
    run = RunState(id="r", tasks=[first, second], run_dir=tmp_path)

    detector = CompletionDetector(backend, clock=lambda: FIXED)
    assert asyncio.run(detector.refresh_run(run)) is True

    assert run.status is TaskStatus.RUNNING
    assert second.status is TaskStatus.FAILED
    assert run.updated_at == FIXED

    assert asyncio.run(detector.refresh_run(run)) is False


def test_liveness_error_keeps_task_running(tmp_path: Path, caplog) -> None:
    task = _task(tmp_path)

    class Unreachable:
        async def is_alive(self, handle: str) -> bool:
            raise BackendError("tmux list-panes failed: server busy")

    detector = CompletionDetector(Unreachable())
    with caplog.at_level("WARNING", logger="delegate_mcp.runs.detector"):
        assert asyncio.run(detector.refresh(task)) is False

    assert task.status is TaskStatus.RUNNING
    assert task.exit_code is None
    assert "Liveness check failed" in caplog.text


def test_concurrent_refreshes_report_transition_once(tmp_path: Path) -> None:
    task = _task(tmp_path)

    class SlowDeadPane:
        async def is_alive(self, handle: str) -> bool:
            await asyncio.sleep(0.01)
            return False

    detector = CompletionDetector(SlowDeadPane(), clock=lambda: FIXED)

    async def scenario() -> list[bool]:
        return await asyncio.gather(*(detector.refresh(task) for _ in range(5)))

    results = asyncio.run(scenario())

    assert results.count(True) == 1
    assert task.status is TaskStatus.FAILED
    assert task.finished_at == FIXED
