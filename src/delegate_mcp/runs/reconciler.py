"""Background reconciliation of active runs."""

from __future__ import annotations

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Union

from .detector import CompletionDetector
from .models import RunState, TaskStatus
from .store import RunStore

logger = logging.getLogger(__name__)

CompletionListener = Callable[[RunState], Union[Awaitable[None], None]]


@dataclass(slots=True)
class _RunLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class RunRegistry:
    """Ids of runs still polled by the loop, plus one lock per run.

    Every read-modify-write of a run's state file happens under that run's
    lock; runs never share a lock. A lock is discarded once nobody holds or
    waits on it and its run is no longer tracked.
    """

    def __init__(self) -> None:
        self._active: dict[str, None] = {}
        self._locks: dict[str, _RunLock] = {}

    def track(self, run_id: str) -> None:
        self._active[run_id] = None

    def untrack(self, run_id: str) -> bool:
        if run_id not in self._active:
            return False
        del self._active[run_id]
        return True

    def is_tracked(self, run_id: str) -> bool:
        return run_id in self._active

    def active_ids(self) -> list[str]:
        return list(self._active)

    @asynccontextmanager
    async def hold(self, run_id: str) -> AsyncIterator[None]:
        """Hold ``run_id``'s lock for the duration of the block."""

        entry = self._locks.get(run_id)
        if entry is None:
            entry = self._locks[run_id] = _RunLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0 and run_id not in self._active and self._locks.get(run_id) is entry:
                del self._locks[run_id]

    def lock_ids(self) -> list[str]:
        return list(self._locks)

    def __len__(self) -> int:
        return len(self._active)


class Reconciler:
    """Refreshes tracked runs on a fixed interval and announces completions once."""

    def __init__(
        self,
        store: RunStore,
        detector: CompletionDetector,
        registry: RunRegistry | None = None,
        *,
        interval: float = 5.0,
    ) -> None:
        self._store = store
        self._detector = detector
        self._registry = registry or RunRegistry()
        self._interval = interval
        self._listeners: list[CompletionListener] = []
        self._task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Event | None = None

    @property
    def registry(self) -> RunRegistry:
        return self._registry

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    async def notify(self, run: RunState) -> None:
        snapshot = run.model_copy(deep=True)
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Completion listener failed", extra={"run_id": run.id})

    async def reconcile(self, run_id: str, *, track: bool = False) -> RunState | None:
        """Refresh, persist and return one run; None when its state is unreadable.

        With ``track``, a run still running afterwards is handed to the loop.
        """

        async with self._registry.hold(run_id):
            run = self._store.load(run_id)
            if run is None:
                return None
            before = run.status
            await self._detector.refresh_run(run)
            self._store.save(run)
            finished = run.status is not TaskStatus.RUNNING
            released = self._registry.untrack(run_id) if finished else False
            if track and not finished:
                self._registry.track(run_id)

        if finished and (before is TaskStatus.RUNNING or released):
            logger.info(
                "Run finished",
                extra={"run_id": run_id, "status": run.status.value, "tasks": len(run.tasks)},
            )
            await self.notify(run)
        return run

    async def resume(self) -> list[str]:
        """Track every persisted run that is still running; returns the adopted ids."""

        adopted: list[str] = []
        for run_id in self._store.list_run_ids():
            if self._registry.is_tracked(run_id):
                continue
            async with self._registry.hold(run_id):
                run = self._store.load(run_id)
                if run is None or run.terminal:
                    continue
                self._registry.track(run_id)
            adopted.append(run_id)
        if adopted:
            logger.info("Resumed tracking persisted runs", extra={"runs": adopted})
        return adopted

    async def tick(self) -> list[RunState]:
        """One pass over every tracked run; returns the runs that finished."""

        finished: list[RunState] = []
        for run_id in self._registry.active_ids():
            try:
                run = await self.reconcile(run_id)
            except OSError as exc:
                logger.warning("Unable to persist run state", extra={"run_id": run_id, "error": str(exc)})
                continue
            if run is None:
                logger.warning("Skipping run with missing or unreadable state", extra={"run_id": run_id})
                continue
            if run.terminal:
                finished.append(run)
        return finished

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stopping), name="delegate-reconciler")

    async def stop(self) -> None:
        """Stop the loop after the pass in progress, if any, has been persisted."""

        if self._task is None:
            return
        if self._stopping is not None:
            self._stopping.set()
        task, self._task = self._task, None
        await task

    async def _loop(self, stopping: asyncio.Event) -> None:
        while not stopping.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stopping.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue


__all__ = ["CompletionListener", "Reconciler", "RunRegistry"]
