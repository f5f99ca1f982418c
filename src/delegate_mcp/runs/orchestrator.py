"""Public orchestration API: start runs and query their status."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping
from uuid import uuid4

from ..backend import ExecutionBackend
from ..config import DelegateSettings
from ..profiles import AgentProfile, AgentScope, ProfileLoadError, ProfileLoader
from ..storage import ChromaUnavailableError, RunJournal
from .detector import CompletionDetector
from .errors import NoTasksError, RunNotFoundError, TooManyTasksError
from .launcher import TaskLauncher
from .models import RunDefaults, RunMode, RunState, TaskSpec, TaskStatus, utcnow
from .reconciler import CompletionListener, Reconciler, RunRegistry
from .sessions import HostSession, link_session
from .store import RunStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunResult:
    """A run snapshot plus any captured output, keyed by task id."""

    run: RunState
    outputs: dict[str, str] = field(default_factory=dict)
    mode: RunMode | None = None

    @property
    def run_id(self) -> str:
        return self.run.id

    def to_payload(self) -> dict[str, Any]:
        payload = self.run.model_dump(mode="json")
        payload["run_id"] = self.run.id
        payload["counts"] = self.run.counts()
        if self.mode is not None:
            payload["mode"] = self.mode.value
        for task in payload["tasks"]:
            if task["id"] in self.outputs:
                task["output"] = self.outputs[task["id"]]
        return payload


def normalize_task_specs(
    *,
    task: str | None = None,
    agent: str | None = None,
    cwd: str | Path | None = None,
    tasks: Iterable[TaskSpec | Mapping[str, Any]] | None = None,
) -> list[TaskSpec]:
    """Accept either a single task or a ``tasks`` list; a non-empty list wins."""

    items = list(tasks or [])
    if items:
        specs: list[TaskSpec] = []
        for item in items:
            if isinstance(item, TaskSpec):
                specs.append(item)
                continue
            data = dict(item)
            if "instruction" not in data and "task" in data:
                data["instruction"] = data.pop("task")
            specs.append(TaskSpec.model_validate(data))
        return specs
    if task:
        return [TaskSpec(instruction=task, agent=agent, cwd=cwd)]
    return []


def new_run_id() -> str:
    return uuid4().hex[:8]


class DelegateOrchestrator:
    """Launches runs, tracks them and answers status queries."""

    def __init__(
        self,
        settings: DelegateSettings,
        backend: ExecutionBackend,
        *,
        store: RunStore | None = None,
        profiles: ProfileLoader | None = None,
        journal: RunJournal | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._backend = backend
        self._clock = clock or utcnow
        self._store = store or RunStore(settings.runs_dir)
        self._profiles = profiles or ProfileLoader(settings.user_agents_dir, scope=settings.agent_scope)
        self._journal = journal
        self._detector = CompletionDetector(backend, clock=self._clock)
        self._launcher = TaskLauncher(backend, settings.worker_executable, clock=self._clock)
        self._reconciler = Reconciler(
            self._store,
            self._detector,
            RunRegistry(),
            interval=settings.poll_interval,
        )
        if journal is not None:
            self._reconciler.add_listener(self._journal_completion)

    @property
    def settings(self) -> DelegateSettings:
        return self._settings

    @property
    def store(self) -> RunStore:
        return self._store

    @property
    def profiles(self) -> ProfileLoader:
        return self._profiles

    @property
    def journal(self) -> RunJournal | None:
        return self._journal

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    def active_run_ids(self) -> list[str]:
        return self._reconciler.registry.active_ids()

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._reconciler.add_listener(listener)

    async def start(self) -> None:
        """Adopt runs left running by an earlier process, then start the loop."""

        await self._reconciler.resume()
        self._reconciler.start()

    async def shutdown(self) -> None:
        await self._reconciler.stop()

    def _resolve_profile(self, name: str | None, host: HostSession, scope: AgentScope) -> AgentProfile | None:
        if not name:
            return None
        try:
            return self._profiles.get(name, host.cwd, scope=scope)
        except ProfileLoadError:
            logger.debug("Unknown agent profile; running without overrides", extra={"agent": name})
            return None

    def _record(self, run_id: str, event_type: str, payload: Any, attributes: dict[str, Any]) -> None:
        if self._journal is None:
            return
        try:
            self._journal.record(run_id, event_type, payload, attributes)
        except ChromaUnavailableError as exc:
            logger.warning("Run journal unavailable", extra={"run_id": run_id, "error": str(exc)})

    def _journal_completion(self, run: RunState) -> None:
        self._record(
            run.id,
            "run_completed",
            run.model_dump(mode="json"),
            {"status": run.status.value, "task_count": len(run.tasks)},
        )

    async def start_run(
        self,
        specs: Iterable[TaskSpec],
        *,
        mode: RunMode = RunMode.ASYNC,
        defaults: RunDefaults | None = None,
        host: HostSession | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunResult:
        """Launch every task, persist the run and either return or wait for it."""

        specs = list(specs)
        host = host or HostSession.from_settings(self._settings)
        defaults = defaults or RunDefaults()
        scope: AgentScope = defaults.agent_scope or self._settings.agent_scope

        if not specs:
            available = self._profiles.load_all(host.cwd, scope=scope)
            raise NoTasksError(available.keys())
        if len(specs) > self._settings.max_parallel_tasks:
            raise TooManyTasksError(len(specs), self._settings.max_parallel_tasks)

        base_cwd = host.resolve_cwd(defaults.cwd)
        run_id = new_run_id()
        run_dir = self._store.create_run_dir(run_id)
        created_at = self._clock()

        async def _launch(index: int, spec: TaskSpec):
            task_cwd = host.resolve_cwd(spec.cwd, base=base_cwd)
            profile = self._resolve_profile(spec.agent, host, scope)
            linked = link_session(host, task_cwd, clock=self._clock)
            return await self._launcher.launch(
                index,
                spec,
                cwd=task_cwd,
                run_dir=run_dir,
                profile=profile,
                linked_session=linked,
            )

        tasks = await asyncio.gather(*(_launch(index, spec) for index, spec in enumerate(specs)))
        run = RunState(id=run_id, created_at=created_at, updated_at=self._clock(), tasks=list(tasks), run_dir=run_dir)

        registry = self._reconciler.registry
        async with registry.hold(run_id):
            self._store.save(run)
            if not run.terminal:
                registry.track(run_id)

        logger.info(
            "Started run",
            extra={"run_id": run_id, "tasks": len(run.tasks), "mode": mode.value, "status": run.status.value},
        )
        self._record(
            run_id,
            "run_started",
            run.model_dump(mode="json"),
            {"status": run.status.value, "task_count": len(run.tasks), "mode": mode.value},
        )
        for task in run.tasks:
            if task.status is TaskStatus.FAILED and task.backend_handle is None:
                self._record(
                    run_id,
                    "task_launch_failed",
                    {"task_id": task.id, "label": task.label, "instruction": task.instruction},
                    {"task_id": task.id, "status": task.status.value},
                )

        if run.terminal:
            # every launch failed; nothing left for the loop to observe
            await self._reconciler.notify(run)
        else:
            self._reconciler.start()

        if mode is RunMode.SYNC:
            final = await self.wait_for_run(run_id, cancel_event=cancel_event)
            if final is not None:
                run = final
            outputs = {task.id: self._store.read_output(task, self._settings.wait_tail_lines) for task in run.tasks}
            return RunResult(run=run, outputs=outputs, mode=mode)

        return RunResult(run=run, mode=mode)

    async def wait_for_run(self, run_id: str, *, cancel_event: asyncio.Event | None = None) -> RunState | None:
        """Poll ``run_id`` until it is terminal or ``cancel_event`` is set.

        On cancellation the state from the last completed poll is returned and
        the run stays tracked by the background loop.
        """

        interval = self._settings.poll_interval
        latest: RunState | None = None
        while True:
            if cancel_event is not None and cancel_event.is_set():
                break
            run = await self._reconciler.reconcile(run_id)
            if run is not None:
                latest = run
                if run.terminal:
                    return run
            if cancel_event is None:
                await asyncio.sleep(interval)
                continue
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            break
        return latest if latest is not None else self._store.load(run_id)

    async def get_run_status(
        self,
        run_id: str,
        *,
        tail_lines: int | None = None,
        include_output: bool = False,
    ) -> RunResult:
        """Return a freshly reconciled snapshot of ``run_id``.

        A run still running is tracked again, so runs persisted by an earlier
        server process keep getting completion notices.
        """

        run = await self._reconciler.reconcile(run_id, track=True)
        if run is None:
            raise RunNotFoundError(run_id)
        if not run.terminal:
            self._reconciler.start()
        outputs: dict[str, str] = {}
        if include_output:
            tail = self._settings.default_tail_lines if tail_lines is None else tail_lines
            outputs = {task.id: self._store.read_output(task, tail) for task in run.tasks}
        return RunResult(run=run, outputs=outputs)


__all__ = ["DelegateOrchestrator", "RunResult", "new_run_id", "normalize_task_specs"]
