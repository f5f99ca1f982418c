"""Tool registration for the tmux delegate server."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

from fastmcp import Context, FastMCP
from pydantic import BaseModel, Field

from ..config import DelegateSettings
from ..runs import (
    DelegateOrchestrator,
    HostSession,
    RunDefaults,
    RunMode,
    RunNotFoundError,
    normalize_task_specs,
)

logger = logging.getLogger(__name__)


class DelegateTaskItem(BaseModel):
    """One entry of a parallel ``tasks`` list."""

    task: str = Field(..., description="Task description")
    agent: str | None = Field(default=None, description="Agent name")
    cwd: str | None = Field(default=None, description="Working directory")


@dataclass(slots=True)
class ToolHandles:
    tmux_delegate: Any
    tmux_delegate_status: Any
    list_agents: Any
    orchestrator: DelegateOrchestrator


def register_tools(
    server: FastMCP,
    *,
    orchestrator: DelegateOrchestrator,
    settings: DelegateSettings,
    host_factory=None,
) -> ToolHandles:
    """Register the delegate tools on the server."""

    def _host() -> HostSession:
        if host_factory is not None:
            return host_factory()
        return HostSession.from_settings(settings)

    async def _tmux_delegate(
        task: str | None = None,
        agent: str | None = None,
        cwd: str | None = None,
        tasks: list[DelegateTaskItem] | None = None,
        agent_scope: Literal["user", "project", "both"] | None = None,
        wait: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Delegate one task, or several in parallel, to workers in tmux windows."""

        items = [item.model_dump() if isinstance(item, BaseModel) else dict(item) for item in tasks or []]
        specs = normalize_task_specs(task=task, agent=agent, cwd=cwd, tasks=items)
        mode = RunMode.SYNC if wait else RunMode.ASYNC
        defaults = RunDefaults(agent_scope=agent_scope)
        result = await orchestrator.start_run(
            specs,
            mode=mode,
            defaults=defaults,
            host=_host(),
        )
        run = result.run

        await _emit_log(
            context,
            "info",
            "Delegated run",
            extra={"run_id": run.id, "tasks": len(run.tasks), "mode": mode.value, "status": run.status.value},
        )

        payload = result.to_payload()
        payload["windows"] = {
            task_state.id: task_state.window_name for task_state in run.tasks if task_state.window_name
        }
        if mode is RunMode.ASYNC:
            payload["hint"] = (
                "Use tmux_delegate_status to check progress and retrieve output. "
                "Switch to a tmux window to watch live: tmux select-window -t <name>"
            )
        return payload

    async def _tmux_delegate_status(
        id: str,
        tail: int | None = None,
        output: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Refresh and return a run's status, optionally with each task's output tail."""

        try:
            result = await orchestrator.get_run_status(id, tail_lines=tail, include_output=output)
        except RunNotFoundError as exc:
            raise ValueError(str(exc)) from exc

        await _emit_log(
            context,
            "debug",
            "Run status",
            extra={"run_id": id, "status": result.run.status.value},
        )
        return result.to_payload()

    async def _list_agents(
        cwd: str | None = None,
        agent_scope: Literal["user", "project", "both"] | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List discoverable agent profiles."""

        host = _host()
        search_cwd = host.resolve_cwd(Path(cwd) if cwd else None)
        profile_map = orchestrator.profiles.load_all(search_cwd, scope=agent_scope)
        catalog = [
            {
                "name": profile.name,
                "description": profile.description,
                "source": profile.source,
                "model": profile.model,
                "tools": profile.tools,
                "file_path": str(profile.file_path) if profile.file_path else None,
            }
            for profile in profile_map.values()
        ]

        await _emit_log(context, "debug", "Listing agent profiles", extra={"count": len(catalog)})
        return catalog

    tool_delegate = server.tool(
        name="tmux_delegate",
        description=(
            "Delegate tasks to worker agents running in visible tmux windows. Each task "
            "runs in its own window. Same-directory tasks get a child session linked to "
            "the current session; tasks in another directory get an independent session. "
            "Returns immediately by default; set wait=true to block until completion. "
            "Use tmux_delegate_status to check progress and retrieve output."
        ),
    )(_tmux_delegate)

    tool_status = server.tool(
        name="tmux_delegate_status",
        description=(
            "Check status and retrieve output from a tmux delegate run. Set output=true "
            "to include task output; tail=N limits it to the last N lines."
        ),
    )(_tmux_delegate_status)

    tool_list = server.tool(
        name="list_agents",
        description="List agent profiles available for delegation.",
    )(_list_agents)

    return ToolHandles(
        tmux_delegate=tool_delegate,
        tmux_delegate_status=tool_status,
        list_agents=tool_list,
        orchestrator=orchestrator,
    )


__all__ = ["DelegateTaskItem", "ToolHandles", "register_tools"]


async def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log locally and mirror the message to the MCP client when a context is available."""

    payload = extra or {}
    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)

    if context is None:
        return
    ctx_log = getattr(context, "log", None)
    if not callable(ctx_log):
        return
    details = ", ".join(f"{key}={value}" for key, value in payload.items())
    result = ctx_log(f"{message} ({details})" if details else message, level=level)
    if inspect.isawaitable(result):
        await result
