from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from delegate_mcp.runs import DelegateOrchestrator, HostSession
from delegate_mcp.tools import DelegateTaskItem, register_tools


class StubTool:
    def __init__(self, fn, name):
        self.fn = fn
        self.name = name


class StubServer:
    def __init__(self) -> None:
        self._tools: dict[str, StubTool] = {}

    def tool(self, *args, **kwargs):
        provided_name = None
        if args and isinstance(args[0], str):
            provided_name = args[0]
        provided_name = kwargs.get("name", provided_name)

        def decorator(fn):
            tool_name = provided_name or fn.__name__
            tool = StubTool(fn, tool_name)
            self._tools[tool_name] = tool
            return tool

        return decorator


class StubContext:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    async def log(self, message: str, level: str = "info") -> None:
        self.messages.append((level, message))


def _register(settings, backend, workdir: Path):
    server = StubServer()
    orchestrator = DelegateOrchestrator(settings, backend)
    handles = register_tools(
        server,
        orchestrator=orchestrator,
        settings=settings,
        host_factory=lambda: HostSession(cwd=workdir),
    )
    return server, handles, orchestrator


def test_registers_three_tools(settings, backend, workdir: Path) -> None:
    server, handles, _ = _register(settings, backend, workdir)

    assert set(server._tools) == {"tmux_delegate", "tmux_delegate_status", "list_agents"}
    assert handles.tmux_delegate.name == "tmux_delegate"


def test_delegate_and_poll_status(settings, backend, workdir: Path) -> None:
    _, handles, orchestrator = _register(settings, backend, workdir)
    context = StubContext()

    async def scenario():
        started = await handles.tmux_delegate.fn(
            tasks=[DelegateTaskItem(task="first"), DelegateTaskItem(task="second", agent="scout")],
            context=context,
        )
        for task in orchestrator.store.load(started["run_id"]).tasks:
            task.output_path.write_text("done\n", encoding="utf-8")
            task.exit_code_path.write_text("0", encoding="utf-8")
        status = await handles.tmux_delegate_status.fn(id=started["run_id"], output=True, tail=5)
        await orchestrator.shutdown()
        return started, status

    started, status = asyncio.run(scenario())

    assert started["status"] == "running"
    assert started["mode"] == "async"
    assert "tmux_delegate_status" in started["hint"]
    assert len(started["windows"]) == 2
    assert any(name.startswith("delegate:scout:") for name in started["windows"].values())
    assert context.messages and context.messages[0][0] == "info"

    assert status["status"] == "completed"
    assert status["counts"] == {"running": 0, "completed": 2, "failed": 0}
    assert [task["output"] for task in status["tasks"]] == ["done\n", "done\n"]


def test_delegate_single_task_with_wait(settings, make_backend, workdir: Path) -> None:
    class InstantBackend(make_backend):
        async def spawn(self, command, label):
            handle = await super().spawn(command, label)
            command.output_path.write_text("ok\n", encoding="utf-8")
            command.exit_code_path.write_text("2\n", encoding="utf-8")
            return handle

    _, handles, orchestrator = _register(settings, InstantBackend(), workdir)

    async def scenario():
        payload = await handles.tmux_delegate.fn(task="solo", wait=True)
        await orchestrator.shutdown()
        return payload

    payload = asyncio.run(scenario())

    assert payload["mode"] == "sync"
    assert payload["status"] == "failed"
    assert "hint" not in payload
    assert payload["tasks"][0]["exit_code"] == 2
    assert payload["tasks"][0]["output"] == "ok\n"


def test_delegate_without_tasks_reports_agents(settings, backend, workdir: Path) -> None:
    settings.user_agents_dir.mkdir(parents=True)
    (settings.user_agents_dir / "scout.md").write_text(
        "---\nname: scout\ndescription: Recon\n---\n", encoding="utf-8"
    )
    _, handles, _ = _register(settings, backend, workdir)

    with pytest.raises(ValueError, match="Available agents: scout"):
        asyncio.run(handles.tmux_delegate.fn())


def test_status_for_unknown_run(settings, backend, workdir: Path) -> None:
    _, handles, _ = _register(settings, backend, workdir)

    with pytest.raises(ValueError, match="Run nope not found."):
        asyncio.run(handles.tmux_delegate_status.fn(id="nope"))


def test_list_agents_merges_project_profiles(settings, backend, workdir: Path) -> None:
    settings.user_agents_dir.mkdir(parents=True)
    (settings.user_agents_dir / "scout.md").write_text(
        "---\nname: scout\ndescription: User scout\ntools: read\n---\n", encoding="utf-8"
    )
    project_agents = workdir / ".pi" / "agents"
    project_agents.mkdir(parents=True)
    (project_agents / "reviewer.md").write_text(
        "---\nname: reviewer\ndescription: Reviews diffs\n---\n", encoding="utf-8"
    )
    _, handles, _ = _register(settings, backend, workdir)

    user_only = asyncio.run(handles.list_agents.fn())
    both = asyncio.run(handles.list_agents.fn(agent_scope="both"))

    assert [entry["name"] for entry in user_only] == ["scout"]
    assert user_only[0]["tools"] == ["read"]
    assert sorted(entry["name"] for entry in both) == ["reviewer", "scout"]
    assert {entry["name"]: entry["source"] for entry in both}["reviewer"] == "project"
