from __future__ import annotations

import asyncio
import json
from pathlib import Path

from delegate_mcp import __version__
from delegate_mcp.runs import TaskSpec
from delegate_mcp.server import create_server


class StubJournal:
    def __init__(self) -> None:
        self.events: list[dict[str, object]] = []

    def open(self) -> "StubJournal":
        return self

    def record(self, run_id, event_type, payload, attributes=None):
        self.events.append({"run_id": run_id, "event_type": event_type, "attributes": attributes})


def test_status_payload_reports_runtime(settings, backend, workdir: Path, monkeypatch) -> None:
    monkeypatch.chdir(workdir)
    settings.user_agents_dir.mkdir(parents=True)
    (settings.user_agents_dir / "scout.md").write_text(
        "---\nname: scout\ndescription: Recon\n---\n", encoding="utf-8"
    )
    journal = StubJournal()

    server = create_server(settings, backend=backend, journal=journal)
    payload = json.loads(server.status_payload())

    assert payload["server_version"] == __version__
    assert payload["backend"]["kind"] == "FakeBackend"
    assert payload["profiles"]["names"] == ["scout"]
    assert payload["runs"] == {"active": [], "reconciler_running": False}
    assert payload["journal"]["available"] is True
    assert payload["session"]["file_backed"] is False
    assert server.journal is journal


def test_orchestrator_journals_through_server(settings, backend, workdir: Path) -> None:
    journal = StubJournal()
    server = create_server(settings, backend=backend, journal=journal)
    orchestrator = server.orchestrator

    async def scenario():
        result = await orchestrator.start_run([TaskSpec(instruction="x", cwd=workdir)])
        active = json.loads(server.status_payload())["runs"]
        await orchestrator.shutdown()
        return result, active

    result, active = asyncio.run(scenario())

    assert active == {"active": [result.run.id], "reconciler_running": True}
    assert [event["event_type"] for event in journal.events] == ["run_started"]
