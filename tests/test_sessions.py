from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from delegate_mcp.config import DelegateSettings
from delegate_mcp.runs import HostSession, link_session, should_link
from delegate_mcp.runs.sessions import create_child_session


def _host(tmp_path: Path) -> HostSession:
    sessions = tmp_path / "sessions"
    return HostSession(
        cwd=(tmp_path / "project").resolve(),
        session_file=sessions / "parent.jsonl",
        session_dir=sessions,
    )


def test_links_only_same_directory_tasks(tmp_path: Path) -> None:
    (tmp_path / "project" / "sub").mkdir(parents=True)
    host = _host(tmp_path)

    assert should_link(host, tmp_path / "project")
    assert should_link(host, tmp_path / "project" / "sub" / "..")
    assert not should_link(host, tmp_path / "project" / "sub")


def test_in_memory_host_never_links(tmp_path: Path) -> None:
    host = HostSession(cwd=tmp_path)

    assert host.file_backed is False
    assert not should_link(host, tmp_path)
    assert link_session(host, tmp_path) is None
    with pytest.raises(ValueError):
        create_child_session(host, tmp_path)


def test_child_session_header_points_at_parent(tmp_path: Path) -> None:
    host = _host(tmp_path)
    moment = datetime(2025, 3, 4, 5, 6, 7, tzinfo=timezone.utc)

    linked = link_session(host, host.cwd, clock=lambda: moment)

    assert linked is not None
    assert linked.session_file.parent == host.session_dir
    assert linked.session_file.name.startswith(str(int(moment.timestamp() * 1000)))
    header = json.loads(linked.session_file.read_text(encoding="utf-8").splitlines()[0])
    assert header["type"] == "session"
    assert header["id"] == linked.session_id
    assert header["parentSession"] == str(host.session_file)
    assert header["cwd"] == str(host.cwd)


def test_unwritable_session_dir_degrades_to_unlinked(tmp_path: Path) -> None:
    blocker = tmp_path / "sessions"
    blocker.write_text("not a directory", encoding="utf-8")
    host = HostSession(cwd=tmp_path, session_file=tmp_path / "parent.jsonl", session_dir=blocker)

    assert link_session(host, tmp_path) is None


def test_resolve_cwd(tmp_path: Path) -> None:
    host = HostSession(cwd=tmp_path)

    assert host.resolve_cwd(None) == tmp_path.resolve()
    assert host.resolve_cwd("a/b") == (tmp_path / "a" / "b").resolve()
    assert host.resolve_cwd("c", base=tmp_path / "a") == (tmp_path / "a" / "c").resolve()
    assert host.resolve_cwd("/abs") == Path("/abs")


def test_host_from_settings(tmp_path: Path) -> None:
    settings = DelegateSettings(parent_session_file=tmp_path / "s" / "parent.jsonl")

    host = HostSession.from_settings(settings, cwd=tmp_path)

    assert host.file_backed
    assert host.session_dir == tmp_path / "s"
    assert host.cwd == tmp_path.resolve()
