"""Decide when a task's worker session is linked under the caller's session."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable
from uuid import uuid4

from ..config import DelegateSettings
from .models import LinkedSession, utcnow

logger = logging.getLogger(__name__)

SESSION_HEADER_VERSION = 3


@dataclass(frozen=True, slots=True)
class HostSession:
    """What the host tells us about the calling session."""

    cwd: Path
    session_file: Path | None = None
    session_dir: Path | None = None

    @property
    def file_backed(self) -> bool:
        return self.session_file is not None and self.session_dir is not None

    @classmethod
    def from_settings(cls, settings: DelegateSettings, cwd: Path | None = None) -> "HostSession":
        return cls(
            cwd=Path(cwd or os.getcwd()).expanduser().resolve(),
            session_file=settings.parent_session_file,
            session_dir=settings.session_dir,
        )

    def resolve_cwd(self, path: Path | str | None, base: Path | None = None) -> Path:
        """Absolute form of ``path``, relative paths taken from ``base`` or the caller's cwd."""

        root = Path(base) if base is not None else self.cwd
        if path is None or str(path) == "":
            return root.expanduser().resolve()
        candidate = Path(path).expanduser()
        if not candidate.is_absolute():
            candidate = root / candidate
        return candidate.resolve()


def should_link(host: HostSession, task_cwd: Path) -> bool:
    """Link only same-directory tasks of a file-backed caller session."""

    if not host.file_backed:
        return False
    return Path(task_cwd).expanduser().resolve() == host.cwd.expanduser().resolve()


def create_child_session(
    host: HostSession,
    task_cwd: Path,
    *,
    clock: Callable[[], datetime] | None = None,
) -> LinkedSession:
    """Write a session header whose ``parentSession`` points at the caller's session."""

    if host.session_file is None or host.session_dir is None:
        raise ValueError("Caller session is not file-backed")
    now = (clock or utcnow)()
    session_id = str(uuid4())
    session_dir = Path(host.session_dir)
    session_dir.mkdir(parents=True, exist_ok=True)
    session_file = session_dir / f"{int(now.timestamp() * 1000)}_{session_id[:8]}.jsonl"
    header = {
        "type": "session",
        "version": SESSION_HEADER_VERSION,
        "id": session_id,
        "timestamp": now.isoformat(),
        "cwd": str(task_cwd),
        "parentSession": str(host.session_file),
    }
    session_file.write_text(json.dumps(header) + "\n", encoding="utf-8")
    return LinkedSession(session_file=session_file, session_id=session_id)


def link_session(
    host: HostSession,
    task_cwd: Path,
    *,
    clock: Callable[[], datetime] | None = None,
) -> LinkedSession | None:
    if not should_link(host, task_cwd):
        return None
    try:
        return create_child_session(host, task_cwd, clock=clock)
    except OSError as exc:
        logger.warning(
            "Unable to create child session; task runs unlinked",
            extra={"session_dir": str(host.session_dir), "error": str(exc)},
        )
        return None


__all__ = ["HostSession", "create_child_session", "link_session", "should_link"]
