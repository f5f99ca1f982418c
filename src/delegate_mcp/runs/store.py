"""File-backed run state."""

from __future__ import annotations

import contextlib
import logging
import os
import re
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .models import RunState, TaskState

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"

NO_OUTPUT = "(no output yet)"
EMPTY_OUTPUT = "(empty output)"
UNREADABLE_OUTPUT = "(error reading output)"

_RUN_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class RunStore:
    """One directory per run holding ``state.json`` plus per-task capture files."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def run_dir(self, run_id: str) -> Path:
        if not _RUN_ID_PATTERN.match(run_id):
            raise ValueError(f"Invalid run id '{run_id}'")
        return self._base_dir / run_id

    def state_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / STATE_FILENAME

    def create_run_dir(self, run_id: str) -> Path:
        directory = self.run_dir(run_id)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def save(self, run: RunState) -> None:
        """Persist ``run`` by writing a sibling temp file and renaming it into place."""

        directory = self.create_run_dir(run.id)
        payload = run.model_dump_json(indent=2) + "\n"
        fd, tmp_name = tempfile.mkstemp(dir=directory, prefix=".state.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, directory / STATE_FILENAME)
        except BaseException:
            with contextlib.suppress(OSError):
                os.unlink(tmp_name)
            raise

    def load(self, run_id: str) -> RunState | None:
        """Return the persisted run, or None when it is missing or unreadable."""

        try:
            path = self.state_path(run_id)
        except ValueError:
            return None
        if not path.exists():
            return None
        try:
            return RunState.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as exc:
            logger.warning("Unreadable run state", extra={"run_id": run_id, "error": str(exc)})
            return None

    def exists(self, run_id: str) -> bool:
        try:
            return self.state_path(run_id).exists()
        except ValueError:
            return False

    def list_run_ids(self) -> list[str]:
        if not self._base_dir.is_dir():
            return []
        return sorted(
            entry.name
            for entry in self._base_dir.iterdir()
            if entry.is_dir() and (entry / STATE_FILENAME).exists()
        )

    @staticmethod
    def read_output(task: TaskState, tail: int | None = None) -> str:
        """Read a task's captured output, keeping only the last ``tail`` lines when positive."""

        path = task.output_path
        if not path.exists():
            return NO_OUTPUT
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return UNREADABLE_OUTPUT
        if not content:
            return EMPTY_OUTPUT
        if tail and tail > 0:
            lines = content.split("\n")
            if len(lines) > tail:
                omitted = len(lines) - tail
                return f"... ({omitted} lines omitted)\n" + "\n".join(lines[-tail:])
        return content


__all__ = [
    "EMPTY_OUTPUT",
    "NO_OUTPUT",
    "RunStore",
    "STATE_FILENAME",
    "UNREADABLE_OUTPUT",
]
