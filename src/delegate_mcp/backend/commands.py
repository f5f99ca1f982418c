"""Structured description of a worker invocation."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True, slots=True)
class WorkerCommand:
    """A worker program plus where its output and exit status must land.

    The backend turns this into the script it actually runs, so callers never
    assemble shell strings themselves.
    """

    program: str
    args: tuple[str, ...] = field(default_factory=tuple)
    cwd: Path = field(default_factory=Path.cwd)
    output_path: Path = Path("output.txt")
    exit_code_path: Path = Path("exitcode.txt")

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.program, *self.args)

    @property
    def pending_exit_code_path(self) -> Path:
        return self.exit_code_path.with_name(self.exit_code_path.name + ".tmp")

    def render_script(self) -> str:
        """Render a POSIX ``sh`` script for this command.

        The worker's own status is captured before ``tee`` so the pipeline
        stage never masks it, and the exit-signal file only appears, by rename,
        once output capture has finished.
        """

        cwd = shlex.quote(str(self.cwd))
        worker = " ".join(shlex.quote(part) for part in self.argv)
        output = shlex.quote(str(self.output_path))
        pending = shlex.quote(str(self.pending_exit_code_path))
        exit_file = shlex.quote(str(self.exit_code_path))
        return "\n".join(
            [
                f"cd {cwd} || {{ echo 1 > {exit_file}; exit 1; }}",
                f"{{ {worker} 2>&1; echo $? > {pending}; }} | tee {output}",
                f"mv -f {pending} {exit_file}",
            ]
        )


__all__ = ["WorkerCommand"]
