"""Profile discovery from markdown files with YAML frontmatter."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import ValidationError

from .models import AgentProfile

logger = logging.getLogger(__name__)

AgentScope = Literal["user", "project", "both"]

PROJECT_AGENTS_SUBDIR = Path(".pi") / "agents"


class ProfileLoadError(RuntimeError):
    """Raised when a requested profile cannot be resolved."""


def split_frontmatter(content: str) -> tuple[dict, str]:
    """Split a markdown document into its YAML frontmatter mapping and body."""

    if not content.startswith("---"):
        return {}, content
    lines = content.splitlines(keepends=True)
    if lines[0].strip() != "---":
        return {}, content
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            header = "".join(lines[1:index])
            body = "".join(lines[index + 1 :])
            document = yaml.safe_load(header) if header.strip() else {}
            if not isinstance(document, dict):
                raise ValueError("frontmatter must be a mapping")
            return document, body.lstrip("\n")
    return {}, content


def find_project_agents_dir(cwd: Path) -> Path | None:
    """Return the nearest ``.pi/agents`` directory at or above ``cwd``."""

    current = Path(cwd).expanduser().resolve()
    for directory in (current, *current.parents):
        candidate = directory / PROJECT_AGENTS_SUBDIR
        if candidate.is_dir():
            return candidate
    return None


class ProfileLoader:
    """Discovers agent profiles in the user and nearest project directories."""

    def __init__(self, user_dir: Path | None = None, *, scope: AgentScope = "user") -> None:
        self._user_dir = Path(user_dir).expanduser() if user_dir is not None else None
        self._scope: AgentScope = scope

    @property
    def scope(self) -> AgentScope:
        return self._scope

    @property
    def user_dir(self) -> Path | None:
        return self._user_dir

    def _load_dir(self, directory: Path, source: Literal["user", "project"]) -> list[AgentProfile]:
        if not directory.is_dir():
            return []

        profiles: list[AgentProfile] = []
        for path in sorted(directory.glob("*.md")):
            if not path.is_file():
                continue
            try:
                frontmatter, body = split_frontmatter(path.read_text(encoding="utf-8"))
            except (OSError, ValueError, yaml.YAMLError) as exc:
                logger.warning("Skipping unreadable agent profile", extra={"path": str(path), "error": str(exc)})
                continue

            if not frontmatter.get("name") or not frontmatter.get("description"):
                continue

            try:
                profile = AgentProfile.model_validate(
                    {
                        "name": str(frontmatter["name"]),
                        "description": str(frontmatter["description"]),
                        "tools": frontmatter.get("tools"),
                        "model": frontmatter.get("model"),
                        "system_prompt": body,
                        "source": source,
                        "file_path": path,
                    }
                )
            except ValidationError as exc:
                logger.warning("Skipping invalid agent profile", extra={"path": str(path), "error": str(exc)})
                continue
            profiles.append(profile)
        return profiles

    def load_all(self, cwd: Path | None = None, *, scope: AgentScope | None = None) -> dict[str, AgentProfile]:
        """Load profiles visible from ``cwd``.

        With scope ``both``, project profiles override user profiles sharing a name.
        """

        effective_scope = scope or self._scope
        user_profiles: list[AgentProfile] = []
        project_profiles: list[AgentProfile] = []

        if effective_scope in ("user", "both") and self._user_dir is not None:
            user_profiles = self._load_dir(self._user_dir, "user")
        if effective_scope in ("project", "both") and cwd is not None:
            project_dir = find_project_agents_dir(cwd)
            if project_dir is not None:
                project_profiles = self._load_dir(project_dir, "project")

        profiles: dict[str, AgentProfile] = {}
        for profile in [*user_profiles, *project_profiles]:
            profiles[profile.name] = profile
        return profiles

    def get(self, name: str, cwd: Path | None = None, *, scope: AgentScope | None = None) -> AgentProfile:
        """Return a single profile by name."""

        profiles = self.load_all(cwd, scope=scope)
        try:
            return profiles[name]
        except KeyError as exc:
            raise ProfileLoadError(f"Agent profile '{name}' not found") from exc


__all__ = [
    "AgentProfile",
    "AgentScope",
    "ProfileLoadError",
    "ProfileLoader",
    "find_project_agents_dir",
    "split_frontmatter",
]
