"""Configuration management for the tmux delegate server."""

from __future__ import annotations

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DelegateSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    runs_dir: Path = Field(
        default=Path(tempfile.gettempdir()) / "tmux-delegate", validation_alias="DELEGATE_RUNS_DIR"
    )
    worker_executable: str = Field(default="pi", validation_alias="DELEGATE_WORKER")
    tmux_path: str | None = Field(default=None, validation_alias="TMUX_PATH")
    poll_interval: float = Field(default=5.0, validation_alias="DELEGATE_POLL_INTERVAL")
    max_parallel_tasks: int = Field(default=8, validation_alias="DELEGATE_MAX_TASKS")
    default_tail_lines: int = Field(default=50, validation_alias="DELEGATE_TAIL_LINES")
    wait_tail_lines: int = Field(default=30, validation_alias="DELEGATE_WAIT_TAIL_LINES")
    agent_scope: Literal["user", "project", "both"] = Field(
        default="user", validation_alias="DELEGATE_AGENT_SCOPE"
    )
    user_agents_dir: Path = Field(
        default=Path("~/.pi/agent/agents"), validation_alias="DELEGATE_USER_AGENTS_DIR"
    )
    parent_session_file: Path | None = Field(
        default=None, validation_alias="DELEGATE_PARENT_SESSION_FILE"
    )
    parent_session_dir: Path | None = Field(
        default=None, validation_alias="DELEGATE_PARENT_SESSION_DIR"
    )
    chroma_persist_path: Path = Field(
        default=Path("./storage/chroma"), validation_alias="CHROMA_PERSIST_PATH"
    )
    log_level: str = Field(default="INFO", validation_alias="DELEGATE_LOG_LEVEL")

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "DELEGATE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("agent_scope", mode="before")
    @classmethod
    def _normalize_scope(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("poll_interval")
    @classmethod
    def _validate_poll_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("DELEGATE_POLL_INTERVAL must be > 0")
        return value

    @field_validator("max_parallel_tasks")
    @classmethod
    def _validate_max_parallel_tasks(cls, value: int) -> int:
        if value < 1:
            raise ValueError("DELEGATE_MAX_TASKS must be >= 1")
        return value

    @field_validator("default_tail_lines", "wait_tail_lines")
    @classmethod
    def _validate_tail(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Tail line counts must be >= 0")
        return value

    @property
    def session_dir(self) -> Path | None:
        """Directory holding the parent session, if one is configured."""

        if self.parent_session_dir is not None:
            return self.parent_session_dir
        if self.parent_session_file is not None:
            return self.parent_session_file.parent
        return None


@lru_cache(maxsize=1)
def get_settings() -> DelegateSettings:
    """Return cached settings instance."""

    settings = DelegateSettings()
    settings.runs_dir = settings.runs_dir.expanduser().resolve()
    settings.user_agents_dir = settings.user_agents_dir.expanduser().resolve()
    settings.chroma_persist_path = settings.chroma_persist_path.expanduser().resolve()
    if settings.parent_session_file is not None:
        settings.parent_session_file = settings.parent_session_file.expanduser().resolve()
    if settings.parent_session_dir is not None:
        settings.parent_session_dir = settings.parent_session_dir.expanduser().resolve()
    return settings


__all__ = ["DelegateSettings", "get_settings"]
