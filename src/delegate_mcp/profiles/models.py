"""Profile models for delegated worker agents."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class AgentProfile(BaseModel):
    """Overrides applied to a worker launched under a named profile."""

    name: str = Field(..., description="Unique name used to select the profile.")
    description: str = Field(..., description="Short description shown in agent listings.")
    system_prompt: str = Field(
        default="",
        description="Markdown body appended to the worker's system prompt.",
    )
    tools: list[str] = Field(
        default_factory=list,
        description="Allowlist of tools passed to the worker; empty means the worker default.",
    )
    model: str | None = Field(default=None, description="Optional model override.")
    source: Literal["user", "project"] = Field(
        default="user", description="Which search location the profile came from."
    )
    file_path: Path | None = Field(default=None, description="File the profile was read from.")

    @field_validator("name", "description")
    @classmethod
    def _require_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent profile name and description must not be empty")
        return normalized

    @field_validator("tools", mode="before")
    @classmethod
    def _split_tools(cls, value: Any):
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise TypeError("tools must be a comma-separated string or a list of strings")

    @field_validator("model", mode="before")
    @classmethod
    def _blank_model(cls, value: Any):
        if isinstance(value, str) and not value.strip():
            return None
        return value


__all__ = ["AgentProfile"]
