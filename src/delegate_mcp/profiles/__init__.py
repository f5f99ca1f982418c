"""Agent profile models and loader exports."""

from .loader import AgentScope, ProfileLoadError, ProfileLoader, find_project_agents_dir, split_frontmatter
from .models import AgentProfile

__all__ = [
    "AgentProfile",
    "AgentScope",
    "ProfileLoadError",
    "ProfileLoader",
    "find_project_agents_dir",
    "split_frontmatter",
]
