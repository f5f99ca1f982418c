"""Delegate tasks to worker agents running in tmux windows."""

__version__ = "0.1.0"

__all__ = ["__version__"]
