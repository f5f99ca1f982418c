"""Storage abstractions for the run event journal."""

from .journal import ChromaUnavailableError, JournalEvent, RunJournal, run_filter

__all__ = [
    "ChromaUnavailableError",
    "JournalEvent",
    "RunJournal",
    "run_filter",
]
