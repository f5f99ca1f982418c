"""Run lifecycle journal kept in a ChromaDB collection."""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

DEFAULT_COLLECTION = "delegate_runs"

# keys the journal owns in each record's metadata
_RESERVED = frozenset({"run_id", "event_type", "sequence", "recorded_at"})

Scalar = str | int | float | bool


class ChromaUnavailableError(RuntimeError):
    """Raised when the journal's Chroma collection cannot be opened."""


class JournalCollection(Protocol):
    def add(
        self,
        *,
        ids: Sequence[str],
        documents: Sequence[str],
        metadatas: Sequence[Mapping[str, Any]],
    ) -> None:
        ...

    def get(
        self,
        *,
        where: Mapping[str, Any] | None = None,
        include: Sequence[str] | None = None,
    ) -> Mapping[str, Any]:
        ...


class JournalClient(Protocol):
    def get_or_create_collection(self, name: str) -> JournalCollection:
        ...


@dataclass(frozen=True, slots=True)
class JournalEvent:
    """One recorded step in a run's lifecycle."""

    run_id: str
    event_type: str
    sequence: int
    recorded_at: datetime
    payload: Any
    attributes: dict[str, Scalar] = field(default_factory=dict)
    event_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "run_id": self.run_id,
            "event_type": self.event_type,
            "sequence": self.sequence,
            "recorded_at": self.recorded_at.isoformat(),
            "attributes": dict(self.attributes),
            "payload": self.payload,
        }


def run_filter(run_id: str, event_types: Iterable[str] | None = None) -> dict[str, Any]:
    """Chroma ``where`` clause selecting one run, optionally narrowed to some event types."""

    clauses: list[dict[str, Any]] = [{"run_id": run_id}]
    types = sorted(set(event_types or ()))
    if types:
        clauses.append({"event_type": {"$in": types}})
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


class RunJournal:
    """Append-only record of run events, ordered per run by a sequence number.

    Sequence numbers continue from whatever the collection already holds for a
    run, so events recorded after a server restart still sort after earlier ones.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = DEFAULT_COLLECTION,
        client_factory: Callable[[], JournalClient] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._persistent_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collection: JournalCollection | None = None
        self._sequences: dict[str, int] = {}

    @property
    def path(self) -> Path:
        return self._path

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _persistent_client(self) -> JournalClient:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install tmux-delegate-mcp with the journal extra"
            ) from exc
        return chromadb.PersistentClient(path=str(self._path))

    def open(self) -> "RunJournal":
        """Open the collection now instead of on first use."""

        if self._collection is None:
            self._collection = self._client_factory().get_or_create_collection(self._collection_name)
        return self

    @property
    def _events(self) -> JournalCollection:
        return self.open()._collection  # type: ignore[return-value]

    def _next_sequence(self, run_id: str) -> int:
        if run_id not in self._sequences:
            existing = self._events.get(where=run_filter(run_id), include=["metadatas"])
            self._sequences[run_id] = max(
                (int(meta.get("sequence", 0)) for meta in existing.get("metadatas") or []),
                default=0,
            )
        self._sequences[run_id] += 1
        return self._sequences[run_id]

    def record(
        self,
        run_id: str,
        event_type: str,
        payload: Any,
        attributes: Mapping[str, Any] | None = None,
    ) -> JournalEvent:
        """Append an event; non-scalar attributes are dropped since Chroma cannot index them."""

        sequence = self._next_sequence(run_id)
        recorded_at = self._clock()
        kept = {
            key: value
            for key, value in (attributes or {}).items()
            if key not in _RESERVED and isinstance(value, (str, int, float, bool))
        }
        event = JournalEvent(
            run_id=run_id,
            event_type=event_type,
            sequence=sequence,
            recorded_at=recorded_at,
            payload=payload,
            attributes=kept,
            event_id=f"{run_id}:{sequence}:{uuid.uuid4().hex[:8]}",
        )
        self._events.add(
            ids=[event.event_id],
            documents=[json.dumps(payload, default=str)],
            metadatas=[
                {
                    **kept,
                    "run_id": run_id,
                    "event_type": event_type,
                    "sequence": sequence,
                    "recorded_at": recorded_at.isoformat(),
                }
            ],
        )
        return event

    def events_for(
        self,
        run_id: str,
        *,
        event_types: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[JournalEvent]:
        """Events of one run in recording order; ``limit`` keeps the latest N."""

        result = self._events.get(where=run_filter(run_id, event_types), include=["documents", "metadatas"])
        events = sorted(
            (
                self._to_event(event_id, document, metadata)
                for event_id, document, metadata in zip(
                    result.get("ids") or [],
                    result.get("documents") or [],
                    result.get("metadatas") or [],
                )
            ),
            key=lambda event: event.sequence,
        )
        if limit is not None and limit > 0:
            events = events[-limit:]
        return events

    def _to_event(self, event_id: str, document: str, metadata: Mapping[str, Any]) -> JournalEvent:
        try:
            payload = json.loads(document)
        except (TypeError, ValueError):
            payload = document
        recorded_raw = metadata.get("recorded_at")
        return JournalEvent(
            run_id=str(metadata.get("run_id", "")),
            event_type=str(metadata.get("event_type", "")),
            sequence=int(metadata.get("sequence", 0)),
            recorded_at=datetime.fromisoformat(recorded_raw) if isinstance(recorded_raw, str) else self._clock(),
            payload=payload,
            attributes={key: value for key, value in metadata.items() if key not in _RESERVED},
            event_id=event_id,
        )


__all__ = [
    "ChromaUnavailableError",
    "DEFAULT_COLLECTION",
    "JournalEvent",
    "RunJournal",
    "run_filter",
]
