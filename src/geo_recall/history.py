"""Ledger of card submissions, keyed by round.

The ledger outlives a single page session when it is backed by a JSONL file, so
a reloaded results page cannot add a second note for a round that already has one.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from geo_recall.models import CardOutcome, CardStatus

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CardHistoryEntry:
    round_key: str
    status: CardStatus
    actual_country: str
    guess_country: str
    note_id: int | None = None
    message: str = ""
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_outcome(
        cls,
        outcome: CardOutcome,
        *,
        actual_country: str,
        guess_country: str,
        note_id: int | None = None,
    ) -> CardHistoryEntry:
        return cls(
            round_key=outcome.round_key or "",
            status=outcome.status,
            actual_country=actual_country,
            guess_country=guess_country,
            note_id=note_id,
            message=outcome.message,
        )

    def to_json(self) -> dict[str, Any]:
        return {
            "round_key": self.round_key,
            "status": self.status.value,
            "actual_country": self.actual_country,
            "guess_country": self.guess_country,
            "note_id": self.note_id,
            "message": self.message,
            "submitted_at": self.submitted_at.isoformat(),
        }

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> CardHistoryEntry:
        return cls(
            round_key=str(payload["round_key"]),
            status=CardStatus(payload["status"]),
            actual_country=str(payload.get("actual_country", "")),
            guess_country=str(payload.get("guess_country", "")),
            note_id=payload.get("note_id"),
            message=str(payload.get("message", "")),
            submitted_at=datetime.fromisoformat(payload["submitted_at"]),
        )


class CardHistoryStore(Protocol):
    def record(self, entry: CardHistoryEntry) -> None:
        """Remember one finished submission attempt."""

    def recent(self, limit: int) -> list[CardHistoryEntry]:
        """Newest attempts first."""

    def card_created(self, round_key: str) -> bool:
        """Whether any attempt for ``round_key`` produced a note."""


class CardHistory:
    """In-process ledger with an index of rounds that already have a note."""

    def __init__(self, max_entries: int = 1_000) -> None:
        self._max_entries = max_entries
        self._entries: list[CardHistoryEntry] = []
        self._created: set[str] = set()

    def record(self, entry: CardHistoryEntry) -> None:
        self._entries.append(entry)
        if len(self._entries) > self._max_entries:
            del self._entries[: len(self._entries) - self._max_entries]
        if entry.status == CardStatus.CREATED:
            self._created.add(entry.round_key)

    def recent(self, limit: int) -> list[CardHistoryEntry]:
        return self._entries[::-1][:limit]

    def card_created(self, round_key: str) -> bool:
        return round_key in self._created


class JsonlCardHistory(CardHistory):
    """Ledger persisted as one JSON object per line, replayed on open."""

    def __init__(self, file_path: str | Path, max_entries: int = 1_000) -> None:
        super().__init__(max_entries)
        self._path = Path(file_path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._path.exists():
            self._load()

    def _load(self) -> None:
        with self._path.open("r", encoding="utf-8") as handle:
            for number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    entry = CardHistoryEntry.from_json(json.loads(line))
                except (ValueError, KeyError, TypeError):
                    logger.warning("card_history_line_skipped", extra={"path": str(self._path), "line": number})
                    continue
                super().record(entry)

    def record(self, entry: CardHistoryEntry) -> None:
        super().record(entry)
        with self._path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry.to_json(), ensure_ascii=False) + "\n")
