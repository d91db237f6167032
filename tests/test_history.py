from __future__ import annotations

from pathlib import Path

from geo_recall.history import CardHistory, CardHistoryEntry, JsonlCardHistory
from geo_recall.models import CardOutcome, CardStatus


def _entry(round_key: str, status: CardStatus = CardStatus.CREATED, note_id: int | None = None) -> CardHistoryEntry:
    return CardHistoryEntry.from_outcome(
        CardOutcome(status, "done", round_key),
        actual_country="France",
        guess_country="Spain",
        note_id=note_id,
    )


def test_history_is_bounded_newest_first_and_remembers_created_rounds() -> None:
    history = CardHistory(max_entries=2)
    history.record(_entry("s-round-0", note_id=10))
    history.record(_entry("s-round-1", CardStatus.FAILED))
    history.record(_entry("s-round-2", note_id=12))

    assert [entry.round_key for entry in history.recent(10)] == ["s-round-2", "s-round-1"]
    assert history.card_created("s-round-0") is True
    assert history.card_created("s-round-1") is False


def test_jsonl_history_is_replayed_when_reopened(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "cards.jsonl"
    history = JsonlCardHistory(path)
    history.record(_entry("s-round-1", note_id=1496198395707))
    history.record(_entry("s-round-2", CardStatus.FAILED))
    with path.open("a", encoding="utf-8") as handle:
        handle.write("not json\n")

    reopened = JsonlCardHistory(path)

    newest = reopened.recent(1)[0]
    assert newest.round_key == "s-round-2"
    assert newest.status == CardStatus.FAILED
    assert reopened.recent(2)[1].note_id == 1496198395707
    assert reopened.card_created("s-round-1") is True
    assert reopened.card_created("s-round-2") is False
    assert JsonlCardHistory(tmp_path / "missing.jsonl").recent(5) == []
