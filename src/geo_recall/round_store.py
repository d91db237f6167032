"""In-memory owner of every RoundRecord and of the fact merge policy."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import replace
from typing import Any

from geo_recall.models import (
    CardOutcome,
    Clue,
    CountryFact,
    Fact,
    FactKind,
    GuessFacts,
    LifecycleState,
    RoundKey,
    RoundRecord,
    UserOverrides,
)

# (section, attribute) on the record for each fact kind; section None means the record itself.
FIELD_FOR_KIND: dict[FactKind, tuple[str | None, str]] = {
    FactKind.ACTUAL_LOCATION: ("actual", "location"),
    FactKind.PANORAMA_ID: ("actual", "panorama_id"),
    FactKind.HEADING: ("actual", "heading"),
    FactKind.PITCH: ("actual", "pitch"),
    FactKind.ZOOM: ("actual", "zoom"),
    FactKind.COUNTRY_CODE_HINT: ("actual", "country_code_hint"),
    FactKind.ACTUAL_COUNTRY: ("actual", "country"),
    FactKind.GUESS_LOCATION: ("guess", "location"),
    FactKind.GUESS_COUNTRY: ("guess", "country"),
    FactKind.ROUND_SCORE: (None, "score"),
    FactKind.OVERVIEW: (None, "overview"),
}


def field_name(kind: FactKind) -> str:
    section, attribute = FIELD_FOR_KIND[kind]
    return f"{section}.{attribute}" if section else attribute


def _target(record: RoundRecord, section: str | None) -> Any:
    return getattr(record, section) if section else record


def _combine_countries(incumbent: CountryFact | None, incoming: CountryFact) -> CountryFact:
    """Keep details the incumbent already knows when both name the same country."""
    if incumbent is None or not incumbent.same_country(incoming):
        return incoming
    return replace(
        incoming,
        country_code=incoming.country_code or incumbent.country_code,
        locality=incoming.locality or incumbent.locality,
        region=incoming.region or incumbent.region,
        enrichment=incoming.enrichment or incumbent.enrichment,
    )


class RoundRecordStore:
    """Maps RoundKey -> RoundRecord. Records are never deleted, only superseded."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._records: dict[RoundKey, RoundRecord] = {}
        self._logger = logger or logging.getLogger("geo_recall.round_store")

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RoundRecord]:
        return iter(self._records.values())

    def get(self, key: RoundKey) -> RoundRecord | None:
        return self._records.get(key)

    def ensure(self, key: RoundKey) -> RoundRecord:
        record = self._records.get(key)
        if record is None:
            record = RoundRecord(key=key)
            self._records[key] = record
            self._logger.info("round_record_created", extra={"round_key": str(key)})
        return record

    def merge_fact(self, key: RoundKey, fact: Fact) -> bool:
        """Apply ``fact`` unless a strictly higher-ranked value is already held.

        Returns ``True`` when the record changed. Equal-rank duplicates and facts
        for superseded records are no-ops.
        """
        record = self.ensure(key)
        if record.superseded:
            self._logger.debug("fact_for_superseded_round", extra={"round_key": str(key), "kind": fact.kind.value})
            return False

        section, attribute = FIELD_FOR_KIND[fact.kind]
        name = field_name(fact.kind)
        target = _target(record, section)
        current = getattr(target, attribute)
        incumbent_rank = record.ranks.get(name)

        if incumbent_rank is not None and fact.rank < incumbent_rank:
            self._logger.debug(
                "fact_outranked",
                extra={"round_key": str(key), "kind": fact.kind.value, "rank": fact.rank.name},
            )
            return False

        value = fact.value
        if isinstance(value, CountryFact) and incumbent_rank == fact.rank:
            value = _combine_countries(current, value)
        if incumbent_rank == fact.rank and current == value:
            return False

        setattr(target, attribute, value)
        record.ranks[name] = fact.rank
        self._logger.debug(
            "fact_merged",
            extra={"round_key": str(key), "kind": fact.kind.value, "rank": fact.rank.name, "source": fact.source},
        )
        return True

    def set_clues(self, key: RoundKey, clues: list[Clue]) -> None:
        self.ensure(key).clues = list(clues)

    def set_overrides(self, key: RoundKey, overrides: UserOverrides) -> None:
        self.ensure(key).overrides = overrides

    def set_state(self, key: RoundKey, state: LifecycleState) -> RoundRecord:
        record = self.ensure(key)
        record.lifecycle_state = state
        return record

    def record_outcome(self, key: RoundKey, outcome: CardOutcome) -> RoundRecord:
        record = self.ensure(key)
        record.card_outcome = outcome
        return record

    def reset_transient(self, key: RoundKey) -> RoundRecord:
        """Clear the guess, clues and user overrides; ground truth is kept."""
        record = self.ensure(key)
        record.guess = GuessFacts()
        record.clues = []
        record.overrides = UserOverrides()
        record.card_created = False
        record.user_cancelled_card = False
        record.card_outcome = None
        for kind in (FactKind.GUESS_LOCATION, FactKind.GUESS_COUNTRY):
            record.ranks.pop(field_name(kind), None)
        return record

    def supersede(self, key: RoundKey) -> None:
        record = self._records.get(key)
        if record is not None and not record.superseded:
            record.superseded = True
            self._logger.info("round_record_superseded", extra={"round_key": str(key)})

    def revive(self, key: RoundKey) -> RoundRecord:
        record = self.ensure(key)
        record.superseded = False
        return record
