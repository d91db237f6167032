"""Round lifecycle state machine.

The lifecycle is the only writer of the RoundRecordStore besides the merge
function itself. It consumes host events one at a time, turns them into facts,
schedules country resolution in the background and drives each round from
``AWAITING_LOCATION`` to ``CARD_RESOLVED``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

from geo_recall.adapters.anki_connect import CardSink
from geo_recall.adapters.dom import DomAdapter
from geo_recall.adapters.events import HostEvent, NetworkResponse, PageSnapshot, StreetViewPosition
from geo_recall.adapters.network import NetworkAdapter
from geo_recall.adapters.url import parse_url
from geo_recall.cards import compile_card
from geo_recall.clues import synthesize
from geo_recall.errors import CardSubmissionError, ConfigurationMismatch, IncompleteRound, ServiceUnavailable
from geo_recall.geocoding import CountryResolutionPipeline, Role
from geo_recall.history import CardHistory, CardHistoryEntry, CardHistoryStore
from geo_recall.models import (
    CardContent,
    CardOutcome,
    CardStatus,
    Coordinate,
    CountryFact,
    Fact,
    FactKind,
    LifecycleState,
    OverviewData,
    RoundKey,
    RoundRecord,
    SourceRank,
    UserOverrides,
)
from geo_recall.round_identity import UNKNOWN_SESSION, RoundIdentityResolver
from geo_recall.round_store import RoundRecordStore, field_name

Notifier = Callable[[str, str], None]

IN_PROGRESS = frozenset({LifecycleState.AWAITING_LOCATION, LifecycleState.ACTIVE_ROUND})


class OverviewSource(Protocol):
    async def fetch(self, key: RoundKey) -> OverviewData | None:
        """Return supplementary region/coverage metadata for ``key``."""


class RoundLifecycle:
    def __init__(
        self,
        store: RoundRecordStore | None = None,
        pipeline: CountryResolutionPipeline | None = None,
        *,
        resolver: RoundIdentityResolver | None = None,
        dom_adapter: DomAdapter | None = None,
        network_adapter: NetworkAdapter | None = None,
        card_sink: CardSink | None = None,
        overview_client: OverviewSource | None = None,
        history_store: CardHistoryStore | None = None,
        notifier: Notifier | None = None,
        settle_delay_seconds: float = 1.5,
        round_end_grace_seconds: float = 5.0,
        resolution_timeout_seconds: float = 10.0,
        automatic_cards: bool = True,
        instant_add: bool = False,
        hide_location_in_front: bool = True,
        max_buffered_facts: int = 256,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store or RoundRecordStore()
        self._pipeline = pipeline or CountryResolutionPipeline()
        self._dom = dom_adapter or DomAdapter()
        self._resolver = resolver or RoundIdentityResolver(self._dom)
        self._network = network_adapter or NetworkAdapter()
        self._card_sink = card_sink
        self._overview_client = overview_client
        self._history = history_store or CardHistory()
        self._notifier = notifier
        self._settle_delay_seconds = settle_delay_seconds
        self._round_end_grace_seconds = round_end_grace_seconds
        self._resolution_timeout_seconds = resolution_timeout_seconds
        self._automatic_cards = automatic_cards
        self._instant_add = instant_add
        self._hide_location_in_front = hide_location_in_front
        self._logger = logger or logging.getLogger("geo_recall.lifecycle")

        self._current: RoundKey | None = None
        self._last_snapshot: PageSnapshot | None = None
        self._early_facts: deque[Fact] = deque(maxlen=max_buffered_facts)
        self._pending: dict[RoundKey, set[asyncio.Task[Any]]] = {}
        self._settling: dict[RoundKey, asyncio.Task[None]] = {}
        self._gameplay_seen: set[RoundKey] = set()
        self._started_at: dict[RoundKey, float] = {}
        self._overview_requested: set[RoundKey] = set()
        self._submitting: set[RoundKey] = set()

    @property
    def store(self) -> RoundRecordStore:
        return self._store

    @property
    def history(self) -> CardHistoryStore:
        return self._history

    @property
    def current_key(self) -> RoundKey | None:
        return self._current

    @property
    def state(self) -> LifecycleState:
        if self._current is None:
            return LifecycleState.IDLE
        record = self._store.get(self._current)
        return record.lifecycle_state if record is not None else LifecycleState.IDLE

    # Event entry points

    async def handle(self, event: HostEvent) -> None:
        if isinstance(event, PageSnapshot):
            self.observe_page(event)
        elif isinstance(event, NetworkResponse):
            self.observe_network(event)
        elif isinstance(event, StreetViewPosition):
            self.observe_street_view(event)
        else:
            self._logger.debug("host_event_ignored", extra={"event_type": type(event).__name__})

    def observe_page(self, snapshot: PageSnapshot) -> None:
        info = parse_url(snapshot.url)
        if not info.processable:
            self._go_idle("excluded_mode" if info.in_game else "left_game")
            return

        key = self._resolver.resolve(info, snapshot.dom)
        if key is None:
            return
        if key != self._current:
            self._start_round(key)
        self._last_snapshot = snapshot

        if snapshot.next_data:
            for fact in self._network.next_data_facts(snapshot.next_data):
                self.ingest(fact)
        for fact in self._dom.facts(snapshot):
            self.ingest(fact)

        if self._dom.is_gameplay_visible(snapshot.dom):
            self._gameplay_seen.add(key)
        if self._dom.is_round_ended(snapshot.dom):
            self._on_round_end(key)

    def observe_network(self, response: NetworkResponse) -> None:
        for fact in self._network.facts(response):
            self.ingest(fact)

    def observe_street_view(self, position: StreetViewPosition) -> None:
        for fact in self._network.street_view_facts(position):
            self.ingest(fact)

    def ingest(self, fact: Fact) -> bool:
        """Route ``fact`` to its round and merge it. Returns ``True`` when a record changed."""
        key = self._current
        if key is None:
            self._early_facts.append(fact)
            return False

        target = key if fact.round_hint is None else RoundKey(key.session_id, fact.round_hint)
        if target != key:
            if target.round_number > key.round_number:
                self._early_facts.append(fact)
            else:
                self._logger.debug(
                    "fact_for_other_round_dropped",
                    extra={"round_key": str(target), "kind": fact.kind.value},
                )
            return False
        return self._merge(key, fact)

    # Merge and background resolution

    def _merge(self, key: RoundKey, fact: Fact) -> bool:
        record = self._store.get(key)
        if record is not None and record.lifecycle_state == LifecycleState.CARD_RESOLVED:
            return False
        if not self._store.merge_fact(key, fact):
            return False
        self._after_merge(key, fact)
        return True

    def _after_merge(self, key: RoundKey, fact: Fact) -> None:
        record = self._store.ensure(key)
        if fact.kind == FactKind.ACTUAL_LOCATION:
            if record.lifecycle_state == LifecycleState.AWAITING_LOCATION:
                self._transition(record, LifecycleState.ACTIVE_ROUND)
            if self._country_outranks(record, FactKind.ACTUAL_COUNTRY, fact.rank):
                return
            self._schedule(key, self._resolve_country(key, fact.value, Role.ACTUAL, fact.rank), "resolve-actual")
        elif fact.kind == FactKind.GUESS_LOCATION:
            if self._country_outranks(record, FactKind.GUESS_COUNTRY, fact.rank):
                return
            self._schedule(key, self._resolve_country(key, fact.value, Role.GUESS, fact.rank), "resolve-guess")
        elif fact.kind == FactKind.COUNTRY_CODE_HINT:
            if self._country_outranks(record, FactKind.ACTUAL_COUNTRY, fact.rank):
                return
            self._schedule(
                key,
                self._resolve_country_code(key, fact.value, fact.rank, record.actual.location),
                "resolve-code",
            )
        elif fact.kind in (FactKind.ACTUAL_COUNTRY, FactKind.GUESS_COUNTRY, FactKind.OVERVIEW):
            self._refresh_clues(key)

    @staticmethod
    def _country_outranks(record: RoundRecord, kind: FactKind, rank: SourceRank) -> bool:
        incumbent = record.ranks.get(field_name(kind))
        return incumbent is not None and incumbent >= rank

    def _schedule(self, key: RoundKey, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=f"{name}-{key}")
        tasks = self._pending.setdefault(key, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def _resolve_country(self, key: RoundKey, coordinate: Coordinate, role: Role, rank: SourceRank) -> None:
        try:
            country = await asyncio.wait_for(
                self._pipeline.resolve(coordinate, role, rank),
                timeout=self._resolution_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._logger.warning("country_resolution_timeout", extra={"round_key": str(key), "role": role.value})
            return
        self._apply_country(key, role, country)

    async def _resolve_country_code(
        self,
        key: RoundKey,
        country_code: str,
        rank: SourceRank,
        coordinate: Coordinate | None,
    ) -> None:
        try:
            country = await asyncio.wait_for(
                self._pipeline.resolve_country_code(country_code, rank, coordinate),
                timeout=self._resolution_timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._logger.warning("country_code_resolution_timeout", extra={"round_key": str(key)})
            return
        self._apply_country(key, Role.ACTUAL, country)

    def _apply_country(self, key: RoundKey, role: Role, country: CountryFact | None) -> None:
        if country is None:
            return
        record = self._store.get(key)
        if key != self._current or record is None or record.superseded:
            self._logger.info("late_country_dropped", extra={"round_key": str(key), "role": role.value})
            return
        kind = FactKind.ACTUAL_COUNTRY if role == Role.ACTUAL else FactKind.GUESS_COUNTRY
        self._merge(key, Fact(kind, country, country.provenance, key.round_number, source="pipeline"))

    def _refresh_clues(self, key: RoundKey) -> None:
        record = self._store.ensure(key)
        actual, guess = record.actual.country, record.guess.country
        if actual is None or guess is None:
            return
        self._store.set_clues(key, synthesize(actual, guess, record.overview))
        if (
            record.overview is None
            and self._overview_client is not None
            and key.session_id != UNKNOWN_SESSION
            and key not in self._overview_requested
            and not actual.same_country(guess)
        ):
            self._overview_requested.add(key)
            self._schedule(key, self._fetch_overview(key), "overview")

    async def _fetch_overview(self, key: RoundKey) -> None:
        try:
            overview = await asyncio.wait_for(
                self._overview_client.fetch(key),
                timeout=self._resolution_timeout_seconds,
            )
        except Exception as exc:  # noqa: BLE001 - overview is optional enrichment
            self._logger.warning("overview_fetch_failed", extra={"round_key": str(key), "error": str(exc)})
            return
        if overview is None or key != self._current:
            return
        self._merge(key, Fact(FactKind.OVERVIEW, overview, SourceRank.GAME_API, key.round_number, source="overview"))

    # Round transitions

    def _transition(self, record: RoundRecord, state: LifecycleState) -> None:
        previous = record.lifecycle_state
        if previous == state:
            return
        self._store.set_state(record.key, state)
        self._logger.info(
            "lifecycle_transition",
            extra={"round_key": str(record.key), "from_state": previous.value, "state": state.value},
        )

    def _start_round(self, key: RoundKey) -> None:
        previous = self._current
        if previous is not None:
            self._cancel(previous)
            self._store.supersede(previous)

        self._current = key
        self._started_at.setdefault(key, time.monotonic())
        record = self._store.revive(key)
        if record.lifecycle_state in IN_PROGRESS:
            self._store.reset_transient(key)
            target = LifecycleState.ACTIVE_ROUND if record.actual.location else LifecycleState.AWAITING_LOCATION
            self._transition(record, target)
            location_rank = record.ranks.get(field_name(FactKind.ACTUAL_LOCATION))
            if record.actual.location is not None and record.actual.country is None and location_rank is not None:
                # resolution cancelled when the round was last left
                self._schedule(
                    key,
                    self._resolve_country(key, record.actual.location, Role.ACTUAL, location_rank),
                    "resolve-actual",
                )
        self._logger.info(
            "round_started",
            extra={"round_key": str(key), "previous": str(previous) if previous else None},
        )

        buffered = list(self._early_facts)
        self._early_facts.clear()
        for fact in buffered:
            self.ingest(fact)

    def _go_idle(self, reason: str) -> None:
        if self._current is None:
            return
        previous = self._current
        self._cancel(previous)
        self._store.supersede(previous)
        self._current = None
        self._last_snapshot = None
        self._early_facts.clear()
        self._resolver.reset()
        self._logger.info("lifecycle_idle", extra={"round_key": str(previous), "reason": reason})

    def _cancel(self, key: RoundKey) -> None:
        tasks = self._pending.pop(key, set())
        settle = self._settling.pop(key, None)
        if settle is not None:
            tasks.add(settle)
        for task in tasks:
            task.cancel()
        if tasks:
            self._logger.info("round_tasks_cancelled", extra={"round_key": str(key), "count": len(tasks)})

    def _on_round_end(self, key: RoundKey) -> None:
        if key in self._settling:
            return
        record = self._store.ensure(key)
        state = record.lifecycle_state
        if not (
            state == LifecycleState.ACTIVE_ROUND
            or (state == LifecycleState.AWAITING_LOCATION and self._awaited_long_enough(key))
        ):
            return
        self._transition(record, LifecycleState.ROUND_ENDED)
        self._settling[key] = asyncio.create_task(self._settle(key), name=f"settle-{key}")

    def _awaited_long_enough(self, key: RoundKey) -> bool:
        """A round with no location ends once gameplay was seen or the grace period has passed."""
        if key in self._gameplay_seen:
            return True
        started = self._started_at.get(key)
        return started is not None and time.monotonic() - started >= self._round_end_grace_seconds

    async def _settle(self, key: RoundKey) -> None:
        try:
            await asyncio.sleep(self._settle_delay_seconds)
            await self._await_pending(key)
            self._dom_fallback(key)
            self._refresh_clues(key)
            await self._finalize(key)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001 - settle degrades to the best facts available.
            self._logger.exception("round_settle_failed", extra={"round_key": str(key)})
            await self._finalize(key)
        finally:
            self._settling.pop(key, None)

    async def _await_pending(self, key: RoundKey) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._resolution_timeout_seconds
        while True:
            tasks = {task for task in self._pending.get(key, set()) if not task.done()}
            remaining = deadline - loop.time()
            if not tasks or remaining <= 0:
                break
            await asyncio.wait(tasks, timeout=remaining)

    def _dom_fallback(self, key: RoundKey) -> None:
        snapshot = self._last_snapshot
        record = self._store.get(key)
        if snapshot is None or record is None:
            return
        if record.actual.country is None:
            name = self._dom.extract_country(snapshot)
            if name:
                self._logger.info("dom_country_fallback", extra={"round_key": str(key), "country": name})
                country = CountryFact(country=name, provenance=SourceRank.DOM_TEXT)
                self._merge(key, Fact(FactKind.ACTUAL_COUNTRY, country, SourceRank.DOM_TEXT, source="dom"))
        if record.guess.country is None:
            name = self._dom.extract_guess_country(snapshot)
            if name:
                country = CountryFact(country=name, provenance=SourceRank.DOM_TEXT)
                self._merge(key, Fact(FactKind.GUESS_COUNTRY, country, SourceRank.DOM_TEXT, source="dom"))

    def _conclude(self, key: RoundKey) -> bool:
        """ROUND_ENDED -> CARD_PENDING, or a refused outcome when no country is known."""
        record = self._store.ensure(key)
        if record.actual.country is None:
            message = f"Could not determine the actual country for round {key}; no card was created."
            self._resolve(record, CardOutcome(CardStatus.REFUSED, message, str(key)))
            self._logger.warning("round_incomplete", extra={"round_key": str(key)})
            return False
        self._transition(record, LifecycleState.CARD_PENDING)
        return True

    async def _finalize(self, key: RoundKey) -> None:
        if not self._conclude(key):
            return
        if not self._automatic_cards:
            return
        if self._instant_add and self._card_sink is not None:
            await self.request_card(key)
        else:
            country = self._store.ensure(key).actual.country
            self._notify("prompt", f"Round {key} settled ({country.country if country else '?'}). Create a card?")

    def _resolve(self, record: RoundRecord, outcome: CardOutcome) -> None:
        self._store.record_outcome(record.key, outcome)
        self._transition(record, LifecycleState.CARD_RESOLVED)
        level = {CardStatus.CREATED: "success", CardStatus.DECLINED: "info"}.get(outcome.status, "error")
        self._notify(level, outcome.message)

    def _notify(self, level: str, message: str) -> None:
        if self._notifier is None:
            self._logger.info("user_notification", extra={"level": level, "notification": message})
            return
        self._notifier(level, message)

    # Card decisions

    async def request_card(
        self,
        key: RoundKey | None = None,
        overrides: UserOverrides | None = None,
        *,
        confirm_duplicate: bool = False,
    ) -> CardOutcome:
        """Compile and submit the card for ``key`` (the current round by default)."""
        key = key or self._current
        record = self._store.get(key) if key is not None else None
        if record is None:
            return CardOutcome(CardStatus.REFUSED, "There is no round to create a card for.", str(key) if key else None)
        if record.lifecycle_state in IN_PROGRESS:
            return CardOutcome(CardStatus.REFUSED, "The round is still in progress.", str(key))

        if record.lifecycle_state == LifecycleState.ROUND_ENDED:
            settle = self._settling.get(key)
            if settle is not None:
                await asyncio.wait({settle})
            if record.lifecycle_state == LifecycleState.ROUND_ENDED and not self._conclude(key):
                return record.card_outcome or CardOutcome(CardStatus.REFUSED, "Round is incomplete.", str(key))

        created = record.card_created or self._history.card_created(str(key))
        if (created or record.user_cancelled_card) and not confirm_duplicate:
            message = (
                "A card was already created for this round."
                if created
                else "The card for this round was declined."
            )
            return CardOutcome(CardStatus.DUPLICATE, message, str(key))
        if key in self._submitting:
            return CardOutcome(CardStatus.DUPLICATE, "A card for this round is already being submitted.", str(key))

        if overrides is not None:
            self._store.set_overrides(key, overrides)

        self._submitting.add(key)
        try:
            outcome, card, note_id = await self._submit(record)
        finally:
            self._submitting.discard(key)

        if outcome.status == CardStatus.CREATED:
            record.card_created = True
            record.user_cancelled_card = False
        self._resolve(record, outcome)
        if card is not None:
            self._history.record(
                CardHistoryEntry.from_outcome(
                    outcome,
                    actual_country=card.actual_country,
                    guess_country=card.guess_country,
                    note_id=note_id,
                )
            )
        return outcome

    async def _submit(self, record: RoundRecord) -> tuple[CardOutcome, CardContent | None, int | None]:
        key = str(record.key)
        try:
            card = compile_card(record, record.overrides, hide_location_link=self._hide_location_in_front)
        except IncompleteRound as exc:
            return CardOutcome(CardStatus.REFUSED, str(exc), key), None, None

        if self._card_sink is None:
            return CardOutcome(CardStatus.FAILED, "No flashcard integration is configured.", key), card, None
        try:
            note_id = await self._card_sink.submit(card)
        except ConfigurationMismatch as exc:
            message = f"{exc} {exc.remediation}".strip()
            self._logger.warning("card_configuration_mismatch", extra={"round_key": key})
            return CardOutcome(CardStatus.FAILED, message, key), card, None
        except (ServiceUnavailable, CardSubmissionError) as exc:
            self._logger.warning("card_submission_failed", extra={"round_key": key, "error": str(exc)})
            return CardOutcome(CardStatus.FAILED, str(exc), key), card, None

        self._logger.info("card_created", extra={"round_key": key, "actual": card.actual_country})
        message = f"Card created: {card.guess_country} → {card.actual_country}"
        return CardOutcome(CardStatus.CREATED, message, key), card, note_id

    def decline_card(self, key: RoundKey | None = None) -> CardOutcome:
        key = key or self._current
        record = self._store.get(key) if key is not None else None
        if record is None or record.lifecycle_state != LifecycleState.CARD_PENDING:
            return CardOutcome(CardStatus.REFUSED, "No card is waiting for a decision.", str(key) if key else None)
        record.user_cancelled_card = True
        outcome = CardOutcome(CardStatus.DECLINED, f"Card for round {key} declined.", str(key))
        self._resolve(record, outcome)
        return outcome

    # Housekeeping

    async def wait_idle(self) -> None:
        """Wait until no background resolution or settle work remains."""
        while True:
            tasks = [task for tasks in self._pending.values() for task in tasks if not task.done()]
            tasks.extend(task for task in self._settling.values() if not task.done())
            if not tasks:
                return
            await asyncio.wait(tasks)

    async def shutdown(self) -> None:
        tasks = [task for tasks in self._pending.values() for task in tasks]
        tasks.extend(self._settling.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
        self._settling.clear()
