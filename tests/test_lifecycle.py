from __future__ import annotations

import asyncio

from geo_recall.adapters import NetworkResponse, PageSnapshot, StaticDom
from geo_recall.cards import compile_card
from geo_recall.errors import ConfigurationMismatch
from geo_recall.geocoding import CountryResolutionPipeline
from geo_recall.history import JsonlCardHistory
from geo_recall.lifecycle import RoundLifecycle
from geo_recall.models import (
    CardContent,
    CardOutcome,
    CardStatus,
    ClueCategory,
    Coordinate,
    EnrichmentData,
    LifecycleState,
    OverviewData,
    RoundKey,
    SourceRank,
    UserOverrides,
)
from geo_recall.services import CountryProfile, ReverseGeocodeResult

SESSION = "abc123"
GAME_URL = f"https://www.geoguessr.com/game/{SESSION}"
API_URL = f"https://www.geoguessr.com/api/v3/games/{SESSION}"

PARIS = {"lat": 48.85, "lng": 2.35, "panoId": "ab12"}
NEW_YORK = {"lat": 40.7, "lng": -74.0}

PLACES = {
    (48.85, 2.35): ReverseGeocodeResult("France", "FR", "Paris", "Île-de-France"),
    (40.7, -74.0): ReverseGeocodeResult("United States", "US", "New York", "New York"),
}
PROFILES = {
    "FR": CountryProfile("France", "FR", EnrichmentData(".fr", "right", ("French",), "Euro", "Europe", "Paris")),
    "US": CountryProfile(
        "United States",
        "US",
        EnrichmentData(".us", "right", ("English",), "United States dollar", "North America", "Washington, D.C."),
    ),
}


class FakeGeocoder:
    def __init__(self, gate: asyncio.Event | None = None) -> None:
        self.gate = gate
        self.calls: list[Coordinate] = []

    async def reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        self.calls.append(coordinate)
        if self.gate is not None:
            await self.gate.wait()
        return PLACES.get((coordinate.lat, coordinate.lng))


class FakeEnricher:
    async def lookup(self, country_code: str) -> CountryProfile | None:
        return PROFILES.get(country_code)


class RecordingSink:
    def __init__(self, error: Exception | None = None) -> None:
        self.cards: list[CardContent] = []
        self.error = error

    async def submit(self, card: CardContent) -> int | None:
        if self.error is not None:
            raise self.error
        self.cards.append(card)
        return len(self.cards)


class StubOverview:
    def __init__(self) -> None:
        self.keys: list[RoundKey] = []

    async def fetch(self, key: RoundKey) -> OverviewData | None:
        self.keys.append(key)
        return OverviewData(region="Île-de-France", coverage_type="official")


def _page(round_number: int = 1, *, ended: bool = False, result_text: list[str] | None = None, url: str = GAME_URL):
    dom: dict = {'div[data-qa="round-number"]': f"{round_number} / 5"}
    if ended:
        dom['div[data-qa="round-result"]'] = "Round result"
    else:
        dom['div[data-qa="game-status"]'] = "Playing"
    if result_text:
        dom['[class*="result"]:not(button)'] = result_text
    return PageSnapshot(url=url, dom=StaticDom.from_mapping(dom))


def _game(*rounds: dict, guesses: list[dict] | None = None) -> NetworkResponse:
    body: dict = {"rounds": list(rounds)}
    if guesses is not None:
        body["player"] = {"guesses": guesses}
    return NetworkResponse(url=API_URL, body=body)


def _lifecycle(**kwargs) -> RoundLifecycle:
    kwargs.setdefault("pipeline", CountryResolutionPipeline(FakeGeocoder(), FakeEnricher()))
    kwargs.setdefault("settle_delay_seconds", 0)
    kwargs.setdefault("resolution_timeout_seconds", 1.0)
    return RoundLifecycle(**kwargs)


async def _play_france_round(lifecycle: RoundLifecycle) -> None:
    await lifecycle.handle(_page(1))
    await lifecycle.handle(_game(PARIS))
    await lifecycle.wait_idle()
    await lifecycle.handle(_game(PARIS, guesses=[{**NEW_YORK, "roundScoreInPoints": 12}]))
    await lifecycle.handle(_page(1, ended=True))
    await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)


def test_round_reconciles_france_against_united_states_guess() -> None:
    async def _run():
        lifecycle = _lifecycle(automatic_cards=False)
        await _play_france_round(lifecycle)
        return lifecycle

    lifecycle = asyncio.run(_run())
    record = lifecycle.store.get(RoundKey(SESSION, 1))

    assert lifecycle.state == LifecycleState.CARD_PENDING
    assert record.actual.country.country == "France"
    assert record.actual.country.provenance == SourceRank.GAME_API
    assert record.guess.country.country == "United States"
    assert record.actual.panorama_id == "ab12"
    assert record.score == 12
    categories = {clue.category for clue in record.clues}
    assert categories & {ClueCategory.DRIVING_SIDE, ClueCategory.LANGUAGE}

    card = compile_card(record)
    assert "France" in card.back
    assert "United States" in card.back


def test_location_fact_moves_awaiting_round_to_active() -> None:
    async def _run() -> list[LifecycleState]:
        lifecycle = _lifecycle()
        states = [lifecycle.state]
        await lifecycle.handle(_page(1))
        states.append(lifecycle.state)
        await lifecycle.handle(_game(PARIS))
        states.append(lifecycle.state)
        await lifecycle.shutdown()
        return states

    assert asyncio.run(_run()) == [
        LifecycleState.IDLE,
        LifecycleState.AWAITING_LOCATION,
        LifecycleState.ACTIVE_ROUND,
    ]


def test_superseded_round_is_not_mutated_by_late_geocoding() -> None:
    async def _run() -> RoundLifecycle:
        gate = asyncio.Event()
        geocoder = FakeGeocoder(gate)
        lifecycle = _lifecycle(pipeline=CountryResolutionPipeline(geocoder, FakeEnricher()))

        await lifecycle.handle(_page(1))
        await lifecycle.handle(_game(PARIS))
        await asyncio.sleep(0.01)
        assert len(geocoder.calls) == 1

        await lifecycle.handle(_page(2))
        await lifecycle.handle(_game(PARIS, NEW_YORK))
        gate.set()
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        return lifecycle

    lifecycle = asyncio.run(_run())
    first = lifecycle.store.get(RoundKey(SESSION, 1))
    second = lifecycle.store.get(RoundKey(SESSION, 2))

    assert first.superseded is True
    assert first.actual.country is None
    assert second.actual.country.country == "United States"
    assert lifecycle.state == LifecycleState.ACTIVE_ROUND


def test_round_without_any_location_is_refused() -> None:
    notifications: list[tuple[str, str]] = []

    async def _run() -> RoundLifecycle:
        lifecycle = _lifecycle(
            pipeline=CountryResolutionPipeline(),
            notifier=lambda level, message: notifications.append((level, message)),
        )
        await lifecycle.handle(_page(1))
        await lifecycle.handle(_page(1, ended=True))
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        return lifecycle

    lifecycle = asyncio.run(_run())
    record = lifecycle.store.get(RoundKey(SESSION, 1))

    assert record.lifecycle_state == LifecycleState.CARD_RESOLVED
    assert record.card_outcome.status == CardStatus.REFUSED
    assert notifications and notifications[-1][0] == "error"


def test_round_end_without_gameplay_markers_is_honoured_after_grace_period() -> None:
    async def _run() -> list[LifecycleState]:
        lifecycle = _lifecycle(pipeline=CountryResolutionPipeline(), round_end_grace_seconds=0.02)
        await lifecycle.handle(_page(1, ended=True))
        early = lifecycle.state
        await asyncio.sleep(0.05)
        await lifecycle.handle(_page(1, ended=True))
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        return [early, lifecycle.state]

    early, final = asyncio.run(_run())

    assert early == LifecycleState.AWAITING_LOCATION
    assert final == LifecycleState.CARD_RESOLVED


def test_dom_text_fallback_when_no_location_resolves() -> None:
    async def _run() -> RoundLifecycle:
        lifecycle = _lifecycle(pipeline=CountryResolutionPipeline(), automatic_cards=False)
        await lifecycle.handle(_page(1))
        await lifecycle.handle(
            _page(1, ended=True, result_text=["The location was in Spain.", "You guessed Portugal"])
        )
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        return lifecycle

    lifecycle = asyncio.run(_run())
    record = lifecycle.store.get(RoundKey(SESSION, 1))

    assert record.lifecycle_state == LifecycleState.CARD_PENDING
    assert record.actual.country.country == "Spain"
    assert record.actual.country.provenance == SourceRank.DOM_TEXT
    assert record.guess.country.country == "Portugal"
    assert [clue.category for clue in record.clues] == [ClueCategory.GENERAL]


def test_duplicate_round_end_signals_are_coalesced() -> None:
    notifications: list[tuple[str, str]] = []

    async def _run() -> None:
        lifecycle = _lifecycle(
            settle_delay_seconds=0.05,
            notifier=lambda level, message: notifications.append((level, message)),
        )
        await lifecycle.handle(_page(1))
        await lifecycle.handle(_game(PARIS))
        await lifecycle.handle(_page(1, ended=True))
        await lifecycle.handle(_page(1, ended=True))
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        await lifecycle.handle(_page(1, ended=True))
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)

    asyncio.run(_run())

    assert [level for level, _ in notifications] == ["prompt"]


def test_instant_add_submits_once_and_guards_duplicates() -> None:
    sink = RecordingSink()

    async def _run():
        lifecycle = _lifecycle(card_sink=sink, instant_add=True)
        await _play_france_round(lifecycle)
        duplicate = await lifecycle.request_card()
        confirmed = await lifecycle.request_card(confirm_duplicate=True)
        return lifecycle, duplicate, confirmed

    lifecycle, duplicate, confirmed = asyncio.run(_run())
    record = lifecycle.store.get(RoundKey(SESSION, 1))

    assert record.card_created is True
    assert record.lifecycle_state == LifecycleState.CARD_RESOLVED
    assert duplicate.status == CardStatus.DUPLICATE
    assert confirmed.status == CardStatus.CREATED
    assert len(sink.cards) == 2
    assert sink.cards[0].actual_country == "France"
    assert [entry.note_id for entry in lifecycle.history.recent(5)] == [2, 1]


def test_manual_card_request_applies_user_overrides() -> None:
    sink = RecordingSink()

    async def _run():
        lifecycle = _lifecycle(card_sink=sink)
        await _play_france_round(lifecycle)
        key = lifecycle.current_key
        outcome = await lifecycle.request_card(overrides=UserOverrides(missed_clues="Bollards", reminder="Bollards!"))
        return outcome, key

    outcome, key = asyncio.run(_run())

    assert outcome.status == CardStatus.CREATED
    assert outcome.round_key == str(key)
    assert "<p>Bollards</p>" in sink.cards[0].back


def test_card_recorded_in_an_earlier_session_is_not_added_again(tmp_path) -> None:
    ledger = tmp_path / "cards.jsonl"
    sink = RecordingSink()

    async def _run() -> CardOutcome:
        first = _lifecycle(card_sink=sink, instant_add=True, history_store=JsonlCardHistory(ledger))
        await _play_france_round(first)
        reopened = _lifecycle(card_sink=sink, automatic_cards=False, history_store=JsonlCardHistory(ledger))
        await _play_france_round(reopened)
        return await reopened.request_card()

    outcome = asyncio.run(_run())

    assert outcome.status == CardStatus.DUPLICATE
    assert len(sink.cards) == 1
    assert JsonlCardHistory(ledger).recent(1)[0].note_id == 1


def test_configuration_mismatch_fails_with_remediation() -> None:
    sink = RecordingSink(ConfigurationMismatch("model was not found", "Use a Basic note type."))

    async def _run():
        lifecycle = _lifecycle(card_sink=sink)
        await _play_france_round(lifecycle)
        return await lifecycle.request_card()

    outcome = asyncio.run(_run())

    assert outcome.status == CardStatus.FAILED
    assert "Use a Basic note type." in outcome.message


def test_card_request_refused_while_round_in_progress_and_decline() -> None:
    async def _run():
        lifecycle = _lifecycle()
        await lifecycle.handle(_page(1))
        early = await lifecycle.request_card()
        await lifecycle.handle(_game(PARIS))
        await lifecycle.handle(_page(1, ended=True))
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        declined = lifecycle.decline_card()
        again = await lifecycle.request_card()
        return early, declined, again

    early, declined, again = asyncio.run(_run())

    assert early.status == CardStatus.REFUSED
    assert declined.status == CardStatus.DECLINED
    assert again.status == CardStatus.DUPLICATE


def test_overview_is_fetched_once_and_feeds_clues() -> None:
    overview = StubOverview()

    async def _run() -> RoundLifecycle:
        lifecycle = _lifecycle(overview_client=overview, automatic_cards=False)
        await _play_france_round(lifecycle)
        return lifecycle

    lifecycle = asyncio.run(_run())
    record = lifecycle.store.get(RoundKey(SESSION, 1))

    assert overview.keys == [RoundKey(SESSION, 1)]
    assert record.overview.region == "Île-de-France"
    assert ClueCategory.REGION in {clue.category for clue in record.clues}


def test_leaving_game_or_entering_duel_goes_idle() -> None:
    async def _run() -> list[LifecycleState]:
        lifecycle = _lifecycle()
        await lifecycle.handle(_page(1))
        await lifecycle.handle(_game(PARIS))
        states = [lifecycle.state]
        await lifecycle.handle(PageSnapshot(url="https://www.geoguessr.com/duels/xyz"))
        states.append(lifecycle.state)
        await lifecycle.handle(_page(1))
        states.append(lifecycle.state)
        await lifecycle.handle(PageSnapshot(url="https://www.geoguessr.com/"))
        states.append(lifecycle.state)
        await lifecycle.shutdown()
        return states

    assert asyncio.run(_run()) == [
        LifecycleState.ACTIVE_ROUND,
        LifecycleState.IDLE,
        LifecycleState.ACTIVE_ROUND,
        LifecycleState.IDLE,
    ]


def test_facts_for_a_future_round_are_replayed_when_it_starts() -> None:
    async def _run() -> RoundLifecycle:
        lifecycle = _lifecycle()
        await lifecycle.handle(_page(1))
        await lifecycle.handle(_game(PARIS, NEW_YORK))
        await lifecycle.handle(_page(2))
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        return lifecycle

    lifecycle = asyncio.run(_run())
    second = lifecycle.store.get(RoundKey(SESSION, 2))

    assert second.actual.location == Coordinate(40.7, -74.0)
    assert second.actual.country.country == "United States"


class NativeNameGeocoder:
    async def reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        return ReverseGeocodeResult("Deutschland", "DE", "Berlin", "Berlin")


class SlowEnricher:
    async def lookup(self, country_code: str) -> CountryProfile | None:
        await asyncio.sleep(0.02)
        return CountryProfile("Germany", "DE", EnrichmentData(".de", "right", ("German",), "Euro", "Europe", "Berlin"))


def test_correct_guess_matches_by_country_code_across_name_spellings() -> None:
    berlin = {"lat": 52.52, "lng": 13.405, "countryCode": "de"}

    async def _run() -> RoundLifecycle:
        lifecycle = _lifecycle(
            pipeline=CountryResolutionPipeline(NativeNameGeocoder(), SlowEnricher()),
            automatic_cards=False,
        )
        await lifecycle.handle(_page(1))
        await lifecycle.handle(_game(berlin, guesses=[{"lat": 52.52, "lng": 13.405}]))
        await lifecycle.handle(_page(1, ended=True))
        await asyncio.wait_for(lifecycle.wait_idle(), timeout=2)
        return lifecycle

    record = asyncio.run(_run()).store.get(RoundKey(SESSION, 1))

    assert record.actual.country.country_code == "DE"
    assert record.guess.country.country_code == "DE"
    assert record.clues == []


def test_leaving_the_game_during_settle_cancels_it() -> None:
    notes: list[tuple[str, str]] = []

    async def _run() -> RoundLifecycle:
        gate = asyncio.Event()
        lifecycle = _lifecycle(
            pipeline=CountryResolutionPipeline(FakeGeocoder(gate), FakeEnricher()),
            settle_delay_seconds=0.05,
            notifier=lambda level, message: notes.append((level, message)),
        )
        await lifecycle.handle(_page(1))
        await lifecycle.handle(_game(PARIS))
        await lifecycle.handle(_page(1, ended=True))
        await lifecycle.handle(PageSnapshot(url="https://www.geoguessr.com/"))
        gate.set()
        await asyncio.sleep(0.1)
        await lifecycle.wait_idle()
        return lifecycle

    lifecycle = asyncio.run(_run())
    record = lifecycle.store.get(RoundKey(SESSION, 1))

    assert lifecycle.state == LifecycleState.IDLE
    assert record.lifecycle_state == LifecycleState.ROUND_ENDED
    assert record.actual.country is None
    assert notes == []
