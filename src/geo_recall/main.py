"""CLI startup entrypoint for geo-recall."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path

import typer
from rich import print
from rich.logging import RichHandler

from geo_recall.adapters import AnkiConnectClient, DomAdapter, Pause, SelectorConfig, event_from_payload
from geo_recall.cards import compile_card
from geo_recall.config import settings
from geo_recall.errors import ConfigurationMismatch, IncompleteRound, ServiceUnavailable
from geo_recall.geocoding import CountryResolutionPipeline, Role
from geo_recall.history import CardHistory, CardHistoryStore, JsonlCardHistory
from geo_recall.lifecycle import RoundLifecycle
from geo_recall.models import Coordinate, CountryFact, RoundRecord, SourceRank
from geo_recall.runtime import RoundRuntime
from geo_recall.services import LocationOverviewClient, NominatimGeocoder, RestCountriesClient

app = typer.Typer(help="geo-recall: turn missed GeoGuessr rounds into flashcards")


def _configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _notify(level: str, message: str) -> None:
    colour = {"success": "green", "error": "red", "prompt": "cyan"}.get(level, "white")
    print(f"[{colour}]{level}[/{colour}] {message}")


def _build_services(offline: bool) -> tuple[NominatimGeocoder | None, RestCountriesClient | None]:
    if offline:
        return None, None
    return NominatimGeocoder(), RestCountriesClient()


def _build_history() -> CardHistoryStore:
    if settings.card_history_path:
        return JsonlCardHistory(settings.card_history_path)
    return CardHistory()


def _build_lifecycle(
    pipeline: CountryResolutionPipeline,
    card_sink: AnkiConnectClient | None,
    overview_client: LocationOverviewClient | None,
    settle_delay: float | None,
) -> RoundLifecycle:
    selectors = SelectorConfig.from_file(settings.selectors_file) if settings.selectors_file else SelectorConfig()
    return RoundLifecycle(
        pipeline=pipeline,
        dom_adapter=DomAdapter(selectors),
        card_sink=card_sink,
        overview_client=overview_client,
        history_store=_build_history(),
        notifier=_notify,
        settle_delay_seconds=settings.settle_delay_seconds if settle_delay is None else settle_delay,
        round_end_grace_seconds=settings.round_end_grace_seconds,
        resolution_timeout_seconds=settings.resolution_timeout_seconds,
        automatic_cards=settings.automatic_cards,
        instant_add=settings.instant_add,
        hide_location_in_front=settings.hide_location_in_front,
    )


def _describe_country(fact: CountryFact | None) -> dict | None:
    if fact is None:
        return None
    enrichment = fact.enrichment
    return {
        "country": fact.country,
        "country_code": fact.country_code,
        "locality": fact.locality,
        "region": fact.region,
        "provenance": fact.provenance.name,
        "driving_side": enrichment.driving_side if enrichment else None,
        "languages": list(enrichment.languages) if enrichment else None,
        "top_level_domain": enrichment.top_level_domain if enrichment else None,
        "continent": enrichment.continent if enrichment else None,
    }


def _describe_record(record: RoundRecord, hide_location_link: bool) -> dict:
    summary: dict = {
        "round_key": str(record.key),
        "state": record.lifecycle_state.value,
        "superseded": record.superseded,
        "actual": _describe_country(record.actual.country),
        "guess": _describe_country(record.guess.country),
        "score": record.score,
        "clues": [f"{clue.category.value}: {clue.text}" for clue in record.clues],
        "card_outcome": record.card_outcome.status.value if record.card_outcome else None,
    }
    try:
        card = compile_card(record, hide_location_link=hide_location_link)
    except IncompleteRound as exc:
        summary["card"] = {"error": str(exc)}
    else:
        summary["card"] = {"front": card.front, "back": card.back}
    return summary


@app.command()
def start() -> None:
    """Show effective runtime configuration."""
    print(
        {
            "app_name": settings.app_name,
            "anki_connect_url": settings.anki_connect_url,
            "deck_name": settings.deck_name,
            "model_name": settings.model_name,
            "enable_anki_integration": settings.enable_anki_integration,
            "hide_location_in_front": settings.hide_location_in_front,
            "automatic_cards": settings.automatic_cards,
            "instant_add": settings.instant_add,
            "selectors_file": settings.selectors_file,
            "card_history_path": settings.card_history_path,
        }
    )


@app.command()
def resolve(
    lat: float = typer.Option(..., help="Latitude"),
    lng: float = typer.Option(..., help="Longitude"),
    guess: bool = typer.Option(False, help="Resolve as a guessed location"),
    offline: bool = typer.Option(False, help="Only consult the override table"),
) -> None:
    """Resolve a coordinate to a country fact."""
    _configure_logging()
    coordinate = Coordinate.sanitize(lat, lng)
    if coordinate is None:
        raise typer.BadParameter("Latitude and longitude must be finite numbers")

    async def _run() -> CountryFact | None:
        geocoder, enricher = _build_services(offline)
        pipeline = CountryResolutionPipeline(geocoder, enricher, timeout_seconds=settings.geocoder_timeout_seconds)
        try:
            return await pipeline.resolve(coordinate, Role.GUESS if guess else Role.ACTUAL, SourceRank.GAME_API)
        finally:
            for service in (geocoder, enricher):
                if service is not None:
                    await service.close()

    fact = asyncio.run(_run())
    if fact is None:
        print({"country": None, "lat": coordinate.lat, "lng": coordinate.lng})
        raise typer.Exit(code=1)
    print(_describe_country(fact))


@app.command()
def replay(
    events_file: Path = typer.Argument(..., help="JSONL file of recorded host events"),
    offline: bool = typer.Option(False, help="Skip geocoding, enrichment and overview services"),
    submit: bool = typer.Option(False, help="Submit cards to AnkiConnect"),
    settle_delay: float = typer.Option(None, help="Override the settle delay in seconds"),
) -> None:
    """Feed recorded host events through the runtime and print the resulting rounds."""
    _configure_logging()
    if not events_file.exists():
        raise typer.BadParameter(f"Events file not found: {events_file}")

    async def _run() -> RoundLifecycle:
        geocoder, enricher = _build_services(offline)
        overview_client = None if offline else LocationOverviewClient()
        card_sink = AnkiConnectClient() if submit and settings.enable_anki_integration else None
        pipeline = CountryResolutionPipeline(geocoder, enricher, timeout_seconds=settings.geocoder_timeout_seconds)
        lifecycle = _build_lifecycle(pipeline, card_sink, overview_client, settle_delay)
        runtime = RoundRuntime(lifecycle, poll_interval_seconds=settings.poll_interval_seconds)

        await runtime.start()
        try:
            with events_file.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if not line.strip():
                        continue
                    event = event_from_payload(json.loads(line))
                    if isinstance(event, Pause):
                        await runtime.drain()
                        await asyncio.sleep(event.seconds)
                        continue
                    runtime.publish(event)
            await runtime.drain()
        finally:
            await runtime.stop()
            for service in (geocoder, enricher, overview_client, card_sink):
                if service is not None:
                    await service.close()
        return lifecycle

    lifecycle = asyncio.run(_run())
    print(
        {
            "rounds": [_describe_record(record, settings.hide_location_in_front) for record in lifecycle.store],
            "history": [
                {"round_key": entry.round_key, "status": entry.status.value, "message": entry.message}
                for entry in lifecycle.history.recent(20)
            ],
        }
    )


@app.command("anki-check")
def anki_check() -> None:
    """Verify the deck and note type exist in Anki."""
    _configure_logging()
    client = AnkiConnectClient()

    async def _run() -> dict:
        try:
            status = await client.ensure_deck_and_model()
            status["fields"] = await client.list_note_fields()
            return status
        finally:
            await client.close()

    try:
        print(asyncio.run(_run()))
    except ConfigurationMismatch as exc:
        print({"error": str(exc), "remediation": exc.remediation})
        raise typer.Exit(code=1)
    except ServiceUnavailable as exc:
        print({"error": str(exc)})
        raise typer.Exit(code=1)


@app.command()
def history(limit: int = typer.Option(20, help="How many entries to show")) -> None:
    """Show recent card submissions and their Anki note ids."""
    if not settings.card_history_path:
        print({"history": [], "hint": "Set GEO_RECALL_CARD_HISTORY_PATH to persist card history"})
        return
    entries = JsonlCardHistory(settings.card_history_path).recent(limit)
    print(
        {
            "history": [
                {
                    "submitted_at": entry.submitted_at.isoformat(),
                    "round_key": entry.round_key,
                    "status": entry.status.value,
                    "guess": entry.guess_country,
                    "actual": entry.actual_country,
                    "note_id": entry.note_id,
                }
                for entry in entries
            ]
        }
    )


if __name__ == "__main__":
    app()
