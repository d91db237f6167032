"""Deterministic clue synthesis from the difference between two countries."""

from __future__ import annotations

import logging

from geo_recall.models import Clue, ClueCategory, CountryFact, EnrichmentData, OverviewData, is_unknown

logger = logging.getLogger(__name__)

MIN_CLUES = 2


def general_clue(actual: str, guess: str) -> Clue:
    return Clue(
        ClueCategory.GENERAL,
        f"Pay closer attention to license plates, road markings, and signage in {actual} "
        f"to distinguish it from {guess}.",
    )


def fallback_clue(actual: str) -> Clue:
    return Clue(ClueCategory.GENERAL, f"Pay attention to distinctive features in {actual}.")


def _enrichment(fact: CountryFact) -> EnrichmentData:
    return fact.enrichment or EnrichmentData.unknown(fact.country_code)


def synthesize(actual: CountryFact, guess: CountryFact, overview: OverviewData | None = None) -> list[Clue]:
    """Clues that separate ``actual`` from ``guess``; empty when they name the same country."""
    if actual.same_country(guess):
        return []
    try:
        return _synthesize(actual, guess, overview)
    except Exception as exc:  # noqa: BLE001 - a card still needs one clue
        logger.warning("clue_synthesis_failed", extra={"error": f"{type(exc).__name__}: {exc}"})
        return [fallback_clue(actual.country)]


def _synthesize(actual: CountryFact, guess: CountryFact, overview: OverviewData | None) -> list[Clue]:
    a, g = _enrichment(actual), _enrichment(guess)
    clues: list[Clue] = []

    if not is_unknown(a.driving_side) and not is_unknown(g.driving_side) and a.driving_side != g.driving_side:
        clues.append(
            Clue(
                ClueCategory.DRIVING_SIDE,
                f"{actual.country} drives on the {a.driving_side} side of the road "
                f"({guess.country} drives on the {g.driving_side} side).",
            )
        )

    actual_languages, guess_languages = a.known_languages(), g.known_languages()
    if actual_languages and guess_languages and actual_languages != guess_languages:
        clues.append(
            Clue(
                ClueCategory.LANGUAGE,
                f"{actual.country}'s language(s): {', '.join(sorted(actual_languages))} "
                f"(different from {guess.country}'s: {', '.join(sorted(guess_languages))})",
            )
        )

    if (
        not is_unknown(a.top_level_domain)
        and not is_unknown(g.top_level_domain)
        and a.top_level_domain != g.top_level_domain
    ):
        clues.append(
            Clue(
                ClueCategory.TLD,
                f"{actual.country}'s internet domain is {a.top_level_domain} ({guess.country}'s is {g.top_level_domain}).",
            )
        )

    if overview is not None:
        if overview.region:
            clues.append(
                Clue(ClueCategory.REGION, f"This location is in the {overview.region} region of {actual.country}.")
            )
        if overview.coverage_type:
            clues.append(
                Clue(ClueCategory.COVERAGE_TYPE, f"This is {overview.coverage_type} coverage in {actual.country}.")
            )

    if len(clues) < MIN_CLUES:
        clues.append(general_clue(actual.country, guess.country))
    return clues
