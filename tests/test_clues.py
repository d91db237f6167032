from __future__ import annotations

from geo_recall.clues import synthesize
from geo_recall.models import ClueCategory, CountryFact, EnrichmentData, OverviewData, SourceRank

FRANCE = CountryFact(
    "France",
    SourceRank.GAME_API,
    "FR",
    enrichment=EnrichmentData(".fr", "right", ("French",), "Euro", "Europe", "Paris"),
)
UK = CountryFact(
    "United Kingdom",
    SourceRank.GAME_API,
    "GB",
    enrichment=EnrichmentData(".uk", "left", ("English",), "British pound", "Europe", "London"),
)
BELGIUM = CountryFact(
    "Belgium",
    SourceRank.GAME_API,
    "BE",
    enrichment=EnrichmentData(".be", "right", ("German", "French", "Dutch"), "Euro", "Europe", "Brussels"),
)


def test_same_country_yields_no_clues() -> None:
    assert synthesize(FRANCE, FRANCE, OverviewData(region="Brittany")) == []


def test_clues_follow_fixed_order() -> None:
    clues = synthesize(UK, FRANCE, OverviewData(region="Wales", coverage_type="official"))

    assert [clue.category for clue in clues] == [
        ClueCategory.DRIVING_SIDE,
        ClueCategory.LANGUAGE,
        ClueCategory.TLD,
        ClueCategory.REGION,
        ClueCategory.COVERAGE_TYPE,
    ]
    assert clues[0].text == (
        "United Kingdom drives on the left side of the road (France drives on the right side)."
    )
    assert clues[2].text == "United Kingdom's internet domain is .uk (France's is .fr)."
    assert clues[3].text == "This location is in the Wales region of United Kingdom."


def test_language_sets_compare_order_independently() -> None:
    reordered = CountryFact(
        "Belgium (reordered)",
        SourceRank.GAME_API,
        enrichment=EnrichmentData(".be", "right", ("Dutch", "German", "French")),
    )

    categories = [clue.category for clue in synthesize(BELGIUM, reordered)]

    assert ClueCategory.LANGUAGE not in categories
    assert ClueCategory.TLD not in categories


def test_unknown_enrichment_is_not_a_difference() -> None:
    unknown = CountryFact("Atlantis", SourceRank.DOM_TEXT)

    clues = synthesize(unknown, FRANCE)

    assert [clue.category for clue in clues] == [ClueCategory.GENERAL]
    assert "Atlantis" in clues[0].text and "France" in clues[0].text


def test_general_clue_pads_single_difference() -> None:
    clues = synthesize(BELGIUM, FRANCE)

    assert [clue.category for clue in clues] == [ClueCategory.LANGUAGE, ClueCategory.TLD]

    only_tld = CountryFact("Monaco", SourceRank.GAME_API, enrichment=EnrichmentData(".mc", "right", ("French",)))
    padded = synthesize(only_tld, FRANCE)
    assert [clue.category for clue in padded] == [ClueCategory.TLD, ClueCategory.GENERAL]


def test_internal_error_falls_back_to_single_clue() -> None:
    class Broken:
        country = "Nowhere"

        @property
        def enrichment(self):
            raise RuntimeError("bad data")

    clues = synthesize(Broken(), FRANCE)

    assert len(clues) == 1
    assert clues[0].text == "Pay attention to distinctive features in Nowhere."


def test_same_country_code_with_different_names_yields_no_clues() -> None:
    native = CountryFact("Deutschland", SourceRank.GAME_API, "DE")
    english = CountryFact("Germany", SourceRank.GAME_API, "de")

    assert synthesize(english, native) == []
