"""DOM inspection driven by an injected concept -> selector configuration."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from geo_recall.adapters.events import DomSnapshot, ElementView, PageSnapshot
from geo_recall.adapters.url import parse_maps_coordinate
from geo_recall.models import Coordinate, Fact, FactKind, SourceRank

logger = logging.getLogger(__name__)

ROUND_NUMBER = "round_number"
ROUND_RESULT = "round_result"
GAMEPLAY = "gameplay"
ADDRESS = "address"
RESULT_TEXT = "result_text"

DEFAULT_SELECTORS: dict[str, tuple[str, ...]] = {
    ROUND_NUMBER: (
        'div[data-qa="round-number"]',
        "[class^=round-score_roundNumber__]",
    ),
    ROUND_RESULT: (
        'div[data-qa="round-result"]',
        ".result-layout_content",
        ".round-result_wrapper__",
        '[class*="result-layout"]',
        '[class*="results"]',
        '[class*="summary-"]',
        'div[class*="result"]',
        'button[data-qa="close-round-result"]',
        '[class*="next-round"]',
    ),
    GAMEPLAY: (
        'div[data-qa="game-status"]',
        '[class*="game-status"]',
        '[class*="compass"]',
        '[data-qa="timer"]',
    ),
    ADDRESS: (
        'div[data-qa="address"]',
        ".address",
        '[class^="result-layout_addressContainer__"]',
        'div[class*="address"]',
        'div[class*="location"]',
        'div[class*="country"]',
    ),
    RESULT_TEXT: (
        '[class*="result-layout"]:not(button)',
        '[class*="result"]:not(button)',
    ),
}

_ROUND_FRACTION = re.compile(r"(\d+)\s*/\s*\d+")
_FIRST_NUMBER = re.compile(r"(\d+)")
_TEXT_COORDINATE = re.compile(r"(-?\d+\.\d+),\s*(-?\d+\.\d+)")
_COUNTRY_PHRASES = [
    re.compile(r"(?:location|place)\s+(?:is|was)(?:\s+in)?\s+([A-Za-z\s]+)(?:\.|,)", re.IGNORECASE),
    re.compile(r"correct(?:\s+answer)?\s+(?:is|was)\s+(?:in\s+)?([A-Za-z\s]+)", re.IGNORECASE),
    re.compile(r"([A-Za-z\s]+)\s+was\s+the\s+(?:correct|right)\s+(?:country|answer)", re.IGNORECASE),
]
_GUESS_PHRASE = re.compile(r"You\s+guessed\s+([A-Za-z\s]+)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class SelectorConfig:
    """Ordered selector lists per DOM concept; earlier selectors are preferred."""

    selectors: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: dict(DEFAULT_SELECTORS))

    def for_concept(self, concept: str) -> tuple[str, ...]:
        return tuple(self.selectors.get(concept, ()))

    @classmethod
    def from_file(cls, path: str | Path) -> SelectorConfig:
        """Load overrides from JSON; concepts missing from the file keep their defaults."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError(f"Selector file must contain a JSON object: {path}")
        merged = dict(DEFAULT_SELECTORS)
        for concept, selectors in payload.items():
            if isinstance(selectors, str):
                selectors = [selectors]
            merged[concept] = tuple(str(selector) for selector in selectors)
        return cls(selectors=merged)


class DomAdapter:
    """Pure queries over a DOM snapshot. Hidden elements count as absent."""

    def __init__(self, config: SelectorConfig | None = None) -> None:
        self._config = config or SelectorConfig()

    @property
    def config(self) -> SelectorConfig:
        return self._config

    def first_visible(self, dom: DomSnapshot, concept: str) -> ElementView | None:
        for selector in self._config.for_concept(concept):
            for element in dom.query(selector):
                if element.visible:
                    return element
        return None

    def all_visible(self, dom: DomSnapshot, concept: str) -> list[ElementView]:
        return [
            element
            for selector in self._config.for_concept(concept)
            for element in dom.query(selector)
            if element.visible
        ]

    def round_number(self, dom: DomSnapshot) -> int | None:
        element = self.first_visible(dom, ROUND_NUMBER)
        if element is None:
            return None
        text = element.text.strip()
        match = _ROUND_FRACTION.search(text) or _FIRST_NUMBER.search(text)
        return int(match.group(1)) if match else None

    def is_round_ended(self, dom: DomSnapshot) -> bool:
        return self.first_visible(dom, ROUND_RESULT) is not None

    def is_gameplay_visible(self, dom: DomSnapshot) -> bool:
        if self.is_round_ended(dom):
            return False
        return self.first_visible(dom, GAMEPLAY) is not None

    def extract_country(self, snapshot: PageSnapshot) -> str | None:
        """Best-effort actual country from the result screen text."""
        address = self.first_visible(snapshot.dom, ADDRESS)
        if address is not None and "," in address.text:
            country = address.text.split(",")[-1].strip()
            if len(country) > 1:
                return country

        for element in self.all_visible(snapshot.dom, RESULT_TEXT):
            for pattern in _COUNTRY_PHRASES:
                match = pattern.search(element.text)
                if match and match.group(1).strip():
                    return match.group(1).strip()

        if "-" in snapshot.title:
            tail = snapshot.title.split("-")[-1].strip()
            if 2 < len(tail) < 30:
                return tail

        logger.debug("dom_country_not_found", extra={"url": snapshot.url})
        return None

    def extract_guess_country(self, snapshot: PageSnapshot) -> str | None:
        for element in self.all_visible(snapshot.dom, RESULT_TEXT):
            match = _GUESS_PHRASE.search(element.text)
            if match and match.group(1).strip():
                return match.group(1).strip()
        return None

    def extract_coordinate(self, snapshot: PageSnapshot) -> Coordinate | None:
        """Coordinates embedded in the URL, else the first in-range pair in the page text."""
        from_url = parse_maps_coordinate(snapshot.url)
        if from_url is not None:
            return from_url
        for match in _TEXT_COORDINATE.finditer(snapshot.body_text):
            lat, lng = float(match.group(1)), float(match.group(2))
            if -90 <= lat <= 90 and -180 <= lng <= 180:
                return Coordinate.sanitize(lat, lng)
        return None

    def facts(self, snapshot: PageSnapshot) -> list[Fact]:
        coordinate = self.extract_coordinate(snapshot)
        if coordinate is None:
            return []
        return [Fact(FactKind.ACTUAL_LOCATION, coordinate, SourceRank.DOM_TEXT, source="dom")]
