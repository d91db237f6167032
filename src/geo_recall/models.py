from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any

from .errors import InvalidInput

UNKNOWN = "Unknown"
FLAG_URL_TEMPLATE = "https://flagcdn.com/w320/{code}.png"


class SourceRank(IntEnum):
    """Provenance ranks, higher wins."""

    DOM_TEXT = 1
    MAP_PROVIDER = 2
    NEXT_DATA = 3
    GAME_API = 4
    OVERRIDE = 5


class LifecycleState(str, Enum):
    IDLE = "idle"
    AWAITING_LOCATION = "awaiting_location"
    ACTIVE_ROUND = "active_round"
    ROUND_ENDED = "round_ended"
    CARD_PENDING = "card_pending"
    CARD_RESOLVED = "card_resolved"


@dataclass(frozen=True, slots=True)
class Coordinate:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
            raise InvalidInput(f"Non-finite coordinate: {self.lat}, {self.lng}")
        if not (-90.0 <= self.lat <= 90.0 and -180.0 <= self.lng <= 180.0):
            raise InvalidInput(f"Coordinate out of range: {self.lat}, {self.lng}")

    @classmethod
    def sanitize(cls, lat: Any, lng: Any) -> Coordinate | None:
        """Clamp to the valid range; ``None`` for anything that is not a finite number."""
        if isinstance(lat, bool) or isinstance(lng, bool):
            return None
        try:
            lat_value = float(lat)
            lng_value = float(lng)
        except (TypeError, ValueError):
            return None
        if not (math.isfinite(lat_value) and math.isfinite(lng_value)):
            return None
        return cls(
            lat=max(-90.0, min(90.0, lat_value)),
            lng=max(-180.0, min(180.0, lng_value)),
        )

    def chebyshev(self, other: Coordinate) -> float:
        return max(abs(self.lat - other.lat), abs(self.lng - other.lng))


@dataclass(frozen=True, slots=True)
class EnrichmentData:
    top_level_domain: str = UNKNOWN
    driving_side: str = UNKNOWN
    languages: tuple[str, ...] = (UNKNOWN,)
    currency: str = UNKNOWN
    continent: str = UNKNOWN
    capital: str = UNKNOWN
    flag_url: str | None = None

    @classmethod
    def unknown(cls, country_code: str | None = None) -> EnrichmentData:
        return cls(flag_url=flag_url_for(country_code))

    def known_languages(self) -> frozenset[str]:
        return frozenset(lang for lang in self.languages if lang and lang != UNKNOWN)


def flag_url_for(country_code: str | None) -> str | None:
    if not country_code:
        return None
    return FLAG_URL_TEMPLATE.format(code=country_code.lower())


def is_unknown(value: str | None) -> bool:
    return not value or value == UNKNOWN


@dataclass(frozen=True, slots=True)
class CountryFact:
    country: str
    provenance: SourceRank
    country_code: str | None = None
    locality: str | None = None
    region: str | None = None
    enrichment: EnrichmentData | None = None

    def same_country(self, other: CountryFact) -> bool:
        """Compare by ISO code when both sides carry one, else by name."""
        if self.country_code and other.country_code:
            return self.country_code.upper() == other.country_code.upper()
        return self.country.casefold() == other.country.casefold()


@dataclass(frozen=True, slots=True)
class OverviewData:
    """Supplementary region/coverage metadata for one round."""

    region: str | None = None
    coverage_type: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> OverviewData | None:
        if not isinstance(payload, dict):
            return None
        region = payload.get("region")
        if isinstance(region, dict):
            region = region.get("name")
        coverage = payload.get("coverage")
        coverage_type = coverage.get("type") if isinstance(coverage, dict) else None
        region = region if isinstance(region, str) and region.strip() else None
        coverage_type = coverage_type if isinstance(coverage_type, str) and coverage_type.strip() else None
        if region is None and coverage_type is None:
            return None
        return cls(region=region, coverage_type=coverage_type)


class ClueCategory(str, Enum):
    DRIVING_SIDE = "Driving Side"
    LANGUAGE = "Language"
    TLD = "Internet TLD"
    REGION = "Geographic Region"
    COVERAGE_TYPE = "Coverage Type"
    GENERAL = "General"


@dataclass(frozen=True, slots=True)
class Clue:
    category: ClueCategory
    text: str


@dataclass(frozen=True, slots=True)
class RoundKey:
    session_id: str
    round_number: int

    def __str__(self) -> str:
        return f"{self.session_id}-round-{self.round_number}"


class FactKind(str, Enum):
    ACTUAL_LOCATION = "actual_location"
    PANORAMA_ID = "panorama_id"
    HEADING = "heading"
    PITCH = "pitch"
    ZOOM = "zoom"
    COUNTRY_CODE_HINT = "country_code_hint"
    ACTUAL_COUNTRY = "actual_country"
    GUESS_LOCATION = "guess_location"
    GUESS_COUNTRY = "guess_country"
    ROUND_SCORE = "round_score"
    OVERVIEW = "overview"


@dataclass(frozen=True, slots=True)
class Fact:
    """One normalized piece of information from one source."""

    kind: FactKind
    value: Any
    rank: SourceRank
    round_hint: int | None = None
    source: str = ""


@dataclass(slots=True)
class ActualFacts:
    location: Coordinate | None = None
    panorama_id: str | None = None
    heading: float = 0.0
    pitch: float = 0.0
    zoom: float = 0.0
    country_code_hint: str | None = None
    country: CountryFact | None = None


@dataclass(slots=True)
class GuessFacts:
    location: Coordinate | None = None
    country: CountryFact | None = None


@dataclass(frozen=True, slots=True)
class UserOverrides:
    """Free text and corrections entered by the player when reviewing a card."""

    guess_country: str | None = None
    missed_clues: str = ""
    reminder: str = ""
    show_location_link: bool | None = None


class CardStatus(str, Enum):
    CREATED = "created"
    FAILED = "failed"
    DECLINED = "declined"
    REFUSED = "refused"
    DUPLICATE = "duplicate"


@dataclass(frozen=True, slots=True)
class CardOutcome:
    status: CardStatus
    message: str
    round_key: str | None = None


@dataclass(frozen=True, slots=True)
class CardContent:
    front: str
    back: str
    actual_country: str
    guess_country: str
    round_key: str
    maps_link: str | None = None


@dataclass(slots=True)
class RoundRecord:
    key: RoundKey
    actual: ActualFacts = field(default_factory=ActualFacts)
    guess: GuessFacts = field(default_factory=GuessFacts)
    score: float | None = None
    clues: list[Clue] = field(default_factory=list)
    overview: OverviewData | None = None
    overrides: UserOverrides = field(default_factory=UserOverrides)
    card_created: bool = False
    user_cancelled_card: bool = False
    lifecycle_state: LifecycleState = LifecycleState.AWAITING_LOCATION
    card_outcome: CardOutcome | None = None
    superseded: bool = False
    ranks: dict[str, SourceRank] = field(default_factory=dict)
