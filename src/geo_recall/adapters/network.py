"""Facts from intercepted network responses and embedded page data.

Observation is side-effect free: the adapter only reads the body it is handed and
drops anything it cannot parse.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from geo_recall.adapters.events import NetworkResponse, StreetViewPosition
from geo_recall.models import Coordinate, Fact, FactKind, OverviewData, SourceRank

logger = logging.getLogger(__name__)

GAME_API_MARKERS = ("api/v3/games", "api/v4/games", "api/v3/challenges")
MAPS_METADATA_MARKER = "google.internal.maps.mapsjs"
OVERVIEW_MARKER = "/location-overview"

_PANO_ID = re.compile(r'"panoId":"([^"]+)"')
_COORD_PAIR = re.compile(r"(-?\d+\.\d+),(-?\d+\.\d+)")
_HEADING = re.compile(r'"heading":([0-9.-]+)')
_PITCH = re.compile(r'"pitch":([0-9.-]+)')
_ZOOM = re.compile(r'"zoom":([0-9.-]+)')
_OVERVIEW_ROUND = re.compile(r"/round/(\d+)/location-overview")


def _load_json(body: Any) -> Any:
    if isinstance(body, (dict, list)):
        return body
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="ignore")
    if not isinstance(body, str) or not body.strip():
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        return None


def _as_text(body: Any) -> str:
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="ignore")
    if isinstance(body, str):
        return body
    if body is None:
        return ""
    return json.dumps(body)


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", "").strip())
        except ValueError:
            return None
    return None


def _round_score(guess: dict[str, Any]) -> float | None:
    if (points := _number(guess.get("roundScoreInPoints"))) is not None:
        return points
    score = guess.get("roundScore")
    if isinstance(score, dict):
        return _number(score.get("amount"))
    return _number(score)


def location_facts(entry: Any, *, round_number: int, rank: SourceRank, source: str) -> list[Fact]:
    """Ground-truth facts from one round entry (game API or Next.js data)."""
    if not isinstance(entry, dict):
        return []
    facts: list[Fact] = []
    coordinate = Coordinate.sanitize(entry.get("lat"), entry.get("lng"))
    if coordinate is not None:
        facts.append(Fact(FactKind.ACTUAL_LOCATION, coordinate, rank, round_number, source))
    pano_id = entry.get("panoId")
    if isinstance(pano_id, str) and pano_id:
        facts.append(Fact(FactKind.PANORAMA_ID, pano_id, rank, round_number, source))
    for kind, name in ((FactKind.HEADING, "heading"), (FactKind.PITCH, "pitch"), (FactKind.ZOOM, "zoom")):
        value = _number(entry.get(name))
        if value is not None:
            facts.append(Fact(kind, value, rank, round_number, source))
    code = entry.get("countryCode") or entry.get("streakLocationCode")
    if isinstance(code, str) and len(code.strip()) == 2:
        facts.append(Fact(FactKind.COUNTRY_CODE_HINT, code.strip().upper(), rank, round_number, source))
    return facts


def game_api_facts(payload: Any) -> list[Fact]:
    """Every round's location and every player guess in a game/challenge payload."""
    if not isinstance(payload, dict) or not isinstance(payload.get("rounds"), list):
        return []
    facts: list[Fact] = []
    for index, entry in enumerate(payload["rounds"]):
        facts.extend(location_facts(entry, round_number=index + 1, rank=SourceRank.GAME_API, source="game_api"))

    player = payload.get("player")
    guesses = player.get("guesses") if isinstance(player, dict) else None
    if isinstance(guesses, list):
        for index, guess in enumerate(guesses):
            if not isinstance(guess, dict):
                continue
            coordinate = Coordinate.sanitize(guess.get("lat"), guess.get("lng"))
            if coordinate is not None:
                facts.append(Fact(FactKind.GUESS_LOCATION, coordinate, SourceRank.GAME_API, index + 1, "game_api"))
            score = _round_score(guess)
            if score is not None:
                facts.append(Fact(FactKind.ROUND_SCORE, score, SourceRank.GAME_API, index + 1, "game_api"))
    return facts


def next_data_facts(raw: Any) -> list[Fact]:
    """Round locations embedded in the Next.js ``__NEXT_DATA__`` script."""
    data = _load_json(raw)
    try:
        rounds = data["props"]["pageProps"]["game"]["rounds"]
    except (KeyError, TypeError):
        return []
    if not isinstance(rounds, list):
        return []
    facts: list[Fact] = []
    for index, entry in enumerate(rounds):
        facts.extend(location_facts(entry, round_number=index + 1, rank=SourceRank.NEXT_DATA, source="next_data"))
    return facts


def maps_metadata_facts(text: str) -> list[Fact]:
    """Regex extraction from the map provider's panorama metadata response."""
    rank = SourceRank.MAP_PROVIDER
    facts: list[Fact] = []
    if match := _PANO_ID.search(text):
        facts.append(Fact(FactKind.PANORAMA_ID, match.group(1), rank, source="maps"))
    if match := _COORD_PAIR.search(text):
        coordinate = Coordinate.sanitize(match.group(1), match.group(2))
        if coordinate is not None:
            facts.append(Fact(FactKind.ACTUAL_LOCATION, coordinate, rank, source="maps"))
    for kind, pattern in ((FactKind.HEADING, _HEADING), (FactKind.PITCH, _PITCH), (FactKind.ZOOM, _ZOOM)):
        if match := pattern.search(text):
            value = _number(match.group(1))
            if value is not None:
                facts.append(Fact(kind, value, rank, source="maps"))
    return facts


def overview_facts(url: str, payload: Any) -> list[Fact]:
    overview = OverviewData.from_payload(payload)
    if overview is None:
        return []
    match = _OVERVIEW_ROUND.search(url)
    round_hint = int(match.group(1)) if match else None
    return [Fact(FactKind.OVERVIEW, overview, SourceRank.GAME_API, round_hint, "overview")]


class NetworkAdapter:
    """Routes an intercepted response to the extractor for its origin."""

    def facts(self, response: NetworkResponse) -> list[Fact]:
        url = response.url or ""
        try:
            if OVERVIEW_MARKER in url:
                return overview_facts(url, _load_json(response.body))
            if any(marker in url for marker in GAME_API_MARKERS):
                return game_api_facts(_load_json(response.body))
            if MAPS_METADATA_MARKER in url:
                return maps_metadata_facts(_as_text(response.body))
        except (TypeError, ValueError, KeyError, AttributeError):
            logger.debug("network_payload_dropped", extra={"url": url})
        return []

    def next_data_facts(self, raw: Any) -> list[Fact]:
        return next_data_facts(raw)

    def street_view_facts(self, position: StreetViewPosition) -> list[Fact]:
        coordinate = Coordinate.sanitize(position.lat, position.lng)
        if coordinate is None:
            return []
        return [Fact(FactKind.ACTUAL_LOCATION, coordinate, SourceRank.MAP_PROVIDER, source="street_view")]
