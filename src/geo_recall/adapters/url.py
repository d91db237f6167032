"""Round number, session id and game mode from the page location."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

from geo_recall.models import Coordinate


class GameMode(str, Enum):
    STANDARD = "standard"
    CHALLENGE = "challenge"
    DUEL = "duel"
    BATTLE_ROYALE = "battle-royale"


# Per-round ground truth is withheld until the end of these modes.
EXCLUDED_MODES = frozenset({GameMode.DUEL, GameMode.BATTLE_ROYALE})

URL_PATTERNS: list[tuple[GameMode, re.Pattern[str]]] = [
    (GameMode.STANDARD, re.compile(r"/game/(?P<session>[^/?#]+)/round/(?P<round>\d+)")),
    (GameMode.BATTLE_ROYALE, re.compile(r"/battle-royale/(?P<session>[^/?#]+)")),
    (GameMode.DUEL, re.compile(r"/duels?/(?P<session>[^/?#]+)")),
    (GameMode.CHALLENGE, re.compile(r"/challenge/(?P<session>[^/?#]+)")),
    (GameMode.STANDARD, re.compile(r"/game/(?P<session>[^/?#]+)")),
]
_ROUND_SEGMENT = re.compile(r"/round/(\d+)")
_MAPS_COORDINATE = re.compile(r"/maps/(-?\d+(?:\.\d+)?)/(-?\d+(?:\.\d+)?)")


@dataclass(frozen=True, slots=True)
class UrlRoundInfo:
    in_game: bool
    mode: GameMode | None = None
    session_id: str | None = None
    round_number: int | None = None

    @property
    def processable(self) -> bool:
        return self.in_game and self.mode not in EXCLUDED_MODES


def _path_of(url: str) -> str:
    try:
        return urlsplit(url).path or url
    except ValueError:
        return url


def parse_url(url: str) -> UrlRoundInfo:
    """First matching pattern wins."""
    path = _path_of(url or "")
    for mode, pattern in URL_PATTERNS:
        match = pattern.search(path)
        if not match:
            continue
        groups = match.groupdict()
        round_number = int(groups["round"]) if groups.get("round") else None
        if round_number is None and (segment := _ROUND_SEGMENT.search(path)):
            round_number = int(segment.group(1))
        return UrlRoundInfo(
            in_game=True,
            mode=mode,
            session_id=groups["session"],
            round_number=round_number,
        )
    return UrlRoundInfo(in_game=False)


def parse_maps_coordinate(url: str) -> Coordinate | None:
    match = _MAPS_COORDINATE.search(_path_of(url or ""))
    if not match:
        return None
    return Coordinate.sanitize(match.group(1), match.group(2))
