"""Pure RoundRecord -> flashcard text compilation."""

from __future__ import annotations

import re
from html import escape

from geo_recall.errors import IncompleteRound
from geo_recall.models import (
    UNKNOWN,
    CardContent,
    Clue,
    ClueCategory,
    Coordinate,
    CountryFact,
    RoundRecord,
    UserOverrides,
    is_unknown,
)

UNKNOWN_GUESS = "Unknown Guess"
UNKNOWN_LOCATION = "Unknown location"
MAPS_FALLBACK = "https://www.google.com/maps/@{lat},{lng},3a,90y,0h,0t/data=!3m1!1e1"
STREET_VIEW = (
    "https://www.google.com/maps/@{lat:.6f},{lng:.6f},3a,{fov}y,{heading}h,{pitch}t"
    "/data=!3m6!1e1!3m4!1s{pano}!2e0!7i13312!8i6656"
)

_SPECIFIC_CATEGORIES = (ClueCategory.DRIVING_SIDE, ClueCategory.LANGUAGE, ClueCategory.COVERAGE_TYPE)
_DETAIL = re.compile(r"has (.+?) (?:signs|poles|antennas|coverage)", re.IGNORECASE)
_HEX_PAIRS = re.compile(r"^(?:[0-9a-fA-F]{2})+$")


def decode_panorama_id(panorama_id: str) -> str:
    """Panorama ids from the game API are hex-encoded; anything else is used as-is."""
    if not _HEX_PAIRS.match(panorama_id):
        return panorama_id
    try:
        return bytes.fromhex(panorama_id).decode("utf-8")
    except UnicodeDecodeError:
        return panorama_id


def _format_number(value: float) -> str:
    return f"{value:.2f}".rstrip("0").rstrip(".")


def street_view_link(
    coordinate: Coordinate,
    panorama_id: str | None = None,
    heading: float = 0.0,
    pitch: float = 0.0,
    zoom: float = 0.0,
) -> str:
    if not panorama_id:
        return MAPS_FALLBACK.format(lat=coordinate.lat, lng=coordinate.lng)
    zoom = max(0.0, min(4.0, zoom))
    pitch = max(-90.0, min(90.0, pitch))
    return STREET_VIEW.format(
        lat=coordinate.lat,
        lng=coordinate.lng,
        fov=_format_number(90 - zoom / 2.75 * 90),
        heading=_format_number(heading % 360),
        pitch=_format_number(90 + pitch),
        pano=decode_panorama_id(panorama_id),
    )


def distinctive_clue(clues: list[Clue], actual: CountryFact | None) -> str:
    """Shortest memorable fragment of the most specific clue."""
    for clue in clues:
        if clue.category not in _SPECIFIC_CATEGORIES:
            continue
        detail = _DETAIL.search(clue.text)
        if detail:
            return detail.group(1)
        short = clue.text.split("(")[0].strip()
        if len(short) < 50:
            return short

    if clues:
        shortened = clues[0].text.split(".")[0]
        return shortened if len(shortened) < 40 else "different road markings or signs"

    if actual is not None and actual.enrichment is not None and not is_unknown(actual.enrichment.driving_side):
        return f"drives on the {actual.enrichment.driving_side} side"
    return "distinctive local features"


def mnemonic(guess_country: str, actual_country: str, clues: list[Clue], actual: CountryFact | None) -> str:
    return (
        f'"If it looks like {guess_country} but has {distinctive_clue(clues, actual)} '
        f'→ Think {actual_country}!"'
    )


def compile_card(
    record: RoundRecord,
    overrides: UserOverrides | None = None,
    *,
    hide_location_link: bool = True,
) -> CardContent:
    """Build the front/back text for ``record``.

    Raises ``IncompleteRound`` when the actual country is unknown. Identical
    input always yields identical output.
    """
    actual = record.actual.country
    if actual is None or is_unknown(actual.country):
        raise IncompleteRound(f"No actual country resolved for round {record.key}")

    overrides = overrides or record.overrides
    guess = record.guess.country
    guess_country = overrides.guess_country or (guess.country if guess is not None else None) or UNKNOWN_GUESS
    actual_country = actual.country
    if overrides.show_location_link is not None:
        hide_location_link = not overrides.show_location_link

    maps_link = None
    if record.actual.location is not None:
        maps_link = street_view_link(
            record.actual.location,
            record.actual.panorama_id,
            record.actual.heading,
            record.actual.pitch,
            record.actual.zoom,
        )

    a, g = escape(actual_country), escape(guess_country)
    front = f"You guessed {g}, but the correct answer was {a}. What clues did you miss? \U0001F30D"
    if maps_link and not hide_location_link:
        front += (
            f'<br><br>\n\U0001F517 <a href="{escape(maps_link)}" target="_blank">'
            "Google Maps Link: View Correct Location</a>"
        )

    flag_html = ""
    if actual.country_code:
        flag_url = f"https://flagcdn.com/w320/{actual.country_code.lower()}.png"
        flag_html = f' <img src="{flag_url}" class="flag-image" alt="Flag of {a}">'

    guess_city = escape(guess.locality) if guess is not None and guess.locality else UNKNOWN_LOCATION
    actual_city = escape(actual.locality) if actual.locality else UNKNOWN_LOCATION
    enrichment = actual.enrichment
    continent = escape(enrichment.continent) if enrichment is not None else UNKNOWN
    driving_side = escape(enrichment.driving_side) if enrichment is not None else UNKNOWN

    lines = [
        f"<h3>✅ Correct Answer: <strong>{a}</strong>{flag_html}</h3>",
        f"<h3>❌ Mistake: Guessed {g}</h3>",
        "",
        f"<p>\U0001F4CD <strong>Your Guess:</strong> {guess_city}, <strong>{g}</strong></p>",
        f"<p>\U0001F4CD <strong>Correct Location:</strong> {actual_city}, <strong>{a}</strong></p>",
    ]
    if maps_link:
        lines.append(f'<p>\U0001F517 <a href="{escape(maps_link)}" target="_blank">View on Google Maps</a></p>')
    lines.append(f"<p>\U0001F30E <strong>Continent:</strong> <strong>{continent}</strong></p>")
    lines.append(f"<p>\U0001F697 <strong>Driving Side:</strong> <strong>{driving_side}</strong></p>")

    lines.append("<h3>\U0001F6D1 Key Clues You Missed:</h3>")
    if overrides.missed_clues.strip():
        lines.append(f"<p>{escape(overrides.missed_clues)}</p>")
    else:
        items = [f"<li><strong>{escape(c.category.value)}:</strong> {escape(c.text)}</li>" for c in record.clues]
        if not items:
            items = [f"<li><strong>General:</strong> Pay attention to distinctive features in {a}.</li>"]
        lines.append("<ul>" + "".join(items) + "</ul>")

    lines.append("<h3>Next Time, Remember:</h3>")
    if overrides.reminder.strip():
        lines.append(f"<p>⚡ <em>{escape(overrides.reminder)}</em></p>")
    else:
        lines.append(f"<p>⚡ <em>{escape(mnemonic(guess_country, actual_country, record.clues, actual), quote=False)}</em></p>")

    return CardContent(
        front=front,
        back="\n".join(lines),
        actual_country=actual_country,
        guess_country=guess_country,
        round_key=str(record.key),
        maps_link=maps_link,
    )
