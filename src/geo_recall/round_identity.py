"""Which round a snapshot belongs to."""

from __future__ import annotations

from geo_recall.adapters.dom import DomAdapter
from geo_recall.adapters.events import DomSnapshot
from geo_recall.adapters.url import UrlRoundInfo
from geo_recall.models import RoundKey

UNKNOWN_SESSION = "unknown"


class RoundIdentityResolver:
    """Computes the RoundKey from URL and DOM round numbers.

    The URL number wins over the DOM number because navigation changes it
    atomically. When neither source has a number (the DOM is mid-transition),
    the last key of the same session is kept instead of falling back to round 1.
    """

    def __init__(self, dom_adapter: DomAdapter | None = None) -> None:
        self._dom = dom_adapter or DomAdapter()
        self._last: RoundKey | None = None

    def resolve(self, url_info: UrlRoundInfo, dom: DomSnapshot | None = None) -> RoundKey | None:
        if not url_info.processable:
            return None

        session_id = url_info.session_id or UNKNOWN_SESSION
        round_number = url_info.round_number
        if round_number is None and dom is not None:
            round_number = self._dom.round_number(dom)
        if round_number is None:
            if self._last is not None and self._last.session_id == session_id:
                return self._last
            round_number = 1

        key = RoundKey(session_id=session_id, round_number=round_number)
        self._last = key
        return key

    def reset(self) -> None:
        self._last = None
