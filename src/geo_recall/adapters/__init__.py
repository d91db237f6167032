"""Signal adapters for the host page and the flashcard RPC endpoint."""

from .anki_connect import AnkiConnectClient, CardSink, adapt_fields
from .dom import DEFAULT_SELECTORS, DomAdapter, SelectorConfig
from .events import (
    DomSnapshot,
    ElementView,
    HostEvent,
    HostPage,
    NetworkResponse,
    PageSnapshot,
    Pause,
    StaticDom,
    StreetViewPosition,
    event_from_payload,
)
from .network import NetworkAdapter
from .url import GameMode, UrlRoundInfo, parse_url

__all__ = [
    "AnkiConnectClient",
    "CardSink",
    "DEFAULT_SELECTORS",
    "DomAdapter",
    "DomSnapshot",
    "ElementView",
    "GameMode",
    "HostEvent",
    "HostPage",
    "NetworkAdapter",
    "NetworkResponse",
    "PageSnapshot",
    "Pause",
    "SelectorConfig",
    "StaticDom",
    "StreetViewPosition",
    "UrlRoundInfo",
    "adapt_fields",
    "event_from_payload",
    "parse_url",
]
