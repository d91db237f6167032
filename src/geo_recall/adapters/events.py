"""Boundary types for signals delivered by the host page integration.

The host hooks (fetch/XHR patching, mutation observers, URL polling) live outside
this package. They deliver at-least-once, possibly duplicated and reordered events
through ``RoundRuntime.publish``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Union


@dataclass(frozen=True, slots=True)
class ElementView:
    """Text and visibility of one element matched by a selector."""

    text: str
    visible: bool = True


class DomSnapshot(Protocol):
    """Read-only view of the page DOM at one instant."""

    def query(self, selector: str) -> list[ElementView]:
        """Return every element matching ``selector`` in document order."""


@dataclass(slots=True)
class StaticDom:
    """Dict-backed DOM snapshot used by recorded replays."""

    elements: dict[str, list[ElementView]] = field(default_factory=dict)

    def query(self, selector: str) -> list[ElementView]:
        return list(self.elements.get(selector, []))

    @classmethod
    def from_mapping(cls, mapping: dict[str, Any] | None) -> StaticDom:
        elements: dict[str, list[ElementView]] = {}
        for selector, raw in (mapping or {}).items():
            items = raw if isinstance(raw, list) else [raw]
            views: list[ElementView] = []
            for item in items:
                if isinstance(item, dict):
                    views.append(ElementView(text=str(item.get("text", "")), visible=bool(item.get("visible", True))))
                else:
                    views.append(ElementView(text=str(item)))
            elements[selector] = views
        return cls(elements=elements)


@dataclass(frozen=True, slots=True)
class PageSnapshot:
    """URL, DOM and embedded data observed on a poll tick or mutation."""

    url: str
    dom: DomSnapshot = field(default_factory=StaticDom)
    title: str = ""
    body_text: str = ""
    next_data: str | None = None


@dataclass(frozen=True, slots=True)
class NetworkResponse:
    """A response body observed (never modified) by the network hook."""

    url: str
    body: Any


@dataclass(frozen=True, slots=True)
class StreetViewPosition:
    """Position reported by the map provider's panorama widget."""

    lat: float
    lng: float


HostEvent = Union[PageSnapshot, NetworkResponse, StreetViewPosition]


class HostPage(Protocol):
    def snapshot(self) -> PageSnapshot:
        """Capture the current page state."""


@dataclass(frozen=True, slots=True)
class Pause:
    """Replay-only marker: let the event loop run for ``seconds``."""

    seconds: float


def event_from_payload(payload: dict[str, Any]) -> HostEvent | Pause:
    """Build a host event from one recorded JSON object."""
    kind = payload.get("type")
    if kind == "page":
        return PageSnapshot(
            url=str(payload.get("url", "")),
            dom=StaticDom.from_mapping(payload.get("dom")),
            title=str(payload.get("title", "")),
            body_text=str(payload.get("body_text", "")),
            next_data=payload.get("next_data"),
        )
    if kind == "network":
        return NetworkResponse(url=str(payload.get("url", "")), body=payload.get("body"))
    if kind == "street_view":
        return StreetViewPosition(lat=float(payload["lat"]), lng=float(payload["lng"]))
    if kind == "wait":
        return Pause(seconds=float(payload.get("seconds", 0.0)))
    raise ValueError(f"Unknown event type: {kind!r}")
