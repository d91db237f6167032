"""Reverse geocoding through OpenStreetMap Nominatim."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from geo_recall.config import settings
from geo_recall.models import Coordinate
from geo_recall.services.http import JsonService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReverseGeocodeResult:
    country: str
    country_code: str | None = None
    locality: str | None = None
    region: str | None = None


def parse_reverse_payload(payload: Any) -> ReverseGeocodeResult | None:
    if not isinstance(payload, dict):
        return None
    address = payload.get("address")
    if not isinstance(address, dict) or not address.get("country"):
        return None
    code = address.get("country_code")
    return ReverseGeocodeResult(
        country=str(address["country"]),
        country_code=str(code).upper() if code else None,
        locality=address.get("city") or address.get("town") or address.get("village"),
        region=address.get("state") or address.get("county"),
    )


class NominatimGeocoder(JsonService):
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        language: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            base_url=base_url or settings.nominatim_url,
            timeout_seconds=timeout_seconds or settings.geocoder_timeout_seconds,
            client=client,
        )
        self.language = language or settings.geocoder_language

    def _headers(self) -> dict[str, str]:
        return {**super()._headers(), "Accept-Language": self.language}

    async def reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        payload = await self._get_json(
            self.base_url,
            params={
                "lat": coordinate.lat,
                "lon": coordinate.lng,
                "format": "json",
                "addressdetails": 1,
                "accept-language": self.language,
            },
        )
        result = parse_reverse_payload(payload)
        if payload is not None and result is None:
            logger.warning("reverse_geocode_without_country", extra={"lat": coordinate.lat, "lng": coordinate.lng})
        return result
