"""Country enrichment from the REST Countries API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from geo_recall.config import settings
from geo_recall.models import UNKNOWN, EnrichmentData, flag_url_for
from geo_recall.services.http import JsonService


@dataclass(frozen=True, slots=True)
class CountryProfile:
    country: str
    country_code: str
    enrichment: EnrichmentData


def _first(values: Any) -> str:
    if isinstance(values, list) and values and values[0]:
        return str(values[0])
    return UNKNOWN


def enrichment_from_entry(entry: dict[str, Any], country_code: str) -> EnrichmentData:
    car = entry.get("car")
    languages = entry.get("languages")
    currencies = entry.get("currencies")
    currency = UNKNOWN
    if isinstance(currencies, dict) and currencies:
        first_currency = next(iter(currencies.values()))
        if isinstance(first_currency, dict) and first_currency.get("name"):
            currency = str(first_currency["name"])
    return EnrichmentData(
        top_level_domain=_first(entry.get("tld")),
        driving_side=str(car["side"]) if isinstance(car, dict) and car.get("side") else UNKNOWN,
        languages=tuple(str(lang) for lang in languages.values()) if isinstance(languages, dict) and languages else (UNKNOWN,),
        currency=currency,
        continent=_first(entry.get("continents")),
        capital=_first(entry.get("capital")),
        flag_url=flag_url_for(country_code),
    )


def parse_country_payload(payload: Any, country_code: str) -> CountryProfile | None:
    entry = payload[0] if isinstance(payload, list) and payload else payload
    if not isinstance(entry, dict):
        return None
    name = entry.get("name")
    common = name.get("common") if isinstance(name, dict) else None
    return CountryProfile(
        country=str(common) if common else UNKNOWN,
        country_code=country_code.upper(),
        enrichment=enrichment_from_entry(entry, country_code),
    )


class RestCountriesClient(JsonService):
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            base_url=base_url or settings.restcountries_url,
            timeout_seconds=timeout_seconds or settings.geocoder_timeout_seconds,
            client=client,
        )

    async def lookup(self, country_code: str) -> CountryProfile | None:
        payload = await self._get_json(f"{self.base_url}/{country_code.upper()}")
        return parse_country_payload(payload, country_code)
