"""Best-effort HTTP clients for geocoding, enrichment and round overviews."""

from .http import JsonService
from .nominatim import NominatimGeocoder, ReverseGeocodeResult
from .overview import LocationOverviewClient
from .restcountries import CountryProfile, RestCountriesClient

__all__ = [
    "CountryProfile",
    "JsonService",
    "LocationOverviewClient",
    "NominatimGeocoder",
    "RestCountriesClient",
    "ReverseGeocodeResult",
]
