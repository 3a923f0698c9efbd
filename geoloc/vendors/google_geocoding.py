"""Client utilities for the Google Geocoding API."""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

import requests

from geoloc.core.errors import CollaboratorError, InvalidZoneError
from geoloc.etl.transform import to_coordinates, to_resolved_address
from geoloc.models import ResolvedAddress, SearchZone

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://maps.googleapis.com/maps/api/geocode/json"


class GeocodingError(CollaboratorError):
    """Raised when the Geocoding API returns a non-successful response."""


def _get(params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
    response = _SESSION.get(_BASE_URL, params=params, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    status = payload.get("status")
    if status not in {"OK", "ZERO_RESULTS"}:
        logger.error("geocode failed: status=%s, error_message=%s", status, payload.get("error_message"))
        raise GeocodingError(payload.get("error_message") or status)
    return payload


def reverse_geocode(lat: float, lng: float, api_key: str, timeout: float = 10) -> Optional[ResolvedAddress]:
    params = {"latlng": f"{lat},{lng}", "result_type": "street_address", "key": api_key}
    payload = _get(params, timeout)
    for result in payload.get("results", []):
        address = to_resolved_address(result)
        if address is not None:
            return address
    return None


def geocode(query: str, api_key: str, region: str = "fr", timeout: float = 10) -> Optional[Dict[str, Any]]:
    params = {"address": query, "region": region, "key": api_key}
    payload = _get(params, timeout)
    results = payload.get("results", [])
    return results[0] if results else None


class GoogleAddressResolver:
    """AddressResolver backed by Google reverse geocoding.

    ``parcel_lookup`` optionally attaches a cadastral parcel id to each
    resolved address; it must swallow its own failures and return None.
    """

    def __init__(
        self,
        api_key: str,
        timeout: float = 10,
        parcel_lookup: Optional[Callable[[float, float], Optional[str]]] = None,
    ) -> None:
        if not api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY is required for reverse geocoding")
        self._api_key = api_key
        self._timeout = timeout
        self._parcel_lookup = parcel_lookup

    def reverse_geocode(self, lat: float, lng: float) -> Optional[ResolvedAddress]:
        address = reverse_geocode(lat, lng, self._api_key, timeout=self._timeout)
        if address is None or self._parcel_lookup is None:
            return address
        parcel_id = self._parcel_lookup(lat, lng)
        return replace(address, parcel_id=parcel_id) if parcel_id else address

    def zone_from_place(
        self,
        radius_m: float,
        *,
        postal_code: Optional[str] = None,
        city: Optional[str] = None,
        country: str = "France",
    ) -> SearchZone:
        """Centre a search zone on a postal code or city."""
        parts = [postal_code, city, country]
        query = " ".join(filter(None, parts)).strip()
        if not postal_code and not city:
            raise InvalidZoneError("a postal code or a city is required to derive a zone")

        result = geocode(query, self._api_key, timeout=self._timeout)
        center = to_coordinates(result) if result else None
        if center is None:
            raise InvalidZoneError(f"could not locate {query!r}")
        logger.info("Derived zone centre %.6f,%.6f for %s", center.lat, center.lng, query)
        return SearchZone(center=center, radius_m=radius_m, postal_code=postal_code, city=city)
