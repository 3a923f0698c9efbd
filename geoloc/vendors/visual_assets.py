"""Satellite, Street View and cadastral image references for surfaced candidates."""

import logging
from typing import Optional
from urllib.parse import urlencode

import requests

from geoloc.models import VisualAssets

logger = logging.getLogger(__name__)
_SESSION = requests.Session()

_STATIC_MAP_URL = "https://maps.googleapis.com/maps/api/staticmap"
_STREET_VIEW_URL = "https://maps.googleapis.com/maps/api/streetview"
_STREET_VIEW_METADATA_URL = "https://maps.googleapis.com/maps/api/streetview/metadata"
_CADASTRE_URL = "https://apicarto.ign.fr/api/cadastre/parcelle"


def satellite_tile_url(
    lat: float,
    lng: float,
    api_key: str,
    *,
    zoom: int = 19,
    size: str = "800x600",
    marker: bool = True,
) -> str:
    params = {
        "center": f"{lat},{lng}",
        "zoom": zoom,
        "size": size,
        "maptype": "satellite",
        "key": api_key,
    }
    if marker:
        params["markers"] = f"color:red|{lat},{lng}"
    return f"{_STATIC_MAP_URL}?{urlencode(params)}"


def street_view_url(lat: float, lng: float, api_key: str) -> str:
    params = {"location": f"{lat},{lng}", "size": "800x600", "fov": 90, "pitch": 0, "key": api_key}
    return f"{_STREET_VIEW_URL}?{urlencode(params)}"


def cadastral_url(lat: float, lng: float) -> str:
    geom = f'{{"type":"Point","coordinates":[{lng},{lat}]}}'
    return f"{_CADASTRE_URL}?{urlencode({'geom': geom})}"


def street_view_available(lat: float, lng: float, api_key: str, timeout: float = 10) -> bool:
    params = {"location": f"{lat},{lng}", "key": api_key}
    response = _SESSION.get(_STREET_VIEW_METADATA_URL, params=params, timeout=timeout)
    response.raise_for_status()
    return response.json().get("status") == "OK"


class GoogleVisualAssets:
    """VisualAssetProvider; only enriches presented candidates."""

    def __init__(self, api_key: str, timeout: float = 10) -> None:
        self._api_key = api_key
        self._timeout = timeout

    def assets_for(self, lat: float, lng: float) -> VisualAssets:
        satellite: Optional[str] = None
        street: Optional[str] = None
        if self._api_key:
            satellite = satellite_tile_url(lat, lng, self._api_key)
            try:
                if street_view_available(lat, lng, self._api_key, timeout=self._timeout):
                    street = street_view_url(lat, lng, self._api_key)
            except requests.RequestException as exc:
                logger.warning("Street View metadata lookup failed for %.6f,%.6f: %s", lat, lng, exc)
        else:
            logger.warning("GOOGLE_MAPS_API_KEY not configured; satellite and Street View links skipped")
        return VisualAssets(
            satellite_url=satellite,
            street_view_url=street,
            cadastral_url=cadastral_url(lat, lng),
        )
