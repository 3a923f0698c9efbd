"""Cadastral parcel lookups against IGN API Carto."""

import json
import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_BASE_URL = "https://apicarto.ign.fr/api/cadastre/parcelle"


def parcel_feature(lat: float, lng: float, timeout: float = 10) -> Optional[Dict[str, Any]]:
    """Return the GeoJSON feature of the parcel containing the point, if any."""
    geom = json.dumps({"type": "Point", "coordinates": [lng, lat]})
    response = _SESSION.get(_BASE_URL, params={"geom": geom}, headers={"Accept": "application/json"}, timeout=timeout)
    response.raise_for_status()
    data = response.json()
    features = data.get("features") if isinstance(data, dict) else None
    if isinstance(features, list) and features:
        return features[0]
    if isinstance(data, dict) and data.get("type") == "Feature":
        return data
    return None


def parcel_id_at(lat: float, lng: float, timeout: float = 10) -> Optional[str]:
    feature = parcel_feature(lat, lng, timeout=timeout)
    if not feature:
        return None
    properties = feature.get("properties") or {}
    parcel_id = properties.get("idu") or properties.get("id")
    if not parcel_id:
        section = properties.get("section")
        numero = properties.get("numero")
        commune = properties.get("code_insee") or properties.get("code_com")
        if section and numero:
            parcel_id = f"{commune or ''}{section}{numero}"
    return str(parcel_id) if parcel_id else None


class IgnParcelLookup:
    """Callable parcel lookup; failures are logged and yield None."""

    def __init__(self, timeout: float = 10) -> None:
        self._timeout = timeout

    def __call__(self, lat: float, lng: float) -> Optional[str]:
        try:
            return parcel_id_at(lat, lng, timeout=self._timeout)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Parcel lookup failed for %.6f,%.6f: %s", lat, lng, exc)
            return None
