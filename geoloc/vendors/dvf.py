"""Prior-sale lookups (DVF open data) used as contextual scoring hints."""

import logging
from typing import Any, Dict, List, Optional

import requests

from geoloc.models import SaleRecord

logger = logging.getLogger(__name__)
_SESSION = requests.Session()


def _to_sale(row: Dict[str, Any]) -> Optional[SaleRecord]:
    price = _safe_float(row.get("valeur_fonciere"))
    surface = _safe_float(row.get("surface_reelle_bati"))
    land = _safe_float(row.get("surface_terrain"))
    if price is None and surface is None and land is None:
        return None
    return SaleRecord(price=price, surface=surface, land_surface=land, sold_at=row.get("date_mutation"))


def fetch_sales(base_url: str, lat: float, lng: float, radius_m: int = 50, timeout: float = 10) -> List[SaleRecord]:
    params = {"lat": lat, "lon": lng, "dist": radius_m}
    response = _SESSION.get(base_url, params=params, timeout=timeout)
    response.raise_for_status()
    payload = response.json()
    rows = payload.get("resultats") if isinstance(payload, dict) else payload
    sales = [_to_sale(row) for row in rows or [] if isinstance(row, dict)]
    return [sale for sale in sales if sale is not None]


class DvfSaleHistory:
    """SaleHistory returning the most recent sale within a few metres of a point."""

    def __init__(self, base_url: str, radius_m: int = 50, timeout: float = 10) -> None:
        self._base_url = base_url
        self._radius_m = radius_m
        self._timeout = timeout

    def nearest_sale(self, lat: float, lng: float) -> Optional[SaleRecord]:
        sales = fetch_sales(self._base_url, lat, lng, radius_m=self._radius_m, timeout=self._timeout)
        if not sales:
            return None
        sales.sort(key=lambda sale: sale.sold_at or "", reverse=True)
        return sales[0]


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None
