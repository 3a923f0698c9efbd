"""Deterministic sampling of a circular search zone.

Points follow a sunflower (Vogel) spiral: point ``i`` of ``n`` sits at
distance ``R * sqrt((i + 0.5) / n)`` on bearing ``i * golden_angle``. Equal
area per point gives even coverage without the gaps of random scatter, and the
list order (centre outwards) is the probing order.
"""

from __future__ import annotations

import math
from typing import List

from geoloc.models import Coordinates

EARTH_RADIUS_KM = 6371.0088
GOLDEN_ANGLE_DEG = 180.0 * (3.0 - math.sqrt(5.0))


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def destination(origin: Coordinates, bearing_deg: float, distance_km: float) -> Coordinates:
    """Great-circle destination from ``origin`` along ``bearing_deg``."""
    delta = distance_km / EARTH_RADIUS_KM
    theta = math.radians(bearing_deg)
    phi1 = math.radians(origin.lat)
    lambda1 = math.radians(origin.lng)

    sin_phi2 = math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta)
    phi2 = math.asin(max(-1.0, min(1.0, sin_phi2)))
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    lng = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return Coordinates(lat=math.degrees(phi2), lng=lng)


def _validate_center(center: Coordinates) -> None:
    if center is None:
        raise ValueError("center is required")
    if not (math.isfinite(center.lat) and math.isfinite(center.lng)):
        raise ValueError("center coordinates must be finite")
    if not -90.0 <= center.lat <= 90.0 or not -180.0 <= center.lng <= 180.0:
        raise ValueError(f"center out of range: {center.lat}, {center.lng}")


def generate(center: Coordinates, radius_km: float, target_count: int, seed: int = 0) -> List[Coordinates]:
    """Return up to ``target_count`` points strictly inside ``radius_km`` of ``center``.

    ``seed`` rotates the whole spiral; the same arguments always give the same
    points. A zero radius collapses to the centre. Raises ``ValueError``
    instead of returning an empty list for a positive radius.
    """
    _validate_center(center)
    if radius_km is None or not math.isfinite(radius_km) or radius_km < 0:
        raise ValueError(f"radius must be a non-negative number, got {radius_km!r}")
    if radius_km == 0:
        return [center]
    if target_count is None or target_count <= 0:
        raise ValueError(f"target_count must be positive for a positive radius, got {target_count!r}")

    rotation = (seed * GOLDEN_ANGLE_DEG / 7.0) % 360.0
    points: List[Coordinates] = []
    for i in range(target_count):
        distance = radius_km * math.sqrt((i + 0.5) / target_count)
        bearing = (rotation + i * GOLDEN_ANGLE_DEG) % 360.0
        points.append(destination(center, bearing, distance))
    return points
