"""Utilities for turning collaborator payloads and request bodies into models and back."""

import json
import logging
import re
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from geoloc.models import (
    BoundingBox,
    Candidate,
    CandidateFingerprint,
    Coordinates,
    ExclusionLogEntry,
    PoolDetection,
    ResolvedAddress,
    SearchOutcome,
    SearchZone,
    UserHints,
    ValueRange,
    VisualSignature,
)

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


# ---------- Google geocoding ----------


def parse_address_components(address_components: Iterable[Dict[str, Any]]) -> Tuple[Optional[str], Optional[str]]:
    city = None
    postal_code = None
    for component in address_components or []:
        types = set(component.get("types", []))
        if "locality" in types and not city:
            city = component.get("long_name")
        elif "postal_town" in types and not city:
            city = component.get("long_name")
        if "postal_code" in types:
            postal_code = component.get("long_name")
    return city, postal_code


def _street_line(result: Dict[str, Any]) -> Optional[str]:
    route = None
    number = None
    for component in result.get("address_components", []) or []:
        types = set(component.get("types", []))
        if "route" in types:
            route = component.get("long_name")
        if "street_number" in types:
            number = component.get("long_name")
    if route:
        return f"{number} {route}" if number else route
    formatted = (result.get("formatted_address") or "").strip()
    if not formatted:
        return None
    return formatted.split(",")[0].strip() or None


def to_resolved_address(result: Dict[str, Any]) -> Optional[ResolvedAddress]:
    """Map one Google geocoding result to a street-level address, or None."""
    street = _street_line(result)
    if not street:
        return None
    city, postal_code = parse_address_components(result.get("address_components", []))
    return ResolvedAddress(
        street=street,
        postal_code=postal_code,
        city=city,
        formatted=result.get("formatted_address"),
    )


def to_coordinates(result: Dict[str, Any]) -> Optional[Coordinates]:
    location = result.get("geometry", {}).get("location", {})
    lat = _safe_float(location.get("lat"))
    lng = _safe_float(location.get("lng"))
    if lat is None or lng is None:
        return None
    return Coordinates(lat=lat, lng=lng)


# ---------- Vision replies ----------


def extract_json_object(text: Optional[str]) -> Dict[str, Any]:
    """Pull the first JSON object out of a free-text model reply."""
    if not text:
        raise ValueError("empty model reply")
    match = _JSON_OBJECT.search(text)
    if not match:
        raise ValueError(f"no JSON object in model reply: {text[:120]!r}")
    payload = json.loads(match.group(0))
    if not isinstance(payload, dict):
        raise ValueError("model reply JSON is not an object")
    return payload


def to_pool_detection(payload: Dict[str, Any], confidence_threshold: int) -> PoolDetection:
    confidence = _safe_int(payload.get("confidence"))
    present = bool(payload.get("hasPool"))
    if present and confidence is not None and confidence < confidence_threshold:
        logger.debug("Pool reading below confidence threshold (%s < %s)", confidence, confidence_threshold)
        present = False
    vegetation = payload.get("vegetationDense")
    return PoolDetection(
        present=present,
        shape=_known(payload.get("poolShape")),
        size_category=_known(payload.get("poolSizeCategory")),
        position=_known(payload.get("poolPosition")),
        color=_known(payload.get("poolColor")),
        confidence=confidence,
        roof_color=_known(payload.get("roofColor")),
        roof_material=_known(payload.get("roofMaterial")),
        roof_shape=_known(payload.get("roofShape")),
        vegetation_dense=vegetation if isinstance(vegetation, bool) else None,
        orientation=_known(payload.get("orientation")),
    )


# ---------- Signatures, zones and hints ----------


def signature_from_dict(data: Optional[Dict[str, Any]]) -> VisualSignature:
    """Accept both snake_case and the extractor's camelCase keys."""
    data = data or {}

    def pick(*keys: str) -> Any:
        for key in keys:
            if key in data and data[key] is not None:
                return data[key]
        return None

    pool_style = data.get("poolStyle") or {}
    confidence = _safe_int(pick("confidence")) or 0
    return VisualSignature(
        has_pool=bool(pick("has_pool", "hasPool")),
        pool_shape=_known(pick("pool_shape", "poolShape")),
        pool_size=_known(pick("pool_size", "poolSizeCategory")),
        pool_color=_known(pick("pool_color") or pool_style.get("color")),
        pool_position=_known(pick("pool_position") or pool_style.get("position")),
        roof_type=_known(pick("roof_type", "roofType")),
        roof_color=_known(pick("roof_color", "roofColor")),
        roof_material=_known(pick("roof_material", "roofMaterial")),
        facade_color=_known(pick("facade_color", "facadeColor")),
        facade_material=_string_tuple(pick("facade_material", "facadeMaterial")),
        vegetation_hints=_string_tuple(pick("vegetation_hints", "vegetationHints")),
        orientation=_known(pick("orientation")),
        other_features=_string_tuple(pick("other_features", "otherNotableFeatures")),
        confidence=max(0, min(100, confidence)),
    )


def signature_to_dict(signature: VisualSignature) -> Dict[str, Any]:
    payload = asdict(signature)
    for key in ("facade_material", "vegetation_hints", "other_features"):
        payload[key] = list(payload[key])
    return payload


def zone_from_dict(data: Dict[str, Any]) -> SearchZone:
    """Parse a zone payload; raises ValueError when fields are missing or not numeric."""
    center = data.get("center") or {}
    lat = _safe_float(center.get("lat", data.get("lat")))
    lng = _safe_float(center.get("lng", data.get("lng")))
    radius = _safe_float(data.get("radius_m", data.get("radius")))
    if lat is None or lng is None:
        raise ValueError("zone center (lat, lng) is required")
    if radius is None:
        raise ValueError("zone radius_m is required")
    return SearchZone(
        center=Coordinates(lat=lat, lng=lng),
        radius_m=radius,
        postal_code=_strip_or_none(data.get("postal_code")),
        city=_strip_or_none(data.get("city")),
    )


def zone_to_dict(zone: SearchZone) -> Dict[str, Any]:
    return {
        "center": {"lat": zone.center.lat, "lng": zone.center.lng},
        "radius_m": zone.radius_m,
        "postal_code": zone.postal_code,
        "city": zone.city,
    }


def _range_from(value: Any) -> Optional[ValueRange]:
    if not isinstance(value, dict):
        return None
    result = ValueRange(min=_safe_float(value.get("min")), max=_safe_float(value.get("max")))
    return None if result.is_empty else result


def hints_from_dict(data: Optional[Dict[str, Any]]) -> UserHints:
    data = data or {}
    return UserHints(
        postal_code=_strip_or_none(data.get("postal_code")),
        city=_strip_or_none(data.get("city")),
        property_type=_strip_or_none(data.get("property_type")),
        price_range=_range_from(data.get("price_range")),
        surface_range=_range_from(data.get("surface_range")),
        land_surface_range=_range_from(data.get("land_surface_range")),
    )


def hints_to_dict(hints: UserHints) -> Dict[str, Any]:
    return {key: value for key, value in asdict(hints).items() if value is not None}


# ---------- Fingerprints ----------


def fingerprint_to_dict(fingerprint: CandidateFingerprint) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "coords": {"lat": fingerprint.coords.lat, "lng": fingerprint.coords.lng},
        "score": fingerprint.score,
        "pool_hash": fingerprint.pool_hash,
        "roof_hash": fingerprint.roof_hash,
        "parcel_id": fingerprint.parcel_id,
        "address": fingerprint.address,
    }
    if fingerprint.bbox is not None:
        payload["bbox"] = asdict(fingerprint.bbox)
    return payload


def fingerprint_from_dict(data: Dict[str, Any]) -> CandidateFingerprint:
    coords = data.get("coords") or {}
    bbox_raw = data.get("bbox")
    bbox = None
    if isinstance(bbox_raw, dict):
        bbox = BoundingBox(
            north=float(bbox_raw["north"]),
            south=float(bbox_raw["south"]),
            east=float(bbox_raw["east"]),
            west=float(bbox_raw["west"]),
        )
    return CandidateFingerprint(
        coords=Coordinates(lat=float(coords["lat"]), lng=float(coords["lng"])),
        bbox=bbox,
        score=_safe_int(data.get("score")),
        pool_hash=data.get("pool_hash") or data.get("piscineHash"),
        roof_hash=data.get("roof_hash") or data.get("roofHash"),
        parcel_id=data.get("parcel_id") or data.get("parcelId"),
        address=data.get("address"),
    )


# ---------- Responses ----------


def candidate_to_dict(candidate: Candidate) -> Dict[str, Any]:
    return {
        "id": candidate.id,
        "address": candidate.address,
        "postal_code": candidate.postal_code,
        "city": candidate.city,
        "coordinates": {"lat": candidate.coordinates.lat, "lng": candidate.coordinates.lng},
        "score": candidate.score,
        "score_breakdown": candidate.score_breakdown.as_dict(),
        "explanation": candidate.explanation,
        "visual_assets": asdict(candidate.visual_assets),
        "is_fallback": candidate.is_fallback,
    }


def _log_entry_to_dict(entry: ExclusionLogEntry) -> Dict[str, Any]:
    return {
        "candidate_id": entry.candidate_id,
        "coords": {"lat": entry.coords.lat, "lng": entry.coords.lng},
        "reason": entry.reason,
    }


def outcome_to_dict(outcome: SearchOutcome) -> Dict[str, Any]:
    candidates: List[Dict[str, Any]] = [candidate_to_dict(c) for c in outcome.candidates]
    return {
        "status": outcome.status.value,
        "request_id": outcome.request_id,
        "level": outcome.level,
        "radius_m": outcome.radius_m,
        "candidates": candidates,
        "excluded_count": outcome.excluded_count,
        "exclusion_log": [_log_entry_to_dict(entry) for entry in outcome.exclusion_log],
        "message": outcome.message,
    }


# ---------- Helpers ----------


def _known(value: Any) -> Optional[str]:
    text = _strip_or_none(value)
    if text is None or text.lower() in {"unknown", "inconnu", "inconnue", "none", "n/a"}:
        return None
    return text


def _string_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    items = (_strip_or_none(item) for item in value)
    return tuple(item for item in items if item)


def _strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def _safe_float(value: Any) -> Optional[float]:
    try:
        if value is None:
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None
