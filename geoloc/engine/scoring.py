"""Confidence scoring of resolved candidates against the visual signature."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from geoloc.models import (
    PoolDetection,
    ResolvedPoint,
    SaleRecord,
    ScoreBreakdown,
    UserHints,
    VisualSignature,
)

logger = logging.getLogger(__name__)

# Fixed weights for the global score. Pool presence is the most
# discriminating signal an aerial tile can confirm.
SCORE_WEIGHTS: Dict[str, float] = {
    "pool": 3.0,
    "architecture": 1.5,
    "vegetation": 1.2,
    "surface": 1.0,
    "orientation": 1.0,
    "context": 0.8,
}

NEUTRAL = 50

_OPPOSITE_ORIENTATION = {
    "north": "south",
    "south": "north",
    "east": "west",
    "west": "east",
    "nord": "sud",
    "sud": "nord",
    "est": "ouest",
    "ouest": "est",
}

_ROOF_TYPE_COLORS = {
    "tile_red": "red",
    "tile_flat": "red",
    "slate": "grey",
    "flat": "grey",
}


@dataclass(frozen=True)
class ScoreResult:
    global_score: int
    breakdown: ScoreBreakdown
    explanation: str


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(value))))


def _norm(value: Optional[str]) -> Optional[str]:
    return value.strip().casefold() if value else None


def pool_similarity(signature: VisualSignature, pool_detected: bool, detection: Optional[PoolDetection]) -> int:
    if not signature.has_pool:
        return NEUTRAL
    if not pool_detected:
        return 0
    score = 80
    if detection is not None:
        if signature.pool_shape and _norm(signature.pool_shape) == _norm(detection.shape):
            score += 15
        if signature.pool_size and _norm(signature.pool_size) == _norm(detection.size_category):
            score += 5
    return clamp(score)


def vegetation_match(signature: VisualSignature, detection: Optional[PoolDetection]) -> int:
    dense = detection.vegetation_dense if detection else None
    if dense is None:
        return NEUTRAL
    if signature.vegetation_hints:
        return 80 if dense else 30
    return NEUTRAL


def orientation_match(signature: VisualSignature, detection: Optional[PoolDetection]) -> int:
    wanted = _norm(signature.orientation)
    seen = _norm(detection.orientation) if detection else None
    if not wanted or not seen:
        return NEUTRAL
    if wanted == seen:
        return 90
    if _OPPOSITE_ORIENTATION.get(wanted) == seen:
        return 20
    return NEUTRAL


def architecture_match(signature: VisualSignature, detection: Optional[PoolDetection]) -> int:
    if detection is None:
        return NEUTRAL
    score = float(NEUTRAL)
    compared = False

    wanted_color = _norm(signature.roof_color) or _ROOF_TYPE_COLORS.get(_norm(signature.roof_type) or "")
    seen_color = _norm(detection.roof_color)
    if wanted_color and seen_color:
        compared = True
        score += 30 if (wanted_color in seen_color or seen_color in wanted_color) else -25

    wanted_material = _norm(signature.roof_material)
    seen_material = _norm(detection.roof_material)
    if wanted_material and seen_material:
        compared = True
        score += 15 if (wanted_material in seen_material or seen_material in wanted_material) else -10

    return clamp(score) if compared else NEUTRAL


def _relative_gap(value: float, wanted) -> float:
    bounds = [b for b in (wanted.min, wanted.max) if b]
    if not bounds:
        return 0.0
    return min(abs(value - b) / b for b in bounds)


def surface_match(hints: UserHints, sale: Optional[SaleRecord]) -> int:
    if sale is None:
        return NEUTRAL
    checks: List[float] = []
    if hints.surface_range and sale.surface:
        if hints.surface_range.contains(sale.surface, tolerance=0.1):
            checks.append(90)
        else:
            checks.append(max(0.0, 90 - _relative_gap(sale.surface, hints.surface_range) * 150))
    if hints.land_surface_range and sale.land_surface:
        if hints.land_surface_range.contains(sale.land_surface, tolerance=0.1):
            checks.append(90)
        else:
            checks.append(max(0.0, 90 - _relative_gap(sale.land_surface, hints.land_surface_range) * 150))
    if not checks:
        return NEUTRAL
    return clamp(sum(checks) / len(checks))


def context_match(hints: UserHints, point: ResolvedPoint, sale: Optional[SaleRecord]) -> int:
    score = float(NEUTRAL)
    address = point.address
    if hints.postal_code and address.postal_code:
        score += 20 if hints.postal_code == address.postal_code else -20
    if hints.city and address.city:
        score += 10 if _norm(hints.city) == _norm(address.city) else -10
    if sale is not None and sale.price and hints.price_range:
        if hints.price_range.contains(sale.price, tolerance=0.2):
            score += 20
        else:
            score -= min(30.0, _relative_gap(sale.price, hints.price_range) * 50)
    return clamp(score)


def weighted_global(breakdown: ScoreBreakdown) -> int:
    values = breakdown.as_dict()
    total_weight = sum(SCORE_WEIGHTS.values())
    weighted = sum(values[name] * weight for name, weight in SCORE_WEIGHTS.items())
    return clamp(weighted / total_weight)


def explain(signature: VisualSignature, point: ResolvedPoint, breakdown: ScoreBreakdown) -> str:
    reasons: List[str] = []
    if signature.has_pool and breakdown.pool >= 80:
        shape = f" ({signature.pool_shape})" if signature.pool_shape and breakdown.pool >= 95 else ""
        reasons.append(f"a pool{shape} is visible on the aerial view")
    elif signature.has_pool and breakdown.pool == 0:
        reasons.append("no pool was detected although the photo shows one")
    if breakdown.architecture > 70:
        reasons.append("the roof matches the photo")
    if breakdown.vegetation > 70:
        reasons.append("the surrounding vegetation matches")
    if breakdown.surface > 80:
        reasons.append("the recorded surface fits the listing")
    if breakdown.orientation > 80:
        reasons.append("the building orientation matches")
    if breakdown.context > 70:
        reasons.append("location and price hints are consistent")

    where = point.address.street
    if point.address.city:
        where = f"{where}, {point.address.city}"
        if point.address.postal_code:
            where = f"{where} ({point.address.postal_code})"
    if not reasons:
        return f"{where}: some similarities with the photo, no decisive signal."
    return f"{where}: " + "; ".join(reasons) + "."


class ConfidenceScorer:
    """Pure scorer; prior-sale data is supplied by the caller."""

    def score(
        self,
        signature: VisualSignature,
        point: ResolvedPoint,
        pool_detected: bool,
        *,
        hints: Optional[UserHints] = None,
        sale: Optional[SaleRecord] = None,
    ) -> ScoreResult:
        hints = hints or UserHints()
        detection = point.pool
        breakdown = ScoreBreakdown(
            architecture=architecture_match(signature, detection),
            pool=pool_similarity(signature, pool_detected, detection),
            vegetation=vegetation_match(signature, detection),
            surface=surface_match(hints, sale),
            orientation=orientation_match(signature, detection),
            context=context_match(hints, point, sale),
        )
        global_score = weighted_global(breakdown)
        return ScoreResult(global_score=global_score, breakdown=breakdown, explanation=explain(signature, point, breakdown))
