"""Ranking, truncation and fallback padding."""

from __future__ import annotations

from typing import List, Sequence

from geoloc.models import Candidate, Coordinates, ResolvedAddress, ScoreBreakdown, VisualAssets


def select(candidates: Sequence[Candidate], max_results: int = 10) -> List[Candidate]:
    """Score descending; equal scores keep discovery order (``sorted`` is stable)."""
    if max_results < 0:
        raise ValueError("max_results must not be negative")
    ranked = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)
    return ranked[:max_results]


def needs_fallback(genuine_count: int, min_results: int = 3) -> bool:
    return genuine_count < min_results


def fallback_score(genuine: Sequence[Candidate], base_score: int = 20) -> int:
    """A padding score strictly below every genuine score, floored at 0."""
    if not genuine:
        return max(0, base_score)
    lowest = min(candidate.score for candidate in genuine)
    return max(0, min(base_score, lowest - 1))


def build_fallback_candidate(
    candidate_id: str,
    point: Coordinates,
    address: ResolvedAddress,
    score: int,
    assets: VisualAssets = VisualAssets(),
) -> Candidate:
    breakdown = ScoreBreakdown(
        architecture=0,
        pool=0,
        vegetation=0,
        surface=0,
        orientation=0,
        context=score,
    )
    return Candidate(
        id=candidate_id,
        address=address.street,
        postal_code=address.postal_code,
        city=address.city,
        coordinates=point,
        score=score,
        score_breakdown=breakdown,
        explanation=f"{address.street}: generic address near the zone centre, not a visual match.",
        visual_assets=assets,
        is_fallback=True,
        parcel_id=address.parcel_id,
    )
