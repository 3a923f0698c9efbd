"""Fingerprint store and exclusion filter.

A fingerprint is the comparable projection of a surfaced candidate. The
filter is a pure function of its inputs; fingerprints of a new run are only
persisted by an explicit :meth:`FingerprintStore.append` after the run
completed.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from geoloc.core.ports import RunRepository
from geoloc.models import (
    BoundingBox,
    Candidate,
    CandidateFingerprint,
    Coordinates,
    ExclusionLogEntry,
    SearchRun,
)

logger = logging.getLogger(__name__)

COORD_TOLERANCE_DEG = 0.0001  # ~11 m
BBOX_TOLERANCE_DEG = 0.00045  # ~50 m
BBOX_HALF_SIZE_DEG = 0.0005
MIN_HASH_FIELDS = 2


@dataclass
class ExclusionResult:
    survivors: List[Candidate] = field(default_factory=list)
    excluded_count: int = 0
    log: List[ExclusionLogEntry] = field(default_factory=list)


def _content_hash(kind: str, anchor: Optional[str], parts: Sequence[Optional[str]]) -> Optional[str]:
    """Hash of a property's described features, anchored on its address.

    The anchor keeps two neighbours with the same generic description (blue
    rectangular pool, red tiles) from being treated as one property.
    """
    anchor_key = " ".join(anchor.split()).casefold() if anchor else ""
    normalised = ["".join(part.split()).casefold() if part else "" for part in parts]
    if not anchor_key or sum(1 for part in normalised if part) < MIN_HASH_FIELDS:
        return None
    digest = hashlib.sha256(f"{kind}:{anchor_key}:{'|'.join(normalised)}".encode("utf-8"))
    return digest.hexdigest()


def pool_signature_hash(
    anchor: Optional[str],
    shape: Optional[str] = None,
    dimensions: Optional[str] = None,
    position: Optional[str] = None,
    color: Optional[str] = None,
) -> Optional[str]:
    return _content_hash("pool", anchor, (shape, dimensions, position, color))


def roof_signature_hash(
    anchor: Optional[str],
    color: Optional[str] = None,
    material: Optional[str] = None,
    shape: Optional[str] = None,
) -> Optional[str]:
    return _content_hash("roof", anchor, (color, material, shape))


def bbox_around(coords: Coordinates, half_size_deg: float = BBOX_HALF_SIZE_DEG) -> BoundingBox:
    return BoundingBox(
        north=coords.lat + half_size_deg,
        south=coords.lat - half_size_deg,
        east=coords.lng + half_size_deg,
        west=coords.lng - half_size_deg,
    )


def fingerprint_for(candidate: Candidate, half_size_deg: float = BBOX_HALF_SIZE_DEG) -> CandidateFingerprint:
    return CandidateFingerprint(
        coords=candidate.coordinates,
        bbox=bbox_around(candidate.coordinates, half_size_deg),
        score=candidate.score,
        pool_hash=candidate.pool_hash,
        roof_hash=candidate.roof_hash,
        parcel_id=candidate.parcel_id,
        address=candidate.address,
    )


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a == b


def should_exclude(
    candidate: CandidateFingerprint,
    history: Iterable[CandidateFingerprint],
    *,
    coord_tolerance: float = COORD_TOLERANCE_DEG,
    bbox_tolerance: float = BBOX_TOLERANCE_DEG,
) -> Tuple[bool, Optional[str]]:
    """Return ``(True, reason)`` for the first history entry the candidate matches."""
    for previous in history:
        if (
            abs(candidate.coords.lat - previous.coords.lat) < coord_tolerance
            and abs(candidate.coords.lng - previous.coords.lng) < coord_tolerance
        ):
            return True, "coords_identical"

        if _same(candidate.parcel_id, previous.parcel_id):
            return True, "parcel_identical"

        if _same(candidate.pool_hash, previous.pool_hash):
            return True, "pool_hash_identical"

        if _same(candidate.roof_hash, previous.roof_hash):
            return True, "roof_hash_identical"

        if candidate.bbox is not None and previous.bbox is not None:
            a, b = candidate.bbox, previous.bbox
            if (
                abs(a.north - b.north) < bbox_tolerance
                and abs(a.south - b.south) < bbox_tolerance
                and abs(a.east - b.east) < bbox_tolerance
                and abs(a.west - b.west) < bbox_tolerance
            ):
                return True, "bbox_similar"

    return False, None


def filter_candidates(
    candidates: Sequence[Candidate],
    history: Sequence[CandidateFingerprint],
    *,
    coord_tolerance: float = COORD_TOLERANCE_DEG,
    bbox_tolerance: float = BBOX_TOLERANCE_DEG,
    bbox_half_size: float = BBOX_HALF_SIZE_DEG,
) -> ExclusionResult:
    """Drop candidates equivalent to history or to an earlier survivor of the batch.

    Pure: neither ``history`` nor any store is modified.
    """
    result = ExclusionResult()
    seen: List[CandidateFingerprint] = list(history)
    for candidate in candidates:
        fingerprint = fingerprint_for(candidate, bbox_half_size)
        exclude, reason = should_exclude(
            fingerprint,
            seen,
            coord_tolerance=coord_tolerance,
            bbox_tolerance=bbox_tolerance,
        )
        if exclude:
            logger.info(
                "Excluding candidate at %.6f,%.6f - reason: %s",
                candidate.coordinates.lat,
                candidate.coordinates.lng,
                reason,
            )
            result.log.append(ExclusionLogEntry(candidate_id=candidate.id, coords=candidate.coordinates, reason=reason))
            continue
        result.survivors.append(candidate)
        seen.append(fingerprint)
    result.excluded_count = len(result.log)
    return result


class FingerprintStore:
    """Reads and appends fingerprints through the injected run repository."""

    def __init__(self, repository: RunRepository) -> None:
        self._repository = repository

    def load(self, request_id: str) -> List[CandidateFingerprint]:
        fingerprints: List[CandidateFingerprint] = []
        for run in self._repository.list_runs(request_id):
            fingerprints.extend(run.candidates)
        logger.info("Loaded %d fingerprints for request %s", len(fingerprints), request_id)
        return fingerprints

    def append(self, run: SearchRun) -> None:
        self._repository.append_run(run)
        logger.info("Recorded run %s/%d with %d fingerprints", run.request_id, run.level, len(run.candidates))
