"""Core data models shared by the geolocation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class Coordinates:
    lat: float
    lng: float

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(frozen=True, slots=True)
class SearchZone:
    """Circle to sample, optionally tied to a postal code or city."""

    center: Coordinates
    radius_m: float
    postal_code: Optional[str] = None
    city: Optional[str] = None

    @property
    def radius_km(self) -> float:
        return self.radius_m / 1000.0


@dataclass(frozen=True, slots=True)
class VisualSignature:
    """Structured description of the target property produced by the extractor."""

    has_pool: bool = False
    pool_shape: Optional[str] = None
    pool_size: Optional[str] = None
    pool_color: Optional[str] = None
    pool_position: Optional[str] = None
    roof_type: Optional[str] = None
    roof_color: Optional[str] = None
    roof_material: Optional[str] = None
    facade_color: Optional[str] = None
    facade_material: Tuple[str, ...] = ()
    vegetation_hints: Tuple[str, ...] = ()
    orientation: Optional[str] = None
    other_features: Tuple[str, ...] = ()
    confidence: int = 0


@dataclass(frozen=True, slots=True)
class ValueRange:
    min: Optional[float] = None
    max: Optional[float] = None

    def contains(self, value: float, tolerance: float = 0.0) -> bool:
        if self.min is not None and value < self.min * (1 - tolerance):
            return False
        if self.max is not None and value > self.max * (1 + tolerance):
            return False
        return True

    @property
    def is_empty(self) -> bool:
        return self.min is None and self.max is None


@dataclass(frozen=True, slots=True)
class UserHints:
    postal_code: Optional[str] = None
    city: Optional[str] = None
    property_type: Optional[str] = None
    price_range: Optional[ValueRange] = None
    surface_range: Optional[ValueRange] = None
    land_surface_range: Optional[ValueRange] = None


@dataclass(frozen=True, slots=True)
class ResolvedAddress:
    street: str
    postal_code: Optional[str] = None
    city: Optional[str] = None
    parcel_id: Optional[str] = None
    formatted: Optional[str] = None


@dataclass(frozen=True, slots=True)
class PoolDetection:
    """Best-effort reading of the aerial tile centred on a sample point.

    Only ``present`` is guaranteed; the remaining attributes are filled when
    the detector could read them from the same tile.
    """

    present: bool
    shape: Optional[str] = None
    size_category: Optional[str] = None
    position: Optional[str] = None
    color: Optional[str] = None
    confidence: Optional[int] = None
    roof_color: Optional[str] = None
    roof_material: Optional[str] = None
    roof_shape: Optional[str] = None
    vegetation_dense: Optional[bool] = None
    orientation: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SaleRecord:
    price: Optional[float] = None
    surface: Optional[float] = None
    land_surface: Optional[float] = None
    sold_at: Optional[str] = None


@dataclass(frozen=True, slots=True)
class VisualAssets:
    satellite_url: Optional[str] = None
    street_view_url: Optional[str] = None
    cadastral_url: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ResolvedPoint:
    index: int
    point: Coordinates
    address: ResolvedAddress
    pool: Optional[PoolDetection] = None


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    architecture: int = 50
    pool: int = 50
    vegetation: int = 50
    surface: int = 50
    orientation: int = 50
    context: int = 50

    def as_dict(self) -> Dict[str, int]:
        return {
            "architecture": self.architecture,
            "pool": self.pool,
            "vegetation": self.vegetation,
            "surface": self.surface,
            "orientation": self.orientation,
            "context": self.context,
        }


@dataclass(frozen=True, slots=True)
class Candidate:
    id: str
    address: str
    postal_code: Optional[str]
    city: Optional[str]
    coordinates: Coordinates
    score: int
    score_breakdown: ScoreBreakdown
    explanation: str
    visual_assets: VisualAssets = field(default_factory=VisualAssets)
    is_fallback: bool = False
    parcel_id: Optional[str] = None
    pool_hash: Optional[str] = None
    roof_hash: Optional[str] = None


@dataclass(frozen=True, slots=True)
class BoundingBox:
    north: float
    south: float
    east: float
    west: float


@dataclass(frozen=True, slots=True)
class CandidateFingerprint:
    coords: Coordinates
    bbox: Optional[BoundingBox] = None
    score: Optional[int] = None
    pool_hash: Optional[str] = None
    roof_hash: Optional[str] = None
    parcel_id: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SearchRun:
    request_id: str
    level: int
    candidates: Tuple[CandidateFingerprint, ...] = ()
    excluded_count: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class RequestStatus(str, Enum):
    SEARCHING = "searching"
    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(slots=True)
class LocalisationRequest:
    """Parent aggregate; its id keys every run and all exclusion state."""

    id: str
    raw_input: Dict[str, Any]
    user_hints: Dict[str, Any] = field(default_factory=dict)
    status: RequestStatus = RequestStatus.SEARCHING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class OutcomeStatus(str, Enum):
    OK = "ok"
    EXHAUSTED = "exhausted"
    NO_CANDIDATES = "no_candidates"


@dataclass(frozen=True, slots=True)
class ExclusionLogEntry:
    candidate_id: Optional[str]
    coords: Coordinates
    reason: str


@dataclass(slots=True)
class SearchOutcome:
    status: OutcomeStatus
    request_id: str
    level: Optional[int] = None
    radius_m: Optional[float] = None
    candidates: List[Candidate] = field(default_factory=list)
    excluded_count: int = 0
    exclusion_log: List[ExclusionLogEntry] = field(default_factory=list)
    message: Optional[str] = None
