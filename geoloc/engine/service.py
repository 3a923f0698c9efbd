"""Localisation service: ``start_search`` and ``request_more``.

One call runs one complete probing pass:

    plan zone -> sample grid -> probe -> score -> exclude -> select -> pad -> record run

A pass that raises leaves nothing behind. Fingerprints are appended only
after the pass has produced its final list.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from geoloc.core.config import SearchPolicy
from geoloc.core.errors import InvalidZoneError, RequestNotFoundError
from geoloc.core.ports import AddressResolver, PoolDetector, RunRepository, SaleHistory, VisualAssetProvider
from geoloc.engine import grid, ranking
from geoloc.engine.exclusion import (
    FingerprintStore,
    filter_candidates,
    fingerprint_for,
    pool_signature_hash,
    roof_signature_hash,
    should_exclude,
)
from geoloc.engine.expansion import EXHAUSTED, ExpansionController, ExpansionPlan
from geoloc.engine.prober import CandidateProber, ProbeResult, address_key
from geoloc.engine.scoring import ConfidenceScorer
from geoloc.etl.transform import hints_from_dict, hints_to_dict, signature_from_dict, signature_to_dict, zone_from_dict, zone_to_dict
from geoloc.models import (
    Candidate,
    CandidateFingerprint,
    LocalisationRequest,
    OutcomeStatus,
    RequestStatus,
    ResolvedPoint,
    SaleRecord,
    SearchOutcome,
    SearchRun,
    SearchZone,
    UserHints,
    VisualAssets,
    VisualSignature,
)

logger = logging.getLogger(__name__)

NO_CANDIDATES_MESSAGE = "No matching property found in this zone; try widening the search."
EXHAUSTED_MESSAGE = "No more results: the relance limit for this search has been reached."


def validate_zone(zone: Optional[SearchZone]) -> None:
    if zone is None or zone.center is None:
        raise InvalidZoneError("a search zone with a centre is required")
    lat, lng = zone.center.lat, zone.center.lng
    if not (isinstance(lat, (int, float)) and isinstance(lng, (int, float))):
        raise InvalidZoneError("zone centre must be numeric")
    if not (math.isfinite(lat) and math.isfinite(lng)) or not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise InvalidZoneError(f"zone centre out of range: {lat}, {lng}")
    if zone.radius_m is None or not math.isfinite(zone.radius_m) or zone.radius_m <= 0:
        raise InvalidZoneError(f"zone radius must be positive, got {zone.radius_m!r}")


class LocalisationService:
    def __init__(
        self,
        repository: RunRepository,
        resolver: AddressResolver,
        pool_detector: Optional[PoolDetector],
        assets: Optional[VisualAssetProvider] = None,
        *,
        policy: Optional[SearchPolicy] = None,
        scorer: Optional[ConfidenceScorer] = None,
        sale_history: Optional[SaleHistory] = None,
        max_workers: int = 8,
    ) -> None:
        self._repository = repository
        self._resolver = resolver
        self._pool_detector = pool_detector
        self._assets = assets
        self._policy = policy or SearchPolicy()
        self._scorer = scorer or ConfidenceScorer()
        self._sale_history = sale_history
        self._store = FingerprintStore(repository)
        self._controller = ExpansionController(self._policy)
        self._prober = CandidateProber(
            resolver,
            pool_detector,
            max_workers=max_workers,
            max_candidates=self._policy.max_probe_candidates,
        )

    # ---------- Public API ----------

    def start_search(
        self,
        zone: SearchZone,
        signature: VisualSignature,
        hints: Optional[UserHints] = None,
        raw_input: Optional[Dict[str, Any]] = None,
        *,
        density: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> SearchOutcome:
        """Run the original (level 0) search and create the request record."""
        validate_zone(zone)
        hints = hints or UserHints()
        request_id = request_id or uuid.uuid4().hex
        base_density = density or self._policy.initial_density

        plan = self._controller.plan(zone, 0, base_density)
        logger.info("Starting search %s around %.6f,%.6f radius=%.0fm",
                    request_id, zone.center.lat, zone.center.lng, zone.radius_m)
        outcome, run = self._run_pass(request_id, plan, signature, hints, history=[])

        stored_input: Dict[str, Any] = dict(raw_input or {})
        stored_input.update(
            {
                "zone": zone_to_dict(zone),
                "signature": signature_to_dict(signature),
                "density": base_density,
            }
        )
        request = LocalisationRequest(
            id=request_id,
            raw_input=stored_input,
            user_hints=hints_to_dict(hints),
            status=RequestStatus.ACTIVE,
        )
        # request and level-0 run are committed together
        self._repository.create_request(request, first_run=run)
        logger.info("Recorded run %s/%d with %d fingerprints", run.request_id, run.level, len(run.candidates))
        return outcome

    def request_more(self, request_id: str) -> SearchOutcome:
        """Run the next relance, or report exhaustion without probing."""
        request = self._repository.get_request(request_id)
        if request is None:
            raise RequestNotFoundError(f"unknown localisation request {request_id}")

        zone = zone_from_dict(request.raw_input["zone"])
        signature = signature_from_dict(request.raw_input.get("signature"))
        hints = hints_from_dict(request.user_hints)
        base_density = request.raw_input.get("density") or self._policy.initial_density

        completed = self._repository.count_runs(request_id)
        plan = self._controller.plan(zone, completed, base_density)
        if plan is EXHAUSTED:
            if request.status != RequestStatus.EXHAUSTED:
                self._repository.update_status(request_id, RequestStatus.EXHAUSTED)
            return SearchOutcome(status=OutcomeStatus.EXHAUSTED, request_id=request_id, message=EXHAUSTED_MESSAGE)

        history = self._store.load(request_id)
        outcome, run = self._run_pass(request_id, plan, signature, hints, history=history)
        self._store.append(run)
        return outcome

    # ---------- Internals ----------

    def _run_pass(
        self,
        request_id: str,
        plan: ExpansionPlan,
        signature: VisualSignature,
        hints: UserHints,
        history: Sequence[CandidateFingerprint],
    ) -> Tuple[SearchOutcome, SearchRun]:
        zone = plan.zone
        points = grid.generate(zone.center, zone.radius_km, plan.density, seed=plan.level)
        probe = self._prober.probe(
            points,
            signature.has_pool,
            postal_code=zone.postal_code if plan.restrict_to_area else None,
            city=zone.city if plan.restrict_to_area else None,
        )

        scored = [self._to_candidate(request_id, plan.level, point, signature, hints) for point in probe.points]
        exclusion = filter_candidates(
            scored,
            history,
            coord_tolerance=self._policy.coord_tolerance_deg,
            bbox_tolerance=self._policy.bbox_tolerance_deg,
            bbox_half_size=self._policy.bbox_half_size_deg,
        )
        selected = ranking.select(exclusion.survivors, self._policy.max_results)

        padding: List[Candidate] = []
        if ranking.needs_fallback(len(selected), self._policy.min_results):
            padding = self._fallback_candidates(
                request_id, plan, selected, self._policy.min_results - len(selected), history
            )

        final = [self._with_assets(candidate) for candidate in selected + padding]
        fingerprints = tuple(
            fingerprint_for(candidate, self._policy.bbox_half_size_deg) for candidate in final if not candidate.is_fallback
        )
        run = SearchRun(
            request_id=request_id,
            level=plan.level,
            candidates=fingerprints,
            excluded_count=exclusion.excluded_count,
        )

        self._log_pass(request_id, plan, probe, len(exclusion.survivors), len(selected), len(padding))
        status = OutcomeStatus.OK if final else OutcomeStatus.NO_CANDIDATES
        outcome = SearchOutcome(
            status=status,
            request_id=request_id,
            level=plan.level,
            radius_m=zone.radius_m,
            candidates=final,
            excluded_count=exclusion.excluded_count,
            exclusion_log=exclusion.log,
            message=None if final else NO_CANDIDATES_MESSAGE,
        )
        return outcome, run

    def _to_candidate(
        self,
        request_id: str,
        level: int,
        point: ResolvedPoint,
        signature: VisualSignature,
        hints: UserHints,
    ) -> Candidate:
        sale = self._nearest_sale(point)
        pool_detected = bool(point.pool and point.pool.present)
        result = self._scorer.score(signature, point, pool_detected, hints=hints, sale=sale)
        detection = point.pool
        anchor = point.address.street
        pool_hash = None
        roof_hash = None
        if detection is not None:
            if detection.present:
                pool_hash = pool_signature_hash(
                    anchor, detection.shape, detection.size_category, detection.position, detection.color
                )
            roof_hash = roof_signature_hash(anchor, detection.roof_color, detection.roof_material, detection.roof_shape)
        return Candidate(
            id=f"{request_id}-{level}-{point.index}",
            address=point.address.street,
            postal_code=point.address.postal_code,
            city=point.address.city,
            coordinates=point.point,
            score=result.global_score,
            score_breakdown=result.breakdown,
            explanation=result.explanation,
            parcel_id=point.address.parcel_id,
            pool_hash=pool_hash,
            roof_hash=roof_hash,
        )

    def _nearest_sale(self, point: ResolvedPoint) -> Optional[SaleRecord]:
        if self._sale_history is None:
            return None
        try:
            return self._sale_history.nearest_sale(point.point.lat, point.point.lng)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Sale history lookup failed for %s: %s", point.address.street, exc)
            return None

    def _fallback_candidates(
        self,
        request_id: str,
        plan: ExpansionPlan,
        genuine: Sequence[Candidate],
        needed: int,
        history: Sequence[CandidateFingerprint],
    ) -> List[Candidate]:
        """Generic addresses near the zone centre, tagged and scored below every genuine match.

        Addresses already surfaced by this request, or equivalent to a
        surfaced fingerprint, are skipped.
        """
        if needed <= 0:
            return []
        zone = plan.zone
        score = ranking.fallback_score(genuine, self._policy.fallback_base_score)
        taken: Set[str] = {address_key(candidate.address) for candidate in genuine}
        taken.update(address_key(fingerprint.address) for fingerprint in history if fingerprint.address)
        radius_km = zone.radius_km * self._policy.fallback_radius_fraction
        points = grid.generate(zone.center, radius_km, max(needed * 3, 6))

        padding: List[Candidate] = []
        for index, point in enumerate(points):
            if len(padding) >= needed:
                break
            try:
                address = self._resolver.reverse_geocode(point.lat, point.lng)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Fallback address lookup failed at %.6f,%.6f: %s", point.lat, point.lng, exc)
                continue
            if address is None or not address.street or not address.street.strip():
                continue
            key = address_key(address.street)
            if key in taken:
                continue
            candidate = ranking.build_fallback_candidate(
                candidate_id=f"{request_id}-{plan.level}-fallback-{index}",
                point=point,
                address=address,
                score=score,
            )
            excluded, reason = should_exclude(
                fingerprint_for(candidate, self._policy.bbox_half_size_deg),
                history,
                coord_tolerance=self._policy.coord_tolerance_deg,
                bbox_tolerance=self._policy.bbox_tolerance_deg,
            )
            if excluded:
                logger.debug("Skipping fallback %s: %s", address.street, reason)
                continue
            taken.add(key)
            padding.append(candidate)
        logger.info("Added %d fallback addresses (needed %d) at score %d", len(padding), needed, score)
        return padding

    def _with_assets(self, candidate: Candidate) -> Candidate:
        if self._assets is None:
            return candidate
        try:
            assets = self._assets.assets_for(candidate.coordinates.lat, candidate.coordinates.lng)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Visual assets unavailable for %s: %s", candidate.address, exc)
            assets = VisualAssets()
        return replace(candidate, visual_assets=assets)

    @staticmethod
    def _log_pass(request_id, plan, probe: ProbeResult, survivors, selected, padding) -> None:
        logger.info(
            "Pass %s/%d done: probed=%d resolved=%d survivors=%d selected=%d fallback=%d",
            request_id,
            plan.level,
            probe.attempted,
            len(probe.points),
            survivors,
            selected,
            padding,
        )
