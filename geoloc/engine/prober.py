"""Bounded-concurrency probing of sample points.

Each worker pulls the next point from a shared queue and runs the full
sequence for it (resolve address, maybe detect a pool). Workers share a
lock-guarded accumulator; once ``max_candidates`` distinct addresses are
held they stop pulling new points and let in-flight ones finish.
"""

from __future__ import annotations

import logging
import queue
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Sequence, Tuple

from geoloc.core.errors import CollaboratorUnavailableError, PointProbeFailure
from geoloc.core.ports import AddressResolver, PoolDetector
from geoloc.models import Coordinates, PoolDetection, ResolvedAddress, ResolvedPoint

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    points: List[ResolvedPoint] = field(default_factory=list)
    attempted: int = 0
    no_address: int = 0
    outside_area: int = 0
    duplicates: int = 0
    no_pool: int = 0
    failures: List[PointProbeFailure] = field(default_factory=list)


class _ProbeState:
    """Everything the workers share. All access goes through ``lock``."""

    def __init__(self, max_candidates: int, postal_code: Optional[str] = None, city: Optional[str] = None) -> None:
        self.lock = Lock()
        self.max_candidates = max_candidates
        self.postal_code = postal_code
        self.city = city.strip().casefold() if city else None
        self.by_address: Dict[str, ResolvedPoint] = {}
        self.result = ProbeResult()
        self.geocode_calls = 0
        self.geocode_errors = 0
        self.pool_calls = 0
        self.pool_errors = 0
        self.last_geocode_error: Optional[BaseException] = None
        self.last_pool_error: Optional[BaseException] = None

    def full(self) -> bool:
        with self.lock:
            return len(self.by_address) >= self.max_candidates

    def in_area(self, address: ResolvedAddress) -> bool:
        """Postal code wins over city when both constraints are known."""
        if self.postal_code:
            return address.postal_code == self.postal_code
        if self.city:
            return bool(address.city) and address.city.strip().casefold() == self.city
        return True

    def seen_earlier(self, address: str, index: int) -> bool:
        with self.lock:
            existing = self.by_address.get(address)
            return existing is not None and existing.index < index

    def accept(self, resolved: ResolvedPoint) -> None:
        key = address_key(resolved.address.street)
        with self.lock:
            existing = self.by_address.get(key)
            if existing is None:
                self.by_address[key] = resolved
            elif resolved.index < existing.index:
                self.by_address[key] = resolved
                self.result.duplicates += 1
            else:
                self.result.duplicates += 1


def address_key(street: str) -> str:
    return " ".join(street.split()).casefold()


class CandidateProber:
    def __init__(
        self,
        resolver: AddressResolver,
        pool_detector: Optional[PoolDetector],
        *,
        max_workers: int = 8,
        max_candidates: int = 30,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        if max_candidates <= 0:
            raise ValueError("max_candidates must be positive")
        self._resolver = resolver
        self._pool_detector = pool_detector
        self._max_workers = max_workers
        self._max_candidates = max_candidates

    def probe(
        self,
        points: Sequence[Coordinates],
        requires_pool: bool,
        *,
        postal_code: Optional[str] = None,
        city: Optional[str] = None,
    ) -> ProbeResult:
        """Resolve and filter ``points``; survivors come back in grid order.

        Raises :class:`CollaboratorUnavailableError` when every address
        resolution (or every pool detection) of the pass failed.
        """
        if requires_pool and self._pool_detector is None:
            raise ValueError("a pool detector is required when the signature requires a pool")

        state = _ProbeState(self._max_candidates, postal_code=postal_code, city=city)
        work: "queue.Queue[Tuple[int, Coordinates]]" = queue.Queue()
        for index, point in enumerate(points):
            work.put((index, point))

        workers = min(self._max_workers, max(1, len(points)))
        logger.info("Probing %d points with %d workers (requires_pool=%s)", len(points), workers, requires_pool)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe") as executor:
            futures = [executor.submit(self._worker, work, state, requires_pool) for _ in range(workers)]
            for future in futures:
                future.result()

        self._raise_if_unavailable(state)

        result = state.result
        result.points = sorted(state.by_address.values(), key=lambda item: item.index)
        logger.info(
            "Probe finished: attempted=%d kept=%d no_address=%d outside=%d duplicates=%d no_pool=%d failures=%d",
            result.attempted,
            len(result.points),
            result.no_address,
            result.outside_area,
            result.duplicates,
            result.no_pool,
            len(result.failures),
        )
        return result

    def _worker(
        self,
        work: "queue.Queue[Tuple[int, Coordinates]]",
        state: _ProbeState,
        requires_pool: bool,
    ) -> None:
        while not state.full():
            try:
                index, point = work.get_nowait()
            except queue.Empty:
                return
            with state.lock:
                state.result.attempted += 1
            self._probe_point(index, point, state, requires_pool)

    def _probe_point(
        self,
        index: int,
        point: Coordinates,
        state: _ProbeState,
        requires_pool: bool,
    ) -> None:
        try:
            address = self._resolver.reverse_geocode(point.lat, point.lng)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Address resolution failed for point %d (%.6f,%.6f): %s", index, point.lat, point.lng, exc)
            with state.lock:
                state.geocode_calls += 1
                state.geocode_errors += 1
                state.last_geocode_error = exc
                state.result.failures.append(PointProbeFailure(index, point, "address", str(exc)))
            return

        with state.lock:
            state.geocode_calls += 1
            if address is None or not address.street or not address.street.strip():
                state.result.no_address += 1
                return
            if not state.in_area(address):
                state.result.outside_area += 1
                return

        if state.seen_earlier(address_key(address.street), index):
            with state.lock:
                state.result.duplicates += 1
            return

        detection: Optional[PoolDetection] = None
        if requires_pool:
            try:
                detection = self._pool_detector.detect(point.lat, point.lng)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Pool detection failed for point %d (%.6f,%.6f): %s", index, point.lat, point.lng, exc)
                with state.lock:
                    state.pool_calls += 1
                    state.pool_errors += 1
                    state.last_pool_error = exc
                    state.result.failures.append(PointProbeFailure(index, point, "pool", str(exc)))
                return
            with state.lock:
                state.pool_calls += 1
                if not detection.present:
                    state.result.no_pool += 1
                    return
            logger.debug("Pool found at %s", address.street)

        state.accept(ResolvedPoint(index=index, point=point, address=address, pool=detection))

    @staticmethod
    def _raise_if_unavailable(state: _ProbeState) -> None:
        if state.geocode_calls and state.geocode_errors == state.geocode_calls:
            raise CollaboratorUnavailableError("address resolution", state.geocode_calls, state.last_geocode_error)
        if state.pool_calls and state.pool_errors == state.pool_calls:
            raise CollaboratorUnavailableError("pool detection", state.pool_calls, state.last_pool_error)
