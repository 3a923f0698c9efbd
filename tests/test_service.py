import threading

import pytest

from geoloc.core.config import SearchPolicy
from geoloc.core.errors import CollaboratorUnavailableError, InvalidZoneError, RequestNotFoundError
from geoloc.core.repository import InMemoryRunRepository
from geoloc.engine import grid
from geoloc.engine.prober import address_key
from geoloc.engine.service import LocalisationService
from geoloc.models import (
    Coordinates,
    OutcomeStatus,
    PoolDetection,
    RequestStatus,
    ResolvedAddress,
    SearchZone,
    UserHints,
    VisualAssets,
    VisualSignature,
)

PARIS = Coordinates(lat=48.8566, lng=2.3522)
ZONE = SearchZone(center=PARIS, radius_m=500)
SIGNATURE = VisualSignature(has_pool=True, pool_shape="rectangular", pool_size="medium", roof_color="red")


class DummyResolver:
    """One distinct street per sample point."""

    def __init__(self):
        self.calls = 0
        self.fail = False
        self._lock = threading.Lock()

    def reverse_geocode(self, lat, lng):
        with self._lock:
            self.calls += 1
        if self.fail:
            raise RuntimeError("geocoder down")
        return ResolvedAddress(street=f"{lat:.6f} {lng:.6f} rue du Test", postal_code="75004", city="Paris")


class DummyPoolDetector:
    def __init__(self, present=True):
        self.present = present
        self.calls = 0
        self._lock = threading.Lock()

    def detect(self, lat, lng):
        with self._lock:
            self.calls += 1
            call = self.calls
        present = self.present(call) if callable(self.present) else self.present
        return PoolDetection(
            present=present,
            shape="rectangular" if present else None,
            size_category="medium" if present else None,
            roof_color="red",
            roof_material="tile",
        )


class DummyAssets:
    def assets_for(self, lat, lng):
        return VisualAssets(satellite_url=f"https://tiles.example.com/{lat:.5f},{lng:.5f}.png")


def make_service(resolver=None, detector=None, policy=None, max_workers=4):
    repository = InMemoryRunRepository()
    service = LocalisationService(
        repository,
        resolver or DummyResolver(),
        detector or DummyPoolDetector(),
        DummyAssets(),
        policy=policy,
        max_workers=max_workers,
    )
    return service, repository


def assert_not_resurfaced(candidate, previous):
    for earlier in previous:
        assert not (
            abs(candidate.coordinates.lat - earlier.coordinates.lat) < 0.0001
            and abs(candidate.coordinates.lng - earlier.coordinates.lng) < 0.0001
        )


def test_paris_pool_scenario():
    service, repository = make_service()

    first = service.start_search(ZONE, SIGNATURE, UserHints(city="Paris"))

    assert first.status == OutcomeStatus.OK
    assert first.level == 0
    assert 1 <= len(first.candidates) <= 10
    scores = [candidate.score for candidate in first.candidates]
    assert scores == sorted(scores, reverse=True)
    assert all(candidate.score_breakdown.pool > 0 for candidate in first.candidates)
    assert all(not candidate.is_fallback for candidate in first.candidates)
    assert all(candidate.visual_assets.satellite_url for candidate in first.candidates)
    assert repository.get_request(first.request_id).status == RequestStatus.ACTIVE

    second = service.request_more(first.request_id)

    assert second.level == 1
    assert second.radius_m == 650
    for candidate in second.candidates:
        assert_not_resurfaced(candidate, first.candidates)


def test_relances_never_resurface_and_then_exhaust():
    service, repository = make_service()
    surfaced = []

    outcome = service.start_search(ZONE, SIGNATURE)
    surfaced.extend(c for c in outcome.candidates if not c.is_fallback)
    radii = [outcome.radius_m]

    for expected_level in (1, 2, 3):
        outcome = service.request_more(outcome.request_id)
        assert outcome.level == expected_level
        radii.append(outcome.radius_m)
        for candidate in outcome.candidates:
            if not candidate.is_fallback:
                assert_not_resurfaced(candidate, surfaced)
        surfaced.extend(c for c in outcome.candidates if not c.is_fallback)

    assert radii == [500, 650, 2000, 5000]

    exhausted = service.request_more(outcome.request_id)
    assert exhausted.status == OutcomeStatus.EXHAUSTED
    assert exhausted.candidates == []
    assert repository.count_runs(outcome.request_id) == 4
    assert repository.get_request(outcome.request_id).status == RequestStatus.EXHAUSTED

    again = service.request_more(outcome.request_id)
    assert again.status == OutcomeStatus.EXHAUSTED


def test_exhausted_call_does_not_probe():
    resolver = DummyResolver()
    service, _ = make_service(resolver=resolver, policy=SearchPolicy(max_relances=0))
    outcome = service.start_search(ZONE, SIGNATURE)
    calls = resolver.calls

    assert service.request_more(outcome.request_id).status == OutcomeStatus.EXHAUSTED
    assert resolver.calls == calls


def test_fallback_pads_below_genuine_scores():
    detector = DummyPoolDetector(present=lambda call: call == 1)
    service, repository = make_service(detector=detector, max_workers=1)

    outcome = service.start_search(ZONE, SIGNATURE)

    genuine = [c for c in outcome.candidates if not c.is_fallback]
    padding = [c for c in outcome.candidates if c.is_fallback]
    assert len(genuine) == 1
    assert len(padding) == 2
    assert all(c.score < genuine[0].score for c in padding)
    assert outcome.candidates[-1].is_fallback is True
    run = repository.list_runs(outcome.request_id)[0]
    assert len(run.candidates) == 1


class CentreResolver:
    """Everything within 100 m of the centre is the same house."""

    def __init__(self):
        self.outskirts = False

    def reverse_geocode(self, lat, lng):
        if grid.haversine_km(PARIS, Coordinates(lat=lat, lng=lng)) <= 0.1:
            return ResolvedAddress(street="1 rue Centrale", postal_code="75004", city="Paris")
        if not self.outskirts:
            return None
        return ResolvedAddress(street=f"{lat:.6f} {lng:.6f} rue du Test", postal_code="75004", city="Paris")


def test_fallback_never_resurfaces_an_earlier_match():
    resolver = CentreResolver()
    detector = DummyPoolDetector(present=True)
    service, _ = make_service(resolver=resolver, detector=detector, max_workers=1)

    first = service.start_search(ZONE, SIGNATURE)
    assert [c.address for c in first.candidates if not c.is_fallback] == ["1 rue Centrale"]

    resolver.outskirts = True
    detector.present = False
    second = service.request_more(first.request_id)

    padding = [c for c in second.candidates if c.is_fallback]
    assert padding
    assert all(c.address != "1 rue Centrale" for c in second.candidates)


class VariantResolver:
    """Same street written three ways."""

    SPELLINGS = ("3 rue Verte", "3 rue  Verte", "3 RUE verte ")

    def __init__(self):
        self.calls = 0
        self._lock = threading.Lock()

    def reverse_geocode(self, lat, lng):
        with self._lock:
            self.calls += 1
            call = self.calls
        return ResolvedAddress(street=self.SPELLINGS[call % 3], postal_code="75004", city="Paris")


def test_fallback_dedupes_spelling_variants():
    service, _ = make_service(resolver=VariantResolver(), detector=DummyPoolDetector(present=False), max_workers=1)

    outcome = service.start_search(ZONE, SIGNATURE)

    padding = [c for c in outcome.candidates if c.is_fallback]
    assert len(padding) == 1
    assert address_key(padding[0].address) == "3 rue verte"


class NoAddressResolver:
    def reverse_geocode(self, lat, lng):
        return None


def test_no_candidates_is_explicit():
    service, repository = make_service(resolver=NoAddressResolver(), detector=DummyPoolDetector(present=False))

    outcome = service.start_search(ZONE, SIGNATURE)

    assert outcome.status == OutcomeStatus.NO_CANDIDATES
    assert outcome.candidates == []
    assert outcome.message
    assert repository.count_runs(outcome.request_id) == 1


def test_invalid_zone_rejected_before_probing():
    resolver = DummyResolver()
    service, _ = make_service(resolver=resolver)

    with pytest.raises(InvalidZoneError):
        service.start_search(SearchZone(center=PARIS, radius_m=0), SIGNATURE)
    with pytest.raises(InvalidZoneError):
        service.start_search(SearchZone(center=Coordinates(lat=120.0, lng=2.0), radius_m=500), SIGNATURE)
    assert resolver.calls == 0


def test_failed_start_leaves_nothing_behind():
    resolver = DummyResolver()
    resolver.fail = True
    service, repository = make_service(resolver=resolver)

    with pytest.raises(CollaboratorUnavailableError):
        service.start_search(ZONE, SIGNATURE, request_id="req-down")
    assert repository.get_request("req-down") is None
    assert repository.count_runs("req-down") == 0


def test_failed_relance_leaves_history_untouched():
    resolver = DummyResolver()
    service, repository = make_service(resolver=resolver)
    outcome = service.start_search(ZONE, SIGNATURE)
    before = repository.list_runs(outcome.request_id)

    resolver.fail = True
    with pytest.raises(CollaboratorUnavailableError):
        service.request_more(outcome.request_id)

    assert repository.list_runs(outcome.request_id) == before
    resolver.fail = False
    assert service.request_more(outcome.request_id).level == 1


def test_unknown_request():
    service, _ = make_service()
    with pytest.raises(RequestNotFoundError):
        service.request_more("missing")


def test_signature_without_pool_skips_detection():
    detector = DummyPoolDetector()
    service, _ = make_service(detector=detector)

    outcome = service.start_search(ZONE, VisualSignature(has_pool=False, roof_color="red"))

    assert detector.calls == 0
    assert outcome.candidates
    assert all(candidate.score_breakdown.pool == 50 for candidate in outcome.candidates)
