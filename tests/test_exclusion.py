import pytest

from geoloc.core.repository import InMemoryRunRepository
from geoloc.engine import exclusion
from geoloc.models import (
    Candidate,
    CandidateFingerprint,
    Coordinates,
    LocalisationRequest,
    ScoreBreakdown,
    SearchRun,
)


def make_candidate(candidate_id, lat, lng, **kwargs):
    return Candidate(
        id=candidate_id,
        address=kwargs.pop("address", f"{candidate_id} avenue Foch"),
        postal_code="75016",
        city="Paris",
        coordinates=Coordinates(lat=lat, lng=lng),
        score=kwargs.pop("score", 70),
        score_breakdown=ScoreBreakdown(),
        explanation="",
        **kwargs,
    )


def far_fingerprint(**kwargs):
    return CandidateFingerprint(coords=Coordinates(lat=43.3, lng=5.4), **kwargs)


def test_coords_rule():
    history = [CandidateFingerprint(coords=Coordinates(lat=48.85000, lng=2.35000))]
    candidate = exclusion.fingerprint_for(make_candidate("a", 48.85005, 2.35005))
    assert exclusion.should_exclude(candidate, history) == (True, "coords_identical")


def test_parcel_rule():
    history = [far_fingerprint(parcel_id="75116000AB0012")]
    candidate = exclusion.fingerprint_for(make_candidate("a", 48.87, 2.28, parcel_id="75116000AB0012"))
    assert exclusion.should_exclude(candidate, history) == (True, "parcel_identical")


def test_pool_and_roof_hash_rules():
    pool_hash = exclusion.pool_signature_hash("1 avenue Foch", "rectangular", "medium")
    roof_hash = exclusion.roof_signature_hash("1 avenue Foch", "red", "tile")
    pool_candidate = exclusion.fingerprint_for(make_candidate("a", 48.87, 2.28, pool_hash=pool_hash))
    roof_candidate = exclusion.fingerprint_for(make_candidate("b", 48.87, 2.28, roof_hash=roof_hash))

    assert exclusion.should_exclude(pool_candidate, [far_fingerprint(pool_hash=pool_hash)]) == (True, "pool_hash_identical")
    assert exclusion.should_exclude(roof_candidate, [far_fingerprint(roof_hash=roof_hash)]) == (True, "roof_hash_identical")


def test_bbox_rule():
    previous = exclusion.fingerprint_for(make_candidate("old", 48.8500, 2.3500))
    candidate = exclusion.fingerprint_for(make_candidate("new", 48.8503, 2.3503))
    assert exclusion.should_exclude(candidate, [previous]) == (True, "bbox_similar")


def test_missing_bbox_skips_bbox_rule():
    previous = CandidateFingerprint(coords=Coordinates(lat=48.8500, lng=2.3500))
    candidate = exclusion.fingerprint_for(make_candidate("new", 48.8503, 2.3503))
    assert exclusion.should_exclude(candidate, [previous]) == (False, None)


def test_distinct_candidate_survives():
    previous = exclusion.fingerprint_for(make_candidate("old", 48.8500, 2.3500))
    candidate = exclusion.fingerprint_for(make_candidate("new", 48.8600, 2.3600))
    assert exclusion.should_exclude(candidate, [previous]) == (False, None)


def test_hashes_need_anchor_and_two_fields():
    assert exclusion.pool_signature_hash("1 rue A", "rectangular") is None
    assert exclusion.pool_signature_hash(None, "rectangular", "medium") is None
    assert exclusion.roof_signature_hash("1 rue A", None, None, None) is None
    assert exclusion.pool_signature_hash("1 rue A", "Rectangular", "medium") == exclusion.pool_signature_hash(
        "1  rue a", "rectangular", "Medium"
    )
    assert exclusion.pool_signature_hash("1 rue A", "rectangular", "medium") != exclusion.pool_signature_hash(
        "3 rue A", "rectangular", "medium"
    )


def test_filter_candidates_is_pure_and_dedupes_batch():
    history = [exclusion.fingerprint_for(make_candidate("old", 48.8500, 2.3500))]
    snapshot = list(history)
    candidates = [
        make_candidate("a", 48.85001, 2.35001),
        make_candidate("b", 48.8600, 2.3600),
        make_candidate("c", 48.86002, 2.36002),
        make_candidate("d", 48.8700, 2.3700),
    ]

    result = exclusion.filter_candidates(candidates, history)

    assert [c.id for c in result.survivors] == ["b", "d"]
    assert result.excluded_count == 2
    assert [entry.candidate_id for entry in result.log] == ["a", "c"]
    assert [entry.reason for entry in result.log] == ["coords_identical", "coords_identical"]
    assert history == snapshot


def test_bbox_around():
    box = exclusion.bbox_around(Coordinates(lat=10.0, lng=20.0), 0.0005)
    assert box.north == pytest.approx(10.0005)
    assert box.south == pytest.approx(9.9995)
    assert box.east == pytest.approx(20.0005)
    assert box.west == pytest.approx(19.9995)


def test_store_loads_all_runs_in_order():
    repository = InMemoryRunRepository()
    repository.create_request(LocalisationRequest(id="req", raw_input={}))
    store = exclusion.FingerprintStore(repository)
    first = exclusion.fingerprint_for(make_candidate("a", 48.85, 2.35))
    second = exclusion.fingerprint_for(make_candidate("b", 48.86, 2.36))

    assert store.load("req") == []
    store.append(SearchRun(request_id="req", level=0, candidates=(first,)))
    store.append(SearchRun(request_id="req", level=1, candidates=(second,)))

    assert store.load("req") == [first, second]
    assert store.load("other") == []
