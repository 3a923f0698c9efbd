import pytest

from geoloc.etl import transform
from geoloc.models import (
    Candidate,
    CandidateFingerprint,
    Coordinates,
    ExclusionLogEntry,
    OutcomeStatus,
    ScoreBreakdown,
    SearchOutcome,
)


def test_parse_address_components():
    components = [
        {"long_name": "Lyon", "types": ["locality"]},
        {"long_name": "69003", "types": ["postal_code"]},
    ]
    assert transform.parse_address_components(components) == ("Lyon", "69003")
    assert transform.parse_address_components([]) == (None, None)


def test_to_resolved_address_falls_back_to_formatted():
    result = {"formatted_address": "Chemin des Vignes, 84000 Avignon, France", "address_components": []}
    address = transform.to_resolved_address(result)
    assert address.street == "Chemin des Vignes"
    assert transform.to_resolved_address({"formatted_address": ""}) is None


def test_to_pool_detection_normalises_unknowns():
    detection = transform.to_pool_detection(
        {"hasPool": True, "poolShape": "unknown", "roofColor": "Inconnu", "vegetationDense": "yes", "confidence": "70"},
        60,
    )
    assert detection.present is True
    assert detection.shape is None
    assert detection.roof_color is None
    assert detection.vegetation_dense is None
    assert detection.confidence == 70


def test_extract_json_object():
    assert transform.extract_json_object('```json\n{"hasPool": false}\n```') == {"hasPool": False}
    with pytest.raises(ValueError):
        transform.extract_json_object("")
    with pytest.raises(ValueError):
        transform.extract_json_object("no json here")


def test_signature_accepts_both_key_styles():
    snake = transform.signature_from_dict({"has_pool": True, "pool_shape": "round", "confidence": 150})
    camel = transform.signature_from_dict({"hasPool": True, "poolShape": "round", "confidence": 150})
    assert snake == camel
    assert snake.confidence == 100
    assert transform.signature_from_dict(transform.signature_to_dict(snake)) == snake


def test_zone_from_dict_variants():
    nested = transform.zone_from_dict({"center": {"lat": "48.85", "lng": 2.35}, "radius_m": 500, "postal_code": " 75004 "})
    flat = transform.zone_from_dict({"lat": 48.85, "lng": 2.35, "radius": "500"})
    assert nested.center == flat.center
    assert nested.radius_m == flat.radius_m == 500.0
    assert nested.postal_code == "75004"
    with pytest.raises(ValueError):
        transform.zone_from_dict({"lat": "north", "lng": 2.35, "radius_m": 500})
    with pytest.raises(ValueError):
        transform.zone_from_dict({"lat": 48.85, "lng": 2.35})


def test_hints_drop_empty_ranges():
    hints = transform.hints_from_dict({"city": "Nice", "price_range": {"min": None, "max": None}, "surface_range": {"min": 90}})
    assert hints.city == "Nice"
    assert hints.price_range is None
    assert hints.surface_range.min == 90.0
    assert transform.hints_from_dict(transform.hints_to_dict(hints)) == hints


def test_fingerprint_accepts_legacy_keys():
    fingerprint = transform.fingerprint_from_dict(
        {"coords": {"lat": 45.0, "lng": 5.0}, "piscineHash": "p", "roofHash": "r", "parcelId": "38185000AB0001"}
    )
    assert fingerprint == CandidateFingerprint(
        coords=Coordinates(45.0, 5.0), pool_hash="p", roof_hash="r", parcel_id="38185000AB0001"
    )


def test_fingerprint_keeps_address():
    fingerprint = CandidateFingerprint(coords=Coordinates(45.0, 5.0), address="12 rue des Lilas")
    data = transform.fingerprint_to_dict(fingerprint)
    assert data["address"] == "12 rue des Lilas"
    assert transform.fingerprint_from_dict(data).address == "12 rue des Lilas"
    assert transform.fingerprint_from_dict({"coords": {"lat": 45.0, "lng": 5.0}}).address is None


def test_outcome_to_dict():
    candidate = Candidate(
        id="req-0-3",
        address="5 rue Verte",
        postal_code="33000",
        city="Bordeaux",
        coordinates=Coordinates(44.84, -0.58),
        score=77,
        score_breakdown=ScoreBreakdown(pool=95),
        explanation="5 rue Verte: a pool is visible on the aerial view.",
    )
    outcome = SearchOutcome(
        status=OutcomeStatus.OK,
        request_id="req",
        level=0,
        radius_m=500,
        candidates=[candidate],
        excluded_count=1,
        exclusion_log=[ExclusionLogEntry(candidate_id="req-0-4", coords=Coordinates(44.8, -0.5), reason="bbox_similar")],
    )

    body = transform.outcome_to_dict(outcome)

    assert body["status"] == "ok"
    assert body["candidates"][0]["score_breakdown"]["pool"] == 95
    assert body["candidates"][0]["is_fallback"] is False
    assert body["candidates"][0]["visual_assets"] == {"satellite_url": None, "street_view_url": None, "cadastral_url": None}
    assert body["exclusion_log"][0]["reason"] == "bbox_similar"
