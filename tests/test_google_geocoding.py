import pytest

from geoloc.core.errors import InvalidZoneError
from geoloc.vendors import google_geocoding


class DummyResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload or {}

    def raise_for_status(self):
        if self.status_code >= 400:
            raise RuntimeError("http error")

    def json(self):
        return self._payload


class DummySession:
    def __init__(self):
        self.calls = []
        self.response = DummyResponse(payload={"status": "ZERO_RESULTS", "results": []})

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        return self.response


@pytest.fixture(autouse=True)
def patch_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(google_geocoding, "_SESSION", session)
    return session


STREET_RESULT = {
    "formatted_address": "12 Rue des Lilas, 75019 Paris, France",
    "address_components": [
        {"long_name": "12", "types": ["street_number"]},
        {"long_name": "Rue des Lilas", "types": ["route"]},
        {"long_name": "Paris", "types": ["locality", "political"]},
        {"long_name": "75019", "types": ["postal_code"]},
    ],
    "geometry": {"location": {"lat": 48.8769, "lng": 2.3920}},
}


def test_reverse_geocode_success(patch_session):
    patch_session.response = DummyResponse(payload={"status": "OK", "results": [STREET_RESULT]})
    address = google_geocoding.reverse_geocode(48.8769, 2.392, "key")

    assert address.street == "12 Rue des Lilas"
    assert address.postal_code == "75019"
    assert address.city == "Paris"
    url, params, timeout = patch_session.calls[0]
    assert "geocode" in url
    assert params["latlng"] == "48.8769,2.392"
    assert params["result_type"] == "street_address"
    assert timeout == 10


def test_reverse_geocode_zero_results(patch_session):
    assert google_geocoding.reverse_geocode(48.0, 2.0, "key") is None


def test_reverse_geocode_error_status(patch_session):
    patch_session.response = DummyResponse(payload={"status": "OVER_QUERY_LIMIT", "error_message": "limit"})
    with pytest.raises(google_geocoding.GeocodingError):
        google_geocoding.reverse_geocode(48.0, 2.0, "key")


def test_resolver_attaches_parcel_id(patch_session):
    patch_session.response = DummyResponse(payload={"status": "OK", "results": [STREET_RESULT]})
    resolver = google_geocoding.GoogleAddressResolver("key", parcel_lookup=lambda lat, lng: "75119000AB0042")

    address = resolver.reverse_geocode(48.8769, 2.392)

    assert address.parcel_id == "75119000AB0042"


def test_resolver_requires_key():
    with pytest.raises(ValueError):
        google_geocoding.GoogleAddressResolver("")


def test_zone_from_place(patch_session):
    patch_session.response = DummyResponse(payload={"status": "OK", "results": [STREET_RESULT]})
    resolver = google_geocoding.GoogleAddressResolver("key")

    zone = resolver.zone_from_place(800, postal_code="75019", city="Paris")

    assert zone.center.lat == 48.8769
    assert zone.radius_m == 800
    assert zone.postal_code == "75019"
    assert patch_session.calls[0][1]["address"] == "75019 Paris France"


def test_zone_from_place_requires_place(patch_session):
    resolver = google_geocoding.GoogleAddressResolver("key")
    with pytest.raises(InvalidZoneError):
        resolver.zone_from_place(500)
    with pytest.raises(InvalidZoneError):
        resolver.zone_from_place(500, city="Nowhere")
