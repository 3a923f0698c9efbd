import json

import pytest
import requests

from geoloc.vendors import openai_vision


class DummyResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


class DummySession:
    def __init__(self):
        self.calls = []
        self.response = None

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return self.response


def reply(content):
    return DummyResponse(payload={"choices": [{"message": {"content": content}}]})


@pytest.fixture(autouse=True)
def patch_session(monkeypatch):
    session = DummySession()
    monkeypatch.setattr(openai_vision, "_SESSION", session)
    return session


def test_pool_detector_reads_reply(patch_session):
    patch_session.response = reply(
        "Here you go:\n" + json.dumps({"hasPool": True, "poolShape": "kidney", "roofColor": "red", "confidence": 85})
    )
    detector = openai_vision.OpenAIPoolDetector("sk-test", "maps-key", timeout=5)

    detection = detector.detect(43.7, 7.26)

    assert detection.present is True
    assert detection.shape == "kidney"
    assert detection.roof_color == "red"
    call = patch_session.calls[0]
    assert call["headers"]["Authorization"] == "Bearer sk-test"
    assert call["timeout"] == 5
    assert call["json"]["model"] == "gpt-4o-mini"
    image = call["json"]["messages"][0]["content"][1]["image_url"]["url"]
    assert "maptype=satellite" in image
    assert "markers" not in image


def test_pool_detector_applies_confidence_threshold(patch_session):
    patch_session.response = reply(json.dumps({"hasPool": True, "confidence": 40}))
    detector = openai_vision.OpenAIPoolDetector("sk-test", "maps-key")

    assert detector.detect(43.7, 7.26).present is False


def test_chat_json_raises_on_http_error(patch_session):
    patch_session.response = DummyResponse(status_code=500, text="boom")
    with pytest.raises(openai_vision.VisionError):
        openai_vision.chat_json("prompt", [], api_key="sk", model="m")


def test_chat_json_raises_on_unusable_reply(patch_session):
    patch_session.response = reply("I cannot tell.")
    with pytest.raises(openai_vision.VisionError):
        openai_vision.chat_json("prompt", [], api_key="sk", model="m")


def test_chat_json_raises_on_non_json_body(patch_session):
    class HtmlResponse(DummyResponse):
        def json(self):
            raise requests.exceptions.JSONDecodeError("Expecting value", "<html>", 0)

    patch_session.response = HtmlResponse(text="<html>gateway</html>")
    with pytest.raises(openai_vision.VisionError):
        openai_vision.chat_json("prompt", [], api_key="sk", model="m")


def test_signature_extractor(patch_session):
    patch_session.response = reply(
        json.dumps(
            {
                "hasPool": True,
                "poolShape": "rectangular",
                "poolStyle": {"color": "blue", "position": "behind"},
                "roofType": "tile_red",
                "vegetationHints": ["palm", "hedge"],
                "confidence": 72,
            }
        )
    )
    extractor = openai_vision.OpenAISignatureExtractor("sk-test")

    signature = extractor.extract(["https://img.example.com/1.jpg", "https://img.example.com/2.jpg"])

    assert signature.has_pool is True
    assert signature.pool_color == "blue"
    assert signature.pool_position == "behind"
    assert signature.vegetation_hints == ("palm", "hedge")
    assert len(patch_session.calls[0]["json"]["messages"][0]["content"]) == 3


def test_detectors_require_keys():
    with pytest.raises(ValueError):
        openai_vision.OpenAIPoolDetector("", "maps-key")
    with pytest.raises(ValueError):
        openai_vision.OpenAISignatureExtractor("")
    with pytest.raises(ValueError):
        openai_vision.OpenAISignatureExtractor("sk").extract([])
