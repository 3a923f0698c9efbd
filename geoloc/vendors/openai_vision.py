"""OpenAI vision helpers: pool detection on aerial tiles and signature extraction.

Both calls are billed per request. The session retries 429/5xx twice with
backoff; anything else surfaces as :class:`VisionError` to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from geoloc.core.errors import CollaboratorError
from geoloc.etl.transform import extract_json_object, signature_from_dict, to_pool_detection
from geoloc.models import PoolDetection, VisualSignature
from geoloc.vendors.visual_assets import satellite_tile_url

logger = logging.getLogger(__name__)

_CHAT_URL = "https://api.openai.com/v1/chat/completions"

POOL_PROMPT = """Is a swimming pool visible on this satellite image?
Answer ONLY with a JSON object:
{
  "hasPool": true/false,
  "poolShape": "rectangular" | "kidney" | "L" | "round" | "unknown",
  "poolSizeCategory": "small" | "medium" | "large" | "unknown",
  "poolPosition": "behind" | "left" | "right" | "front" | "unknown",
  "poolColor": "blue" | "turquoise" | "green" | "unknown",
  "roofColor": string or "unknown",
  "roofMaterial": "tile" | "slate" | "zinc" | "flat" | "unknown",
  "roofShape": "gable" | "hip" | "flat" | "unknown",
  "vegetationDense": true/false,
  "orientation": "north" | "south" | "east" | "west" | "unknown",
  "confidence": 0-100
}"""

SIGNATURE_PROMPT = """Describe the distinguishing exterior features of the property in these photos.
Answer ONLY with a JSON object:
{
  "hasPool": true/false,
  "poolShape": "rectangular" | "kidney" | "L" | "round" | "unknown",
  "poolSizeCategory": "small" | "medium" | "large" | "unknown",
  "poolStyle": {"color": string, "position": "behind" | "left" | "right" | "front"},
  "roofType": "tile_red" | "tile_flat" | "slate" | "flat" | "unknown",
  "roofColor": string,
  "roofMaterial": string,
  "facadeColor": "white" | "beige" | "stone" | "other",
  "facadeMaterial": [string],
  "vegetationHints": [string],
  "orientation": "north" | "south" | "east" | "west" | "unknown",
  "otherNotableFeatures": [string],
  "confidence": 0-100
}"""


class VisionError(CollaboratorError):
    """Raised when the vision endpoint fails or replies with unusable content."""


def _build_session() -> requests.Session:
    session = requests.Session()
    retries = Retry(
        total=2,
        backoff_factor=1,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("POST",),
    )
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


_SESSION = _build_session()


def chat_json(
    prompt: str,
    image_urls: Sequence[str],
    *,
    api_key: str,
    model: str,
    timeout: float = 10,
    max_tokens: int = 300,
) -> Dict[str, Any]:
    """Send one vision prompt and parse the JSON object in the reply."""
    content: List[Dict[str, Any]] = [{"type": "text", "text": prompt}]
    for url in image_urls:
        content.append({"type": "image_url", "image_url": {"url": url, "detail": "high"}})

    body = {
        "model": model,
        "messages": [{"role": "user", "content": content}],
        "max_tokens": max_tokens,
        "temperature": 0,
    }
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    response = _SESSION.post(_CHAT_URL, json=body, headers=headers, timeout=timeout)
    if response.status_code >= 400:
        logger.error("vision call failed: status=%s body=%s", response.status_code, response.text[:300])
        raise VisionError(f"vision endpoint returned {response.status_code}")

    try:
        payload = response.json()
        text = payload["choices"][0]["message"]["content"]
        return extract_json_object(text)
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise VisionError(f"unusable vision reply: {exc}") from exc


class OpenAIPoolDetector:
    """PoolDetector that asks a vision model about the satellite tile at a point."""

    def __init__(
        self,
        api_key: str,
        maps_api_key: str,
        *,
        model: str = "gpt-4o-mini",
        timeout: float = 10,
        confidence_threshold: int = 60,
    ) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required for pool detection")
        self._api_key = api_key
        self._maps_api_key = maps_api_key
        self._model = model
        self._timeout = timeout
        self._threshold = confidence_threshold

    def detect(self, lat: float, lng: float) -> PoolDetection:
        tile_url = satellite_tile_url(lat, lng, self._maps_api_key, zoom=20, size="400x400", marker=False)
        reply = chat_json(
            POOL_PROMPT,
            [tile_url],
            api_key=self._api_key,
            model=self._model,
            timeout=self._timeout,
            max_tokens=200,
        )
        detection = to_pool_detection(reply, self._threshold)
        logger.debug("Pool reading at %.6f,%.6f: present=%s shape=%s", lat, lng, detection.present, detection.shape)
        return detection


class OpenAISignatureExtractor:
    """SignatureExtractor run once per original request."""

    def __init__(self, api_key: str, *, model: str = "gpt-4o-mini", timeout: float = 30) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required for signature extraction")
        self._api_key = api_key
        self._model = model
        self._timeout = timeout

    def extract(self, image_urls: Sequence[str]) -> VisualSignature:
        if not image_urls:
            raise ValueError("at least one image is required")
        reply = chat_json(
            SIGNATURE_PROMPT,
            list(image_urls),
            api_key=self._api_key,
            model=self._model,
            timeout=self._timeout,
            max_tokens=600,
        )
        signature = signature_from_dict(reply)
        logger.info("Extracted visual signature: pool=%s roof=%s confidence=%d",
                    signature.has_pool, signature.roof_color, signature.confidence)
        return signature
