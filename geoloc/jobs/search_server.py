"""HTTP entrypoint for property localisation searches (Cloud Run friendly)."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request
from requests import RequestException

from geoloc.core.config import get_policy, get_settings
from geoloc.core.errors import (
    CollaboratorError,
    CollaboratorUnavailableError,
    InvalidZoneError,
    RequestNotFoundError,
    RunConflictError,
    StoreUnavailableError,
)
from geoloc.engine.service import LocalisationService
from geoloc.etl.transform import hints_from_dict, outcome_to_dict, signature_from_dict, zone_from_dict
from geoloc.jobs.bootstrap import build_resolver, build_service
from geoloc.models import OutcomeStatus, SearchZone, VisualSignature
from geoloc.vendors.openai_vision import OpenAISignatureExtractor

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)


@lru_cache(maxsize=1)
def get_service() -> LocalisationService:
    return build_service()


def zone_from_payload(payload: Dict[str, Any]) -> SearchZone:
    """Explicit centre wins; otherwise derive the centre from postal code / city."""
    zone_data = payload.get("zone") or payload
    center = zone_data.get("center") or {}
    has_center = zone_data.get("lat") is not None or center.get("lat") is not None
    if has_center:
        return zone_from_dict(zone_data)

    radius_raw = zone_data.get("radius_m", zone_data.get("radius"))
    try:
        radius_m = float(radius_raw) if radius_raw is not None else float(get_policy().default_radius_m)
    except (TypeError, ValueError):
        raise InvalidZoneError("radius_m must be numeric") from None
    postal_code = zone_data.get("postal_code")
    city = zone_data.get("city")
    if not postal_code and not city:
        raise InvalidZoneError("zone requires lat/lng or a postal_code/city")
    resolver = build_resolver(get_settings())
    return resolver.zone_from_place(radius_m, postal_code=postal_code, city=city)


def signature_from_payload(payload: Dict[str, Any]) -> VisualSignature:
    if payload.get("signature"):
        return signature_from_dict(payload["signature"])
    image_urls = payload.get("image_urls") or []
    if not image_urls:
        raise ValueError("signature or image_urls is required")
    settings = get_settings()
    extractor = OpenAISignatureExtractor(settings.openai_api_key, model=settings.openai_model)
    return extractor.extract(image_urls)


# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Reads settings only; never touches the database or vendors."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "port_config": settings.server_port,
                "persistent_store": bool(settings.database_url),
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/localisation")
def start_localisation() -> Any:
    """
    Start a search.
    JSON fields: zone ({lat, lng, radius_m} or {postal_code|city, radius_m}),
    signature (dict) or image_urls (list), optional hints and density.
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    density_raw = payload.get("density")
    density: Optional[int] = None
    if density_raw is not None:
        try:
            density = int(density_raw)
        except (TypeError, ValueError):
            return _error("density must be numeric", 400)
        if density <= 0:
            return _error("density must be positive", 400)

    try:
        zone = zone_from_payload(payload)
        signature = signature_from_payload(payload)
        hints = hints_from_dict(payload.get("hints"))
        outcome = get_service().start_search(
            zone,
            signature,
            hints,
            raw_input={"hints": payload.get("hints") or {}},
            density=density,
        )
    except Exception as exc:  # noqa: BLE001
        return _handle_error(exc)

    return jsonify({"data": outcome_to_dict(outcome)}), 200


@app.post("/localisation/<request_id>/more")
def more_candidates(request_id: str) -> Any:
    try:
        outcome = get_service().request_more(request_id)
    except Exception as exc:  # noqa: BLE001
        return _handle_error(exc)

    body = outcome_to_dict(outcome)
    if outcome.status == OutcomeStatus.EXHAUSTED:
        logger.info("Request %s exhausted its relances", request_id)
    return jsonify({"data": body}), 200


# ---------- Internals ----------


def _error(message: str, status: int) -> Tuple[Any, int]:
    return jsonify({"error": message}), status


def _handle_error(exc: Exception) -> Tuple[Any, int]:
    # collaborator errors first: requests' JSONDecodeError is also a ValueError
    if isinstance(exc, (CollaboratorUnavailableError, StoreUnavailableError, CollaboratorError, RequestException)):
        logger.error("Search failed, dependency unavailable: %s", exc)
        return _error(str(exc), 503)
    if isinstance(exc, (InvalidZoneError, ValueError)):
        return _error(str(exc), 400)
    if isinstance(exc, RequestNotFoundError):
        return _error(str(exc), 404)
    if isinstance(exc, RunConflictError):
        return _error(str(exc), 409)
    logger.exception("Search failed: %s", exc)
    return _error("search failed", 500)


def main() -> None:
    port = get_settings().server_port
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
