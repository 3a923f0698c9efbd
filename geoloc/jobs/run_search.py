"""CLI job to run a localisation search and optional relances."""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from geoloc.core.config import get_policy, get_settings
from geoloc.etl.transform import hints_from_dict, outcome_to_dict, signature_from_dict
from geoloc.jobs.bootstrap import build_resolver, build_service
from geoloc.models import Coordinates, OutcomeStatus, SearchZone

logger = logging.getLogger(__name__)


def load_signature(path: str) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def run_search_job(
    *,
    lat: Optional[float],
    lng: Optional[float],
    radius_m: float,
    postal_code: Optional[str],
    city: Optional[str],
    signature_path: str,
    more: int = 0,
) -> List[Dict[str, Any]]:
    """Run the initial search then up to ``more`` relances; returns one dict per call."""
    settings = get_settings()
    if not settings.google_maps_api_key:
        raise RuntimeError("GOOGLE_MAPS_API_KEY is required")
    if more < 0:
        raise ValueError("--more must not be negative")

    if lat is not None and lng is not None:
        zone = SearchZone(center=Coordinates(lat=lat, lng=lng), radius_m=radius_m, postal_code=postal_code, city=city)
    elif postal_code or city:
        zone = build_resolver(settings).zone_from_place(radius_m, postal_code=postal_code, city=city)
    else:
        raise ValueError("either --lat/--lng or --postal-code/--city is required")

    signature = signature_from_dict(load_signature(signature_path))
    hints = hints_from_dict({"postal_code": postal_code, "city": city})
    service = build_service(settings)

    outcome = service.start_search(zone, signature, hints)
    logger.info("Search %s returned %d candidates", outcome.request_id, len(outcome.candidates))
    results = [outcome_to_dict(outcome)]

    for _ in range(more):
        outcome = service.request_more(outcome.request_id)
        results.append(outcome_to_dict(outcome))
        if outcome.status == OutcomeStatus.EXHAUSTED:
            logger.info("Relances exhausted for %s", outcome.request_id)
            break
    return results


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Locate a property from its visual signature")
    parser.add_argument("--lat", dest="lat", type=float, help="Zone centre latitude")
    parser.add_argument("--lng", dest="lng", type=float, help="Zone centre longitude")
    parser.add_argument(
        "--radius",
        dest="radius_m",
        type=float,
        default=get_policy().default_radius_m,
        help="Zone radius in metres",
    )
    parser.add_argument("--postal-code", dest="postal_code", help="Postal code hint or zone anchor")
    parser.add_argument("--city", dest="city", help="City hint or zone anchor")
    parser.add_argument("--signature", dest="signature_path", required=True, help="Path to a signature JSON file")
    parser.add_argument("--more", dest="more", type=int, default=0, help="Number of relances to request")
    return parser


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args()

    results = run_search_job(
        lat=args.lat,
        lng=args.lng,
        radius_m=args.radius_m,
        postal_code=args.postal_code,
        city=args.city,
        signature_path=args.signature_path,
        more=args.more,
    )
    print(json.dumps(results, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
