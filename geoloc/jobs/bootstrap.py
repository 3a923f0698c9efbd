"""Wire the localisation service from settings."""

import logging
from typing import Optional

from geoloc.core.config import SearchPolicy, Settings, get_policy, get_settings
from geoloc.core.db import PostgresRunRepository
from geoloc.core.ports import RunRepository
from geoloc.core.repository import InMemoryRunRepository
from geoloc.engine.service import LocalisationService
from geoloc.vendors.dvf import DvfSaleHistory
from geoloc.vendors.google_geocoding import GoogleAddressResolver
from geoloc.vendors.ign_cadastre import IgnParcelLookup
from geoloc.vendors.openai_vision import OpenAIPoolDetector
from geoloc.vendors.visual_assets import GoogleVisualAssets

logger = logging.getLogger(__name__)


def build_repository(settings: Settings) -> RunRepository:
    if not settings.database_url:
        logger.warning("Using in-memory run repository; relance history is lost on restart.")
        return InMemoryRunRepository()
    repository = PostgresRunRepository(settings.database_url)
    repository.ensure_schema()
    return repository


def build_resolver(settings: Settings) -> GoogleAddressResolver:
    return GoogleAddressResolver(
        settings.google_maps_api_key,
        timeout=settings.http_timeout_seconds,
        parcel_lookup=IgnParcelLookup(timeout=settings.http_timeout_seconds),
    )


def build_service(
    settings: Optional[Settings] = None,
    policy: Optional[SearchPolicy] = None,
    repository: Optional[RunRepository] = None,
) -> LocalisationService:
    settings = settings or get_settings()
    policy = policy or get_policy()
    repository = repository or build_repository(settings)

    pool_detector = OpenAIPoolDetector(
        settings.openai_api_key,
        settings.google_maps_api_key,
        model=settings.openai_model,
        timeout=settings.http_timeout_seconds,
        confidence_threshold=policy.pool_confidence_threshold,
    )
    sale_history = None
    if settings.dvf_api_url:
        sale_history = DvfSaleHistory(settings.dvf_api_url, timeout=settings.http_timeout_seconds)

    return LocalisationService(
        repository,
        build_resolver(settings),
        pool_detector,
        GoogleVisualAssets(settings.google_maps_api_key, timeout=settings.http_timeout_seconds),
        policy=policy,
        sale_history=sale_history,
        max_workers=settings.probe_workers,
    )
