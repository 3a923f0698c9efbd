"""Application configuration helpers.

Credentials and endpoints come from the environment only. Search policy
constants live in :class:`SearchPolicy` so the expansion controller and the
ranking step read the same values.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when a configuration value cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    google_maps_api_key: str
    openai_api_key: str
    database_url: str
    openai_model: str = "gpt-4o-mini"
    server_port: int = 8080
    http_timeout_seconds: float = 10.0
    probe_workers: int = 8
    dvf_api_url: Optional[str] = None


@dataclass(frozen=True)
class SearchPolicy:
    """Named defaults for zone expansion, probing and result selection."""

    default_radius_m: float = 500.0
    initial_density: int = 40
    relance_radius_increment_m: float = 150.0
    level2_radius_m: float = 2000.0
    level3_radius_m: float = 5000.0
    level1_density: int = 50
    level2_density: int = 80
    level3_density: int = 120
    max_relances: int = 3
    max_probe_candidates: int = 30
    max_results: int = 10
    min_results: int = 3
    fallback_base_score: int = 20
    fallback_radius_fraction: float = 0.25
    coord_tolerance_deg: float = 0.0001
    bbox_tolerance_deg: float = 0.00045
    bbox_half_size_deg: float = 0.0005
    pool_confidence_threshold: int = 60


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_maps_api_key = os.getenv("GOOGLE_MAPS_API_KEY", "")
    openai_api_key = os.getenv("OPENAI_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    openai_model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    server_port = _env_int("PORT", 8080)
    http_timeout_seconds = _env_float("GEOLOC_HTTP_TIMEOUT", 10.0)
    probe_workers = _env_int("GEOLOC_PROBE_WORKERS", 8)
    dvf_api_url = os.getenv("DVF_API_URL") or None

    if probe_workers <= 0:
        raise ConfigError("GEOLOC_PROBE_WORKERS must be positive")
    if not google_maps_api_key:
        logger.warning("GOOGLE_MAPS_API_KEY is not configured; geocoding requests will fail.")
    if not openai_api_key:
        logger.warning("OPENAI_API_KEY is not configured; pool detection will fail.")
    if not database_url:
        logger.warning("DATABASE_URL is not set; runs will be kept in memory only.")

    return Settings(
        google_maps_api_key=google_maps_api_key,
        openai_api_key=openai_api_key,
        database_url=database_url,
        openai_model=openai_model,
        server_port=server_port,
        http_timeout_seconds=http_timeout_seconds,
        probe_workers=probe_workers,
        dvf_api_url=dvf_api_url,
    )


@lru_cache(maxsize=1)
def get_policy() -> SearchPolicy:
    """Build the search policy, honouring optional GEOLOC_* overrides."""
    load_dotenv()
    defaults = SearchPolicy()
    policy = SearchPolicy(
        initial_density=_env_int("GEOLOC_INITIAL_DENSITY", defaults.initial_density),
        relance_radius_increment_m=_env_float(
            "GEOLOC_RELANCE_INCREMENT_M", defaults.relance_radius_increment_m
        ),
        level2_radius_m=_env_float("GEOLOC_LEVEL2_RADIUS_M", defaults.level2_radius_m),
        level3_radius_m=_env_float("GEOLOC_LEVEL3_RADIUS_M", defaults.level3_radius_m),
        max_relances=_env_int("GEOLOC_MAX_RELANCES", defaults.max_relances),
        max_probe_candidates=_env_int("GEOLOC_MAX_PROBE_CANDIDATES", defaults.max_probe_candidates),
        max_results=_env_int("GEOLOC_MAX_RESULTS", defaults.max_results),
        min_results=_env_int("GEOLOC_MIN_RESULTS", defaults.min_results),
    )
    if policy.level3_radius_m < policy.level2_radius_m:
        raise ConfigError("GEOLOC_LEVEL3_RADIUS_M must not be smaller than GEOLOC_LEVEL2_RADIUS_M")
    if policy.max_relances < 0:
        raise ConfigError("GEOLOC_MAX_RELANCES must not be negative")
    return policy
