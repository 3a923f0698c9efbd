"""Error taxonomy for the geolocation engine.

Exhaustion and empty results are not errors: they travel back to callers as
:class:`geoloc.models.SearchOutcome` values.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from geoloc.models import Coordinates


class GeolocError(RuntimeError):
    """Base class for engine errors."""


class InvalidZoneError(GeolocError, ValueError):
    """The search zone is missing or degenerate; nothing was probed."""


class CollaboratorError(GeolocError):
    """An external collaborator answered with an error for a single call."""


class CollaboratorUnavailableError(GeolocError):
    """A collaborator failed for the whole batch; the pass was abandoned."""

    def __init__(self, collaborator: str, attempts: int, last_error: Optional[BaseException] = None):
        message = f"{collaborator} failed on all {attempts} calls of the pass"
        if last_error is not None:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.collaborator = collaborator
        self.attempts = attempts


class RequestNotFoundError(GeolocError, LookupError):
    """No localisation request is stored under the given id."""


class RunConflictError(GeolocError):
    """A run with the same (request_id, level) was already committed."""


class StoreUnavailableError(GeolocError):
    """The run repository could not be reached."""


@dataclass(frozen=True)
class PointProbeFailure:
    """A single sample point that could not be probed. Logged, never raised."""

    index: int
    point: Coordinates
    stage: str
    error: str
