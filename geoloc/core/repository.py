"""In-process run repository."""

from __future__ import annotations

import copy
import logging
from threading import Lock
from typing import Dict, List, Optional

from geoloc.core.errors import RequestNotFoundError, RunConflictError
from geoloc.models import LocalisationRequest, RequestStatus, SearchRun

logger = logging.getLogger(__name__)


class InMemoryRunRepository:
    """Thread-safe repository kept in process memory.

    Used by tests and by the CLI when no ``DATABASE_URL`` is configured.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._requests: Dict[str, LocalisationRequest] = {}
        self._runs: Dict[str, Dict[int, SearchRun]] = {}

    def create_request(self, request: LocalisationRequest, first_run: Optional[SearchRun] = None) -> None:
        if first_run is not None and first_run.request_id != request.id:
            raise ValueError(f"run belongs to {first_run.request_id}, not {request.id}")
        with self._lock:
            if request.id in self._requests:
                raise RunConflictError(f"request {request.id} already exists")
            self._requests[request.id] = copy.deepcopy(request)
            runs = self._runs.setdefault(request.id, {})
            if first_run is not None:
                runs[first_run.level] = first_run
        logger.debug("Stored localisation request %s", request.id)

    def get_request(self, request_id: str) -> Optional[LocalisationRequest]:
        with self._lock:
            request = self._requests.get(request_id)
            return copy.deepcopy(request) if request else None

    def update_status(self, request_id: str, status: RequestStatus) -> None:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise RequestNotFoundError(request_id)
            request.status = status

    def append_run(self, run: SearchRun) -> None:
        with self._lock:
            if run.request_id not in self._requests:
                raise RequestNotFoundError(run.request_id)
            runs = self._runs.setdefault(run.request_id, {})
            if run.level in runs:
                raise RunConflictError(f"run {run.request_id}/{run.level} already committed")
            if runs and run.level <= max(runs):
                raise RunConflictError(
                    f"run level {run.level} is not above committed level {max(runs)}"
                )
            runs[run.level] = run
        logger.debug("Committed run %s/%d with %d fingerprints", run.request_id, run.level, len(run.candidates))

    def list_runs(self, request_id: str) -> List[SearchRun]:
        with self._lock:
            runs = self._runs.get(request_id, {})
            return [runs[level] for level in sorted(runs)]

    def count_runs(self, request_id: str) -> int:
        with self._lock:
            return len(self._runs.get(request_id, {}))
