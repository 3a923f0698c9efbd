"""PostgreSQL run repository."""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import errors, extras, pool

from geoloc.core.errors import RequestNotFoundError, RunConflictError, StoreUnavailableError
from geoloc.etl.transform import fingerprint_from_dict, fingerprint_to_dict
from geoloc.models import LocalisationRequest, RequestStatus, SearchRun

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS localisation_requests (
    id TEXT PRIMARY KEY,
    raw_input JSONB NOT NULL,
    user_hints JSONB NOT NULL DEFAULT '{}'::jsonb,
    status TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS localisation_runs (
    request_id TEXT NOT NULL REFERENCES localisation_requests (id),
    level INTEGER NOT NULL,
    candidates JSONB NOT NULL,
    excluded_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (request_id, level)
);
"""

_INSERT_REQUEST = """
INSERT INTO localisation_requests (
    id,
    raw_input,
    user_hints,
    status,
    created_at,
    updated_at
) VALUES (
    %(id)s,
    %(raw_input)s,
    %(user_hints)s,
    %(status)s,
    %(created_at)s,
    NOW()
);
"""

_SELECT_REQUEST = """
SELECT id, raw_input, user_hints, status, created_at
FROM localisation_requests
WHERE id = %(id)s;
"""

_UPDATE_STATUS = """
UPDATE localisation_requests
SET status = %(status)s, updated_at = NOW()
WHERE id = %(id)s;
"""

_INSERT_RUN = """
INSERT INTO localisation_runs (
    request_id,
    level,
    candidates,
    excluded_count,
    created_at
)
SELECT
    %(request_id)s,
    %(level)s,
    %(candidates)s,
    %(excluded_count)s,
    %(created_at)s
WHERE NOT EXISTS (
    SELECT 1 FROM localisation_runs
    WHERE request_id = %(request_id)s AND level >= %(level)s
);
"""

_SELECT_RUNS = """
SELECT request_id, level, candidates, excluded_count, created_at
FROM localisation_runs
WHERE request_id = %(request_id)s
ORDER BY level ASC;
"""

_COUNT_RUNS = """
SELECT COUNT(*) FROM localisation_runs WHERE request_id = %(request_id)s;
"""


class PostgresRunRepository:
    """Run repository backed by a psycopg2 connection pool owned by the instance."""

    def __init__(self, dsn: str, minconn: int = 1, maxconn: int = 5) -> None:
        if not dsn:
            raise ValueError("a database DSN is required for PostgresRunRepository")
        self._dsn = dsn
        self._minconn = minconn
        self._maxconn = maxconn
        self._pool: Optional[pool.SimpleConnectionPool] = None

    def init_pool(self) -> pool.SimpleConnectionPool:
        if self._pool is None:
            try:
                self._pool = pool.SimpleConnectionPool(
                    self._minconn,
                    self._maxconn,
                    dsn=self._dsn,
                    connect_timeout=10,
                )
            except psycopg2.OperationalError as exc:
                raise StoreUnavailableError(f"cannot connect to run store: {exc}") from exc
            logger.info("Database connection pool initialised")
        return self._pool

    @contextmanager
    def get_connection(self):
        """Context manager yielding a pooled connection."""
        pg_pool = self.init_pool()
        conn = pg_pool.getconn()
        try:
            yield conn
        finally:
            pg_pool.putconn(conn)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None

    def ensure_schema(self) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
            conn.commit()
        logger.info("Localisation schema ensured")

    def create_request(self, request: LocalisationRequest, first_run: Optional[SearchRun] = None) -> None:
        if first_run is not None and first_run.request_id != request.id:
            raise ValueError(f"run belongs to {first_run.request_id}, not {request.id}")
        params = {
            "id": request.id,
            "raw_input": extras.Json(request.raw_input or {}),
            "user_hints": extras.Json(request.user_hints or {}),
            "status": RequestStatus(request.status).value,
            "created_at": request.created_at,
        }
        with self.get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(_INSERT_REQUEST, params)
                    if first_run is not None:
                        cur.execute(_INSERT_RUN, _prepare_run_params(first_run))
                conn.commit()
            except errors.UniqueViolation as exc:
                conn.rollback()
                raise RunConflictError(f"request {request.id} already exists") from exc
            except psycopg2.Error:
                conn.rollback()
                raise
        logger.debug("Inserted localisation request %s", request.id)

    def get_request(self, request_id: str) -> Optional[LocalisationRequest]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SELECT_REQUEST, {"id": request_id})
                row = cur.fetchone()
        if row is None:
            return None
        return _row_to_request(row)

    def update_status(self, request_id: str, status: RequestStatus) -> None:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_UPDATE_STATUS, {"id": request_id, "status": RequestStatus(status).value})
                updated = cur.rowcount
            conn.commit()
        if not updated:
            raise RequestNotFoundError(request_id)

    def append_run(self, run: SearchRun) -> None:
        params = _prepare_run_params(run)
        with self.get_connection() as conn:
            try:
                with conn.cursor() as cur:
                    cur.execute(_INSERT_RUN, params)
                    inserted = cur.rowcount
                conn.commit()
            except errors.UniqueViolation as exc:
                conn.rollback()
                raise RunConflictError(f"run {run.request_id}/{run.level} already committed") from exc
            except errors.ForeignKeyViolation as exc:
                conn.rollback()
                raise RequestNotFoundError(run.request_id) from exc
        if not inserted:
            raise RunConflictError(f"run level {run.level} is not above the committed levels of {run.request_id}")
        logger.debug("Appended run %s/%d", run.request_id, run.level)

    def list_runs(self, request_id: str) -> List[SearchRun]:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_SELECT_RUNS, {"request_id": request_id})
                rows = cur.fetchall()
        return [_row_to_run(row) for row in rows]

    def count_runs(self, request_id: str) -> int:
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_COUNT_RUNS, {"request_id": request_id})
                row = cur.fetchone()
        return int(row[0]) if row else 0


def _prepare_run_params(run: SearchRun) -> Dict[str, Any]:
    return {
        "request_id": run.request_id,
        "level": run.level,
        "candidates": extras.Json([fingerprint_to_dict(fp) for fp in run.candidates]),
        "excluded_count": run.excluded_count,
        "created_at": run.created_at,
    }


def _row_to_request(row) -> LocalisationRequest:
    request_id, raw_input, user_hints, status, created_at = row
    return LocalisationRequest(
        id=request_id,
        raw_input=raw_input or {},
        user_hints=user_hints or {},
        status=RequestStatus(status),
        created_at=created_at,
    )


def _row_to_run(row) -> SearchRun:
    request_id, level, candidates, excluded_count, created_at = row
    return SearchRun(
        request_id=request_id,
        level=int(level),
        candidates=tuple(fingerprint_from_dict(item) for item in candidates or []),
        excluded_count=int(excluded_count or 0),
        created_at=created_at,
    )
