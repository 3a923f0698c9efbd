"""Interfaces the engine needs from the outside world.

Implementations live in ``geoloc.vendors`` (HTTP collaborators) and
``geoloc.core.repository`` / ``geoloc.core.db`` (run storage). Every
implementation is injected; no engine component reaches for module state.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, runtime_checkable

from geoloc.models import (
    LocalisationRequest,
    PoolDetection,
    RequestStatus,
    ResolvedAddress,
    SaleRecord,
    SearchRun,
    VisualAssets,
    VisualSignature,
)


@runtime_checkable
class AddressResolver(Protocol):
    """Reverse geocoding.

    Returns ``None`` when no street-level address exists at the point. Raises
    on transport errors and timeouts.
    """

    def reverse_geocode(self, lat: float, lng: float) -> Optional[ResolvedAddress]: ...


@runtime_checkable
class PoolDetector(Protocol):
    def detect(self, lat: float, lng: float) -> PoolDetection: ...


@runtime_checkable
class VisualAssetProvider(Protocol):
    def assets_for(self, lat: float, lng: float) -> VisualAssets: ...


@runtime_checkable
class SignatureExtractor(Protocol):
    def extract(self, image_urls: Sequence[str]) -> VisualSignature: ...


@runtime_checkable
class SaleHistory(Protocol):
    def nearest_sale(self, lat: float, lng: float) -> Optional[SaleRecord]: ...


@runtime_checkable
class RunRepository(Protocol):
    """Durable record of requests and their append-only runs."""

    def create_request(self, request: LocalisationRequest, first_run: Optional[SearchRun] = None) -> None:
        """Store the request, and ``first_run`` with it in the same commit."""
        ...

    def get_request(self, request_id: str) -> Optional[LocalisationRequest]: ...

    def update_status(self, request_id: str, status: RequestStatus) -> None: ...

    def append_run(self, run: SearchRun) -> None: ...

    def list_runs(self, request_id: str) -> List[SearchRun]: ...

    def count_runs(self, request_id: str) -> int: ...
