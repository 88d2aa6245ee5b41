"""Admin endpoints: fleet overview, cleanup and per-event provisioning toggle."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from hackathon_atlas.api.dependencies import http_error, require_admin
from hackathon_atlas.api.schemas import (
    AdminOverview,
    CleanupRequest,
    CleanupResponse,
    ClusterInfo,
    ProvisioningToggleRequest,
)
from hackathon_atlas.clusters.cleanup import CleanupService
from hackathon_atlas.clusters.provisioning import ProvisioningService
from hackathon_atlas.directory import EventStore
from hackathon_atlas.errors import AtlasError
from hackathon_atlas.models import (
    AtlasProvisioningConfig,
    Authenticated,
    ClusterFilter,
    ClusterStatus,
)

router = APIRouter(prefix="/api/atlas/admin", tags=["admin"])

_provisioning: ProvisioningService | None = None
_cleanup: CleanupService | None = None
_events: EventStore | None = None


def init_router(
    provisioning: ProvisioningService,
    cleanup: CleanupService,
    events: EventStore,
) -> None:
    global _provisioning, _cleanup, _events  # noqa: PLW0603
    _provisioning = provisioning
    _cleanup = cleanup
    _events = events


def _prov() -> ProvisioningService:
    assert _provisioning is not None, "ProvisioningService not initialized"
    return _provisioning


def _clean() -> CleanupService:
    assert _cleanup is not None, "CleanupService not initialized"
    return _cleanup


def _event_store() -> EventStore:
    assert _events is not None, "EventStore not initialized"
    return _events


@router.get("/clusters", response_model=AdminOverview)
def overview(
    _user: Annotated[Authenticated, Depends(require_admin)],
    event_id: str | None = None,
    status: ClusterStatus | None = None,
    include_deleted: bool = Query(False),
) -> AdminOverview:
    """All clusters with per-status totals."""
    query = ClusterFilter(event_id=event_id, status=status, include_deleted=include_deleted)
    clusters = _prov().list_clusters(query)
    return AdminOverview(
        stats=_prov().cluster_stats(event_id),
        clusters=[ClusterInfo.from_record(c) for c in clusters],
    )


@router.delete("/clusters/{cluster_id}", response_model=ClusterInfo)
def force_delete_cluster(
    cluster_id: str,
    _user: Annotated[Authenticated, Depends(require_admin)],
) -> ClusterInfo:
    try:
        return ClusterInfo.from_record(_prov().delete_cluster(cluster_id))
    except AtlasError as e:
        raise http_error(e) from e


@router.get("/cleanup", response_model=list[str])
def events_needing_cleanup(
    _user: Annotated[Authenticated, Depends(require_admin)],
) -> list[str]:
    """Preview which events the scheduled cleanup would process."""
    return _clean().find_events_needing_cleanup()


@router.post("/cleanup", response_model=CleanupResponse)
def run_cleanup(
    _user: Annotated[Authenticated, Depends(require_admin)],
    body: CleanupRequest | None = None,
) -> CleanupResponse:
    """Clean up one event, or every concluded event when no id is given."""
    body = body or CleanupRequest()
    try:
        if body.dry_run:
            reports = _clean().preview_cleanup(body.event_id)
        elif body.event_id:
            reports = [_clean().cleanup_event_clusters(body.event_id)]
        else:
            reports = _clean().run_scheduled_cleanup()
    except AtlasError as e:
        raise http_error(e) from e
    return CleanupResponse.from_reports(reports, dry_run=body.dry_run)


@router.patch("/events/{event_id}/provisioning", response_model=AtlasProvisioningConfig)
def configure_event_provisioning(
    event_id: str,
    body: ProvisioningToggleRequest,
    _user: Annotated[Authenticated, Depends(require_admin)],
) -> AtlasProvisioningConfig:
    try:
        return _event_store().configure_provisioning(
            event_id,
            enabled=body.enabled,
            allowed_providers=body.allowed_providers,
        )
    except AtlasError as e:
        raise http_error(e) from e
