"""Team cluster endpoints: provisioning, status, database users and IP access."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from hackathon_atlas.api.dependencies import current_caller, get_guard, http_error
from hackathon_atlas.api.schemas import (
    ClusterInfo,
    DatabaseUserCreateRequest,
    DatabaseUserInfo,
    IpAccessAddRequest,
    ProvisionRequest,
)
from hackathon_atlas.clusters.access import AccessService
from hackathon_atlas.clusters.provisioning import ProvisioningService
from hackathon_atlas.clusters.status import StatusService
from hackathon_atlas.directory import TeamStore
from hackathon_atlas.errors import AtlasError, InvalidRequest, NotFound
from hackathon_atlas.models import (
    AtlasCluster,
    Caller,
    ClusterFilter,
    ClusterRequest,
    ClusterStatusSnapshot,
    DatabaseUserCredentials,
    IpAccessEntry,
)

router = APIRouter(prefix="/api/atlas/clusters", tags=["clusters"])

_provisioning: ProvisioningService | None = None
_status: StatusService | None = None
_access: AccessService | None = None
_teams: TeamStore | None = None


def init_router(
    provisioning: ProvisioningService,
    status: StatusService,
    access: AccessService,
    teams: TeamStore,
) -> None:
    global _provisioning, _status, _access, _teams  # noqa: PLW0603
    _provisioning = provisioning
    _status = status
    _access = access
    _teams = teams


def _prov() -> ProvisioningService:
    assert _provisioning is not None, "ProvisioningService not initialized"
    return _provisioning


def _stat() -> StatusService:
    assert _status is not None, "StatusService not initialized"
    return _status


def _acc() -> AccessService:
    assert _access is not None, "AccessService not initialized"
    return _access


def _team_store() -> TeamStore:
    assert _teams is not None, "TeamStore not initialized"
    return _teams


def _cluster_for_member(caller: Caller, cluster_id: str) -> AtlasCluster:
    get_guard().require_authenticated(caller)
    cluster = _prov().get_cluster(cluster_id)
    get_guard().require_team_member(caller, cluster.team_id)
    return cluster


def _cluster_for_leader(caller: Caller, cluster_id: str) -> AtlasCluster:
    get_guard().require_authenticated(caller)
    cluster = _prov().get_cluster(cluster_id)
    get_guard().require_team_leader(caller, cluster.team_id)
    return cluster


# ------------------------------------------------------------------
# Clusters
# ------------------------------------------------------------------


@router.post("/", response_model=ClusterInfo, status_code=201)
def provision_cluster(
    body: ProvisionRequest,
    caller: Annotated[Caller, Depends(current_caller)],
) -> ClusterInfo:
    """Provision a cluster for a team (team leader or admin)."""
    try:
        user = get_guard().require_team_leader(caller, body.team_id)
        team = _team_store().get(body.team_id)
        if team is None:
            raise NotFound(f"Team {body.team_id} not found", public_message="Team not found")
        cluster = _prov().provision_cluster(
            team.event_id,
            team.team_id,
            user.user_id,
            ClusterRequest(
                provider=body.provider, region=body.region, project_id=body.project_id
            ),
        )
    except AtlasError as e:
        raise http_error(e) from e
    return ClusterInfo.from_record(cluster)


@router.get("/", response_model=list[ClusterInfo])
def list_clusters(
    caller: Annotated[Caller, Depends(current_caller)],
    team_id: str | None = Query(None),
    event_id: str | None = Query(None),
) -> list[ClusterInfo]:
    """Clusters of a team or event. Non-admins only see their own team's."""
    try:
        user = get_guard().require_authenticated(caller)
        if not team_id and not event_id:
            raise InvalidRequest("team_id or event_id is required")
        if not user.is_admin:
            if not team_id:
                get_guard().require_admin(caller)
            get_guard().require_team_member(caller, team_id)
        clusters = _prov().list_clusters(ClusterFilter(event_id=event_id, team_id=team_id))
    except AtlasError as e:
        raise http_error(e) from e
    return [ClusterInfo.from_record(c) for c in clusters]


@router.get("/{cluster_id}", response_model=ClusterInfo)
def get_cluster(
    cluster_id: str,
    caller: Annotated[Caller, Depends(current_caller)],
) -> ClusterInfo:
    try:
        cluster = _cluster_for_member(caller, cluster_id)
    except AtlasError as e:
        raise http_error(e) from e
    return ClusterInfo.from_record(cluster)


@router.delete("/{cluster_id}", response_model=ClusterInfo)
def delete_cluster(
    cluster_id: str,
    caller: Annotated[Caller, Depends(current_caller)],
) -> ClusterInfo:
    try:
        _cluster_for_leader(caller, cluster_id)
        cluster = _prov().delete_cluster(cluster_id)
    except AtlasError as e:
        raise http_error(e) from e
    return ClusterInfo.from_record(cluster)


@router.get("/{cluster_id}/status", response_model=ClusterStatusSnapshot)
def refresh_status(
    cluster_id: str,
    caller: Annotated[Caller, Depends(current_caller)],
) -> ClusterStatusSnapshot:
    """Poll Atlas for the cluster's current state (team members)."""
    try:
        _cluster_for_member(caller, cluster_id)
        return _stat().refresh_cluster_status(cluster_id)
    except AtlasError as e:
        raise http_error(e) from e


# ------------------------------------------------------------------
# Database users
# ------------------------------------------------------------------


@router.post(
    "/{cluster_id}/database-users",
    response_model=DatabaseUserCredentials,
    status_code=201,
)
def create_database_user(
    cluster_id: str,
    body: DatabaseUserCreateRequest,
    caller: Annotated[Caller, Depends(current_caller)],
) -> DatabaseUserCredentials:
    """Create a database user. The password is only ever returned here."""
    try:
        _cluster_for_leader(caller, cluster_id)
        user = get_guard().require_authenticated(caller)
        return _acc().create_database_user(
            cluster_id,
            user.user_id,
            body.username,
            password=body.password,
            roles=body.roles,
        )
    except AtlasError as e:
        raise http_error(e) from e


@router.get("/{cluster_id}/database-users", response_model=list[DatabaseUserInfo])
def list_database_users(
    cluster_id: str,
    caller: Annotated[Caller, Depends(current_caller)],
) -> list[DatabaseUserInfo]:
    try:
        _cluster_for_member(caller, cluster_id)
        users = _acc().list_database_users(cluster_id)
    except AtlasError as e:
        raise http_error(e) from e
    return [DatabaseUserInfo.from_user(u) for u in users]


@router.delete("/{cluster_id}/database-users/{username}")
def delete_database_user(
    cluster_id: str,
    username: str,
    caller: Annotated[Caller, Depends(current_caller)],
) -> dict:
    try:
        _cluster_for_leader(caller, cluster_id)
        _acc().delete_database_user(cluster_id, username)
    except AtlasError as e:
        raise http_error(e) from e
    return {"ok": True}


# ------------------------------------------------------------------
# IP access list
# ------------------------------------------------------------------


@router.post(
    "/{cluster_id}/ip-access", response_model=list[IpAccessEntry], status_code=201
)
def add_ip_access(
    cluster_id: str,
    body: IpAccessAddRequest,
    caller: Annotated[Caller, Depends(current_caller)],
) -> list[IpAccessEntry]:
    try:
        _cluster_for_leader(caller, cluster_id)
        user = get_guard().require_authenticated(caller)
        return _acc().add_ip_access_entries(cluster_id, user.user_id, body.entries)
    except AtlasError as e:
        raise http_error(e) from e


@router.get("/{cluster_id}/ip-access", response_model=list[IpAccessEntry])
def list_ip_access(
    cluster_id: str,
    caller: Annotated[Caller, Depends(current_caller)],
) -> list[IpAccessEntry]:
    try:
        _cluster_for_member(caller, cluster_id)
        return _acc().list_ip_access_entries(cluster_id)
    except AtlasError as e:
        raise http_error(e) from e


@router.delete("/{cluster_id}/ip-access")
def remove_ip_access(
    cluster_id: str,
    caller: Annotated[Caller, Depends(current_caller)],
    entry: str = Query(..., description="CIDR block or IP address to remove"),
) -> dict:
    try:
        _cluster_for_leader(caller, cluster_id)
        _acc().remove_ip_access_entry(cluster_id, entry)
    except AtlasError as e:
        raise http_error(e) from e
    return {"ok": True}
