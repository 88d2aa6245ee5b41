"""Pydantic request and response schemas for the cluster API."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from hackathon_atlas.models import (
    AtlasCluster,
    CleanupReport,
    CloudProvider,
    ClusterStats,
    ClusterStatus,
    DatabaseRole,
    DatabaseUser,
    IpAccessRequest,
)

# --- Clusters ---


class ProvisionRequest(BaseModel):
    team_id: str
    provider: CloudProvider | None = None
    region: str | None = None
    project_id: str | None = None


class DatabaseUserInfo(BaseModel):
    """A database user as shown to clients; the password hash stays server-side."""

    username: str
    roles: list[DatabaseRole]
    created_by: str
    created_at: datetime

    @classmethod
    def from_user(cls, user: DatabaseUser) -> DatabaseUserInfo:
        return cls(
            username=user.username,
            roles=user.roles,
            created_by=user.created_by,
            created_at=user.created_at,
        )


class ClusterInfo(BaseModel):
    cluster_id: str
    event_id: str
    team_id: str
    atlas_project_id: str
    atlas_project_name: str
    atlas_cluster_name: str
    provider: CloudProvider
    region: str
    instance_size: str
    status: ClusterStatus
    connection_string: str | None = None
    standard_connection_string: str | None = None
    mongodb_version: str = ""
    error_message: str | None = None
    database_users: list[DatabaseUserInfo] = Field(default_factory=list)
    ip_access_count: int = 0
    provisioned_by: str
    created_at: datetime
    last_status_check: datetime | None = None
    deleted_at: datetime | None = None

    @classmethod
    def from_record(cls, cluster: AtlasCluster) -> ClusterInfo:
        return cls(
            **cluster.model_dump(
                exclude={"database_users", "ip_access_list", "project_id", "updated_at",
                         "atlas_cluster_id"},
            ),
            database_users=[DatabaseUserInfo.from_user(u) for u in cluster.database_users],
            ip_access_count=len(cluster.ip_access_list),
        )


# --- Access ---


class DatabaseUserCreateRequest(BaseModel):
    username: str
    password: str | None = None
    roles: list[DatabaseRole] | None = None


class IpAccessAddRequest(BaseModel):
    entries: list[IpAccessRequest]


# --- Admin ---


class AdminOverview(BaseModel):
    stats: ClusterStats
    clusters: list[ClusterInfo]


class CleanupRequest(BaseModel):
    event_id: str | None = None
    dry_run: bool = False


class CleanupTotals(BaseModel):
    clusters_found: int = 0
    clusters_deleted: int = 0
    errors: int = 0


class CleanupResponse(BaseModel):
    dry_run: bool
    events_processed: int
    totals: CleanupTotals
    reports: list[CleanupReport]

    @classmethod
    def from_reports(cls, reports: list[CleanupReport], *, dry_run: bool) -> CleanupResponse:
        totals = CleanupTotals()
        for r in reports:
            totals.clusters_found += r.clusters_found
            totals.clusters_deleted += r.clusters_deleted
            totals.errors += len(r.errors)
        return cls(
            dry_run=dry_run,
            events_processed=len(reports),
            totals=totals,
            reports=reports,
        )


class ProvisioningToggleRequest(BaseModel):
    enabled: bool
    allowed_providers: list[str] | None = None
