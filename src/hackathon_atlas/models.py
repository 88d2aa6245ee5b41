"""Core data models for the hackathon Atlas cluster manager.

Defines the schemas for:
- Callers (who is asking) and their roles
- Events and teams (read from the directory stores)
- Per-event provisioning configuration
- Cluster records, database users and IP access entries
- Control-plane descriptions, status snapshots and cleanup reports
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

# --- Enums ---


class Role(enum.StrEnum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    ORGANIZER = "organizer"
    JUDGE = "judge"
    PARTNER = "partner"
    PARTICIPANT = "participant"


ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})


class CloudProvider(enum.StrEnum):
    AWS = "AWS"
    GCP = "GCP"
    AZURE = "AZURE"


class ClusterStatus(enum.StrEnum):
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    FAILED = "failed"
    DELETING = "deleting"
    DELETED = "deleted"


# Statuses that still hold the one-cluster-per-team slot of an event.
RELEASED_STATUSES = frozenset({ClusterStatus.DELETED, ClusterStatus.FAILED})


class EventStatus(enum.StrEnum):
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CONCLUDED = "concluded"


# --- Callers ---


@dataclass(frozen=True)
class Anonymous:
    """No authenticated session."""


@dataclass(frozen=True)
class Authenticated:
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


Caller = Anonymous | Authenticated


# --- Directory records ---


class AtlasProvisioningConfig(BaseModel):
    """Per-event rules for what the provisioning service may create."""

    enabled: bool = False
    default_provider: CloudProvider = CloudProvider.AWS
    default_region: str = "US_EAST_1"
    open_network_access: bool = True
    max_db_users_per_cluster: int = Field(default=5, ge=1)
    auto_cleanup_on_event_end: bool = True
    allowed_providers: list[CloudProvider] = Field(
        default_factory=lambda: list(CloudProvider)
    )
    allowed_regions: list[str] = Field(
        default_factory=lambda: ["US_EAST_1", "EU_WEST_1"]
    )


class Event(BaseModel):
    event_id: str
    name: str
    status: EventStatus = EventStatus.DRAFT
    start_date: datetime | None = None
    end_date: datetime | None = None
    atlas_provisioning: AtlasProvisioningConfig = Field(
        default_factory=AtlasProvisioningConfig
    )


class Team(BaseModel):
    team_id: str
    event_id: str
    name: str = ""
    leader_id: str
    members: list[str] = Field(default_factory=list)

    def is_member(self, user_id: str) -> bool:
        return user_id == self.leader_id or user_id in self.members


# --- Cluster records ---


class DatabaseRole(BaseModel):
    role_name: str
    database_name: str = "admin"


DEFAULT_DB_ROLES = [DatabaseRole(role_name="readWriteAnyDatabase")]

MAX_IP_ACCESS_ENTRIES = 20


class DatabaseUser(BaseModel):
    """A database user recorded against a cluster (no secrets)."""

    username: str
    password_hash: str = ""
    salt: str = ""
    roles: list[DatabaseRole] = Field(default_factory=list)
    created_by: str = ""
    created_at: datetime


class IpAccessEntry(BaseModel):
    cidr_block: str
    comment: str = ""
    added_by: str = ""
    added_at: datetime


class AtlasCluster(BaseModel):
    """The local record of one team's managed cluster."""

    cluster_id: str
    event_id: str
    team_id: str
    project_id: str | None = None
    provisioned_by: str

    atlas_project_id: str = ""
    atlas_project_name: str = ""
    atlas_cluster_name: str = ""
    atlas_cluster_id: str = ""

    provider: CloudProvider
    region: str
    instance_size: str = "M0"

    status: ClusterStatus = ClusterStatus.PROVISIONING
    connection_string: str | None = None
    standard_connection_string: str | None = None
    mongodb_version: str = ""
    error_message: str | None = None

    database_users: list[DatabaseUser] = Field(default_factory=list)
    ip_access_list: list[IpAccessEntry] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime
    last_status_check: datetime | None = None
    deleted_at: datetime | None = None

    @model_validator(mode="after")
    def _connection_only_when_active(self) -> AtlasCluster:
        if self.connection_string and self.status != ClusterStatus.ACTIVE:
            raise ValueError(
                f"connection_string must be empty while status is {self.status}"
            )
        if self.database_users and self.status == ClusterStatus.PROVISIONING:
            raise ValueError("database_users must be empty while provisioning")
        return self

    @property
    def has_external_cluster(self) -> bool:
        """False while a provisioning reservation has not reached Atlas yet."""
        return bool(self.atlas_project_id and self.atlas_cluster_name)


# --- Requests ---


class ClusterRequest(BaseModel):
    """What a team asks for; omitted fields fall back to event defaults."""

    provider: CloudProvider | None = None
    region: str | None = None
    project_id: str | None = None


class ClusterFilter(BaseModel):
    event_id: str | None = None
    team_id: str | None = None
    status: ClusterStatus | None = None
    include_deleted: bool = False


class IpAccessRequest(BaseModel):
    cidr_block: str | None = None
    ip_address: str | None = None
    comment: str = ""

    @property
    def entry(self) -> str:
        return self.cidr_block or self.ip_address or ""


# --- Control plane ---


class ClusterSpec(BaseModel):
    """Cluster shape sent to the control plane."""

    name: str
    provider: CloudProvider
    region: str
    instance_size: str = "M0"


class DatabaseUserSpec(BaseModel):
    username: str
    password: str
    cluster_name: str
    roles: list[DatabaseRole] = Field(default_factory=lambda: list(DEFAULT_DB_ROLES))


class ClusterDescription(BaseModel):
    """The control plane's view of a cluster."""

    cluster_id: str = ""
    name: str = ""
    state_name: str
    connection_string: str | None = None
    standard_connection_string: str | None = None
    mongodb_version: str = ""


# --- Results ---


class DatabaseUserCredentials(BaseModel):
    """Returned once on creation; the password is never stored."""

    username: str
    password: str
    roles: list[DatabaseRole]
    created_at: datetime


class ClusterStatusSnapshot(BaseModel):
    cluster_id: str
    status: ClusterStatus
    atlas_state: str = ""
    connection_string: str | None = None
    standard_connection_string: str | None = None
    mongodb_version: str = ""
    last_status_check: datetime | None = None


class ClusterStats(BaseModel):
    total: int
    by_status: dict[str, int]


class CleanupError(BaseModel):
    cluster_id: str
    error: str


class CleanupReport(BaseModel):
    event_id: str
    event_name: str = ""
    dry_run: bool = False
    clusters_found: int = 0
    clusters_deleted: int = 0
    cluster_ids: list[str] = Field(default_factory=list)
    errors: list[CleanupError] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "found": self.clusters_found,
            "deleted": self.clusters_deleted,
            "errors": len(self.errors),
        }
