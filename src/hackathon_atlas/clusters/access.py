"""Database users and IP access list of an active cluster.

The per-cluster user limit is enforced by the store's conditional insert:
the local row is claimed first, then the user is created in Atlas, and the
row is released again if Atlas refuses. Two concurrent requests therefore
cannot both take the last slot.
"""

from __future__ import annotations

import logging
import re

from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.clusters.utils import (
    generate_salt,
    generate_secure_password,
    hash_password,
)
from hackathon_atlas.control_plane.client import ControlPlane
from hackathon_atlas.directory import EventStore
from hackathon_atlas.errors import (
    ControlPlaneError,
    InvalidRequest,
    NotFound,
    QuotaExceeded,
)
from hackathon_atlas.models import (
    DEFAULT_DB_ROLES,
    MAX_IP_ACCESS_ENTRIES,
    AtlasCluster,
    AtlasProvisioningConfig,
    ClusterStatus,
    DatabaseRole,
    DatabaseUser,
    DatabaseUserCredentials,
    DatabaseUserSpec,
    IpAccessEntry,
    IpAccessRequest,
)

logger = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


class AccessService:
    """Manages who and what can reach a team's cluster."""

    def __init__(
        self, store: ClusterStore, events: EventStore, control_plane: ControlPlane
    ) -> None:
        self._store = store
        self._events = events
        self._cp = control_plane

    # ------------------------------------------------------------------
    # Database users
    # ------------------------------------------------------------------

    def create_database_user(
        self,
        cluster_id: str,
        requested_by: str,
        username: str,
        password: str | None = None,
        roles: list[DatabaseRole] | None = None,
    ) -> DatabaseUserCredentials:
        """Create a database user and return its credentials once.

        The password is generated when not supplied; only a salted PBKDF2
        hash is kept locally.
        """
        if not username or not _USERNAME_RE.match(username):
            raise InvalidRequest(
                "username is required and may only contain letters, digits, '.', '_' and '-'"
            )
        if password is not None and len(password) < 10:
            raise InvalidRequest("password must be at least 10 characters")

        cluster = self._active_cluster(cluster_id)
        config = self._config_for(cluster)
        roles = list(roles or DEFAULT_DB_ROLES)
        password = password or generate_secure_password()
        salt = generate_salt()

        user = self._store.add_database_user(
            cluster_id,
            username=username,
            password_hash=hash_password(password, salt),
            salt=salt,
            roles=roles,
            created_by=requested_by,
            max_users=config.max_db_users_per_cluster,
        )
        if user is None:
            raise QuotaExceeded(
                f"Maximum {config.max_db_users_per_cluster} database users per cluster"
            )

        try:
            self._cp.create_database_user(
                cluster.atlas_project_id,
                DatabaseUserSpec(
                    username=username,
                    password=password,
                    cluster_name=cluster.atlas_cluster_name,
                    roles=roles,
                ),
            )
        except ControlPlaneError:
            self._store.remove_database_user(cluster_id, username)
            raise

        logger.info("Database user %s created on cluster %s", username, cluster_id)
        return DatabaseUserCredentials(
            username=username,
            password=password,
            roles=roles,
            created_at=user.created_at,
        )

    def delete_database_user(self, cluster_id: str, username: str) -> None:
        cluster = self._get(cluster_id)
        if username not in {u.username for u in cluster.database_users}:
            raise NotFound(
                f"Database user {username!r} not found on cluster {cluster_id}",
                public_message="Database user not found",
            )
        if cluster.has_external_cluster:
            self._cp.delete_database_user(cluster.atlas_project_id, username)
        self._store.remove_database_user(cluster_id, username)
        logger.info("Database user %s deleted from cluster %s", username, cluster_id)

    def list_database_users(self, cluster_id: str) -> list[DatabaseUser]:
        self._get(cluster_id)
        return self._store.database_users(cluster_id)

    # ------------------------------------------------------------------
    # IP access list
    # ------------------------------------------------------------------

    def add_ip_access_entries(
        self,
        cluster_id: str,
        requested_by: str,
        entries: list[IpAccessRequest],
    ) -> list[IpAccessEntry]:
        if not entries:
            raise InvalidRequest("entries array is required")
        if any(not e.entry for e in entries):
            raise InvalidRequest("Each entry must have cidr_block or ip_address")

        cluster = self._get(cluster_id)
        if cluster.status in (ClusterStatus.DELETING, ClusterStatus.DELETED):
            raise InvalidRequest(f"Cluster is {cluster.status}")
        if not cluster.has_external_cluster:
            raise InvalidRequest("Cluster has not been created in Atlas yet")

        if len(cluster.ip_access_list) + len(entries) > MAX_IP_ACCESS_ENTRIES:
            raise QuotaExceeded(
                f"Maximum {MAX_IP_ACCESS_ENTRIES} IP access list entries per cluster"
            )

        self._cp.add_ip_access_entries(cluster.atlas_project_id, entries)
        added = self._store.add_ip_access_entries(
            cluster_id,
            [(e.entry, e.comment) for e in entries],
            added_by=requested_by,
            max_entries=MAX_IP_ACCESS_ENTRIES,
        )
        if added is None:
            raise QuotaExceeded(
                f"Maximum {MAX_IP_ACCESS_ENTRIES} IP access list entries per cluster"
            )
        logger.info("Added %d IP access entries to cluster %s", len(added), cluster_id)
        return added

    def remove_ip_access_entry(self, cluster_id: str, entry: str) -> None:
        if not entry:
            raise InvalidRequest("entry parameter is required")
        cluster = self._get(cluster_id)
        if cluster.has_external_cluster:
            self._cp.remove_ip_access_entry(cluster.atlas_project_id, entry)
        self._store.remove_ip_access_entry(cluster_id, entry)

    def list_ip_access_entries(self, cluster_id: str) -> list[IpAccessEntry]:
        self._get(cluster_id)
        return self._store.ip_access_entries(cluster_id)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _get(self, cluster_id: str) -> AtlasCluster:
        cluster = self._store.get(cluster_id)
        if cluster is None:
            raise NotFound(f"Cluster {cluster_id} not found", public_message="Cluster not found")
        return cluster

    def _active_cluster(self, cluster_id: str) -> AtlasCluster:
        cluster = self._get(cluster_id)
        if cluster.status != ClusterStatus.ACTIVE:
            raise InvalidRequest(
                f"Cluster must be active to manage database users (currently {cluster.status})"
            )
        return cluster

    def _config_for(self, cluster: AtlasCluster) -> AtlasProvisioningConfig:
        event = self._events.get(cluster.event_id)
        return event.atlas_provisioning if event else AtlasProvisioningConfig()
