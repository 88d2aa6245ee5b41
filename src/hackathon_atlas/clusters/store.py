"""Persistence for cluster records, database users and IP access entries.

All state changes are single conditional statements (``... WHERE status =
?``) so concurrent requests cannot overwrite each other's transitions. The
one-live-cluster-per-team rule is a partial unique index; a second
reservation fails inside SQLite rather than in a racy check-then-insert.
"""

from __future__ import annotations

import json
import secrets
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from hackathon_atlas.db.connection import Database
from hackathon_atlas.errors import Conflict
from hackathon_atlas.models import (
    AtlasCluster,
    CloudProvider,
    ClusterFilter,
    ClusterStats,
    ClusterStatus,
    DatabaseRole,
    DatabaseUser,
    IpAccessEntry,
)


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


class ClusterStore:
    """Reads and atomically mutates ``atlas_clusters`` and its child tables."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, cluster_id: str) -> AtlasCluster | None:
        row = self._db.fetchone(
            "SELECT * FROM atlas_clusters WHERE cluster_id = ?", (cluster_id,)
        )
        if row is None:
            return None
        return self._row_to_cluster(row)

    def find_live(self, event_id: str, team_id: str) -> AtlasCluster | None:
        """The team's cluster that still holds its slot, if any."""
        row = self._db.fetchone(
            """SELECT * FROM atlas_clusters
               WHERE event_id = ? AND team_id = ?
                 AND status NOT IN ('deleted', 'failed')""",
            (event_id, team_id),
        )
        return self._row_to_cluster(row) if row else None

    def list_clusters(self, query: ClusterFilter | None = None) -> list[AtlasCluster]:
        where, params = self._filter_clause(query or ClusterFilter())
        rows = self._db.fetchall(
            f"SELECT * FROM atlas_clusters {where} ORDER BY created_at DESC",  # noqa: S608
            params,
        )
        return [self._row_to_cluster(r) for r in rows]

    def list_by_status(self, statuses: Iterable[ClusterStatus]) -> list[AtlasCluster]:
        wanted = [s.value for s in statuses]
        marks = ", ".join("?" for _ in wanted)
        rows = self._db.fetchall(
            f"SELECT * FROM atlas_clusters WHERE status IN ({marks}) ORDER BY created_at",  # noqa: S608
            tuple(wanted),
        )
        return [self._row_to_cluster(r) for r in rows]

    def count_undeleted(self, event_id: str) -> int:
        row = self._db.fetchone(
            "SELECT COUNT(*) AS cnt FROM atlas_clusters WHERE event_id = ? AND status != 'deleted'",
            (event_id,),
        )
        return row["cnt"] if row else 0

    def stats(self, event_id: str | None = None) -> ClusterStats:
        condition = ""
        params: tuple[Any, ...] = ()
        if event_id is not None:
            condition = "WHERE event_id = ?"
            params = (event_id,)
        rows = self._db.fetchall(
            f"SELECT status, COUNT(*) AS cnt FROM atlas_clusters {condition} GROUP BY status",  # noqa: S608
            params,
        )
        by_status = {r["status"]: r["cnt"] for r in rows}
        return ClusterStats(total=sum(by_status.values()), by_status=by_status)

    # ------------------------------------------------------------------
    # Lifecycle writes
    # ------------------------------------------------------------------

    def reserve(
        self,
        *,
        event_id: str,
        team_id: str,
        provisioned_by: str,
        provider: CloudProvider,
        region: str,
        instance_size: str,
        project_id: str | None = None,
    ) -> AtlasCluster:
        """Insert a ``provisioning`` record that claims the team's slot.

        Raises Conflict when the team already has a live cluster.
        """
        cluster_id = f"atc-{secrets.token_hex(12)}"
        now = _now()
        try:
            self._db.write(
                """INSERT INTO atlas_clusters
                   (cluster_id, event_id, team_id, project_id, provisioned_by,
                    provider, region, instance_size, status, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'provisioning', ?, ?)""",
                (
                    cluster_id, event_id, team_id, project_id, provisioned_by,
                    provider.value, region, instance_size, now, now,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise Conflict(
                f"A cluster already exists for team {team_id} in event {event_id}",
                public_message="A cluster already exists for this team in this event",
            ) from e
        cluster = self.get(cluster_id)
        assert cluster is not None
        return cluster

    def attach_external(
        self,
        cluster_id: str,
        *,
        atlas_project_id: str,
        atlas_project_name: str,
        atlas_cluster_name: str,
        atlas_cluster_id: str,
    ) -> AtlasCluster | None:
        """Record the Atlas identifiers on a still-provisioning reservation."""
        cursor = self._db.write(
            """UPDATE atlas_clusters
               SET atlas_project_id = ?, atlas_project_name = ?,
                   atlas_cluster_name = ?, atlas_cluster_id = ?, updated_at = ?
               WHERE cluster_id = ? AND status = 'provisioning'""",
            (
                atlas_project_id, atlas_project_name, atlas_cluster_name,
                atlas_cluster_id, _now(), cluster_id,
            ),
        )
        return self.get(cluster_id) if cursor.rowcount else None

    def discard_reservation(self, cluster_id: str) -> bool:
        """Remove a reservation whose external creation never happened."""
        cursor = self._db.write(
            "DELETE FROM atlas_clusters WHERE cluster_id = ? AND status = 'provisioning'",
            (cluster_id,),
        )
        return cursor.rowcount > 0

    def transition(
        self,
        cluster_id: str,
        *,
        expected: ClusterStatus,
        status: ClusterStatus,
        connection_string: str | None = None,
        standard_connection_string: str | None = None,
        mongodb_version: str | None = None,
        error_message: str | None = None,
    ) -> AtlasCluster | None:
        """Compare-and-set the status. Returns None if *expected* no longer holds.

        Connection strings are stored only for ``active``; every other status
        clears them.
        """
        if status != ClusterStatus.ACTIVE:
            connection_string = None
            standard_connection_string = None
        now = _now()
        cursor = self._db.write(
            """UPDATE atlas_clusters
               SET status = ?, connection_string = ?, standard_connection_string = ?,
                   mongodb_version = COALESCE(?, mongodb_version),
                   error_message = ?,
                   last_status_check = ?, updated_at = ?,
                   deleted_at = CASE WHEN ? = 'deleted' THEN ? ELSE deleted_at END
               WHERE cluster_id = ? AND status = ?""",
            (
                status.value, connection_string, standard_connection_string,
                mongodb_version, error_message, now, now,
                status.value, now, cluster_id, expected.value,
            ),
        )
        return self.get(cluster_id) if cursor.rowcount else None

    def mark_deleting(self, cluster_id: str) -> AtlasCluster | None:
        """Move any not-yet-deleted cluster to ``deleting``.

        Returns None when the cluster is missing or already deleted.
        """
        cursor = self._db.write(
            """UPDATE atlas_clusters
               SET status = 'deleting', connection_string = NULL,
                   standard_connection_string = NULL, updated_at = ?
               WHERE cluster_id = ? AND status != 'deleted'""",
            (_now(), cluster_id),
        )
        return self.get(cluster_id) if cursor.rowcount else None

    def record_error(self, cluster_id: str, message: str) -> None:
        self._db.write(
            "UPDATE atlas_clusters SET error_message = ?, updated_at = ? WHERE cluster_id = ?",
            (message, _now(), cluster_id),
        )

    def touch_status_check(self, cluster_id: str) -> None:
        self._db.write(
            "UPDATE atlas_clusters SET last_status_check = ? WHERE cluster_id = ?",
            (_now(), cluster_id),
        )

    # ------------------------------------------------------------------
    # Database users
    # ------------------------------------------------------------------

    def add_database_user(
        self,
        cluster_id: str,
        *,
        username: str,
        password_hash: str,
        salt: str,
        roles: list[DatabaseRole],
        created_by: str,
        max_users: int,
    ) -> DatabaseUser | None:
        """Insert a user if the cluster has room. Returns None when full.

        Raises Conflict if the username is already taken on this cluster.
        """
        now = _now()
        roles_json = json.dumps([r.model_dump() for r in roles])
        try:
            cursor = self._db.write(
                """INSERT INTO atlas_database_users
                   (cluster_id, username, password_hash, salt, roles, created_by, created_at)
                   SELECT ?, ?, ?, ?, ?, ?, ?
                   WHERE (SELECT COUNT(*) FROM atlas_database_users
                          WHERE cluster_id = ?) < ?""",
                (
                    cluster_id, username, password_hash, salt, roles_json, created_by, now,
                    cluster_id, max_users,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise Conflict(f"Database user {username!r} already exists") from e
        if not cursor.rowcount:
            return None
        return DatabaseUser(
            username=username,
            password_hash=password_hash,
            salt=salt,
            roles=roles,
            created_by=created_by,
            created_at=datetime.fromisoformat(now),
        )

    def remove_database_user(self, cluster_id: str, username: str) -> bool:
        cursor = self._db.write(
            "DELETE FROM atlas_database_users WHERE cluster_id = ? AND username = ?",
            (cluster_id, username),
        )
        return cursor.rowcount > 0

    def database_users(self, cluster_id: str) -> list[DatabaseUser]:
        rows = self._db.fetchall(
            """SELECT * FROM atlas_database_users WHERE cluster_id = ?
               ORDER BY created_at, username""",
            (cluster_id,),
        )
        return [
            DatabaseUser(
                username=r["username"],
                password_hash=r["password_hash"],
                salt=r["salt"],
                roles=[DatabaseRole(**role) for role in json.loads(r["roles"])],
                created_by=r["created_by"],
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # IP access list
    # ------------------------------------------------------------------

    def add_ip_access_entries(
        self,
        cluster_id: str,
        entries: list[tuple[str, str]],
        *,
        added_by: str,
        max_entries: int,
    ) -> list[IpAccessEntry] | None:
        """Insert ``(cidr_block, comment)`` pairs atomically.

        Returns None, inserting nothing, if the list would exceed *max_entries*.
        """
        now = _now()
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS cnt FROM atlas_ip_access WHERE cluster_id = ?",
                (cluster_id,),
            ).fetchone()
            if row["cnt"] + len(entries) > max_entries:
                return None
            conn.executemany(
                """INSERT OR REPLACE INTO atlas_ip_access
                   (cluster_id, cidr_block, comment, added_by, added_at)
                   VALUES (?, ?, ?, ?, ?)""",
                [(cluster_id, cidr, comment, added_by, now) for cidr, comment in entries],
            )
        return [
            IpAccessEntry(
                cidr_block=cidr,
                comment=comment,
                added_by=added_by,
                added_at=datetime.fromisoformat(now),
            )
            for cidr, comment in entries
        ]

    def remove_ip_access_entry(self, cluster_id: str, cidr_block: str) -> bool:
        cursor = self._db.write(
            "DELETE FROM atlas_ip_access WHERE cluster_id = ? AND cidr_block = ?",
            (cluster_id, cidr_block),
        )
        return cursor.rowcount > 0

    def ip_access_entries(self, cluster_id: str) -> list[IpAccessEntry]:
        rows = self._db.fetchall(
            "SELECT * FROM atlas_ip_access WHERE cluster_id = ? ORDER BY added_at, cidr_block",
            (cluster_id,),
        )
        return [
            IpAccessEntry(
                cidr_block=r["cidr_block"],
                comment=r["comment"],
                added_by=r["added_by"],
                added_at=r["added_at"],
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _filter_clause(query: ClusterFilter) -> tuple[str, tuple[Any, ...]]:
        conditions: list[str] = []
        params: list[Any] = []
        if query.event_id is not None:
            conditions.append("event_id = ?")
            params.append(query.event_id)
        if query.team_id is not None:
            conditions.append("team_id = ?")
            params.append(query.team_id)
        if query.status is not None:
            conditions.append("status = ?")
            params.append(query.status.value)
        elif not query.include_deleted:
            conditions.append("status != 'deleted'")
        where = ""
        if conditions:
            where = "WHERE " + " AND ".join(conditions)
        return where, tuple(params)

    def _row_to_cluster(self, row: Any) -> AtlasCluster:
        cluster_id = row["cluster_id"]
        return AtlasCluster(
            cluster_id=cluster_id,
            event_id=row["event_id"],
            team_id=row["team_id"],
            project_id=row["project_id"],
            provisioned_by=row["provisioned_by"],
            atlas_project_id=row["atlas_project_id"],
            atlas_project_name=row["atlas_project_name"],
            atlas_cluster_name=row["atlas_cluster_name"],
            atlas_cluster_id=row["atlas_cluster_id"],
            provider=CloudProvider(row["provider"]),
            region=row["region"],
            instance_size=row["instance_size"],
            status=ClusterStatus(row["status"]),
            connection_string=row["connection_string"],
            standard_connection_string=row["standard_connection_string"],
            mongodb_version=row["mongodb_version"],
            error_message=row["error_message"],
            database_users=self.database_users(cluster_id),
            ip_access_list=self.ip_access_entries(cluster_id),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_status_check=row["last_status_check"],
            deleted_at=row["deleted_at"],
        )
