"""Status reconciliation between cluster records and Atlas.

Nothing here runs on a timer. Callers (the UI while a cluster is
provisioning, the CLI ``refresh`` command, a cron job) poll
``refresh_cluster_status`` until the cluster settles.

Atlas state vocabulary::

    IDLE, UPDATING, REPAIRING   -> active
    CREATING                    -> provisioning
    ERROR, FAILED               -> failed
    DELETING, DELETED, 404      -> deleted

Transition rules on top of the mapping:

- ``deleted`` from Atlas wins from any local state.
- ``deleting`` never goes back to anything but ``deleted``.
- ``active`` stays ``active``; only its connection strings are refreshed.
- ``failed`` stays ``failed``.
- A ready cluster without a connection string is still ``provisioning``.
"""

from __future__ import annotations

import logging

from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.clusters.utils import add_app_name
from hackathon_atlas.control_plane.client import ControlPlane
from hackathon_atlas.errors import (
    ControlPlaneError,
    ExternalNotFound,
    NotFound,
    StatusCheckFailed,
)
from hackathon_atlas.models import (
    AtlasCluster,
    ClusterDescription,
    ClusterStatus,
    ClusterStatusSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_APP_NAME = "devrel-platform-hackathon-atlas"

_STATE_MAP: dict[str, ClusterStatus] = {
    "IDLE": ClusterStatus.ACTIVE,
    "UPDATING": ClusterStatus.ACTIVE,
    "REPAIRING": ClusterStatus.ACTIVE,
    "CREATING": ClusterStatus.PROVISIONING,
    "ERROR": ClusterStatus.FAILED,
    "FAILED": ClusterStatus.FAILED,
    "DELETING": ClusterStatus.DELETED,
    "DELETED": ClusterStatus.DELETED,
}


def map_atlas_state(state_name: str) -> ClusterStatus | None:
    """Map an Atlas ``stateName`` to a local status, or None if unrecognised."""
    return _STATE_MAP.get((state_name or "").upper())


def next_status(
    current: ClusterStatus, observed: ClusterStatus, *, has_connection: bool
) -> ClusterStatus:
    """The status a record in *current* moves to after observing *observed*."""
    if observed == ClusterStatus.DELETED:
        return ClusterStatus.DELETED
    match current:
        case ClusterStatus.PROVISIONING:
            if observed == ClusterStatus.ACTIVE and not has_connection:
                return ClusterStatus.PROVISIONING
            return observed
        case _:
            return current


class StatusService:
    """Polls Atlas and applies the observed state to cluster records."""

    def __init__(
        self,
        store: ClusterStore,
        control_plane: ControlPlane,
        *,
        app_name: str = DEFAULT_APP_NAME,
    ) -> None:
        self._store = store
        self._cp = control_plane
        self._app_name = app_name

    def refresh_cluster_status(self, cluster_id: str) -> ClusterStatusSnapshot:
        """Describe the cluster in Atlas and persist any transition.

        Returns the record's state after the refresh, never the pre-call
        copy. Raises NotFound for an unknown id and StatusCheckFailed when
        Atlas cannot be reached; the status is left untouched in that case.
        """
        cluster = self._store.get(cluster_id)
        if cluster is None:
            raise NotFound(f"Cluster {cluster_id} not found", public_message="Cluster not found")

        if cluster.status == ClusterStatus.DELETED:
            self._store.touch_status_check(cluster_id)
            return self._current(cluster_id, cluster)

        if not cluster.has_external_cluster:
            # Reservation still waiting on Atlas to accept the create call.
            self._store.touch_status_check(cluster_id)
            return self._current(cluster_id, cluster)

        description: ClusterDescription | None = None
        try:
            description = self._cp.describe_cluster(
                cluster.atlas_project_id, cluster.atlas_cluster_name
            )
        except ExternalNotFound:
            logger.info("Cluster %s no longer exists in Atlas", cluster_id)
            observed = ClusterStatus.DELETED
        except ControlPlaneError as e:
            self._store.touch_status_check(cluster_id)
            logger.error("Status check for cluster %s failed: %s", cluster_id, e)
            raise StatusCheckFailed(f"Status check for cluster {cluster_id} failed: {e}") from e
        else:
            mapped = map_atlas_state(description.state_name)
            if mapped is None:
                logger.warning(
                    "Unrecognised Atlas state %r for cluster %s",
                    description.state_name, cluster_id,
                )
                self._store.touch_status_check(cluster_id)
                return self._current(cluster_id, cluster, description)
            observed = mapped

        connection_string = None
        standard_connection_string = None
        if description is not None and description.connection_string:
            connection_string = add_app_name(description.connection_string, self._app_name)
            if description.standard_connection_string:
                standard_connection_string = add_app_name(
                    description.standard_connection_string, self._app_name
                )

        target = next_status(
            cluster.status, observed, has_connection=connection_string is not None
        )

        if target == cluster.status and target != ClusterStatus.ACTIVE:
            self._store.touch_status_check(cluster_id)
            return self._current(cluster_id, cluster, description)
        if target == ClusterStatus.ACTIVE and connection_string is None:
            connection_string = cluster.connection_string
            standard_connection_string = cluster.standard_connection_string

        error_message = None
        if target == ClusterStatus.FAILED and description is not None:
            error_message = f"Atlas reported cluster state {description.state_name}"

        updated = self._store.transition(
            cluster_id,
            expected=cluster.status,
            status=target,
            connection_string=connection_string,
            standard_connection_string=standard_connection_string,
            mongodb_version=(description.mongodb_version or None) if description else None,
            error_message=error_message,
        )
        if updated is None:
            # Lost a race with a concurrent transition (typically a delete).
            logger.debug("Status of cluster %s changed concurrently", cluster_id)
            return self._current(cluster_id, cluster, description)

        if target != cluster.status:
            logger.info("Cluster %s: %s -> %s", cluster_id, cluster.status, target)
        return _snapshot(updated, description)

    def refresh_pending(self) -> list[ClusterStatusSnapshot]:
        """Refresh every cluster still provisioning or deleting.

        A failure on one cluster is logged and does not stop the sweep.
        """
        snapshots: list[ClusterStatusSnapshot] = []
        pending = self._store.list_by_status(
            [ClusterStatus.PROVISIONING, ClusterStatus.DELETING]
        )
        for cluster in pending:
            try:
                snapshots.append(self.refresh_cluster_status(cluster.cluster_id))
            except StatusCheckFailed as e:
                logger.warning("Skipping cluster %s: %s", cluster.cluster_id, e)
        return snapshots

    def _current(
        self,
        cluster_id: str,
        fallback: AtlasCluster,
        description: ClusterDescription | None = None,
    ) -> ClusterStatusSnapshot:
        return _snapshot(self._store.get(cluster_id) or fallback, description)


def _snapshot(
    cluster: AtlasCluster, description: ClusterDescription | None = None
) -> ClusterStatusSnapshot:
    return ClusterStatusSnapshot(
        cluster_id=cluster.cluster_id,
        status=cluster.status,
        atlas_state=description.state_name if description else "",
        connection_string=cluster.connection_string,
        standard_connection_string=cluster.standard_connection_string,
        mongodb_version=cluster.mongodb_version,
        last_status_check=cluster.last_status_check,
    )
