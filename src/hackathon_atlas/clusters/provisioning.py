"""Cluster creation and teardown.

Provisioning claims the team's slot with a ``provisioning`` reservation,
then asks Atlas to create a project and a cluster inside it. The call
returns as soon as Atlas accepts the job; the cluster becomes ``active``
only when a later status refresh observes it ready.

Deletion always moves the record to ``deleting`` before contacting Atlas,
so a concurrent status refresh cannot bring it back to ``active``. The
cluster goes first, then the per-team project. If either Atlas call fails
the record stays ``deleting`` and a later cleanup pass retries it.
"""

from __future__ import annotations

import logging

from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.clusters.utils import generate_project_name, sanitize_cluster_name
from hackathon_atlas.config import AtlasSettings
from hackathon_atlas.control_plane.client import ControlPlane
from hackathon_atlas.directory import EventStore, TeamStore
from hackathon_atlas.errors import (
    Conflict,
    ControlPlaneError,
    DeletionFailed,
    FeatureDisabled,
    InvalidConfig,
    NotFound,
    ProvisioningFailed,
)
from hackathon_atlas.models import (
    MAX_IP_ACCESS_ENTRIES,
    AtlasCluster,
    ClusterFilter,
    ClusterRequest,
    ClusterSpec,
    ClusterStats,
    ClusterStatus,
    IpAccessRequest,
)

logger = logging.getLogger(__name__)

OPEN_ACCESS_ENTRY = IpAccessRequest(cidr_block="0.0.0.0/0", comment="Hackathon open access")


class ProvisioningService:
    """Creates, lists and deletes team clusters."""

    def __init__(
        self,
        store: ClusterStore,
        events: EventStore,
        teams: TeamStore,
        control_plane: ControlPlane,
        settings: AtlasSettings | None = None,
    ) -> None:
        self._store = store
        self._events = events
        self._teams = teams
        self._cp = control_plane
        self._settings = settings or AtlasSettings()

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def provision_cluster(
        self,
        event_id: str,
        team_id: str,
        requested_by: str,
        request: ClusterRequest | None = None,
    ) -> AtlasCluster:
        """Start provisioning a cluster for *team_id* in *event_id*.

        Raises NotFound, FeatureDisabled, InvalidConfig, Conflict or
        ProvisioningFailed. Validation failures make no external call and
        leave no record behind.
        """
        request = request or ClusterRequest()

        event = self._events.get(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", public_message="Event not found")
        config = event.atlas_provisioning
        if not config.enabled:
            raise FeatureDisabled("Atlas cluster provisioning is not enabled for this event")

        team = self._teams.get(team_id)
        if team is None or team.event_id != event_id:
            raise NotFound(
                f"Team {team_id} not found in event {event_id}",
                public_message="Team not found",
            )

        provider = request.provider or config.default_provider
        region = request.region or config.default_region
        if provider not in config.allowed_providers:
            raise InvalidConfig(
                f"Provider {provider} is not allowed for this event "
                f"(allowed: {', '.join(config.allowed_providers)})"
            )
        if region not in config.allowed_regions:
            raise InvalidConfig(
                f"Region {region} is not allowed for this event "
                f"(allowed: {', '.join(config.allowed_regions)})"
            )

        # Fast path for a friendly error; reserve() is the real guard.
        existing = self._store.find_live(event_id, team_id)
        if existing is not None:
            raise Conflict(
                f"Cluster {existing.cluster_id} already exists for team {team_id}",
                public_message="A cluster already exists for this team in this event",
            )

        reservation = self._store.reserve(
            event_id=event_id,
            team_id=team_id,
            provisioned_by=requested_by,
            provider=provider,
            region=region,
            instance_size=self._settings.instance_size,
            project_id=request.project_id,
        )

        project_name = generate_project_name(event_id, team_id)
        cluster_name = sanitize_cluster_name(self._settings.cluster_name)
        atlas_project_id: str | None = None
        atlas_cluster_id: str | None = None
        try:
            logger.info("Creating Atlas project %s", project_name)
            atlas_project_id = self._cp.create_project(project_name)

            logger.info("Creating %s cluster in project %s", provider, atlas_project_id)
            atlas_cluster_id = self._cp.create_cluster(
                atlas_project_id,
                ClusterSpec(
                    name=cluster_name,
                    provider=provider,
                    region=region,
                    instance_size=self._settings.instance_size,
                ),
            )

            if config.open_network_access:
                self._cp.add_ip_access_entries(atlas_project_id, [OPEN_ACCESS_ENTRY])
        except ControlPlaneError as e:
            logger.error("Provisioning failed for team %s: %s", team_id, e)
            self._rollback(
                reservation.cluster_id,
                atlas_project_id,
                project_name,
                cluster_name if atlas_cluster_id is not None else "",
                atlas_cluster_id or "",
            )
            raise ProvisioningFailed(f"Cluster provisioning failed: {e}") from e

        cluster = self._store.attach_external(
            reservation.cluster_id,
            atlas_project_id=atlas_project_id,
            atlas_project_name=project_name,
            atlas_cluster_name=cluster_name,
            atlas_cluster_id=atlas_cluster_id,
        )
        if cluster is None:
            # The reservation was deleted while Atlas was creating the cluster.
            self._rollback(
                reservation.cluster_id,
                atlas_project_id,
                project_name,
                cluster_name,
                atlas_cluster_id,
            )
            raise ProvisioningFailed(
                f"Cluster record {reservation.cluster_id} was removed during provisioning"
            )

        if config.open_network_access:
            self._store.add_ip_access_entries(
                cluster.cluster_id,
                [(OPEN_ACCESS_ENTRY.entry, OPEN_ACCESS_ENTRY.comment)],
                added_by=requested_by,
                max_entries=MAX_IP_ACCESS_ENTRIES,
            )
            cluster = self._store.get(cluster.cluster_id) or cluster

        logger.info(
            "Cluster provisioning initiated: %s (team %s, event %s)",
            cluster.cluster_id, team_id, event_id,
        )
        return cluster

    def _rollback(
        self,
        cluster_id: str,
        atlas_project_id: str | None,
        project_name: str,
        cluster_name: str = "",
        atlas_cluster_id: str = "",
    ) -> None:
        """Undo a partial provisioning.

        The cluster is deleted before its project; Atlas refuses to delete a
        project that still holds a cluster. If the teardown fails the record
        is kept as ``failed`` with the Atlas ids so cleanup can finish it.
        """
        if atlas_project_id:
            try:
                if cluster_name:
                    logger.info(
                        "Rolling back: deleting Atlas cluster %s in project %s",
                        cluster_name, atlas_project_id,
                    )
                    self._cp.delete_cluster(atlas_project_id, cluster_name)
                logger.info("Rolling back: deleting Atlas project %s", atlas_project_id)
                self._cp.delete_project(atlas_project_id)
            except ControlPlaneError as e:
                logger.error("Rollback of project %s failed: %s", atlas_project_id, e)
                kept = self._store.attach_external(
                    cluster_id,
                    atlas_project_id=atlas_project_id,
                    atlas_project_name=project_name,
                    atlas_cluster_name=cluster_name,
                    atlas_cluster_id=atlas_cluster_id,
                )
                failed = kept and self._store.transition(
                    cluster_id,
                    expected=ClusterStatus.PROVISIONING,
                    status=ClusterStatus.FAILED,
                    error_message=f"Rollback failed: {e}",
                )
                if not failed:
                    logger.error(
                        "Atlas project %s has no cluster record left to track it",
                        atlas_project_id,
                    )
                return
        self._store.discard_reservation(cluster_id)

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_cluster(self, cluster_id: str) -> AtlasCluster:
        """Tear down the Atlas cluster and its project, then mark the record ``deleted``.

        Deleting an already deleted cluster is a no-op. On Atlas failure the
        record is left ``deleting`` with an error message and DeletionFailed
        is raised.
        """
        cluster = self._store.get(cluster_id)
        if cluster is None:
            raise NotFound(f"Cluster {cluster_id} not found", public_message="Cluster not found")
        if cluster.status == ClusterStatus.DELETED:
            return cluster

        marked = self._store.mark_deleting(cluster_id)
        if marked is None:
            # Someone else finished the deletion first.
            return self._store.get(cluster_id) or cluster

        if marked.atlas_project_id:
            try:
                if marked.has_external_cluster:
                    logger.info(
                        "Deleting Atlas cluster %s in project %s",
                        marked.atlas_cluster_name, marked.atlas_project_id,
                    )
                    self._cp.delete_cluster(marked.atlas_project_id, marked.atlas_cluster_name)
                logger.info("Deleting Atlas project %s", marked.atlas_project_id)
                self._cp.delete_project(marked.atlas_project_id)
            except ControlPlaneError as e:
                self._store.record_error(cluster_id, f"Deletion failed: {e}")
                logger.error("Deletion of cluster %s failed: %s", cluster_id, e)
                raise DeletionFailed(f"Deletion of cluster {cluster_id} failed: {e}") from e

        deleted = self._store.transition(
            cluster_id, expected=ClusterStatus.DELETING, status=ClusterStatus.DELETED
        )
        logger.info("Cluster deleted: %s", cluster_id)
        return deleted or self._store.get(cluster_id) or marked

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_cluster(self, cluster_id: str) -> AtlasCluster:
        cluster = self._store.get(cluster_id)
        if cluster is None:
            raise NotFound(f"Cluster {cluster_id} not found", public_message="Cluster not found")
        return cluster

    def list_clusters(self, query: ClusterFilter | None = None) -> list[AtlasCluster]:
        """Clusters matching *query*, newest first; deleted ones only on request."""
        return self._store.list_clusters(query)

    def cluster_stats(self, event_id: str | None = None) -> ClusterStats:
        return self._store.stats(event_id)
