"""Post-event cluster cleanup.

``run_scheduled_cleanup`` is meant to be invoked by an external scheduler
(``hackathon-atlas cleanup`` from cron); nothing here schedules itself.
A failure on one cluster or one event is recorded in the report and the
batch moves on.
"""

from __future__ import annotations

import logging
from hackathon_atlas.clusters.provisioning import ProvisioningService
from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.directory import EventStore
from hackathon_atlas.errors import NotFound
from hackathon_atlas.models import (
    CleanupError,
    CleanupReport,
    ClusterFilter,
    EventStatus,
)

logger = logging.getLogger(__name__)


class CleanupService:
    """Deletes the clusters of events that are over."""

    def __init__(
        self,
        store: ClusterStore,
        events: EventStore,
        provisioning: ProvisioningService,
    ) -> None:
        self._store = store
        self._events = events
        self._provisioning = provisioning

    def find_events_needing_cleanup(self) -> list[str]:
        """Ids of concluded, auto-cleanup events that still own clusters.

        Clusters stuck in ``deleting`` count, so failed deletions are retried
        on the next run. Makes no external calls.
        """
        return [
            event.event_id
            for event in self._events.list_concluded_with_auto_cleanup()
            if self._store.count_undeleted(event.event_id) > 0
        ]

    def cleanup_event_clusters(self, event_id: str, dry_run: bool = False) -> CleanupReport:
        """Delete every non-deleted cluster of *event_id*.

        With ``dry_run`` the report lists what would be deleted and nothing
        is touched. Raises NotFound for an unknown event.
        """
        event = self._events.get(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", public_message="Event not found")

        clusters = self._store.list_clusters(ClusterFilter(event_id=event_id))
        report = CleanupReport(
            event_id=event_id,
            event_name=event.name,
            dry_run=dry_run,
            clusters_found=len(clusters),
            cluster_ids=[c.cluster_id for c in clusters],
        )
        if dry_run:
            logger.info(
                "Dry run: event %r has %d clusters to clean up", event.name, len(clusters)
            )
            return report

        logger.info("Cleaning up %d clusters for event %r", len(clusters), event.name)
        for cluster in clusters:
            try:
                self._provisioning.delete_cluster(cluster.cluster_id)
            except Exception as e:
                logger.exception("Failed to delete cluster %s", cluster.cluster_id)
                report.errors.append(CleanupError(cluster_id=cluster.cluster_id, error=str(e)))
            else:
                report.clusters_deleted += 1
                logger.info(
                    "Deleted cluster %s (%s)", cluster.cluster_id, cluster.atlas_cluster_name
                )

        logger.info(
            "Event %r cleanup complete: %d/%d deleted",
            event.name, report.clusters_deleted, report.clusters_found,
        )
        return report

    def run_scheduled_cleanup(self) -> list[CleanupReport]:
        """Clean up every event returned by ``find_events_needing_cleanup``."""
        event_ids = self.find_events_needing_cleanup()
        if not event_ids:
            logger.info("No events need cleanup")
            return []

        logger.info("Running cleanup for %d concluded events", len(event_ids))
        reports: list[CleanupReport] = []
        for event_id in event_ids:
            try:
                reports.append(self.cleanup_event_clusters(event_id))
            except Exception:
                logger.exception("Cleanup of event %s failed", event_id)
        return reports

    def preview_cleanup(self, event_id: str | None = None) -> list[CleanupReport]:
        """Dry-run reports for one event, or for every event needing cleanup."""
        event_ids = [event_id] if event_id else self.find_events_needing_cleanup()
        return [self.cleanup_event_clusters(eid, dry_run=True) for eid in event_ids]

    def on_event_concluded(self, event_id: str) -> CleanupReport | None:
        """Lifecycle hook for an event reaching ``concluded``.

        Runs cleanup only when the event has provisioning and auto-cleanup
        enabled. Never raises; failures are logged.
        """
        try:
            event = self._events.get(event_id)
            if event is None:
                logger.warning("Concluded event %s not found", event_id)
                return None
            config = event.atlas_provisioning
            if not (config.enabled and config.auto_cleanup_on_event_end):
                logger.debug("Event %s has auto-cleanup disabled, skipping", event_id)
                return None
            report = self.cleanup_event_clusters(event_id)
            if report.errors:
                logger.warning(
                    "Event %s cleanup finished with %d errors", event_id, len(report.errors)
                )
            return report
        except Exception:
            logger.exception("Cluster cleanup for concluded event %s failed", event_id)
            return None

    def handle_event_status_change(
        self, event_id: str, old_status: EventStatus, new_status: EventStatus
    ) -> CleanupReport | None:
        if new_status == EventStatus.CONCLUDED and old_status != EventStatus.CONCLUDED:
            return self.on_event_concluded(event_id)
        return None
