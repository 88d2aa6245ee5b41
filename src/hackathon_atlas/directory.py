"""Event and team stores consumed by the cluster services.

Events and teams are owned by the wider hackathon platform; the cluster
manager only needs to read an event's provisioning config and a team's
leader and members. These SQLite-backed stores keep that contract small.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from hackathon_atlas.db.connection import Database
from hackathon_atlas.errors import InvalidRequest, NotFound
from hackathon_atlas.models import (
    AtlasProvisioningConfig,
    CloudProvider,
    Event,
    EventStatus,
    Team,
)

logger = logging.getLogger(__name__)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class EventStore:
    """Reads and minimally updates hackathon events."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(
        self,
        name: str,
        *,
        event_id: str | None = None,
        status: EventStatus = EventStatus.DRAFT,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        atlas_provisioning: AtlasProvisioningConfig | None = None,
    ) -> Event:
        event = Event(
            event_id=event_id or f"evt-{uuid.uuid4().hex[:12]}",
            name=name,
            status=status,
            start_date=start_date,
            end_date=end_date,
            atlas_provisioning=atlas_provisioning or AtlasProvisioningConfig(),
        )
        self._db.write(
            """INSERT INTO events
               (event_id, name, status, start_date, end_date, atlas_provisioning)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                event.event_id,
                event.name,
                event.status.value,
                _iso(event.start_date),
                _iso(event.end_date),
                event.atlas_provisioning.model_dump_json(),
            ),
        )
        return event

    def get(self, event_id: str | None) -> Event | None:
        if not event_id:
            return None
        row = self._db.fetchone("SELECT * FROM events WHERE event_id = ?", (event_id,))
        return self._row_to_event(row) if row else None

    def set_status(self, event_id: str, status: EventStatus) -> EventStatus:
        """Update an event's status. Returns the previous status."""
        event = self.get(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", public_message="Event not found")
        self._db.write(
            "UPDATE events SET status = ? WHERE event_id = ?",
            (status.value, event_id),
        )
        return event.status

    def configure_provisioning(
        self,
        event_id: str,
        *,
        enabled: bool,
        allowed_providers: list[str] | None = None,
    ) -> AtlasProvisioningConfig:
        """Toggle provisioning for an event and optionally restrict providers.

        When the current default provider is no longer allowed, the first
        allowed provider becomes the default.
        """
        event = self.get(event_id)
        if event is None:
            raise NotFound(f"Event {event_id} not found", public_message="Event not found")

        config = event.atlas_provisioning.model_copy(update={"enabled": enabled})
        if allowed_providers is not None:
            valid = [p.value for p in CloudProvider]
            invalid = [p for p in allowed_providers if p not in valid]
            if invalid:
                raise InvalidRequest(
                    f"Invalid providers: {', '.join(invalid)}. "
                    f"Must be one of: {', '.join(valid)}"
                )
            if not allowed_providers:
                raise InvalidRequest("At least one cloud provider must be allowed")
            providers = [CloudProvider(p) for p in allowed_providers]
            config.allowed_providers = providers
            if config.default_provider not in providers:
                config.default_provider = providers[0]

        self._db.write(
            "UPDATE events SET atlas_provisioning = ? WHERE event_id = ?",
            (config.model_dump_json(), event_id),
        )
        logger.info(
            "Atlas provisioning %s for event %s",
            "enabled" if enabled else "disabled",
            event_id,
        )
        return config

    def list_concluded_with_auto_cleanup(self) -> list[Event]:
        """Concluded events that opted into automatic cluster cleanup.

        Only the ``concluded`` status counts; a passed end date alone does not.
        """
        rows = self._db.fetchall(
            "SELECT * FROM events WHERE status = ? ORDER BY event_id",
            (EventStatus.CONCLUDED.value,),
        )
        events = [self._row_to_event(r) for r in rows]
        return [e for e in events if e.atlas_provisioning.auto_cleanup_on_event_end]

    @staticmethod
    def _row_to_event(row: Any) -> Event:
        return Event(
            event_id=row["event_id"],
            name=row["name"],
            status=EventStatus(row["status"]),
            start_date=row["start_date"],
            end_date=row["end_date"],
            atlas_provisioning=AtlasProvisioningConfig(
                **json.loads(row["atlas_provisioning"] or "{}")
            ),
        )


class TeamStore:
    """Reads team leadership and membership."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(
        self,
        event_id: str,
        leader_id: str,
        *,
        name: str = "",
        members: list[str] | None = None,
        team_id: str | None = None,
    ) -> Team:
        team_id = team_id or f"team-{uuid.uuid4().hex[:12]}"
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO teams (team_id, event_id, name, leader_id) VALUES (?, ?, ?, ?)",
                (team_id, event_id, name, leader_id),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO team_members (team_id, user_id) VALUES (?, ?)",
                [(team_id, m) for m in members or []],
            )
        team = self.get(team_id)
        assert team is not None
        return team

    def add_member(self, team_id: str, user_id: str) -> None:
        self._db.write(
            "INSERT OR IGNORE INTO team_members (team_id, user_id) VALUES (?, ?)",
            (team_id, user_id),
        )

    def get(self, team_id: str | None) -> Team | None:
        """Load a team, or None when missing (including a blank id)."""
        if not team_id:
            return None
        row = self._db.fetchone("SELECT * FROM teams WHERE team_id = ?", (team_id,))
        if row is None:
            return None
        members = self._db.fetchall(
            "SELECT user_id FROM team_members WHERE team_id = ? ORDER BY user_id",
            (team_id,),
        )
        return Team(
            team_id=row["team_id"],
            event_id=row["event_id"],
            name=row["name"],
            leader_id=row["leader_id"],
            members=[m["user_id"] for m in members],
        )
