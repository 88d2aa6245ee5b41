"""Shared fixtures: a temporary database, directory stores and a fake Atlas."""

from __future__ import annotations

import itertools
from pathlib import Path

import pytest

from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.config import AtlasSettings
from hackathon_atlas.db.connection import Database
from hackathon_atlas.db.migrations import run_migrations
from hackathon_atlas.directory import EventStore, TeamStore
from hackathon_atlas.errors import ControlPlaneError, ExternalNotFound
from hackathon_atlas.models import (
    AtlasProvisioningConfig,
    ClusterDescription,
    ClusterSpec,
    DatabaseUserSpec,
    Event,
    EventStatus,
    IpAccessRequest,
    Team,
)


class FakeControlPlane:
    """In-memory stand-in for the Atlas Admin API.

    Records every call in ``calls``. Set ``fail_on`` to a method name (or a
    ``(method, arg)`` pair) to make that call raise ControlPlaneError.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple]] = []
        self.projects: dict[str, str] = {}
        self.clusters: dict[tuple[str, str], ClusterDescription] = {}
        self.db_users: dict[tuple[str, str], DatabaseUserSpec] = {}
        self.access: dict[str, list[str]] = {}
        self.fail_on: set[object] = set()
        self._ids = itertools.count(1)

    def _record(self, method: str, *args: object) -> None:
        self.calls.append((method, args))
        if method in self.fail_on or any((method, a) in self.fail_on for a in args):
            raise ControlPlaneError(500, "INTERNAL", f"{method} exploded")

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    # --- ControlPlane protocol ---

    def create_project(self, name: str) -> str:
        self._record("create_project", name)
        project_id = f"proj{next(self._ids)}"
        self.projects[project_id] = name
        return project_id

    def delete_project(self, project_id: str) -> None:
        self._record("delete_project", project_id)
        if any(pid == project_id for pid, _ in self.clusters):
            raise ControlPlaneError(
                409,
                "CANNOT_CLOSE_GROUP_ACTIVE_ATLAS_CLUSTERS",
                "Project still has active clusters",
            )
        self.projects.pop(project_id, None)

    def create_cluster(self, project_id: str, spec: ClusterSpec) -> str:
        self._record("create_cluster", project_id, spec.name)
        cluster_id = f"atlas{next(self._ids)}"
        self.clusters[(project_id, spec.name)] = ClusterDescription(
            cluster_id=cluster_id, name=spec.name, state_name="CREATING"
        )
        return cluster_id

    def describe_cluster(self, project_id: str, cluster_name: str) -> ClusterDescription:
        self._record("describe_cluster", project_id, cluster_name)
        try:
            return self.clusters[(project_id, cluster_name)]
        except KeyError:
            raise ExternalNotFound(404, "CLUSTER_NOT_FOUND") from None

    def delete_cluster(self, project_id: str, cluster_name: str) -> None:
        self._record("delete_cluster", project_id, cluster_name)
        self.clusters.pop((project_id, cluster_name), None)

    def create_database_user(self, project_id: str, spec: DatabaseUserSpec) -> str:
        self._record("create_database_user", project_id, spec.username)
        self.db_users[(project_id, spec.username)] = spec
        return spec.username

    def delete_database_user(self, project_id: str, username: str) -> None:
        self._record("delete_database_user", project_id, username)
        self.db_users.pop((project_id, username), None)

    def add_ip_access_entries(self, project_id: str, entries: list[IpAccessRequest]) -> None:
        self._record("add_ip_access_entries", project_id)
        self.access.setdefault(project_id, []).extend(e.entry for e in entries)

    def remove_ip_access_entry(self, project_id: str, entry: str) -> None:
        self._record("remove_ip_access_entry", project_id, entry)
        if entry in self.access.get(project_id, []):
            self.access[project_id].remove(entry)

    # --- Test helpers ---

    def set_state(
        self,
        project_id: str,
        cluster_name: str,
        state_name: str,
        connection_string: str | None = None,
    ) -> None:
        current = self.clusters[(project_id, cluster_name)]
        self.clusters[(project_id, cluster_name)] = current.model_copy(
            update={
                "state_name": state_name,
                "connection_string": connection_string,
                "standard_connection_string": (
                    connection_string.replace("mongodb+srv", "mongodb")
                    if connection_string
                    else None
                ),
                "mongodb_version": "8.0.4" if connection_string else "",
            }
        )


READY_SRV = "mongodb+srv://hackathon-cluster.abcde.mongodb.net"


@pytest.fixture()
def db(tmp_path: Path) -> Database:
    d = Database(str(tmp_path / "atlas.db"))
    run_migrations(d)
    return d


@pytest.fixture()
def store(db: Database) -> ClusterStore:
    return ClusterStore(db)


@pytest.fixture()
def events(db: Database) -> EventStore:
    return EventStore(db)


@pytest.fixture()
def teams(db: Database) -> TeamStore:
    return TeamStore(db)


@pytest.fixture()
def fake_cp() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture()
def settings(tmp_path: Path) -> AtlasSettings:
    return AtlasSettings(
        db_path=str(tmp_path / "atlas.db"),
        signing_key="test-signing-key-" + "x" * 32,
        public_key="pub",
        private_key="priv",
        org_id="org1",
    )


@pytest.fixture()
def event(events: EventStore) -> Event:
    return events.create(
        "Spring Hack",
        event_id="evt-spring01",
        status=EventStatus.IN_PROGRESS,
        atlas_provisioning=AtlasProvisioningConfig(enabled=True),
    )


@pytest.fixture()
def team(teams: TeamStore, event: Event) -> Team:
    return teams.create(
        event.event_id,
        "leader-1",
        name="Team Rocket",
        members=["member-1", "member-2"],
        team_id="team-rocket01",
    )
