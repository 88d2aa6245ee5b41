"""Tests for the cluster HTTP API."""

from __future__ import annotations

import pytest

fastapi = pytest.importorskip("fastapi", reason="fastapi not installed")

from fastapi.testclient import TestClient  # noqa: E402

from hackathon_atlas import __version__  # noqa: E402
from hackathon_atlas.api.app import create_app  # noqa: E402
from hackathon_atlas.auth.session import SessionAuthenticator  # noqa: E402
from hackathon_atlas.clusters.store import ClusterStore  # noqa: E402
from hackathon_atlas.config import AtlasSettings  # noqa: E402
from hackathon_atlas.db.connection import Database  # noqa: E402
from hackathon_atlas.directory import EventStore  # noqa: E402
from hackathon_atlas.errors import ConfigError  # noqa: E402
from hackathon_atlas.models import ClusterStatus, Event, EventStatus, Role, Team  # noqa: E402

from conftest import READY_SRV, FakeControlPlane  # noqa: E402

CLUSTERS = "/api/atlas/clusters"
ADMIN = "/api/atlas/admin"


@pytest.fixture()
def client(settings: AtlasSettings, fake_cp: FakeControlPlane, db: Database) -> TestClient:
    return TestClient(create_app(settings, control_plane=fake_cp, db=db))


@pytest.fixture()
def auth(settings: AtlasSettings) -> SessionAuthenticator:
    return SessionAuthenticator(settings.signing_key)


def _headers(auth: SessionAuthenticator, user_id: str, role: Role = Role.PARTICIPANT) -> dict:
    return {"Authorization": f"Bearer {auth.issue(user_id, role)}"}


@pytest.fixture()
def leader(auth: SessionAuthenticator) -> dict:
    return _headers(auth, "leader-1")


@pytest.fixture()
def member(auth: SessionAuthenticator) -> dict:
    return _headers(auth, "member-1")


@pytest.fixture()
def admin(auth: SessionAuthenticator) -> dict:
    return _headers(auth, "ops-1", Role.ADMIN)


@pytest.fixture()
def provisioned(client: TestClient, leader: dict, team: Team) -> dict:
    resp = client.post(f"{CLUSTERS}/", json={"team_id": team.team_id}, headers=leader)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _activate(client: TestClient, fake_cp: FakeControlPlane, cluster: dict, headers: dict):
    fake_cp.set_state(
        cluster["atlas_project_id"], cluster["atlas_cluster_name"], "IDLE", READY_SRV
    )
    resp = client.get(f"{CLUSTERS}/{cluster['cluster_id']}/status", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


# ------------------------------------------------------------------
# App factory and health
# ------------------------------------------------------------------


class TestAppFactory:
    def test_requires_signing_key(self, fake_cp: FakeControlPlane, db: Database) -> None:
        with pytest.raises(ConfigError):
            create_app(AtlasSettings(), control_plane=fake_cp, db=db)

    def test_health(self, client: TestClient, provisioned: dict) -> None:
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["version"] == __version__
        assert data["clusters"] == {"provisioning": 1}


# ------------------------------------------------------------------
# Provisioning
# ------------------------------------------------------------------


class TestProvisionEndpoint:
    def test_leader_provisions(
        self, provisioned: dict, fake_cp: FakeControlPlane, event: Event, team: Team
    ) -> None:
        assert provisioned["status"] == "provisioning"
        assert provisioned["event_id"] == event.event_id
        assert provisioned["team_id"] == team.team_id
        assert provisioned["provisioned_by"] == "leader-1"
        assert provisioned["connection_string"] is None
        assert provisioned["ip_access_count"] == 1
        assert fake_cp.call_names()[:2] == ["create_project", "create_cluster"]

    def test_project_reference(
        self, client: TestClient, store: ClusterStore, leader: dict, team: Team
    ) -> None:
        resp = client.post(
            f"{CLUSTERS}/", json={"team_id": team.team_id, "project_id": "hp-42"}, headers=leader
        )
        assert resp.status_code == 201, resp.text
        assert store.get(resp.json()["cluster_id"]).project_id == "hp-42"

    def test_project_reference_defaults_to_none(
        self, store: ClusterStore, provisioned: dict
    ) -> None:
        assert store.get(provisioned["cluster_id"]).project_id is None

    def test_anonymous(self, client: TestClient, team: Team, fake_cp: FakeControlPlane) -> None:
        resp = client.post(f"{CLUSTERS}/", json={"team_id": team.team_id})
        assert resp.status_code == 401
        assert fake_cp.calls == []

    def test_invalid_token_is_anonymous(self, client: TestClient, team: Team) -> None:
        resp = client.post(
            f"{CLUSTERS}/",
            json={"team_id": team.team_id},
            headers={"Authorization": "Bearer not-a-token"},
        )
        assert resp.status_code == 401

    def test_member_forbidden(
        self, client: TestClient, member: dict, team: Team, fake_cp: FakeControlPlane
    ) -> None:
        resp = client.post(f"{CLUSTERS}/", json={"team_id": team.team_id}, headers=member)
        assert resp.status_code == 403
        assert fake_cp.calls == []

    def test_admin_provisions_for_team(
        self, client: TestClient, admin: dict, team: Team
    ) -> None:
        resp = client.post(f"{CLUSTERS}/", json={"team_id": team.team_id}, headers=admin)
        assert resp.status_code == 201
        assert resp.json()["provisioned_by"] == "ops-1"

    def test_unknown_team(self, client: TestClient, leader: dict) -> None:
        resp = client.post(f"{CLUSTERS}/", json={"team_id": "team-missing"}, headers=leader)
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Team not found"

    def test_disallowed_region(
        self, client: TestClient, leader: dict, team: Team, fake_cp: FakeControlPlane
    ) -> None:
        resp = client.post(
            f"{CLUSTERS}/",
            json={"team_id": team.team_id, "region": "AP_SOUTH_1"},
            headers=leader,
        )
        assert resp.status_code == 400
        assert "AP_SOUTH_1" in resp.json()["detail"]
        assert fake_cp.calls == []

    def test_unknown_provider_rejected_by_schema(
        self, client: TestClient, leader: dict, team: Team
    ) -> None:
        resp = client.post(
            f"{CLUSTERS}/",
            json={"team_id": team.team_id, "provider": "ORACLE"},
            headers=leader,
        )
        assert resp.status_code == 422

    def test_duplicate(self, client: TestClient, leader: dict, team: Team, provisioned: dict) -> None:
        resp = client.post(f"{CLUSTERS}/", json={"team_id": team.team_id}, headers=leader)
        assert resp.status_code == 409

    def test_upstream_failure_hides_detail(
        self, client: TestClient, leader: dict, team: Team, fake_cp: FakeControlPlane
    ) -> None:
        fake_cp.fail_on.add("create_cluster")
        resp = client.post(f"{CLUSTERS}/", json={"team_id": team.team_id}, headers=leader)
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to provision cluster"
        assert "exploded" not in resp.text


# ------------------------------------------------------------------
# Reading and deleting
# ------------------------------------------------------------------


class TestClusterEndpoints:
    def test_member_reads(self, client: TestClient, member: dict, provisioned: dict) -> None:
        resp = client.get(f"{CLUSTERS}/{provisioned['cluster_id']}", headers=member)
        assert resp.status_code == 200
        assert resp.json()["cluster_id"] == provisioned["cluster_id"]

    def test_outsider_forbidden(
        self, client: TestClient, auth: SessionAuthenticator, provisioned: dict
    ) -> None:
        resp = client.get(
            f"{CLUSTERS}/{provisioned['cluster_id']}", headers=_headers(auth, "stranger")
        )
        assert resp.status_code == 403

    def test_anonymous_gets_401_not_404(self, client: TestClient) -> None:
        assert client.get(f"{CLUSTERS}/atc-missing").status_code == 401

    def test_missing(self, client: TestClient, member: dict) -> None:
        assert client.get(f"{CLUSTERS}/atc-missing", headers=member).status_code == 404

    def test_list_by_team(
        self, client: TestClient, member: dict, team: Team, provisioned: dict
    ) -> None:
        resp = client.get(f"{CLUSTERS}/", params={"team_id": team.team_id}, headers=member)
        assert resp.status_code == 200
        assert [c["cluster_id"] for c in resp.json()] == [provisioned["cluster_id"]]

    def test_list_requires_filter(self, client: TestClient, member: dict) -> None:
        assert client.get(f"{CLUSTERS}/", headers=member).status_code == 400

    def test_list_by_event_is_admin_only(
        self,
        client: TestClient,
        member: dict,
        admin: dict,
        event: Event,
        provisioned: dict,
    ) -> None:
        params = {"event_id": event.event_id}
        assert client.get(f"{CLUSTERS}/", params=params, headers=member).status_code == 403
        resp = client.get(f"{CLUSTERS}/", params=params, headers=admin)
        assert resp.status_code == 200
        assert len(resp.json()) == 1

    def test_status_refresh(
        self,
        client: TestClient,
        member: dict,
        fake_cp: FakeControlPlane,
        provisioned: dict,
    ) -> None:
        snap = _activate(client, fake_cp, provisioned, member)
        assert snap["status"] == "active"
        assert snap["connection_string"].startswith(READY_SRV)
        assert "appName=" in snap["connection_string"]

    def test_status_upstream_failure(
        self,
        client: TestClient,
        member: dict,
        fake_cp: FakeControlPlane,
        provisioned: dict,
    ) -> None:
        fake_cp.fail_on.add("describe_cluster")
        resp = client.get(f"{CLUSTERS}/{provisioned['cluster_id']}/status", headers=member)
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to check cluster status"

    def test_member_cannot_delete(
        self, client: TestClient, member: dict, provisioned: dict
    ) -> None:
        resp = client.delete(f"{CLUSTERS}/{provisioned['cluster_id']}", headers=member)
        assert resp.status_code == 403

    def test_leader_deletes(
        self, client: TestClient, leader: dict, provisioned: dict
    ) -> None:
        resp = client.delete(f"{CLUSTERS}/{provisioned['cluster_id']}", headers=leader)
        assert resp.status_code == 200
        assert resp.json()["status"] == "deleted"
        again = client.delete(f"{CLUSTERS}/{provisioned['cluster_id']}", headers=leader)
        assert again.status_code == 200


# ------------------------------------------------------------------
# Access
# ------------------------------------------------------------------


class TestAccessEndpoints:
    def test_database_user_lifecycle(
        self,
        client: TestClient,
        leader: dict,
        member: dict,
        fake_cp: FakeControlPlane,
        provisioned: dict,
    ) -> None:
        cid = provisioned["cluster_id"]
        _activate(client, fake_cp, provisioned, member)

        resp = client.post(
            f"{CLUSTERS}/{cid}/database-users", json={"username": "app_user"}, headers=leader
        )
        assert resp.status_code == 201, resp.text
        assert len(resp.json()["password"]) == 24

        listed = client.get(f"{CLUSTERS}/{cid}/database-users", headers=member).json()
        assert [u["username"] for u in listed] == ["app_user"]
        assert "password" not in listed[0]
        assert "password_hash" not in listed[0]

        resp = client.delete(f"{CLUSTERS}/{cid}/database-users/app_user", headers=leader)
        assert resp.status_code == 200
        assert client.get(f"{CLUSTERS}/{cid}/database-users", headers=member).json() == []

    def test_database_user_needs_active_cluster(
        self, client: TestClient, leader: dict, provisioned: dict
    ) -> None:
        resp = client.post(
            f"{CLUSTERS}/{provisioned['cluster_id']}/database-users",
            json={"username": "app_user"},
            headers=leader,
        )
        assert resp.status_code == 400

    def test_member_cannot_create_user(
        self,
        client: TestClient,
        member: dict,
        fake_cp: FakeControlPlane,
        provisioned: dict,
    ) -> None:
        _activate(client, fake_cp, provisioned, member)
        resp = client.post(
            f"{CLUSTERS}/{provisioned['cluster_id']}/database-users",
            json={"username": "app_user"},
            headers=member,
        )
        assert resp.status_code == 403

    def test_ip_access(
        self, client: TestClient, leader: dict, member: dict, provisioned: dict
    ) -> None:
        cid = provisioned["cluster_id"]
        resp = client.post(
            f"{CLUSTERS}/{cid}/ip-access",
            json={"entries": [{"cidr_block": "10.0.0.0/8", "comment": "office"}]},
            headers=leader,
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()[0]["cidr_block"] == "10.0.0.0/8"

        listed = client.get(f"{CLUSTERS}/{cid}/ip-access", headers=member).json()
        assert {e["cidr_block"] for e in listed} == {"0.0.0.0/0", "10.0.0.0/8"}

        resp = client.delete(
            f"{CLUSTERS}/{cid}/ip-access", params={"entry": "10.0.0.0/8"}, headers=leader
        )
        assert resp.status_code == 200
        listed = client.get(f"{CLUSTERS}/{cid}/ip-access", headers=member).json()
        assert [e["cidr_block"] for e in listed] == ["0.0.0.0/0"]

    def test_ip_access_empty_entries(
        self, client: TestClient, leader: dict, provisioned: dict
    ) -> None:
        resp = client.post(
            f"{CLUSTERS}/{provisioned['cluster_id']}/ip-access",
            json={"entries": []},
            headers=leader,
        )
        assert resp.status_code == 400


# ------------------------------------------------------------------
# Admin
# ------------------------------------------------------------------


class TestAdminEndpoints:
    def test_requires_admin(self, client: TestClient, leader: dict) -> None:
        assert client.get(f"{ADMIN}/clusters", headers=leader).status_code == 403
        assert client.get(f"{ADMIN}/clusters").status_code == 401

    def test_overview(self, client: TestClient, admin: dict, provisioned: dict) -> None:
        resp = client.get(f"{ADMIN}/clusters", headers=admin)
        assert resp.status_code == 200
        data = resp.json()
        assert data["stats"]["total"] == 1
        assert [c["cluster_id"] for c in data["clusters"]] == [provisioned["cluster_id"]]

    def test_force_delete(
        self, client: TestClient, admin: dict, store: ClusterStore, provisioned: dict
    ) -> None:
        resp = client.delete(f"{ADMIN}/clusters/{provisioned['cluster_id']}", headers=admin)
        assert resp.status_code == 200
        assert store.get(provisioned["cluster_id"]).status == ClusterStatus.DELETED

    def test_cleanup_flow(
        self,
        client: TestClient,
        admin: dict,
        events: EventStore,
        event: Event,
        fake_cp: FakeControlPlane,
        provisioned: dict,
    ) -> None:
        assert client.get(f"{ADMIN}/cleanup", headers=admin).json() == []
        events.set_status(event.event_id, EventStatus.CONCLUDED)
        assert client.get(f"{ADMIN}/cleanup", headers=admin).json() == [event.event_id]

        calls_before = len(fake_cp.calls)
        preview = client.post(f"{ADMIN}/cleanup", json={"dry_run": True}, headers=admin).json()
        assert preview["dry_run"] is True
        assert preview["totals"]["clusters_found"] == 1
        assert preview["totals"]["clusters_deleted"] == 0
        assert len(fake_cp.calls) == calls_before

        result = client.post(f"{ADMIN}/cleanup", headers=admin).json()
        assert result["events_processed"] == 1
        assert result["totals"] == {"clusters_found": 1, "clusters_deleted": 1, "errors": 0}

    def test_cleanup_single_event(
        self, client: TestClient, admin: dict, event: Event, provisioned: dict
    ) -> None:
        resp = client.post(f"{ADMIN}/cleanup", json={"event_id": event.event_id}, headers=admin)
        assert resp.status_code == 200
        assert resp.json()["reports"][0]["clusters_deleted"] == 1

    def test_cleanup_unknown_event(self, client: TestClient, admin: dict) -> None:
        resp = client.post(f"{ADMIN}/cleanup", json={"event_id": "evt-missing"}, headers=admin)
        assert resp.status_code == 404

    def test_toggle_provisioning(
        self, client: TestClient, admin: dict, leader: dict, event: Event, team: Team
    ) -> None:
        resp = client.patch(
            f"{ADMIN}/events/{event.event_id}/provisioning",
            json={"enabled": False},
            headers=admin,
        )
        assert resp.status_code == 200
        assert resp.json()["enabled"] is False

        resp = client.post(f"{CLUSTERS}/", json={"team_id": team.team_id}, headers=leader)
        assert resp.status_code == 403

    def test_toggle_invalid_provider(
        self, client: TestClient, admin: dict, event: Event
    ) -> None:
        resp = client.patch(
            f"{ADMIN}/events/{event.event_id}/provisioning",
            json={"enabled": True, "allowed_providers": ["ORACLE"]},
            headers=admin,
        )
        assert resp.status_code == 400
