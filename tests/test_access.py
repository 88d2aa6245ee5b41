"""Tests for database users and the IP access list."""

from __future__ import annotations

import pytest

from hackathon_atlas.clusters.access import AccessService
from hackathon_atlas.clusters.provisioning import ProvisioningService
from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.clusters.utils import verify_password
from hackathon_atlas.config import AtlasSettings
from hackathon_atlas.directory import EventStore, TeamStore
from hackathon_atlas.errors import (
    Conflict,
    ControlPlaneError,
    InvalidRequest,
    NotFound,
    QuotaExceeded,
)
from hackathon_atlas.models import (
    AtlasCluster,
    AtlasProvisioningConfig,
    ClusterStatus,
    DatabaseRole,
    Event,
    IpAccessRequest,
    Team,
)

from conftest import READY_SRV, FakeControlPlane


@pytest.fixture()
def access(store: ClusterStore, events: EventStore, fake_cp: FakeControlPlane) -> AccessService:
    return AccessService(store, events, fake_cp)


@pytest.fixture()
def provisioning(
    store: ClusterStore,
    events: EventStore,
    teams: TeamStore,
    fake_cp: FakeControlPlane,
    settings: AtlasSettings,
) -> ProvisioningService:
    return ProvisioningService(store, events, teams, fake_cp, settings)


def _activate(store: ClusterStore, cluster: AtlasCluster) -> AtlasCluster:
    active = store.transition(
        cluster.cluster_id,
        expected=ClusterStatus.PROVISIONING,
        status=ClusterStatus.ACTIVE,
        connection_string=READY_SRV,
    )
    assert active is not None
    return active


@pytest.fixture()
def cluster(
    provisioning: ProvisioningService, store: ClusterStore, event: Event, team: Team
) -> AtlasCluster:
    return _activate(
        store, provisioning.provision_cluster(event.event_id, team.team_id, "leader-1")
    )


class TestCreateDatabaseUser:
    def test_generated_password_returned_once(
        self,
        access: AccessService,
        store: ClusterStore,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
    ) -> None:
        creds = access.create_database_user(cluster.cluster_id, "leader-1", "app_user")
        assert creds.username == "app_user"
        assert len(creds.password) == 24
        assert creds.roles == [DatabaseRole(role_name="readWriteAnyDatabase")]

        stored = store.database_users(cluster.cluster_id)
        assert len(stored) == 1
        assert verify_password(creds.password, stored[0].salt, stored[0].password_hash)
        assert stored[0].created_by == "leader-1"

        spec = fake_cp.db_users[(cluster.atlas_project_id, "app_user")]
        assert spec.password == creds.password
        assert spec.cluster_name == cluster.atlas_cluster_name

    def test_supplied_password_and_roles(
        self, access: AccessService, fake_cp: FakeControlPlane, cluster: AtlasCluster
    ) -> None:
        roles = [DatabaseRole(role_name="read", database_name="scores")]
        creds = access.create_database_user(
            cluster.cluster_id, "leader-1", "judge.bot", password="long-enough-1", roles=roles
        )
        assert creds.password == "long-enough-1"
        assert fake_cp.db_users[(cluster.atlas_project_id, "judge.bot")].roles == roles

    def test_each_user_gets_its_own_salt(
        self, access: AccessService, store: ClusterStore, cluster: AtlasCluster
    ) -> None:
        for username in ("user_a", "user_b"):
            access.create_database_user(
                cluster.cluster_id, "leader-1", username, password="same-password-1"
            )
        first, second = store.database_users(cluster.cluster_id)
        assert first.salt and second.salt
        assert first.salt != second.salt
        assert first.password_hash != second.password_hash
        assert verify_password("same-password-1", second.salt, second.password_hash)

    @pytest.mark.parametrize("username", ["", "has space", "semi;colon", "x" * 65])
    def test_invalid_username(
        self,
        access: AccessService,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
        username: str,
    ) -> None:
        calls_before = len(fake_cp.calls)
        with pytest.raises(InvalidRequest):
            access.create_database_user(cluster.cluster_id, "leader-1", username)
        assert len(fake_cp.calls) == calls_before

    def test_short_password(self, access: AccessService, cluster: AtlasCluster) -> None:
        with pytest.raises(InvalidRequest, match="10 characters"):
            access.create_database_user(cluster.cluster_id, "leader-1", "u", password="short")

    def test_requires_active_cluster(
        self,
        access: AccessService,
        provisioning: ProvisioningService,
        event: Event,
        team: Team,
    ) -> None:
        pending = provisioning.provision_cluster(event.event_id, team.team_id, "leader-1")
        with pytest.raises(InvalidRequest, match="active"):
            access.create_database_user(pending.cluster_id, "leader-1", "app_user")

    def test_missing_cluster(self, access: AccessService) -> None:
        with pytest.raises(NotFound):
            access.create_database_user("atc-missing", "leader-1", "app_user")

    def test_duplicate_username(self, access: AccessService, cluster: AtlasCluster) -> None:
        access.create_database_user(cluster.cluster_id, "leader-1", "app_user")
        with pytest.raises(Conflict):
            access.create_database_user(cluster.cluster_id, "leader-1", "app_user")

    def test_quota(
        self,
        access: AccessService,
        provisioning: ProvisioningService,
        store: ClusterStore,
        events: EventStore,
        teams: TeamStore,
        fake_cp: FakeControlPlane,
    ) -> None:
        events.create(
            "Small", event_id="evt-small",
            atlas_provisioning=AtlasProvisioningConfig(enabled=True, max_db_users_per_cluster=2),
        )
        teams.create("evt-small", "lead", team_id="team-small")
        cluster = _activate(store, provisioning.provision_cluster("evt-small", "team-small", "lead"))

        access.create_database_user(cluster.cluster_id, "lead", "user1")
        access.create_database_user(cluster.cluster_id, "lead", "user2")
        calls_before = len(fake_cp.calls)
        with pytest.raises(QuotaExceeded) as exc_info:
            access.create_database_user(cluster.cluster_id, "lead", "user3")
        assert exc_info.value.public_message == "Maximum 2 database users per cluster"
        assert len(fake_cp.calls) == calls_before
        assert len(store.database_users(cluster.cluster_id)) == 2

    def test_atlas_failure_releases_slot(
        self,
        access: AccessService,
        store: ClusterStore,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
    ) -> None:
        fake_cp.fail_on.add("create_database_user")
        with pytest.raises(ControlPlaneError):
            access.create_database_user(cluster.cluster_id, "leader-1", "app_user")
        assert store.database_users(cluster.cluster_id) == []

        fake_cp.fail_on.clear()
        assert access.create_database_user(cluster.cluster_id, "leader-1", "app_user")


class TestDeleteDatabaseUser:
    def test_delete(
        self,
        access: AccessService,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
    ) -> None:
        access.create_database_user(cluster.cluster_id, "leader-1", "app_user")
        access.delete_database_user(cluster.cluster_id, "app_user")
        assert access.list_database_users(cluster.cluster_id) == []
        assert (cluster.atlas_project_id, "app_user") not in fake_cp.db_users

    def test_unknown_user(self, access: AccessService, cluster: AtlasCluster) -> None:
        with pytest.raises(NotFound) as exc_info:
            access.delete_database_user(cluster.cluster_id, "ghost")
        assert exc_info.value.public_message == "Database user not found"

    def test_atlas_failure_keeps_row(
        self,
        access: AccessService,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
    ) -> None:
        access.create_database_user(cluster.cluster_id, "leader-1", "app_user")
        fake_cp.fail_on.add("delete_database_user")
        with pytest.raises(ControlPlaneError):
            access.delete_database_user(cluster.cluster_id, "app_user")
        assert [u.username for u in access.list_database_users(cluster.cluster_id)] == [
            "app_user"
        ]


class TestIpAccess:
    def test_add_and_list(
        self,
        access: AccessService,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
    ) -> None:
        added = access.add_ip_access_entries(
            cluster.cluster_id,
            "leader-1",
            [
                IpAccessRequest(cidr_block="10.0.0.0/8", comment="office"),
                IpAccessRequest(ip_address="192.0.2.7"),
            ],
        )
        assert [e.cidr_block for e in added] == ["10.0.0.0/8", "192.0.2.7"]
        listed = {e.cidr_block for e in access.list_ip_access_entries(cluster.cluster_id)}
        assert listed == {"0.0.0.0/0", "10.0.0.0/8", "192.0.2.7"}
        assert "192.0.2.7" in fake_cp.access[cluster.atlas_project_id]

    def test_allowed_while_provisioning(
        self,
        access: AccessService,
        provisioning: ProvisioningService,
        event: Event,
        team: Team,
    ) -> None:
        pending = provisioning.provision_cluster(event.event_id, team.team_id, "leader-1")
        added = access.add_ip_access_entries(
            pending.cluster_id, "leader-1", [IpAccessRequest(cidr_block="10.1.0.0/16")]
        )
        assert len(added) == 1

    def test_empty_entries(self, access: AccessService, cluster: AtlasCluster) -> None:
        with pytest.raises(InvalidRequest):
            access.add_ip_access_entries(cluster.cluster_id, "leader-1", [])

    def test_entry_without_address(self, access: AccessService, cluster: AtlasCluster) -> None:
        with pytest.raises(InvalidRequest, match="cidr_block or ip_address"):
            access.add_ip_access_entries(
                cluster.cluster_id, "leader-1", [IpAccessRequest(comment="nothing")]
            )

    def test_limit(
        self,
        access: AccessService,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
    ) -> None:
        # The open-access entry from provisioning already takes one slot.
        entries = [IpAccessRequest(ip_address=f"198.51.100.{i}") for i in range(19)]
        access.add_ip_access_entries(cluster.cluster_id, "leader-1", entries)
        calls_before = len(fake_cp.calls)
        with pytest.raises(QuotaExceeded):
            access.add_ip_access_entries(
                cluster.cluster_id, "leader-1", [IpAccessRequest(ip_address="203.0.113.1")]
            )
        assert len(fake_cp.calls) == calls_before
        assert len(access.list_ip_access_entries(cluster.cluster_id)) == 20

    def test_rejected_on_deleting_cluster(
        self, access: AccessService, store: ClusterStore, cluster: AtlasCluster
    ) -> None:
        store.mark_deleting(cluster.cluster_id)
        with pytest.raises(InvalidRequest, match="deleting"):
            access.add_ip_access_entries(
                cluster.cluster_id, "leader-1", [IpAccessRequest(ip_address="192.0.2.1")]
            )

    def test_remove(
        self,
        access: AccessService,
        fake_cp: FakeControlPlane,
        cluster: AtlasCluster,
    ) -> None:
        access.remove_ip_access_entry(cluster.cluster_id, "0.0.0.0/0")
        assert access.list_ip_access_entries(cluster.cluster_id) == []
        assert fake_cp.access[cluster.atlas_project_id] == []

    def test_remove_requires_entry(self, access: AccessService, cluster: AtlasCluster) -> None:
        with pytest.raises(InvalidRequest):
            access.remove_ip_access_entry(cluster.cluster_id, "")
