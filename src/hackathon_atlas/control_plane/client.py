"""Atlas Admin API v2 client.

Every call issues one HTTP request and returns as soon as Atlas accepts it.
Cluster creation and deletion are asynchronous jobs on the Atlas side;
completion is observed by polling ``describe_cluster``, never by waiting
here. Deletes are idempotent: a 404 from Atlas counts as success.

Uses stdlib ``urllib.request`` with HTTP Digest authentication, which is
what the Atlas programmatic API keys require.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Protocol, runtime_checkable

from hackathon_atlas.config import AtlasSettings
from hackathon_atlas.errors import ControlPlaneError, ExternalNotFound
from hackathon_atlas.models import (
    ClusterDescription,
    ClusterSpec,
    DatabaseUserSpec,
    IpAccessRequest,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ControlPlane(Protocol):
    """What the cluster services need from a managed-database control plane."""

    def create_project(self, name: str) -> str: ...

    def delete_project(self, project_id: str) -> None: ...

    def create_cluster(self, project_id: str, spec: ClusterSpec) -> str: ...

    def describe_cluster(self, project_id: str, cluster_name: str) -> ClusterDescription: ...

    def delete_cluster(self, project_id: str, cluster_name: str) -> None: ...

    def create_database_user(self, project_id: str, spec: DatabaseUserSpec) -> str: ...

    def delete_database_user(self, project_id: str, username: str) -> None: ...

    def add_ip_access_entries(
        self, project_id: str, entries: list[IpAccessRequest]
    ) -> None: ...

    def remove_ip_access_entry(self, project_id: str, entry: str) -> None: ...


class AtlasClient:
    """Synchronous adapter over the Atlas Admin API v2.

    Build one from settings::

        client = AtlasClient.from_settings(load_settings())
        project_id = client.create_project("mh-abc123-def456")

    Pass ``opener`` to substitute the transport (tests inject a mock).
    """

    def __init__(
        self,
        public_key: str,
        private_key: str,
        org_id: str,
        *,
        base_url: str = "https://cloud.mongodb.com/api/atlas/v2",
        api_version: str = "2025-03-12",
        timeout: float = 30.0,
        opener: urllib.request.OpenerDirector | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._org_id = org_id
        self._api_version = api_version
        self._timeout = timeout
        if opener is None:
            password_mgr = urllib.request.HTTPPasswordMgrWithDefaultRealm()
            password_mgr.add_password(None, self._base_url, public_key, private_key)
            opener = urllib.request.build_opener(
                urllib.request.HTTPDigestAuthHandler(password_mgr)
            )
        self._opener = opener

    @classmethod
    def from_settings(cls, settings: AtlasSettings) -> AtlasClient:
        settings.require_credentials()
        return cls(
            settings.public_key,
            settings.private_key,
            settings.org_id,
            base_url=settings.base_url,
            api_version=settings.api_version,
            timeout=settings.request_timeout,
        )

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, name: str) -> str:
        """Create an Atlas project (group) and return its id."""
        data = self._request("POST", "/groups", {"name": name, "orgId": self._org_id})
        return data["id"]

    def delete_project(self, project_id: str) -> None:
        self._delete(f"/groups/{_q(project_id)}")

    # ------------------------------------------------------------------
    # Clusters
    # ------------------------------------------------------------------

    def create_cluster(self, project_id: str, spec: ClusterSpec) -> str:
        """Start creating a shared-tier cluster. Returns the Atlas cluster id."""
        body = {
            "name": spec.name,
            "clusterType": "REPLICASET",
            "replicationSpecs": [
                {
                    "regionConfigs": [
                        {
                            "providerName": "TENANT",
                            "backingProviderName": spec.provider.value,
                            "regionName": spec.region,
                            "priority": 7,
                            "electableSpecs": {"instanceSize": spec.instance_size},
                        }
                    ]
                }
            ],
        }
        data = self._request("POST", f"/groups/{_q(project_id)}/clusters", body)
        return data.get("id", "")

    def describe_cluster(self, project_id: str, cluster_name: str) -> ClusterDescription:
        """Current Atlas view of a cluster. Raises ExternalNotFound if gone."""
        data = self._request(
            "GET", f"/groups/{_q(project_id)}/clusters/{_q(cluster_name)}"
        )
        strings = data.get("connectionStrings") or {}
        return ClusterDescription(
            cluster_id=data.get("id", ""),
            name=data.get("name", cluster_name),
            state_name=data.get("stateName", ""),
            connection_string=strings.get("standardSrv") or None,
            standard_connection_string=strings.get("standard") or None,
            mongodb_version=data.get("mongoDBVersion", ""),
        )

    def delete_cluster(self, project_id: str, cluster_name: str) -> None:
        self._delete(f"/groups/{_q(project_id)}/clusters/{_q(cluster_name)}")

    # ------------------------------------------------------------------
    # Database users
    # ------------------------------------------------------------------

    def create_database_user(self, project_id: str, spec: DatabaseUserSpec) -> str:
        body = {
            "databaseName": "admin",
            "username": spec.username,
            "password": spec.password,
            "roles": [
                {"roleName": r.role_name, "databaseName": r.database_name}
                for r in spec.roles
            ],
            "scopes": [{"name": spec.cluster_name, "type": "CLUSTER"}],
        }
        data = self._request("POST", f"/groups/{_q(project_id)}/databaseUsers", body)
        return data.get("username", spec.username)

    def delete_database_user(self, project_id: str, username: str) -> None:
        self._delete(f"/groups/{_q(project_id)}/databaseUsers/admin/{_q(username)}")

    def list_database_users(self, project_id: str) -> list[dict[str, Any]]:
        data = self._request("GET", f"/groups/{_q(project_id)}/databaseUsers")
        return data.get("results") or []

    # ------------------------------------------------------------------
    # IP access list
    # ------------------------------------------------------------------

    def add_ip_access_entries(
        self, project_id: str, entries: list[IpAccessRequest]
    ) -> None:
        body = []
        for e in entries:
            item: dict[str, str] = {"comment": e.comment}
            if e.cidr_block:
                item["cidrBlock"] = e.cidr_block
            else:
                item["ipAddress"] = e.ip_address or ""
            body.append(item)
        self._request("POST", f"/groups/{_q(project_id)}/accessList", body)

    def remove_ip_access_entry(self, project_id: str, entry: str) -> None:
        self._delete(f"/groups/{_q(project_id)}/accessList/{_q(entry)}")

    def list_ip_access_entries(self, project_id: str) -> list[dict[str, Any]]:
        data = self._request("GET", f"/groups/{_q(project_id)}/accessList")
        return data.get("results") or []

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _delete(self, path: str) -> None:
        try:
            self._request("DELETE", path)
        except ExternalNotFound:
            logger.debug("DELETE %s: already gone", path)

    def _request(self, method: str, path: str, body: Any = None) -> Any:
        """Send one request and decode the JSON response.

        Raises ExternalNotFound on 404 and ControlPlaneError on any other
        HTTP or transport failure.
        """
        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = urllib.request.Request(
            f"{self._base_url}{path}",
            data=data,
            headers={
                "Accept": f"application/vnd.atlas.{self._api_version}+json",
                "Content-Type": "application/json",
            },
            method=method,
        )
        try:
            with self._opener.open(req, timeout=self._timeout) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            raise _error_from_response(e) from e
        except (urllib.error.URLError, TimeoutError, OSError) as e:
            raise ControlPlaneError(0, detail=f"Atlas API request failed: {e}") from e

        if not raw:
            return {}
        return json.loads(raw.decode("utf-8"))


def _q(segment: str) -> str:
    return urllib.parse.quote(segment, safe="")


def _error_from_response(error: urllib.error.HTTPError) -> ControlPlaneError:
    try:
        payload = json.loads(error.read().decode("utf-8") or "{}")
    except (ValueError, OSError):
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    error_code = payload.get("errorCode", "")
    detail = payload.get("detail") or payload.get("reason") or ""
    if error.code == 404:
        return ExternalNotFound(404, error_code, detail)
    return ControlPlaneError(error.code, error_code, detail)
