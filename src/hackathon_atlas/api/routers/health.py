"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from hackathon_atlas.clusters.provisioning import ProvisioningService

router = APIRouter(tags=["health"])

_provisioning: ProvisioningService | None = None
_version: str = "0.0.0"


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    clusters: dict[str, int]


def init_router(provisioning: ProvisioningService, version: str) -> None:
    global _provisioning, _version  # noqa: PLW0603
    _provisioning = provisioning
    _version = version


@router.get("/api/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    by_status = _provisioning.cluster_stats().by_status if _provisioning else {}
    return HealthResponse(version=_version, clusters=by_status)
