"""Hackathon Atlas: MongoDB Atlas cluster lifecycle management for hackathon teams."""

__version__ = "0.4.0"

from hackathon_atlas.auth.guard import AuthGuard
from hackathon_atlas.auth.session import SessionAuthenticator
from hackathon_atlas.clusters.access import AccessService
from hackathon_atlas.clusters.cleanup import CleanupService
from hackathon_atlas.clusters.provisioning import ProvisioningService
from hackathon_atlas.clusters.status import StatusService, map_atlas_state
from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.config import AtlasSettings, find_config, load_settings
from hackathon_atlas.control_plane.client import AtlasClient, ControlPlane
from hackathon_atlas.errors import AtlasError, ConfigError, ControlPlaneError, ErrorKind
from hackathon_atlas.models import (
    Anonymous,
    AtlasCluster,
    AtlasProvisioningConfig,
    Authenticated,
    Caller,
    CleanupReport,
    CloudProvider,
    ClusterFilter,
    ClusterRequest,
    ClusterStatus,
    ClusterStatusSnapshot,
    Role,
)

__all__ = [
    "AccessService",
    "Anonymous",
    "AtlasClient",
    "AtlasCluster",
    "AtlasError",
    "AtlasProvisioningConfig",
    "AtlasSettings",
    "AuthGuard",
    "Authenticated",
    "Caller",
    "CleanupReport",
    "CleanupService",
    "CloudProvider",
    "ClusterFilter",
    "ClusterRequest",
    "ClusterStatus",
    "ClusterStatusSnapshot",
    "ClusterStore",
    "ConfigError",
    "ControlPlane",
    "ControlPlaneError",
    "ErrorKind",
    "ProvisioningService",
    "Role",
    "SessionAuthenticator",
    "StatusService",
    "find_config",
    "load_settings",
    "map_atlas_state",
    "__version__",
]
