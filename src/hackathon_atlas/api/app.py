"""FastAPI application factory for the cluster API."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from hackathon_atlas import __version__
from hackathon_atlas.api.dependencies import init_auth
from hackathon_atlas.api.routers import admin, clusters, health
from hackathon_atlas.auth.guard import AuthGuard
from hackathon_atlas.auth.session import SessionAuthenticator
from hackathon_atlas.clusters.access import AccessService
from hackathon_atlas.clusters.cleanup import CleanupService
from hackathon_atlas.clusters.provisioning import ProvisioningService
from hackathon_atlas.clusters.status import StatusService
from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.config import AtlasSettings, load_settings
from hackathon_atlas.control_plane.client import AtlasClient, ControlPlane
from hackathon_atlas.db.connection import Database
from hackathon_atlas.db.migrations import run_migrations
from hackathon_atlas.directory import EventStore, TeamStore
from hackathon_atlas.errors import ConfigError

logger = logging.getLogger(__name__)


def create_app(
    settings: AtlasSettings | None = None,
    control_plane: ControlPlane | None = None,
    db: Database | None = None,
) -> FastAPI:
    """Build and return the FastAPI application.

    Services are initialised from *settings* (or the discovered config) and
    injected into each router via its ``init_router()`` function. Pass
    *control_plane* or *db* to substitute the Atlas client or database.
    """
    if settings is None:
        settings = load_settings()
    if not settings.signing_key:
        raise ConfigError("signing_key is required to serve the API")

    app = FastAPI(
        title="Hackathon Atlas",
        version=__version__,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
    )

    # --- CORS (dev mode only) ---
    if settings.dev_mode:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["http://localhost:3000"],
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # --- Database ---
    if db is None:
        db = Database(settings.db_path)
    run_migrations(db)

    if control_plane is None:
        control_plane = AtlasClient.from_settings(settings)

    # --- Services ---
    store = ClusterStore(db)
    events = EventStore(db)
    teams = TeamStore(db)
    guard = AuthGuard(teams)
    provisioning = ProvisioningService(store, events, teams, control_plane, settings)
    status = StatusService(store, control_plane, app_name=settings.app_name)
    access = AccessService(store, events, control_plane)
    cleanup = CleanupService(store, events, provisioning)

    init_auth(SessionAuthenticator(settings.signing_key), guard)

    # --- Routers ---
    clusters.init_router(provisioning, status, access, teams)
    admin.init_router(provisioning, cleanup, events)
    health.init_router(provisioning, __version__)

    app.include_router(health.router)
    app.include_router(admin.router)
    app.include_router(clusters.router)

    logger.info("Cluster API ready (db=%s)", db.path)
    return app
