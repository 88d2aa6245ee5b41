"""hackathon-atlas CLI: operator commands for the Atlas cluster manager.

Commands:
    init-db     Create or upgrade the SQLite schema
    cleanup     Delete clusters of concluded events (run from cron)
    refresh     Poll Atlas for one cluster, or every pending one
    serve       Launch the cluster API
"""

from __future__ import annotations

import dataclasses
import json
import logging
import sys
from typing import Any

import click

from hackathon_atlas import __version__
from hackathon_atlas.clusters.cleanup import CleanupService
from hackathon_atlas.clusters.provisioning import ProvisioningService
from hackathon_atlas.clusters.status import StatusService
from hackathon_atlas.clusters.store import ClusterStore
from hackathon_atlas.config import AtlasSettings, load_settings
from hackathon_atlas.control_plane.client import AtlasClient, ControlPlane
from hackathon_atlas.db.connection import Database
from hackathon_atlas.db.migrations import run_migrations
from hackathon_atlas.directory import EventStore, TeamStore
from hackathon_atlas.errors import AtlasError, ConfigError
from hackathon_atlas.models import CleanupReport, ClusterStatusSnapshot


def _settings(ctx: click.Context) -> AtlasSettings:
    return ctx.obj["settings"]


def _database(ctx: click.Context) -> Database:
    db = ctx.obj.get("db")
    if db is None:
        db = Database(_settings(ctx).db_path)
        run_migrations(db)
        ctx.obj["db"] = db
    return db


def _control_plane(ctx: click.Context, *, offline: bool = False) -> ControlPlane:
    """The injected control plane, or an Atlas client built from settings.

    With *offline* the client is built without a credentials check; used by
    dry runs, which never call Atlas.
    """
    cp = ctx.obj.get("control_plane")
    if cp is not None:
        return cp
    settings = _settings(ctx)
    if offline:
        return AtlasClient(
            settings.public_key,
            settings.private_key,
            settings.org_id,
            base_url=settings.base_url,
            api_version=settings.api_version,
            timeout=settings.request_timeout,
        )
    try:
        return AtlasClient.from_settings(settings)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _cleanup_service(ctx: click.Context, *, offline: bool = False) -> CleanupService:
    db = _database(ctx)
    store = ClusterStore(db)
    events = EventStore(db)
    provisioning = ProvisioningService(
        store,
        events,
        TeamStore(db),
        _control_plane(ctx, offline=offline),
        _settings(ctx),
    )
    return CleanupService(store, events, provisioning)


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    default=None,
    type=click.Path(dir_okay=False),
    help="Path to hackathon-atlas.yaml (default: auto-discover)",
)
@click.option(
    "--log-level",
    default="INFO",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Logging verbosity",
)
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str) -> None:
    """Hackathon Atlas: MongoDB Atlas clusters for hackathon teams."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    if "settings" not in ctx.obj:
        try:
            ctx.obj["settings"] = load_settings(config_path)
        except ConfigError as e:
            click.echo(f"Error loading config: {e}", err=True)
            sys.exit(1)


# --- init-db command ---


@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create or upgrade the database schema."""
    db = Database(_settings(ctx).db_path)
    version = run_migrations(db)
    ctx.obj["db"] = db
    click.echo(f"Database ready: {db.path} (schema v{version})")


# --- cleanup command ---


@cli.command()
@click.option("--event-id", default=None, help="Clean up a single event")
@click.option("--dry-run", is_flag=True, help="List clusters without deleting them")
@click.option("--json-output", is_flag=True, help="Output reports as JSON")
@click.pass_context
def cleanup(ctx: click.Context, event_id: str | None, dry_run: bool, json_output: bool) -> None:
    """Delete clusters of concluded events.

    Without --event-id every concluded event with auto-cleanup enabled is
    processed. Exits 1 if any cluster could not be deleted.
    """
    svc = _cleanup_service(ctx, offline=dry_run)
    try:
        if dry_run:
            reports = svc.preview_cleanup(event_id)
        elif event_id:
            reports = [svc.cleanup_event_clusters(event_id)]
        else:
            reports = svc.run_scheduled_cleanup()
    except AtlasError as e:
        click.echo(f"Error: {e.public_message}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps([r.model_dump(mode="json") for r in reports], indent=2))
    else:
        _print_reports(reports, dry_run=dry_run)

    if any(r.errors for r in reports):
        sys.exit(1)


# --- refresh command ---


@cli.command()
@click.argument("cluster_id", required=False)
@click.option("--pending", is_flag=True, help="Refresh every provisioning/deleting cluster")
@click.option("--json-output", is_flag=True, help="Output snapshots as JSON")
@click.pass_context
def refresh(
    ctx: click.Context, cluster_id: str | None, pending: bool, json_output: bool
) -> None:
    """Poll Atlas and update cluster status."""
    if not cluster_id and not pending:
        click.echo("Error: give a CLUSTER_ID or --pending", err=True)
        sys.exit(2)

    svc = StatusService(
        ClusterStore(_database(ctx)),
        _control_plane(ctx),
        app_name=_settings(ctx).app_name,
    )
    try:
        if cluster_id:
            snapshots = [svc.refresh_cluster_status(cluster_id)]
        else:
            snapshots = svc.refresh_pending()
    except AtlasError as e:
        click.echo(f"Error: {e.public_message}", err=True)
        sys.exit(1)

    if json_output:
        click.echo(json.dumps([s.model_dump(mode="json") for s in snapshots], indent=2))
        return
    if not snapshots:
        click.echo("No clusters to refresh.")
    for snap in snapshots:
        click.echo(_format_snapshot(snap))


# --- serve command ---


@cli.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", default=None, type=int, help="Port number")
@click.option("--dev", is_flag=True, help="Enable CORS for a local frontend")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, dev: bool) -> None:
    """Launch the cluster API."""
    try:
        import uvicorn
    except ImportError:
        click.echo(
            "Serving requires extra dependencies. Install with:\n"
            "  pip install hackathon-atlas[server]",
            err=True,
        )
        sys.exit(1)

    from hackathon_atlas.api.app import create_app

    settings = _settings(ctx)
    if dev:
        settings = dataclasses.replace(settings, dev_mode=True)
    host = host or settings.host
    port = port or settings.port
    try:
        app = create_app(
            settings,
            control_plane=ctx.obj.get("control_plane"),
            db=_database(ctx),
        )
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Hackathon Atlas API at http://{host}:{port}")
    if settings.dev_mode:
        click.echo("  Dev mode: CORS enabled for http://localhost:3000")

    uvicorn.run(app, host=host, port=port, log_level="info")


# --- helpers ---


def _print_reports(reports: list[CleanupReport], *, dry_run: bool) -> None:
    if not reports:
        click.echo("No events need cleanup.")
        return
    for report in reports:
        name = report.event_name or report.event_id
        if dry_run:
            click.echo(f"[dry run] {name}: {report.clusters_found} clusters would be deleted")
            for cid in report.cluster_ids:
                click.echo(f"  {cid}")
            continue
        click.echo(f"{name}: {report.clusters_deleted}/{report.clusters_found} deleted")
        for err in report.errors:
            click.echo(click.style("  FAIL", fg="red") + f" {err.cluster_id}: {err.error}")


def _format_snapshot(snap: ClusterStatusSnapshot) -> str:
    line: list[Any] = [snap.cluster_id, snap.status.value]
    if snap.atlas_state:
        line.append(f"(atlas: {snap.atlas_state})")
    if snap.connection_string:
        line.append(snap.connection_string)
    return "  ".join(str(p) for p in line)
