"""Version-tracked SQLite schema migrations."""

from __future__ import annotations

import sqlite3

from hackathon_atlas.db.connection import Database

MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER NOT NULL
        );
        INSERT INTO schema_version (version) VALUES (0);

        CREATE TABLE IF NOT EXISTS events (
            event_id            TEXT PRIMARY KEY,
            name                TEXT NOT NULL,
            status              TEXT NOT NULL DEFAULT 'draft',
            start_date          TEXT,
            end_date            TEXT,
            atlas_provisioning  TEXT NOT NULL DEFAULT '{}'
        );

        CREATE TABLE IF NOT EXISTS teams (
            team_id    TEXT PRIMARY KEY,
            event_id   TEXT NOT NULL REFERENCES events(event_id),
            name       TEXT NOT NULL DEFAULT '',
            leader_id  TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS team_members (
            team_id  TEXT NOT NULL REFERENCES teams(team_id),
            user_id  TEXT NOT NULL,
            PRIMARY KEY (team_id, user_id)
        );

        CREATE INDEX IF NOT EXISTS idx_teams_event ON teams(event_id);
        CREATE INDEX IF NOT EXISTS idx_events_status ON events(status);
        """,
    ),
    (
        2,
        """
        CREATE TABLE IF NOT EXISTS atlas_clusters (
            cluster_id                  TEXT PRIMARY KEY,
            event_id                    TEXT NOT NULL,
            team_id                     TEXT NOT NULL,
            project_id                  TEXT,
            provisioned_by              TEXT NOT NULL,
            atlas_project_id            TEXT NOT NULL DEFAULT '',
            atlas_project_name          TEXT NOT NULL DEFAULT '',
            atlas_cluster_name          TEXT NOT NULL DEFAULT '',
            atlas_cluster_id            TEXT NOT NULL DEFAULT '',
            provider                    TEXT NOT NULL,
            region                      TEXT NOT NULL,
            instance_size               TEXT NOT NULL DEFAULT 'M0',
            status                      TEXT NOT NULL DEFAULT 'provisioning',
            connection_string           TEXT,
            standard_connection_string  TEXT,
            mongodb_version             TEXT NOT NULL DEFAULT '',
            error_message               TEXT,
            created_at                  TEXT NOT NULL,
            updated_at                  TEXT NOT NULL,
            last_status_check           TEXT,
            deleted_at                  TEXT,
            CHECK (connection_string IS NULL OR status = 'active')
        );

        -- One live cluster per team per event, enforced by the database.
        CREATE UNIQUE INDEX IF NOT EXISTS idx_atlas_clusters_live_team
            ON atlas_clusters(event_id, team_id)
            WHERE status NOT IN ('deleted', 'failed');
        CREATE INDEX IF NOT EXISTS idx_atlas_clusters_event_status
            ON atlas_clusters(event_id, status);
        CREATE INDEX IF NOT EXISTS idx_atlas_clusters_team
            ON atlas_clusters(team_id);

        CREATE TABLE IF NOT EXISTS atlas_database_users (
            cluster_id     TEXT NOT NULL REFERENCES atlas_clusters(cluster_id)
                               ON DELETE CASCADE,
            username       TEXT NOT NULL,
            password_hash  TEXT NOT NULL DEFAULT '',
            roles          TEXT NOT NULL DEFAULT '[]',
            created_by     TEXT NOT NULL DEFAULT '',
            created_at     TEXT NOT NULL,
            PRIMARY KEY (cluster_id, username)
        );

        CREATE TABLE IF NOT EXISTS atlas_ip_access (
            cluster_id  TEXT NOT NULL REFERENCES atlas_clusters(cluster_id)
                            ON DELETE CASCADE,
            cidr_block  TEXT NOT NULL,
            comment     TEXT NOT NULL DEFAULT '',
            added_by    TEXT NOT NULL DEFAULT '',
            added_at    TEXT NOT NULL,
            PRIMARY KEY (cluster_id, cidr_block)
        );
        """,
    ),
    (
        3,
        """
        ALTER TABLE atlas_database_users ADD COLUMN salt TEXT NOT NULL DEFAULT '';
        """,
    ),
]


def get_schema_version(db: Database) -> int:
    """Return the current schema version, or 0 if uninitialized."""
    try:
        row = db.fetchone("SELECT version FROM schema_version")
    except sqlite3.OperationalError:
        return 0
    return int(row["version"]) if row else 0


def run_migrations(db: Database) -> int:
    """Apply pending migrations. Returns the final schema version."""
    current = get_schema_version(db)

    for version, sql in MIGRATIONS:
        if version <= current:
            continue
        db.write_script(sql)
        db.write("UPDATE schema_version SET version = ?", (version,))

    return get_schema_version(db)
