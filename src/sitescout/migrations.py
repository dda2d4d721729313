from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Callable

Migration = Callable[[sqlite3.Connection], None]


def apply_migrations(conn: sqlite3.Connection) -> None:
    logger = logging.getLogger("sitescout.migrations")
    conn.execute("BEGIN IMMEDIATE")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )
    applied = {
        row[0]
        for row in conn.execute("SELECT version FROM schema_migrations").fetchall()
    }
    try:
        for version, migration in _get_migrations():
            if version in applied:
                logger.debug("migration_skipped version=%s", version)
                continue
            migration(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                (version, datetime.now(tz=timezone.utc).isoformat()),
            )
            logger.info("migration_applied version=%s", version)
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def _migration_initial_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sites (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            base_url TEXT NOT NULL,
            listing_url TEXT NOT NULL,
            test_url TEXT NULL,
            active INTEGER NOT NULL DEFAULT 1,
            listing_selectors_json TEXT NOT NULL,
            content_selectors_json TEXT NOT NULL,
            frequency_minutes INTEGER NOT NULL DEFAULT 60,
            fetch_strategy TEXT NOT NULL DEFAULT 'static',
            last_successful_run TEXT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS url_tracking (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            site_id TEXT NOT NULL REFERENCES sites(id),
            url TEXT NOT NULL,
            url_hash TEXT NOT NULL,
            domain TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'discovered',
            first_discovered_at TEXT NOT NULL,
            last_seen_at TEXT NOT NULL,
            times_discovered INTEGER NOT NULL DEFAULT 1,
            title TEXT NULL,
            image_url TEXT NULL,
            allow_re_extraction INTEGER NOT NULL DEFAULT 0,
            re_extraction_days INTEGER NOT NULL DEFAULT 30,
            next_re_extraction_at TEXT NULL,
            content_id TEXT NULL,
            generated_content_id TEXT NULL,
            published_id TEXT NULL,
            attempts INTEGER NOT NULL DEFAULT 0,
            last_attempt_at TEXT NULL,
            failure_reason TEXT NULL,
            queued_at TEXT NULL,
            processed_at TEXT NULL,
            processing_ms INTEGER NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(site_id, url_hash)
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_url_tracking_site_status "
        "ON url_tracking(site_id, status, last_seen_at)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_url_tracking_reextract "
        "ON url_tracking(status, allow_re_extraction, next_re_extraction_at)"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS discovery_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            site_id TEXT NOT NULL,
            listing_url TEXT NOT NULL,
            selector TEXT NULL,
            outcome TEXT NOT NULL,
            found INTEGER NOT NULL DEFAULT 0,
            new INTEGER NOT NULL DEFAULT 0,
            duplicate INTEGER NOT NULL DEFAULT 0,
            skipped INTEGER NOT NULL DEFAULT 0,
            queued INTEGER NOT NULL DEFAULT 0,
            fetch_ms INTEGER NOT NULL DEFAULT 0,
            parse_ms INTEGER NOT NULL DEFAULT 0,
            total_ms INTEGER NOT NULL DEFAULT 0,
            fetch_method TEXT NOT NULL,
            http_status INTEGER NULL,
            sample_urls_json TEXT NULL,
            error_category TEXT NULL,
            error_message TEXT NULL,
            triggered_by TEXT NOT NULL DEFAULT 'schedule',
            executed_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_discovery_runs_site "
        "ON discovery_runs(site_id, executed_at DESC)"
    )


def _migration_site_operational_fields(conn: sqlite3.Connection) -> None:
    columns = _table_columns(conn, "sites")
    to_add = {
        "fetch_settings_json": "TEXT NULL",
        "allow_re_extraction": "INTEGER NOT NULL DEFAULT 0",
        "re_extraction_days": "INTEGER NOT NULL DEFAULT 30",
        "successful_runs": "INTEGER NOT NULL DEFAULT 0",
        "failed_runs": "INTEGER NOT NULL DEFAULT 0",
        "total_urls_found": "INTEGER NOT NULL DEFAULT 0",
        "last_test_json": "TEXT NULL",
    }
    for name, ddl in to_add.items():
        if name in columns:
            continue
        conn.execute(f"ALTER TABLE sites ADD COLUMN {name} {ddl}")


def _get_migrations() -> list[tuple[str, Migration]]:
    return [
        ("001_initial_schema", _migration_initial_schema),
        ("002_site_operational_fields", _migration_site_operational_fields),
    ]


def _table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row[1] for row in rows}
