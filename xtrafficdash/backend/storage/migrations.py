"""
storage/migrations.py

Versioned schema changes applied on top of init_schema() (version 1).

v2: relay_configs table for the hysteria2 relay poller.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from .database import Database

logger = logging.getLogger(__name__)


def migration_2(cur) -> None:
    """Add relay_configs table."""
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS relay_configs (
            id                  INTEGER PRIMARY KEY AUTOINCREMENT,
            source_api_host     TEXT NOT NULL,
            source_api_port     INTEGER NOT NULL,
            source_api_password TEXT NOT NULL,
            target_api_url      TEXT NOT NULL,
            created_at          REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
        )
        """
    )


_MIGRATIONS: list[tuple[int, Callable]] = [
    (2, migration_2),
]


def current_version(db: Database) -> int:
    with db.read() as conn:
        row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def apply_migrations(db: Database) -> None:
    version_now = current_version(db)

    pending = [(v, fn) for v, fn in _MIGRATIONS if v > version_now]
    if not pending:
        logger.debug("No pending migrations (current schema version=%d)", version_now)
        return

    for version, migration_fn in pending:
        logger.info("Applying migration v%d …", version)
        try:
            with db.transaction() as conn:
                migration_fn(conn.cursor())
                conn.execute(
                    "INSERT OR REPLACE INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (version, time.time()),
                )
        except Exception as exc:
            logger.error("Migration v%d FAILED: %s — rolled back", version, exc)
            raise
        logger.info("Migration v%d applied successfully", version)
