"""
storage/database.py

SQLite connection and schema initialisation for the xtrafficdash storage layer.

Design decisions:
  - WAL journal mode for concurrent readers + one writer without blocking.
  - check_same_thread=False: route handlers run storage calls in a worker
    thread pool, so one connection is shared across threads. Every statement
    runs under self._lock, which serialises writers and keeps readers from
    seeing another thread's open transaction.
  - isolation_level=None + explicit BEGIN IMMEDIATE: a write transaction
    takes SQLite's RESERVED lock up front, so two writers never both read
    a counter before either adds to it.
  - busy_timeout=5000ms: instead of raising SQLITE_BUSY immediately, SQLite
    will spin-wait up to 5 seconds if another process holds the file.
  - Foreign keys ON: deleting a service cascades to its entities and history.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from contextlib import contextmanager
from typing import Iterator

from ..errors import StorageError

logger = logging.getLogger(__name__)

_CURRENT_SCHEMA_VERSION = 1


class Database:
    """
    Thin wrapper around a sqlite3 connection.

    Usage:
        db = Database("data/xtrafficdash.db")
        db.init_schema()
        with db.transaction():
            db.execute("UPDATE services SET ...", (...))
        with db.read():
            rows = db.execute("SELECT ...").fetchall()
        db.close()
    """

    def __init__(self, db_path: str = "data/xtrafficdash.db") -> None:
        self.db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self.conn = sqlite3.connect(
            db_path, check_same_thread=False, isolation_level=None
        )
        self.conn.row_factory = sqlite3.Row  # rows behave like dicts
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._configure()
        logger.info("Database opened — path=%r", db_path)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _configure(self) -> None:
        """Apply performance and safety PRAGMAs."""
        with self._lock:
            cur = self.conn.cursor()
            cur.execute("PRAGMA journal_mode=WAL")
            cur.execute("PRAGMA foreign_keys=ON")
            cur.execute("PRAGMA busy_timeout=5000")
            cur.execute("PRAGMA synchronous=NORMAL")  # safe with WAL

    # ------------------------------------------------------------------
    # Schema initialisation
    # ------------------------------------------------------------------

    def init_schema(self) -> None:
        """Create all tables and indexes if they don't already exist."""
        with self._lock:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS services (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    ip_address   TEXT NOT NULL UNIQUE,
                    service_name TEXT NOT NULL DEFAULT '',
                    custom_name  TEXT DEFAULT NULL,
                    first_seen   REAL NOT NULL,
                    last_seen    REAL NOT NULL,
                    created_at   REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0),
                    updated_at   REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0)
                );

                CREATE TABLE IF NOT EXISTS inbound_traffics (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    service_id   INTEGER NOT NULL
                                 REFERENCES services(id) ON DELETE CASCADE,
                    tag          TEXT NOT NULL,
                    port         INTEGER NOT NULL DEFAULT 0,
                    custom_name  TEXT DEFAULT NULL,
                    up           INTEGER NOT NULL DEFAULT 0,
                    down         INTEGER NOT NULL DEFAULT 0,
                    last_updated REAL DEFAULT NULL,
                    status       TEXT NOT NULL DEFAULT 'active',
                    UNIQUE (service_id, tag)
                );

                CREATE TABLE IF NOT EXISTS client_traffics (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    service_id   INTEGER NOT NULL
                                 REFERENCES services(id) ON DELETE CASCADE,
                    email        TEXT NOT NULL,
                    custom_name  TEXT DEFAULT NULL,
                    up           INTEGER NOT NULL DEFAULT 0,
                    down         INTEGER NOT NULL DEFAULT 0,
                    last_updated REAL DEFAULT NULL,
                    status       TEXT NOT NULL DEFAULT 'active',
                    UNIQUE (service_id, email)
                );

                CREATE TABLE IF NOT EXISTS inbound_traffic_history (
                    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
                    inbound_traffic_id INTEGER NOT NULL
                                       REFERENCES inbound_traffics(id) ON DELETE CASCADE,
                    service_id         INTEGER NOT NULL
                                       REFERENCES services(id) ON DELETE CASCADE,
                    date               TEXT NOT NULL,
                    daily_up           INTEGER NOT NULL DEFAULT 0,
                    daily_down         INTEGER NOT NULL DEFAULT 0,
                    created_at         REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0),
                    UNIQUE (inbound_traffic_id, date)
                );

                CREATE TABLE IF NOT EXISTS client_traffic_history (
                    id                INTEGER PRIMARY KEY AUTOINCREMENT,
                    client_traffic_id INTEGER NOT NULL
                                      REFERENCES client_traffics(id) ON DELETE CASCADE,
                    service_id        INTEGER NOT NULL
                                      REFERENCES services(id) ON DELETE CASCADE,
                    date              TEXT NOT NULL,
                    daily_up          INTEGER NOT NULL DEFAULT 0,
                    daily_down        INTEGER NOT NULL DEFAULT 0,
                    created_at        REAL NOT NULL DEFAULT ((julianday('now') - 2440587.5) * 86400.0),
                    UNIQUE (client_traffic_id, date)
                );

                CREATE TABLE IF NOT EXISTS schema_version (
                    version    INTEGER PRIMARY KEY,
                    applied_at REAL NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_inbound_history_date
                    ON inbound_traffic_history(date);
                CREATE INDEX IF NOT EXISTS idx_inbound_history_service_date
                    ON inbound_traffic_history(service_id, date);
                CREATE INDEX IF NOT EXISTS idx_client_history_date
                    ON client_traffic_history(date);
                CREATE INDEX IF NOT EXISTS idx_client_history_service_date
                    ON client_traffic_history(service_id, date);
            """)

            # Record schema version (ignore if already present)
            self.conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (_CURRENT_SCHEMA_VERSION, time.time()),
            )
        logger.info("Schema initialised (version=%d)", _CURRENT_SCHEMA_VERSION)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of writes as one atomic unit.

        Commits on success, rolls back on any exception. sqlite3 errors are
        re-raised as StorageError; everything else propagates unchanged.
        Nested calls join the outermost transaction.
        """
        with self._lock:
            if self._tx_depth:
                self._tx_depth += 1
                try:
                    yield self.conn
                finally:
                    self._tx_depth -= 1
                return

            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as exc:
                raise StorageError(f"could not begin transaction: {exc}") from exc

            self._tx_depth = 1
            try:
                yield self.conn
            except sqlite3.Error as exc:
                self._rollback()
                logger.error("Transaction rolled back: %s", exc)
                raise StorageError(f"storage failure: {exc}") from exc
            except BaseException:
                self._rollback()
                raise
            else:
                try:
                    self.conn.execute("COMMIT")
                except sqlite3.Error as exc:
                    self._rollback()
                    logger.error("Commit failed: %s", exc)
                    raise StorageError(f"commit failed: {exc}") from exc
            finally:
                self._tx_depth = 0

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection for a sequence of reads."""
        with self._lock:
            try:
                yield self.conn
            except sqlite3.Error as exc:
                logger.error("Read failed: %s", exc)
                raise StorageError(f"storage failure: {exc}") from exc

    def _rollback(self) -> None:
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """True if the connection answers a trivial query."""
        try:
            with self._lock:
                self.conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def close(self) -> None:
        """Close the SQLite connection."""
        with self._lock:
            try:
                self.conn.close()
                logger.info("Database closed — path=%r", self.db_path)
            except sqlite3.Error as exc:
                logger.warning("Error closing database: %s", exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a single parameterized statement."""
        with self._lock:
            return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list) -> None:
        """Execute a parameterized statement against a list of parameter tuples."""
        with self._lock:
            self.conn.executemany(sql, params_list)
