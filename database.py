"""SQLite connection, schema and transaction handling."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

from errors import StoreTransactionError

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS watches (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    terms TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    strict INTEGER NOT NULL DEFAULT 1,
    enabled_sites TEXT NOT NULL DEFAULT '{}',
    exclude_terms TEXT NOT NULL DEFAULT '[]',
    notify INTEGER NOT NULL DEFAULT 1,
    poll_interval_seconds INTEGER,
    created_at TEXT NOT NULL,
    last_run TEXT,
    last_result_count INTEGER
);

CREATE TABLE IF NOT EXISTS results (
    watch_id TEXT NOT NULL,
    link TEXT NOT NULL,
    title TEXT NOT NULL,
    source TEXT NOT NULL,
    price TEXT NOT NULL DEFAULT '',
    first_seen_at TEXT NOT NULL,
    is_new INTEGER NOT NULL DEFAULT 1,
    UNIQUE (watch_id, link)
);

CREATE INDEX IF NOT EXISTS idx_results_watch_new ON results (watch_id, is_new);

CREATE TABLE IF NOT EXISTS results_meta (
    watch_id TEXT PRIMARY KEY,
    total_count INTEGER NOT NULL DEFAULT 0,
    new_count INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS blocked_items (
    id TEXT PRIMARY KEY,
    url TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL DEFAULT '',
    image TEXT NOT NULL DEFAULT '',
    blocked_at TEXT NOT NULL
);
"""


class Database:
    """Single shared connection guarded by a lock.

    The connection runs in autocommit mode; writes go through
    ``transaction()`` which issues BEGIN IMMEDIATE / COMMIT / ROLLBACK.
    """

    def __init__(self, db_path: str = "market_watch.db"):
        self.path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        with self._lock:
            self._conn.executescript(SCHEMA)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; sqlite errors roll back and surface as StoreTransactionError."""
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreTransactionError(f"could not begin transaction: {e}") from e
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except BaseException as e:
                self._rollback()
                if isinstance(e, sqlite3.Error):
                    raise StoreTransactionError(str(e)) from e
                raise

    def _rollback(self) -> None:
        # SQLite already rolled back on its own after FULL, IOERR and NOMEM errors
        if not self._conn.in_transaction:
            return
        try:
            self._conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed")

    def query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        """Read-only helper returning all rows."""
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreTransactionError(str(e)) from e

    def close(self) -> None:
        with self._lock:
            self._conn.close()
