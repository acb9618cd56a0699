"""Result store: per-watch merge, dedup and new-item accounting.

Every mutator holds the watch's lock and runs inside one database
transaction, so readers never observe ``results_meta`` out of step with
the ``results`` rows. Counts are always derived from the rows, never
incremented.
"""

import logging
import sqlite3
import threading
import weakref
from datetime import datetime
from typing import Iterable, Optional

from database import Database
from errors import StoreNotFound
from models import IngestResult, RawItem, ResultItem, ResultsMeta, utcnow

logger = logging.getLogger(__name__)


def _row_to_item(row: sqlite3.Row) -> ResultItem:
    return ResultItem(
        watch_id=row["watch_id"],
        link=row["link"],
        title=row["title"],
        source=row["source"],
        price=row["price"],
        first_seen_at=datetime.fromisoformat(row["first_seen_at"]),
        is_new=bool(row["is_new"]),
    )


class ResultStore:
    def __init__(self, db: Database):
        self._db = db
        # Entries vanish once no caller holds the lock
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _watch_lock(self, watch_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(watch_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[watch_id] = lock
            return lock

    @staticmethod
    def _require_watch(conn: sqlite3.Connection, watch_id: str) -> None:
        if conn.execute("SELECT 1 FROM watches WHERE id = ?", (watch_id,)).fetchone() is None:
            raise StoreNotFound(watch_id)

    @staticmethod
    def _recompute_meta(conn: sqlite3.Connection, watch_id: str) -> ResultsMeta:
        total, new = conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(is_new), 0) FROM results WHERE watch_id = ?",
            (watch_id,),
        ).fetchone()
        conn.execute(
            "INSERT INTO results_meta (watch_id, total_count, new_count) VALUES (?, ?, ?) "
            "ON CONFLICT (watch_id) DO UPDATE SET "
            "total_count = excluded.total_count, new_count = excluded.new_count",
            (watch_id, total, new),
        )
        return ResultsMeta(watch_id=watch_id, total_count=total, new_count=new)

    def ingest(
        self,
        watch_id: str,
        raw_items: Iterable[RawItem],
        now: Optional[datetime] = None,
    ) -> IngestResult:
        """Merge a fresh batch of raw items into the watch's persisted state.

        Unseen links are inserted with ``is_new`` set; links already stored
        are left untouched (title, price and the read flag all stay as they
        are). Duplicate links inside the batch count once, first wins.

        Raises:
            StoreNotFound: unknown watch id.
            StoreTransactionError: persistence failed, nothing was written.
        """
        now = now or utcnow()
        raw_items = list(raw_items)

        with self._watch_lock(watch_id), self._db.transaction() as conn:
            self._require_watch(conn, watch_id)

            seen = {
                row[0]
                for row in conn.execute("SELECT link FROM results WHERE watch_id = ?", (watch_id,))
            }

            new_items = []
            for raw in raw_items:
                if not raw.link or raw.link in seen:
                    continue
                seen.add(raw.link)
                new_items.append(
                    ResultItem(
                        watch_id=watch_id,
                        link=raw.link,
                        title=raw.title,
                        source=raw.source,
                        price=raw.price,
                        first_seen_at=now,
                        is_new=True,
                    )
                )

            conn.executemany(
                "INSERT INTO results (watch_id, link, title, source, price, first_seen_at, is_new) "
                "VALUES (?, ?, ?, ?, ?, ?, 1)",
                [
                    (i.watch_id, i.link, i.title, i.source, i.price, i.first_seen_at.isoformat())
                    for i in new_items
                ],
            )
            meta = self._recompute_meta(conn, watch_id)

        if new_items:
            logger.info(
                "Watch %s: %d new item(s), %d total, %d unread",
                watch_id,
                len(new_items),
                meta.total_count,
                meta.new_count,
            )
        return IngestResult(
            watch_id=watch_id,
            new_items=new_items,
            total_count=meta.total_count,
            new_count=meta.new_count,
        )

    def acknowledge(self, watch_id: str) -> None:
        """Mark every item of the watch as read and zero its new count."""
        with self._watch_lock(watch_id), self._db.transaction() as conn:
            self._require_watch(conn, watch_id)
            conn.execute(
                "UPDATE results SET is_new = 0 WHERE watch_id = ? AND is_new = 1", (watch_id,)
            )
            self._recompute_meta(conn, watch_id)
        logger.debug("Watch %s acknowledged", watch_id)

    def acknowledge_all(self) -> int:
        """Acknowledge every watch with unread items. Returns how many were cleared."""
        watch_ids = [
            row[0]
            for row in self._db.query("SELECT watch_id FROM results_meta WHERE new_count > 0")
        ]
        for watch_id in watch_ids:
            try:
                self.acknowledge(watch_id)
            except StoreNotFound:
                # Watch removed since the query above
                continue
        return len(watch_ids)

    def get_results(self, watch_id: str) -> list[ResultItem]:
        """All items of a watch, unread first, then most recently seen first."""
        if not self._db.query("SELECT 1 FROM watches WHERE id = ?", (watch_id,)):
            raise StoreNotFound(watch_id)
        rows = self._db.query(
            "SELECT * FROM results WHERE watch_id = ? "
            "ORDER BY is_new DESC, first_seen_at DESC, rowid DESC",
            (watch_id,),
        )
        return [_row_to_item(r) for r in rows]

    def get_meta(self, watch_id: str) -> ResultsMeta:
        """Stored counts; a watch never ingested reports zeros."""
        if not self._db.query("SELECT 1 FROM watches WHERE id = ?", (watch_id,)):
            raise StoreNotFound(watch_id)
        rows = self._db.query(
            "SELECT total_count, new_count FROM results_meta WHERE watch_id = ?", (watch_id,)
        )
        if not rows:
            return ResultsMeta(watch_id=watch_id)
        return ResultsMeta(watch_id=watch_id, total_count=rows[0][0], new_count=rows[0][1])

    def new_counts(self) -> dict[str, int]:
        rows = self._db.query("SELECT watch_id, new_count FROM results_meta")
        return {row[0]: row[1] for row in rows}

    def verify_meta(self, watch_id: str) -> bool:
        """True when the stored meta row matches a fresh count over the items."""
        meta = self.get_meta(watch_id)
        total, new = self._db.query(
            "SELECT COUNT(*), COALESCE(SUM(is_new), 0) FROM results WHERE watch_id = ?",
            (watch_id,),
        )[0]
        return meta.total_count == total and meta.new_count == new
