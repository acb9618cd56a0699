"""Watch repository backed by the ``watches`` table."""

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Optional

from database import Database
from errors import StoreNotFound
from models import Watch, utcnow

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, name, terms, active, strict, enabled_sites, exclude_terms, notify, "
    "poll_interval_seconds, created_at, last_run, last_result_count"
)


def _row_to_watch(row: sqlite3.Row) -> Watch:
    return Watch(
        id=row["id"],
        name=row["name"],
        terms=json.loads(row["terms"]),
        active=bool(row["active"]),
        strict=bool(row["strict"]),
        enabled_sites=json.loads(row["enabled_sites"] or "{}"),
        exclude_terms=json.loads(row["exclude_terms"] or "[]"),
        notify=bool(row["notify"]),
        poll_interval_seconds=row["poll_interval_seconds"],
        created_at=datetime.fromisoformat(row["created_at"]),
        last_run=datetime.fromisoformat(row["last_run"]) if row["last_run"] else None,
        last_result_count=row["last_result_count"],
    )


def _watch_to_params(watch: Watch) -> tuple:
    return (
        watch.id,
        watch.name,
        json.dumps(watch.terms, ensure_ascii=False),
        int(watch.active),
        int(watch.strict),
        json.dumps(watch.enabled_sites),
        json.dumps(watch.exclude_terms, ensure_ascii=False),
        int(watch.notify),
        watch.poll_interval_seconds,
        watch.created_at.isoformat(),
        watch.last_run.isoformat() if watch.last_run else None,
        watch.last_result_count,
    )


class WatchRepository:
    """Read/write access to watches. Never touches result rows except on remove."""

    def __init__(self, db: Database):
        self._db = db

    def add(self, terms: list[str], **fields) -> Watch:
        """Create a watch, or return the existing one with the same terms or name."""
        candidate = Watch(id=fields.pop("id", None) or uuid.uuid4().hex, terms=terms, **fields)

        wanted = sorted(candidate.terms)
        for existing in self.list_all():
            if sorted(existing.terms) == wanted or existing.name == candidate.name:
                logger.info("Watch '%s' already exists as %s", candidate.name, existing.id)
                return existing

        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO watches ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                _watch_to_params(candidate),
            )
        logger.info("Added watch %s (%s)", candidate.id, candidate.name)
        return candidate

    def get(self, watch_id: str) -> Optional[Watch]:
        rows = self._db.query(f"SELECT {_COLUMNS} FROM watches WHERE id = ?", (watch_id,))
        return _row_to_watch(rows[0]) if rows else None

    def exists(self, watch_id: str) -> bool:
        return bool(self._db.query("SELECT 1 FROM watches WHERE id = ?", (watch_id,)))

    def list_all(self) -> list[Watch]:
        rows = self._db.query(f"SELECT {_COLUMNS} FROM watches ORDER BY created_at, id")
        return [_row_to_watch(r) for r in rows]

    def list_active(self) -> list[Watch]:
        rows = self._db.query(
            f"SELECT {_COLUMNS} FROM watches WHERE active = 1 ORDER BY created_at, id"
        )
        return [_row_to_watch(r) for r in rows]

    def update(self, watch_id: str, **changes) -> Watch:
        """Apply field changes to a watch. ``id`` cannot be changed."""
        changes.pop("id", None)
        with self._db.transaction() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM watches WHERE id = ?", (watch_id,)
            ).fetchone()
            if row is None:
                raise StoreNotFound(watch_id)
            current = _row_to_watch(row)
            updated = Watch(**{**current.model_dump(), **changes})
            params = _watch_to_params(updated)
            conn.execute(
                "UPDATE watches SET name = ?, terms = ?, active = ?, strict = ?, "
                "enabled_sites = ?, exclude_terms = ?, notify = ?, poll_interval_seconds = ?, "
                "created_at = ?, last_run = ?, last_result_count = ? WHERE id = ?",
                params[1:] + (watch_id,),
            )
        return updated

    def set_active(self, watch_id: str, active: bool) -> Watch:
        return self.update(watch_id, active=active)

    def stamp_last_run(
        self,
        watch_id: str,
        at: Optional[datetime] = None,
        result_count: Optional[int] = None,
    ) -> None:
        at = at or utcnow()
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE watches SET last_run = ?, last_result_count = ? WHERE id = ?",
                (at.isoformat(), result_count, watch_id),
            )
            if cursor.rowcount == 0:
                raise StoreNotFound(watch_id)

    def remove(self, watch_id: str) -> None:
        """Delete a watch together with its results and meta row."""
        with self._db.transaction() as conn:
            conn.execute("DELETE FROM results WHERE watch_id = ?", (watch_id,))
            conn.execute("DELETE FROM results_meta WHERE watch_id = ?", (watch_id,))
            cursor = conn.execute("DELETE FROM watches WHERE id = ?", (watch_id,))
            if cursor.rowcount == 0:
                raise StoreNotFound(watch_id)
        logger.info("Removed watch %s", watch_id)
