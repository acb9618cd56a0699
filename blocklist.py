"""Per-link block list, consulted before results reach the store."""

import logging
import uuid
from datetime import datetime
from typing import Optional

from database import Database
from models import BlockedItem, utcnow

logger = logging.getLogger(__name__)


class BlockedItemRepository:
    def __init__(self, db: Database):
        self._db = db

    def add(self, url: str, title: str = "", image: str = "") -> Optional[BlockedItem]:
        """Block a link. Returns None when the url is empty or already blocked."""
        url = (url or "").strip()
        if not url:
            return None

        item = BlockedItem(
            id=uuid.uuid4().hex[:16],
            url=url,
            title=title or "",
            image=image or "",
            blocked_at=utcnow(),
        )
        with self._db.transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO blocked_items (id, url, title, image, blocked_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (item.id, item.url, item.title, item.image, item.blocked_at.isoformat()),
            )
            if cursor.rowcount == 0:
                return None
        logger.info("Blocked %s", url)
        return item

    def remove(self, url: str) -> bool:
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM blocked_items WHERE url = ?", (url,))
        return cursor.rowcount > 0

    def list_all(self) -> list[BlockedItem]:
        rows = self._db.query(
            "SELECT id, url, title, image, blocked_at FROM blocked_items ORDER BY blocked_at DESC"
        )
        return [
            BlockedItem(
                id=r["id"],
                url=r["url"],
                title=r["title"],
                image=r["image"],
                blocked_at=datetime.fromisoformat(r["blocked_at"]),
            )
            for r in rows
        ]

    def is_blocked(self, url: str) -> bool:
        return bool(self._db.query("SELECT 1 FROM blocked_items WHERE url = ?", (url,)))

    def blocked_urls(self) -> set[str]:
        return {r[0] for r in self._db.query("SELECT url FROM blocked_items")}
