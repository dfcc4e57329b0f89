"""ContentStore: libsql-backed content repository."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from postpilot.content.models import Content, ContentStatus
from postpilot.db import get_connection, to_db_time

if TYPE_CHECKING:
    from pathlib import Path

    from postpilot.content.models import PublishReceipt
    from postpilot.scheduler.models import ContentType

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS content_items (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    content_type  TEXT NOT NULL,
    caption       TEXT NOT NULL DEFAULT '',
    hashtags      TEXT NOT NULL DEFAULT '[]',
    media         TEXT NOT NULL DEFAULT '[]',
    cover_url     TEXT,
    status        TEXT NOT NULL DEFAULT 'draft',
    provider_id   TEXT,
    permalink     TEXT,
    published_at  TEXT,
    error_message TEXT,
    metrics       TEXT NOT NULL DEFAULT '{}',
    created_at    TEXT NOT NULL
)
"""


class ContentStore:
    """Persists posts, reels and stories in SQLite / Turso.

    Satisfies the ``ContentRepository`` protocol used by the dispatcher.
    Singleton accessed via ``ContentStore.get()``.  Pass an explicit
    *db_path* for test isolation.
    """

    _instance: ContentStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> ContentStore:
        """Return the shared ContentStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self):  # noqa: ANN202
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    async def _update(self, content_id: str, assignments: str, params: tuple) -> bool:
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE content_items SET {assignments} WHERE id = ?",  # noqa: S608
                (*params, content_id),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    # -- CRUD ------------------------------------------------------------------

    async def add(self, content: Content) -> Content:
        """Insert a content entity. Returns the same object."""
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO content_items
                    (id, user_id, content_type, caption, hashtags, media, cover_url,
                     status, provider_id, permalink, published_at, error_message,
                     metrics, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                content.to_row(),
            )
            await db.commit()
            logger.info("Added %s content: %s", content.content_type, content.id)
            return content
        finally:
            await db.close()

    async def find_by_id(self, content_type: ContentType, content_id: str) -> Content | None:
        """Fetch content of the given type, or None when it does not exist."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM content_items WHERE id = ? AND content_type = ?",
                (content_id, str(content_type)),
            )
            row = await cursor.fetchone()
            return Content.from_row(row) if row else None
        finally:
            await db.close()

    async def mark_published(self, content: Content, receipt: PublishReceipt) -> None:
        """Store the provider id, permalink and publish time."""
        await self._update(
            content.id,
            "status = ?, provider_id = ?, permalink = ?, published_at = ?, error_message = NULL",
            (
                str(ContentStatus.PUBLISHED),
                receipt.provider_id,
                receipt.permalink,
                to_db_time(receipt.published_at),
            ),
        )
        content.status = ContentStatus.PUBLISHED
        content.provider_id = receipt.provider_id
        content.permalink = receipt.permalink
        content.published_at = receipt.published_at
        content.error_message = None

    async def mark_failed(self, content: Content, reason: str) -> None:
        """Record a publish failure on the content itself."""
        await self._update(
            content.id,
            "status = ?, error_message = ?",
            (str(ContentStatus.FAILED), reason),
        )
        content.status = ContentStatus.FAILED
        content.error_message = reason

    async def clone(self, content: Content) -> Content:
        """Persist a copy with a new id and publishing fields reset."""
        copy = content.fresh_copy()
        await self.add(copy)
        logger.info("Cloned content %s -> %s", content.id, copy.id)
        return copy
