"""ScheduledItemStore: libsql persistence for scheduled items.

Every state transition is a status-guarded ``UPDATE`` (``... WHERE id = ?
AND status = ?``).  A transition that matches zero rows lost a race (another
dispatcher claimed the item, or a cancel landed first) and reports False.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from postpilot.db import get_connection, to_db_time, utcnow
from postpilot.scheduler.models import ItemStatus, ScheduledItem

if TYPE_CHECKING:
    from datetime import datetime
    from pathlib import Path

    from postpilot.scheduler.models import RecurrencePolicy

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS scheduled_items (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    content_type      TEXT NOT NULL,
    content_id        TEXT NOT NULL,
    scheduled_for     TEXT NOT NULL,
    timezone          TEXT NOT NULL DEFAULT 'UTC',
    recurring         TEXT,
    status            TEXT NOT NULL DEFAULT 'pending',
    attempts          INTEGER NOT NULL DEFAULT 0,
    max_attempts      INTEGER NOT NULL DEFAULT 3,
    last_attempt      TEXT,
    completed_at      TEXT,
    error_message     TEXT,
    notify_on_success INTEGER NOT NULL DEFAULT 1,
    notify_on_failure INTEGER NOT NULL DEFAULT 1,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
)
"""

_CREATE_DUE_INDEX = """
CREATE INDEX IF NOT EXISTS idx_scheduled_items_due
    ON scheduled_items (status, scheduled_for)
"""

_CREATE_USER_INDEX = """
CREATE INDEX IF NOT EXISTS idx_scheduled_items_user
    ON scheduled_items (user_id, scheduled_for)
"""

_INSERT = """
INSERT INTO scheduled_items
    (id, user_id, content_type, content_id, scheduled_for, timezone, recurring,
     status, attempts, max_attempts, last_attempt, completed_at, error_message,
     notify_on_success, notify_on_failure, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class ScheduledItemStore:
    """Persists scheduled items in SQLite / Turso.

    Singleton accessed via ``ScheduledItemStore.get()``.  Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: ScheduledItemStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False

    @classmethod
    def get(cls) -> ScheduledItemStore:
        """Return the shared ScheduledItemStore instance."""
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
            await db.execute(_CREATE_DUE_INDEX)
            await db.execute(_CREATE_USER_INDEX)
            await db.commit()
            self._initialised = True
        return db

    async def _transition(
        self,
        item_id: str,
        expected: ItemStatus,
        assignments: str,
        params: tuple,
    ) -> bool:
        """Run a guarded ``UPDATE`` and report whether it matched."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"UPDATE scheduled_items SET {assignments}, updated_at = ? "  # noqa: S608
                "WHERE id = ? AND status = ?",
                (*params, to_db_time(utcnow()), item_id, str(expected)),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    # -- CRUD ------------------------------------------------------------------

    async def add_item(self, item: ScheduledItem) -> ScheduledItem:
        """Insert a new item. Returns the same item object."""
        db = await self._connect()
        try:
            await db.execute(_INSERT, item.to_row())
            await db.commit()
            logger.info(
                "Added scheduled item: %s (%s %s at %s)",
                item.id,
                item.content_type,
                item.content_id,
                to_db_time(item.scheduled_for),
            )
            return item
        finally:
            await db.close()

    async def get_item(self, item_id: str) -> ScheduledItem | None:
        """Fetch an item by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM scheduled_items WHERE id = ?", (item_id,)
            )
            row = await cursor.fetchone()
            return ScheduledItem.from_row(row) if row else None
        finally:
            await db.close()

    async def list_items(
        self,
        *,
        user_id: str | None = None,
        status: ItemStatus | None = None,
        limit: int = 100,
    ) -> list[ScheduledItem]:
        """List items, optionally filtered by owner and status, earliest first."""
        clauses: list[str] = []
        params: list = []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(str(status))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT * FROM scheduled_items {where} "  # noqa: S608
                "ORDER BY scheduled_for ASC LIMIT ?",
                (*params, limit),
            )
            rows = await cursor.fetchall()
            return [ScheduledItem.from_row(row) for row in rows]
        finally:
            await db.close()

    async def list_due(self, now: datetime, limit: int) -> list[ScheduledItem]:
        """Return up to *limit* pending items due at *now*, earliest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM scheduled_items
                WHERE status = ? AND scheduled_for <= ? AND attempts < max_attempts
                ORDER BY scheduled_for ASC
                LIMIT ?
                """,
                (str(ItemStatus.PENDING), to_db_time(now), limit),
            )
            rows = await cursor.fetchall()
            return [ScheduledItem.from_row(row) for row in rows]
        finally:
            await db.close()

    async def list_stalled(self, before: datetime) -> list[ScheduledItem]:
        """Return items stuck in ``processing`` since before *before*."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT * FROM scheduled_items
                WHERE status = ? AND (last_attempt IS NULL OR last_attempt < ?)
                ORDER BY scheduled_for ASC
                """,
                (str(ItemStatus.PROCESSING), to_db_time(before)),
            )
            rows = await cursor.fetchall()
            return [ScheduledItem.from_row(row) for row in rows]
        finally:
            await db.close()

    async def delete_item(self, item_id: str) -> bool:
        """Delete an item outright. Returns True if a row was removed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM scheduled_items WHERE id = ?", (item_id,)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted scheduled item: %s", item_id)
            return deleted
        finally:
            await db.close()

    # -- State transitions -----------------------------------------------------

    async def claim(self, item_id: str, now: datetime) -> ScheduledItem | None:
        """Move a due item from ``pending`` to ``processing`` and count the attempt.

        Returns the updated item, or None when the guard did not match.
        """
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE scheduled_items
                SET status = ?, attempts = attempts + 1, last_attempt = ?, updated_at = ?
                WHERE id = ? AND status = ? AND attempts < max_attempts
                """,
                (
                    str(ItemStatus.PROCESSING),
                    to_db_time(now),
                    to_db_time(now),
                    item_id,
                    str(ItemStatus.PENDING),
                ),
            )
            await db.commit()
            if cursor.rowcount == 0:
                return None
            cursor = await db.execute(
                "SELECT * FROM scheduled_items WHERE id = ?", (item_id,)
            )
            row = await cursor.fetchone()
            return ScheduledItem.from_row(row) if row else None
        finally:
            await db.close()

    async def complete(
        self,
        item_id: str,
        completed_at: datetime,
        next_item: ScheduledItem | None = None,
    ) -> bool:
        """Mark a processing item completed, inserting its next occurrence.

        Both writes share one transaction.  When the guard does not match,
        nothing is written, so a second completion cannot add a duplicate
        future occurrence.
        """
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                UPDATE scheduled_items
                SET status = ?, completed_at = ?, error_message = NULL, updated_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    str(ItemStatus.COMPLETED),
                    to_db_time(completed_at),
                    to_db_time(completed_at),
                    item_id,
                    str(ItemStatus.PROCESSING),
                ),
            )
            if cursor.rowcount == 0:
                await db.rollback()
                logger.warning("Completion guard missed for item %s", item_id)
                return False
            if next_item is not None:
                await db.execute(_INSERT, next_item.to_row())
            await db.commit()
            return True
        finally:
            await db.close()

    async def schedule_retry(
        self, item_id: str, scheduled_for: datetime, error_message: str | None
    ) -> bool:
        """Return a processing item to ``pending`` at a later time."""
        return await self._transition(
            item_id,
            ItemStatus.PROCESSING,
            "status = ?, scheduled_for = ?, error_message = ?",
            (str(ItemStatus.PENDING), to_db_time(scheduled_for), error_message),
        )

    async def fail(self, item_id: str, error_message: str) -> bool:
        """Mark a processing item as permanently failed."""
        return await self._transition(
            item_id,
            ItemStatus.PROCESSING,
            "status = ?, error_message = ?",
            (str(ItemStatus.FAILED), error_message),
        )

    async def cancel(self, item_id: str) -> bool:
        """Cancel a pending item. False once the dispatcher has claimed it."""
        cancelled = await self._transition(
            item_id,
            ItemStatus.PENDING,
            "status = ?",
            (str(ItemStatus.CANCELLED),),
        )
        if cancelled:
            logger.info("Cancelled scheduled item: %s", item_id)
        return cancelled

    async def reschedule(
        self,
        item_id: str,
        scheduled_for: datetime,
        *,
        timezone: str | None = None,
        recurring: RecurrencePolicy | None = None,
    ) -> bool:
        """Move a pending item to a new time (and optionally a new policy)."""
        assignments = ["scheduled_for = ?"]
        params: list = [to_db_time(scheduled_for)]
        if timezone is not None:
            assignments.append("timezone = ?")
            params.append(timezone)
        if recurring is not None:
            assignments.append("recurring = ?")
            params.append(json.dumps(recurring.to_dict()))
        return await self._transition(
            item_id, ItemStatus.PENDING, ", ".join(assignments), tuple(params)
        )
