"""JobRegistry: durable, expiring record of in-flight external jobs.

Replaces a process-local dict of job id -> metadata: a restart no longer
orphans jobs whose completion still needs the caller's context (prompt,
music, captions, owner).  Rows expire after ``job_ttl_hours`` and are purged
by the scheduler engine.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from postpilot.config import settings
from postpilot.db import from_db_time, get_connection, to_db_time, utcnow
from postpilot.jobs.models import JobHandle, JobStatus

if TYPE_CHECKING:
    from pathlib import Path

    from postpilot.jobs.models import JobOutcome

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS external_jobs (
    id         TEXT NOT NULL,
    provider   TEXT NOT NULL,
    status     TEXT NOT NULL,
    metadata   TEXT NOT NULL DEFAULT '{}',
    output     TEXT,
    error      TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    PRIMARY KEY (provider, id)
)
"""


class JobRegistry:
    """Persists job handles with their metadata and an expiry time.

    Singleton accessed via ``JobRegistry.get()``.  Pass an explicit *db_path*
    for test isolation.
    """

    _instance: JobRegistry | None = None

    def __init__(self, db_path: Path | None = None, ttl: timedelta | None = None) -> None:
        self._db_path = db_path
        self._ttl = ttl or timedelta(hours=settings.job_ttl_hours)
        self._initialised = False

    @classmethod
    def get(cls) -> JobRegistry:
        """Return the shared JobRegistry instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    async def _connect(self):  # noqa: ANN202
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    # -- Operations --------------------------------------------------------------

    async def register(self, handle: JobHandle) -> None:
        """Record a freshly started job (or refresh an existing row)."""
        now = utcnow()
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT OR REPLACE INTO external_jobs
                    (id, provider, status, metadata, output, error,
                     created_at, updated_at, expires_at)
                VALUES (?, ?, ?, ?, NULL, NULL, ?, ?, ?)
                """,
                (
                    handle.id,
                    handle.provider,
                    str(handle.status),
                    json.dumps(handle.metadata),
                    to_db_time(now),
                    to_db_time(now),
                    to_db_time(now + self._ttl),
                ),
            )
            await db.commit()
            logger.debug("Registered %s job %s", handle.provider, handle.id)
        finally:
            await db.close()

    async def lookup(self, provider: str, job_id: str) -> JobHandle | None:
        """Rebuild a handle from its row, or None if unknown or expired."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                """
                SELECT id, provider, status, metadata, expires_at
                FROM external_jobs WHERE provider = ? AND id = ?
                """,
                (provider, job_id),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None:
            return None
        if from_db_time(row[4]) <= utcnow():
            return None
        return JobHandle(
            id=row[0],
            provider=row[1],
            status=JobStatus(row[2]),
            metadata=json.loads(row[3] or "{}"),
        )

    async def record_outcome(self, provider: str, outcome: JobOutcome) -> None:
        """Store the terminal result of a job so later lookups can reuse it."""
        if outcome.success:
            status = JobStatus.SUCCEEDED
        elif outcome.timed_out:
            status = JobStatus.PROCESSING
        else:
            status = JobStatus.FAILED
        db = await self._connect()
        try:
            await db.execute(
                """
                UPDATE external_jobs
                SET status = ?, output = ?, error = ?, updated_at = ?
                WHERE provider = ? AND id = ?
                """,
                (
                    str(status),
                    json.dumps(outcome.output) if outcome.output is not None else None,
                    outcome.error,
                    to_db_time(utcnow()),
                    provider,
                    outcome.job_id,
                ),
            )
            await db.commit()
        finally:
            await db.close()

    async def get_output(self, provider: str, job_id: str) -> Any:
        """Return the stored output of a succeeded job, or None."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT output FROM external_jobs WHERE provider = ? AND id = ? AND status = ?",
                (provider, job_id, str(JobStatus.SUCCEEDED)),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        if row is None or row[0] is None:
            return None
        return json.loads(row[0])

    async def discard(self, provider: str, job_id: str) -> bool:
        """Remove a consumed job. Returns True if a row was deleted."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM external_jobs WHERE provider = ? AND id = ?",
                (provider, job_id),
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def purge_expired(self) -> int:
        """Delete every expired row. Returns the number removed."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM external_jobs WHERE expires_at <= ?",
                (to_db_time(utcnow()),),
            )
            await db.commit()
            purged = cursor.rowcount
        finally:
            await db.close()
        if purged:
            logger.info("Purged %d expired job record(s)", purged)
        return purged
