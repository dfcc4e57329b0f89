"""Stalled item recovery: run on startup before the dispatch loop.

A dispatcher that dies between claim and outcome leaves its item in
``processing``.  Items whose last attempt is older than
``stalled_after_minutes`` are returned to ``pending`` (due immediately) when
they have attempts left, and failed otherwise.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from postpilot.config import settings
from postpilot.db import utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from postpilot.scheduler.store import ScheduledItemStore

logger = logging.getLogger(__name__)

INTERRUPTED = "Interrupted while processing"


@dataclass
class RecoveryReport:
    requeued: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.requeued + self.failed


async def recover_stalled_items(
    store: ScheduledItemStore,
    *,
    now: datetime | None = None,
    stalled_after: timedelta | None = None,
) -> RecoveryReport:
    """Release or fail items stuck in ``processing``.

    Returns a report of how many items were requeued and failed.
    """
    now = now or utcnow()
    cutoff = now - (stalled_after or timedelta(minutes=settings.stalled_after_minutes))
    report = RecoveryReport()

    for item in await store.list_stalled(cutoff):
        if item.has_attempts_left:
            if await store.schedule_retry(item.id, now, INTERRUPTED):
                report.requeued += 1
                logger.info(
                    "Requeued stalled item %s (attempt %d/%d)",
                    item.id,
                    item.attempts,
                    item.max_attempts,
                )
        elif await store.fail(item.id, f"{INTERRUPTED}; max retry attempts reached"):
            report.failed += 1
            logger.warning("Failed stalled item %s after %d attempt(s)", item.id, item.attempts)

    if report.total:
        logger.info(
            "Recovered %d stalled item(s): %d requeued, %d failed",
            report.total,
            report.requeued,
            report.failed,
        )
    return report
