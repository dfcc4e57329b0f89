"""SchedulerEngine: APScheduler lifecycle around the dispatch loop."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from postpilot.config import settings
from postpilot.scheduler.models import ItemStatus

if TYPE_CHECKING:
    from datetime import datetime

    from postpilot.jobs.registry import JobRegistry
    from postpilot.scheduler.dispatcher import Dispatcher, TickReport
    from postpilot.scheduler.models import RecurrencePolicy, ScheduledItem
    from postpilot.scheduler.store import ScheduledItemStore

logger = logging.getLogger(__name__)

DISPATCH_JOB_ID = "dispatch-tick"
PURGE_JOB_ID = "purge-expired-jobs"


class SchedulerEngine:
    """Runs the dispatcher on a fixed interval and fronts the item store.

    Only one tick runs at a time (``max_instances=1``); a tick that is still
    running when the next one is due is skipped rather than stacked.

    Args:
        store: ScheduledItemStore for persistence.
        dispatcher: Dispatcher whose ``tick`` runs every interval.
        registry: Optional JobRegistry purged of expired rows periodically.
        interval_seconds: Seconds between ticks (default from settings).
    """

    def __init__(
        self,
        store: ScheduledItemStore,
        dispatcher: Dispatcher,
        registry: JobRegistry | None = None,
        interval_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._registry = registry
        self._interval = interval_seconds or settings.dispatch_interval_seconds
        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> ScheduledItemStore:
        return self._store

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Register the periodic jobs and start the scheduler."""
        self._scheduler.add_job(
            self.run_tick,
            trigger=IntervalTrigger(seconds=self._interval),
            id=DISPATCH_JOB_ID,
            name="Dispatch due scheduled items",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self._registry is not None:
            self._scheduler.add_job(
                self._registry.purge_expired,
                trigger=IntervalTrigger(minutes=settings.job_purge_interval_minutes),
                id=PURGE_JOB_ID,
                name="Purge expired job records",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        self._scheduler.start()
        self._running = True
        logger.info("Scheduler started (dispatch every %ss)", self._interval)

    async def stop(self) -> None:
        """Shut down the scheduler."""
        if self._running:
            self._scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def run_tick(self) -> TickReport | None:
        """Callback invoked by APScheduler. Delegates to the dispatcher."""
        try:
            return await self._dispatcher.tick()
        except Exception:
            logger.exception("Dispatch tick failed")
            return None

    # -- Item management -------------------------------------------------------

    async def schedule_item(self, item: ScheduledItem) -> ScheduledItem:
        """Persist a new pending item; the next tick picks it up when due."""
        await self._store.add_item(item)
        logger.info("Scheduled %s %s for %s", item.content_type, item.content_id, item.scheduled_for)
        return item

    async def cancel_item(self, item_id: str) -> bool:
        """Cancel a pending item. False if it is already being processed or done."""
        return await self._store.cancel(item_id)

    async def reschedule_item(
        self,
        item_id: str,
        scheduled_for: datetime,
        *,
        timezone: str | None = None,
        recurring: RecurrencePolicy | None = None,
    ) -> bool:
        """Move a pending item to a new time."""
        moved = await self._store.reschedule(
            item_id, scheduled_for, timezone=timezone, recurring=recurring
        )
        if moved:
            logger.info("Rescheduled item %s to %s", item_id, scheduled_for)
        return moved

    async def delete_item(self, item_id: str) -> bool:
        """Remove an item that is not currently being processed."""
        item = await self._store.get_item(item_id)
        if item is None or item.status == ItemStatus.PROCESSING:
            return False
        return await self._store.delete_item(item_id)
