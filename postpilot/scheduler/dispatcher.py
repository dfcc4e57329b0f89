"""Dispatcher: one tick of the scheduled publishing loop.

Per due item:

1. claim it (``pending`` → ``processing``, attempt counted, committed at once)
2. resolve the content; missing content fails the item without retry
3. publish through the content type's publisher
4. on success, record the publish on the content and complete the item,
   inserting the next recurring occurrence in the same transaction
5. on failure, return to ``pending`` five minutes out, or fail once the
   attempts are used up

Items are handled one after another in ``scheduled_for`` order.  Failures are
data here: an item never stays ``processing`` because something raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from postpilot.capabilities import PublishResult
from postpilot.config import settings
from postpilot.content.models import PublishReceipt
from postpilot.db import utcnow
from postpilot.scheduler.recurrence import RecurrenceExpander

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping
    from datetime import datetime

    from postpilot.capabilities import ContentRepository, Publisher
    from postpilot.content.models import Content
    from postpilot.scheduler.models import ContentType, ScheduledItem
    from postpilot.scheduler.store import ScheduledItemStore

logger = logging.getLogger(__name__)

CONTENT_NOT_FOUND = "content not found"
MAX_ATTEMPTS_REACHED = "Max retry attempts reached"


class DispatchOutcome(StrEnum):
    COMPLETED = "completed"
    RETRY = "retry"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class TickReport:
    """Counts for one dispatch tick."""

    selected: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0

    def record(self, outcome: DispatchOutcome) -> None:
        if outcome == DispatchOutcome.COMPLETED:
            self.completed += 1
        elif outcome == DispatchOutcome.RETRY:
            self.retried += 1
        elif outcome == DispatchOutcome.FAILED:
            self.failed += 1
        else:
            self.skipped += 1


class Dispatcher:
    """Processes due scheduled items against the publish capability.

    Args:
        store: Scheduled item persistence.
        content: Content repository for lookups, publish bookkeeping and clones.
        publishers: Publisher per content type.
        batch_size: Maximum items claimed per tick (default from settings).
        retry_backoff: Delay before a failed item is due again (default from settings).
        notifier: Optional async callback ``(item, outcome, error)`` honouring
            the item's ``notify_on_success`` / ``notify_on_failure`` flags.
        clock: Returns the current UTC time; replaceable in tests.
    """

    def __init__(
        self,
        store: ScheduledItemStore,
        content: ContentRepository,
        publishers: Mapping[ContentType, Publisher],
        *,
        batch_size: int | None = None,
        retry_backoff: timedelta | None = None,
        notifier: Callable[[ScheduledItem, DispatchOutcome, str | None], Awaitable[None]]
        | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._content = content
        self._publishers = dict(publishers)
        self._batch_size = batch_size or settings.dispatch_batch_size
        self._retry_backoff = retry_backoff or timedelta(minutes=settings.retry_backoff_minutes)
        self._notifier = notifier
        self._clock = clock
        self._expander = RecurrenceExpander(content)

    # -- Tick ------------------------------------------------------------------

    async def tick(self) -> TickReport:
        """Select due items and process each of them in order."""
        now = self._clock()
        due = await self._store.list_due(now, self._batch_size)
        report = TickReport(selected=len(due))
        if not due:
            return report

        logger.info("Processing %d scheduled item(s)", len(due))
        for item in due:
            try:
                outcome = await self.process_item(item.id)
            except Exception:
                # The store itself failed; startup recovery picks the item up.
                logger.exception("Could not process scheduled item %s", item.id)
                outcome = DispatchOutcome.SKIPPED
            report.record(outcome)

        logger.info(
            "Dispatch tick done: %d completed, %d retrying, %d failed, %d skipped",
            report.completed,
            report.retried,
            report.failed,
            report.skipped,
        )
        return report

    async def process_item(self, item_id: str) -> DispatchOutcome:
        """Claim and attempt one item. Returns SKIPPED if it could not be claimed."""
        item = await self._store.claim(item_id, self._clock())
        if item is None:
            logger.info("Item %s no longer claimable; skipping", item_id)
            return DispatchOutcome.SKIPPED

        logger.info(
            "Attempt %d/%d for %s %s (item %s)",
            item.attempts,
            item.max_attempts,
            item.content_type,
            item.content_id,
            item.id,
        )
        content: Content | None = None
        try:
            content = await self._content.find_by_id(item.content_type, item.content_id)
            if content is None:
                logger.warning("Content %s for item %s not found", item.content_id, item.id)
                await self._store.fail(item.id, CONTENT_NOT_FOUND)
                await self._notify(item, DispatchOutcome.FAILED, CONTENT_NOT_FOUND)
                return DispatchOutcome.FAILED

            publisher = self._publishers.get(item.content_type)
            if publisher is None:
                error = f"no publisher for content type {item.content_type}"
                logger.error("Item %s: %s", item.id, error)
                await self._store.fail(item.id, error)
                await self._content.mark_failed(content, error)
                await self._notify(item, DispatchOutcome.FAILED, error)
                return DispatchOutcome.FAILED

            result = await self._publish(publisher, content)
            if not result.success:
                return await self._handle_failure(item, content, result.error)
            return await self._handle_success(item, content, result)
        except Exception as exc:
            logger.exception("Unexpected error processing item %s", item.id)
            return await self._handle_failure(item, content, str(exc) or type(exc).__name__)

    # -- Outcomes --------------------------------------------------------------

    async def _publish(self, publisher: Publisher, content: Content) -> PublishResult:
        try:
            return await publisher.publish(content)
        except Exception as exc:
            logger.exception("Publisher raised for content %s", content.id)
            return PublishResult.failed(str(exc) or type(exc).__name__)

    async def _handle_success(
        self, item: ScheduledItem, content: Content, result: PublishResult
    ) -> DispatchOutcome:
        now = self._clock()
        receipt = PublishReceipt(
            provider_id=result.provider_id or "",
            permalink=result.permalink,
            published_at=now,
        )
        await self._content.mark_published(content, receipt)

        next_item: ScheduledItem | None = None
        if item.is_recurring:
            try:
                next_item = await self._expander.prepare(item, content)
            except Exception:
                logger.exception("Recurrence expansion failed for item %s", item.id)

        completed = await self._store.complete(item.id, now, next_item)
        if not completed:
            logger.warning("Item %s changed state during publish; completion not recorded", item.id)
            return DispatchOutcome.SKIPPED

        logger.info(
            "Published %s %s (item %s) as %s",
            item.content_type,
            item.content_id,
            item.id,
            result.provider_id,
        )
        if next_item is not None:
            logger.info("Next occurrence %s scheduled for %s", next_item.id, next_item.scheduled_for)
        await self._notify(item, DispatchOutcome.COMPLETED, None)
        return DispatchOutcome.COMPLETED

    async def _handle_failure(
        self, item: ScheduledItem, content: Content | None, error: str | None
    ) -> DispatchOutcome:
        if item.has_attempts_left:
            retry_at = self._clock() + self._retry_backoff
            await self._store.schedule_retry(item.id, retry_at, error)
            logger.warning(
                "Publish failed for item %s (attempt %d/%d): %s; retrying at %s",
                item.id,
                item.attempts,
                item.max_attempts,
                error,
                retry_at,
            )
            return DispatchOutcome.RETRY

        reason = error or MAX_ATTEMPTS_REACHED
        await self._store.fail(item.id, reason)
        if content is not None:
            await self._content.mark_failed(content, reason)
        logger.error(
            "Item %s failed after %d attempt(s): %s", item.id, item.attempts, reason
        )
        await self._notify(item, DispatchOutcome.FAILED, reason)
        return DispatchOutcome.FAILED

    async def _notify(
        self, item: ScheduledItem, outcome: DispatchOutcome, error: str | None
    ) -> None:
        if self._notifier is None:
            return
        if outcome == DispatchOutcome.COMPLETED and not item.notify_on_success:
            return
        if outcome == DispatchOutcome.FAILED and not item.notify_on_failure:
            return
        try:
            await self._notifier(item, outcome, error)
        except Exception:
            logger.exception("Notifier failed for item %s", item.id)
