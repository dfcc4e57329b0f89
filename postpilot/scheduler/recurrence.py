"""Recurrence expansion: next-occurrence math and item cloning."""

from __future__ import annotations

import calendar
import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from postpilot.scheduler.models import Frequency

if TYPE_CHECKING:
    from postpilot.capabilities import ContentRepository
    from postpilot.content.models import Content
    from postpilot.scheduler.models import RecurrencePolicy, ScheduledItem

logger = logging.getLogger(__name__)


def _sunday_based_weekday(moment: datetime) -> int:
    """Day of week with 0 = Sunday, matching ``RecurrencePolicy.days_of_week``."""
    return (moment.weekday() + 1) % 7


def add_months(moment: datetime, months: int, anchor_day: int | None = None) -> datetime:
    """Shift *moment* by whole calendar months, clamping to the month's last day.

    *anchor_day* is the day-of-month to aim for (defaults to ``moment.day``),
    so a schedule on the 31st goes Jan 31 → Feb 28 → Mar 31.
    """
    target_day = anchor_day or moment.day
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return moment.replace(year=year, month=month, day=min(target_day, last_day))


def next_occurrence(scheduled_for: datetime, policy: RecurrencePolicy) -> datetime | None:
    """Compute the next occurrence after *scheduled_for*, or None for unknown frequencies."""
    if policy.frequency == Frequency.DAILY:
        return scheduled_for + timedelta(days=1)

    if policy.frequency == Frequency.WEEKLY:
        if not policy.days_of_week:
            return scheduled_for + timedelta(days=7)
        current = _sunday_based_weekday(scheduled_for)
        days = sorted(policy.days_of_week)
        later = [d for d in days if d > current]
        if later:
            delta = later[0] - current
        else:
            delta = 7 - current + days[0]
        return scheduled_for + timedelta(days=delta)

    if policy.frequency == Frequency.MONTHLY:
        return add_months(scheduled_for, 1, policy.anchor_day)

    return None


class RecurrenceExpander:
    """Builds the next occurrence of a completed recurring item.

    ``prepare`` clones the content through the repository and returns the new
    pending item without persisting it: the dispatcher inserts it in the same
    transaction that marks the current item completed.

    Args:
        content: Repository used to clone the content entity.
    """

    def __init__(self, content: ContentRepository) -> None:
        self._content = content

    async def prepare(self, item: ScheduledItem, content: Content) -> ScheduledItem | None:
        """Return the next pending item, or None when the series has ended."""
        if not item.is_recurring or item.recurring is None:
            return None

        policy = item.recurring
        if policy.frequency == Frequency.MONTHLY and policy.anchor_day is None:
            policy = replace(policy, anchor_day=item.scheduled_for.day)

        next_date = next_occurrence(item.scheduled_for, policy)
        if next_date is None:
            logger.warning(
                "Item %s has unknown recurrence frequency %r; not expanding",
                item.id,
                policy.frequency,
            )
            return None
        if policy.end_date is not None and next_date > policy.end_date:
            logger.info("Recurrence for item %s ended (next %s > end %s)", item.id, next_date, policy.end_date)
            return None

        new_content = await self._content.clone(content)
        next_item = item.next_occurrence(next_date, new_content.id)
        next_item.recurring = replace(policy)
        logger.info("Prepared next occurrence %s for item %s at %s", next_item.id, item.id, next_date)
        return next_item
