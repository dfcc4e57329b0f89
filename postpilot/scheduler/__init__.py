"""Scheduled publishing: models, persistence, scheduling and recovery.

The dispatcher lives in ``postpilot.scheduler.dispatcher``; it depends on
``postpilot.content`` and is imported from there directly.
"""

from postpilot.scheduler.engine import SchedulerEngine
from postpilot.scheduler.models import (
    ContentType,
    Frequency,
    ItemStatus,
    RecurrencePolicy,
    ScheduledItem,
)
from postpilot.scheduler.recovery import recover_stalled_items
from postpilot.scheduler.store import ScheduledItemStore

__all__ = [
    "ContentType",
    "Frequency",
    "ItemStatus",
    "RecurrencePolicy",
    "ScheduledItem",
    "ScheduledItemStore",
    "SchedulerEngine",
    "recover_stalled_items",
]
