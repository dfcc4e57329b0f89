"""ScheduledItem data model."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from postpilot.config import settings
from postpilot.db import from_db_time, to_db_time, utcnow


class ContentType(StrEnum):
    POST = "post"
    REEL = "reel"
    STORY = "story"


class ItemStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = {ItemStatus.COMPLETED, ItemStatus.FAILED, ItemStatus.CANCELLED}


class Frequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class RecurrencePolicy:
    """How a scheduled item repeats.

    Attributes:
        enabled: Whether expansion runs at all.
        frequency: ``daily``, ``weekly`` or ``monthly``.
        days_of_week: Weekly targets, 0 = Sunday through 6 = Saturday.
        end_date: Last instant an occurrence may be scheduled for.
        anchor_day: Day-of-month that monthly occurrences aim for; set on the
            first monthly expansion and carried forward.
    """

    enabled: bool = False
    frequency: str | None = None
    days_of_week: list[int] = field(default_factory=list)
    end_date: datetime | None = None
    anchor_day: int | None = None

    def __post_init__(self) -> None:
        for day in self.days_of_week:
            if not 0 <= day <= 6:
                msg = f"days_of_week entries must be 0..6, got {day}"
                raise ValueError(msg)
        self.days_of_week = sorted(set(self.days_of_week))

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "frequency": self.frequency,
            "days_of_week": self.days_of_week,
            "end_date": to_db_time(self.end_date),
            "anchor_day": self.anchor_day,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecurrencePolicy:
        return cls(
            enabled=bool(data.get("enabled", False)),
            frequency=data.get("frequency"),
            days_of_week=list(data.get("days_of_week") or []),
            end_date=from_db_time(data.get("end_date")),
            anchor_day=data.get("anchor_day"),
        )


@dataclass
class ScheduledItem:
    """A persisted intent to publish a piece of content at a given time.

    Attributes:
        id: Unique identifier (UUID hex).
        user_id: Owner of the content.
        content_type: ``post``, ``reel`` or ``story``.
        content_id: ID of the content entity, resolved via the content repository.
        scheduled_for: When the item becomes due (aware UTC datetime).
        timezone: Display-only IANA name; all scheduling math is UTC.
        recurring: Optional recurrence policy.
        status: Position in the dispatch state machine.
        attempts: Dispatch attempts so far.
        max_attempts: Attempt ceiling before the item fails for good.
        last_attempt: When the last attempt was claimed.
        completed_at: When the item was published.
        error_message: Last failure reason.
        notify_on_success / notify_on_failure: Owner notification flags.
        created_at / updated_at: Audit timestamps.
    """

    id: str
    user_id: str
    content_type: ContentType
    content_id: str
    scheduled_for: datetime
    timezone: str = "UTC"
    recurring: RecurrencePolicy | None = None
    status: ItemStatus = ItemStatus.PENDING
    attempts: int = 0
    max_attempts: int = field(default_factory=lambda: settings.default_max_attempts)
    last_attempt: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    notify_on_success: bool = True
    notify_on_failure: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        self.content_type = ContentType(self.content_type)
        self.status = ItemStatus(self.status)
        self.scheduled_for = from_db_time(to_db_time(self.scheduled_for))
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.created_at is None:
            self.created_at = utcnow()
        if self.updated_at is None:
            self.updated_at = self.created_at

    # -- Convenience properties ------------------------------------------------

    @property
    def is_recurring(self) -> bool:
        return self.recurring is not None and self.recurring.enabled

    @property
    def has_attempts_left(self) -> bool:
        return self.attempts < self.max_attempts

    def next_occurrence(self, scheduled_for: datetime, content_id: str) -> ScheduledItem:
        """Return a fresh pending item for the next occurrence of this one."""
        policy = replace(self.recurring) if self.recurring else None
        return ScheduledItem(
            id=make_item_id(),
            user_id=self.user_id,
            content_type=self.content_type,
            content_id=content_id,
            scheduled_for=scheduled_for,
            timezone=self.timezone,
            recurring=policy,
            max_attempts=self.max_attempts,
            notify_on_success=self.notify_on_success,
            notify_on_failure=self.notify_on_failure,
        )

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``scheduled_items`` column order."""
        return (
            self.id,
            self.user_id,
            str(self.content_type),
            self.content_id,
            to_db_time(self.scheduled_for),
            self.timezone,
            json.dumps(self.recurring.to_dict()) if self.recurring else None,
            str(self.status),
            self.attempts,
            self.max_attempts,
            to_db_time(self.last_attempt),
            to_db_time(self.completed_at),
            self.error_message,
            int(self.notify_on_success),
            int(self.notify_on_failure),
            to_db_time(self.created_at),
            to_db_time(self.updated_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> ScheduledItem:
        """Deserialize from a libsql row tuple."""
        return cls(
            id=row[0],
            user_id=row[1],
            content_type=ContentType(row[2]),
            content_id=row[3],
            scheduled_for=from_db_time(row[4]),
            timezone=row[5] or "UTC",
            recurring=RecurrencePolicy.from_dict(json.loads(row[6])) if row[6] else None,
            status=ItemStatus(row[7]),
            attempts=row[8],
            max_attempts=row[9],
            last_attempt=from_db_time(row[10]),
            completed_at=from_db_time(row[11]),
            error_message=row[12],
            notify_on_success=bool(row[13]),
            notify_on_failure=bool(row[14]),
            created_at=from_db_time(row[15]),
            updated_at=from_db_time(row[16]),
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (API responses, CLI output)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content_type": str(self.content_type),
            "content_id": self.content_id,
            "scheduled_for": to_db_time(self.scheduled_for),
            "timezone": self.timezone,
            "recurring": self.recurring.to_dict() if self.recurring else None,
            "status": str(self.status),
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_attempt": to_db_time(self.last_attempt),
            "completed_at": to_db_time(self.completed_at),
            "error_message": self.error_message,
        }


def make_item_id() -> str:
    """Generate a new scheduled item ID."""
    return uuid.uuid4().hex
