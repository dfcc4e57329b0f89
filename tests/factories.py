"""Builders shared by the test modules."""

from datetime import UTC, datetime

from postpilot.content.models import Content, MediaAsset
from postpilot.scheduler.models import ContentType, ScheduledItem


def at(day: int, hour: int = 9, month: int = 6, year: int = 2025) -> datetime:
    """Aware UTC datetime shorthand."""
    return datetime(year, month, day, hour, 0, tzinfo=UTC)


def make_content(
    content_id: str = "c1",
    content_type: ContentType = ContentType.POST,
    **kwargs,
) -> Content:
    defaults = {
        "user_id": "u1",
        "caption": "Hello",
        "media": [MediaAsset("https://cdn.example.com/a.jpg")],
    }
    defaults.update(kwargs)
    return Content(id=content_id, content_type=content_type, **defaults)


def make_item(
    item_id: str = "item1",
    content_id: str = "c1",
    scheduled_for: datetime | None = None,
    **kwargs,
) -> ScheduledItem:
    defaults = {
        "user_id": "u1",
        "content_type": ContentType.POST,
        "max_attempts": 3,
    }
    defaults.update(kwargs)
    return ScheduledItem(
        id=item_id,
        content_id=content_id,
        scheduled_for=scheduled_for or at(1),
        **defaults,
    )
