"""Content entities that scheduled items point at."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from postpilot.db import from_db_time, to_db_time, utcnow
from postpilot.scheduler.models import ContentType


class ContentStatus(StrEnum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"


@dataclass
class MediaAsset:
    url: str
    type: str = "image"

    @property
    def is_video(self) -> bool:
        return self.type == "video"


@dataclass
class PublishReceipt:
    """What the provider handed back after a successful publish."""

    provider_id: str
    permalink: str | None = None
    published_at: datetime = field(default_factory=utcnow)


@dataclass
class Content:
    """A post, reel or story as the scheduler sees it.

    The scheduler only reads ``id`` and ``content_type``; publishers read the
    payload fields; the repository owns the publishing fields.
    """

    id: str
    user_id: str
    content_type: ContentType
    caption: str = ""
    hashtags: list[str] = field(default_factory=list)
    media: list[MediaAsset] = field(default_factory=list)
    cover_url: str | None = None
    status: ContentStatus = ContentStatus.DRAFT
    provider_id: str | None = None
    permalink: str | None = None
    published_at: datetime | None = None
    error_message: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.content_type = ContentType(self.content_type)
        self.status = ContentStatus(self.status)

    @property
    def has_video(self) -> bool:
        return any(m.is_video for m in self.media)

    def formatted_caption(self) -> str:
        """Caption with hashtags appended, the way it is posted."""
        if not self.hashtags:
            return self.caption
        tags = " ".join(t if t.startswith("#") else f"#{t}" for t in self.hashtags)
        if not self.caption:
            return tags
        return f"{self.caption}\n\n{tags}"

    def fresh_copy(self) -> Content:
        """Copy with a new identity and every publishing field reset."""
        return replace(
            self,
            id=make_content_id(),
            hashtags=list(self.hashtags),
            media=[replace(m) for m in self.media],
            status=ContentStatus.SCHEDULED,
            provider_id=None,
            permalink=None,
            published_at=None,
            error_message=None,
            metrics={},
            created_at=utcnow(),
        )

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``content_items`` column order."""
        return (
            self.id,
            self.user_id,
            str(self.content_type),
            self.caption,
            json.dumps(self.hashtags),
            json.dumps([{"url": m.url, "type": m.type} for m in self.media]),
            self.cover_url,
            str(self.status),
            self.provider_id,
            self.permalink,
            to_db_time(self.published_at),
            self.error_message,
            json.dumps(self.metrics),
            to_db_time(self.created_at),
        )

    @classmethod
    def from_row(cls, row: tuple) -> Content:
        """Deserialize from a libsql row tuple."""
        return cls(
            id=row[0],
            user_id=row[1],
            content_type=ContentType(row[2]),
            caption=row[3] or "",
            hashtags=json.loads(row[4] or "[]"),
            media=[MediaAsset(**m) for m in json.loads(row[5] or "[]")],
            cover_url=row[6],
            status=ContentStatus(row[7]),
            provider_id=row[8],
            permalink=row[9],
            published_at=from_db_time(row[10]),
            error_message=row[11],
            metrics=json.loads(row[12] or "{}"),
            created_at=from_db_time(row[13]),
        )


def make_content_id() -> str:
    """Generate a new content ID."""
    return uuid.uuid4().hex
