"""Capability protocols the scheduling and media core depends on.

Concrete implementations live in ``postpilot.content``,
``postpilot.publishing`` and ``postpilot.media``; tests substitute mocks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from postpilot.content.models import Content, PublishReceipt
    from postpilot.jobs.models import JobHandle, PollResult
    from postpilot.scheduler.models import ContentType


@dataclass
class PublishResult:
    """Outcome of a single publish call."""

    success: bool
    provider_id: str | None = None
    permalink: str | None = None
    error: str | None = None

    @classmethod
    def ok(cls, provider_id: str, permalink: str | None = None) -> PublishResult:
        return cls(success=True, provider_id=provider_id, permalink=permalink)

    @classmethod
    def failed(cls, error: str) -> PublishResult:
        return cls(success=False, error=error)


@dataclass
class Voiceover:
    audio_url: str
    filename: str | None = None
    is_public_url: bool = False


@dataclass
class Caption:
    """One timed caption segment; times are seconds from the start of the audio."""

    text: str
    start: float
    end: float

    @property
    def duration(self) -> float:
        return round(self.end - self.start, 3)

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "start": self.start, "end": self.end}


@runtime_checkable
class ContentRepository(Protocol):
    """Looks up content entities and records their publishing state."""

    async def find_by_id(self, content_type: ContentType, content_id: str) -> Content | None: ...

    async def mark_published(self, content: Content, receipt: PublishReceipt) -> None: ...

    async def mark_failed(self, content: Content, reason: str) -> None: ...

    async def clone(self, content: Content) -> Content: ...


@runtime_checkable
class Publisher(Protocol):
    """Publishes one content type to a social platform.

    Implementations must be safe to retry: a publish that partly succeeded at
    the provider must not post twice when called again.
    """

    async def publish(self, content: Content) -> PublishResult: ...


@runtime_checkable
class JobSource(Protocol):
    """An external provider that runs long jobs (video generation, renders)."""

    @property
    def name(self) -> str: ...

    async def start(self, spec: dict[str, Any]) -> JobHandle: ...

    async def poll(self, handle: JobHandle) -> PollResult: ...


@runtime_checkable
class VoiceSynthesizer(Protocol):
    async def synthesize(self, text: str, style: str) -> Voiceover: ...


@runtime_checkable
class CaptionGenerator(Protocol):
    def compute_captions(self, text: str, style: str) -> list[Caption]: ...


@runtime_checkable
class ScriptWriter(Protocol):
    async def write_script(self, topic: str, seconds: int = 15) -> str: ...
