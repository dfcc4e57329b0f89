"""Wiring: default stores, providers, dispatcher, engine and reel pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import TYPE_CHECKING

from postpilot.config import settings
from postpilot.content.store import ContentStore
from postpilot.jobs.registry import JobRegistry
from postpilot.scheduler.dispatcher import Dispatcher
from postpilot.scheduler.engine import SchedulerEngine
from postpilot.scheduler.models import ContentType
from postpilot.scheduler.recovery import recover_stalled_items
from postpilot.scheduler.store import ScheduledItemStore

if TYPE_CHECKING:
    from postpilot.capabilities import Publisher
    from postpilot.media.pipeline import ReelPipeline

logger = logging.getLogger(__name__)


def build_publishers() -> dict[ContentType, Publisher]:
    """One Instagram publisher serves every content type."""
    from postpilot.publishing.instagram import InstagramPublisher

    publisher = InstagramPublisher()
    return {content_type: publisher for content_type in ContentType}


def build_dispatcher(
    store: ScheduledItemStore | None = None,
    content: ContentStore | None = None,
    publishers: dict[ContentType, Publisher] | None = None,
) -> Dispatcher:
    return Dispatcher(
        store=store or ScheduledItemStore.get(),
        content=content or ContentStore.get(),
        publishers=publishers if publishers is not None else build_publishers(),
    )


def build_engine(dispatcher: Dispatcher | None = None) -> SchedulerEngine:
    """Create the scheduler engine around the default dispatcher."""
    store = ScheduledItemStore.get()
    return SchedulerEngine(
        store=store,
        dispatcher=dispatcher or build_dispatcher(store=store),
        registry=JobRegistry.get(),
    )


def build_reel_pipeline() -> ReelPipeline:
    """Create a reel pipeline; composition is enabled only with a Shotstack key."""
    from postpilot.media.pipeline import ReelPipeline
    from postpilot.media.replicate import ReplicateVideoJobs
    from postpilot.media.script import ClaudeScriptWriter
    from postpilot.media.shotstack import ShotstackRenderer
    from postpilot.media.subtitles import SubtitleGenerator
    from postpilot.media.tts import GoogleTTS

    return ReelPipeline(
        script_writer=ClaudeScriptWriter(),
        voice=GoogleTTS(),
        video_jobs=ReplicateVideoJobs(),
        captions=SubtitleGenerator(),
        renderer=ShotstackRenderer() if settings.shotstack_enabled else None,
        registry=JobRegistry.get(),
        subtitle_dir=settings.media_dir / "subtitles",
    )


async def run_forever(engine: SchedulerEngine | None = None) -> None:
    """Recover stalled items, start the engine and block until SIGINT/SIGTERM."""
    engine = engine or build_engine()
    await recover_stalled_items(engine.store)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await engine.start()
    try:
        await stop.wait()
    finally:
        await engine.stop()
