"""ReelPipeline: script, then voiceover/video/subtitles in parallel, then compose.

::

    script ──► ┌ voiceover ┐
               ├ subtitles ┤ ──► compose (optional)
               └ video     ┘

The script stage blocks: without a script nothing in stage two starts.
Stage two is a single ``execute_parallel`` call whose partial successes are
kept.  Compose waits for the video job, submits a render and waits for that;
its failure is recorded and never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from postpilot.config import settings
from postpilot.errors import ProviderError
from postpilot.jobs.models import JobHandle, first_output_url
from postpilot.jobs.poller import JobPoller
from postpilot.jobs.runner import ParallelTaskRunner, TaskSpec
from postpilot.media.subtitles import write_subtitle_files

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from pathlib import Path

    from postpilot.capabilities import (
        Caption,
        CaptionGenerator,
        JobSource,
        ScriptWriter,
        VoiceSynthesizer,
    )
    from postpilot.jobs.models import JobOutcome
    from postpilot.jobs.registry import JobRegistry
    from postpilot.jobs.runner import TaskResult

logger = logging.getLogger(__name__)

SCRIPT_SECONDS = 15
OVERLAY_CHARS = 50


@dataclass
class ReelRequest:
    """What to build.

    ``custom_script`` skips script generation.  ``compose`` asks for a
    rendered reel when a composition backend is configured.
    """

    topic: str = ""
    custom_script: str | None = None
    video_prompt: str | None = None
    voice_style: str = "energetic"
    text_overlay: str | None = None
    generate_subtitles: bool = True
    compose: bool = True
    user_id: str | None = None

    def resolved_video_prompt(self) -> str:
        return self.video_prompt or f"{self.topic}, cinematic, high quality, smooth motion"


@dataclass
class StepError:
    step: str
    error: str

    def to_dict(self) -> dict[str, str]:
        return {"step": self.step, "error": self.error}


@dataclass
class StageOutcome:
    success: bool
    duration_ms: int = 0


@dataclass
class ReelResult:
    script: str | None = None
    stages: dict[str, StageOutcome] = field(default_factory=dict)
    errors: list[StepError] = field(default_factory=list)
    audio_url: str | None = None
    video_job_id: str | None = None
    video_url: str | None = None
    captions: list[Caption] = field(default_factory=list)
    subtitle_files: dict[str, str] = field(default_factory=dict)
    composed_url: str | None = None
    total_duration_ms: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    def record(self, task: TaskResult) -> None:
        self.stages[task.name] = StageOutcome(task.success, task.duration_ms)
        if not task.success:
            self.errors.append(StepError(task.name, task.error or "Unknown error"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "script": self.script,
            "audio_url": self.audio_url,
            "video_job_id": self.video_job_id,
            "video_url": self.video_url,
            "composed_url": self.composed_url,
            "captions": [c.to_dict() for c in self.captions],
            "subtitle_files": dict(self.subtitle_files),
            "timing": {
                "total": self.total_duration_ms,
                **{name: stage.duration_ms for name, stage in self.stages.items()},
            },
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class BatchItem:
    topic: str
    script: str
    audio_url: str | None = None
    video_job_id: str | None = None
    errors: list[StepError] = field(default_factory=list)


@dataclass
class BatchResult:
    items: list[BatchItem]
    topics: int
    scripts_generated: int
    voiceovers_generated: int
    videos_started: int
    total_duration_ms: int = 0
    errors: list[StepError] = field(default_factory=list)


class ReelPipeline:
    """Builds reels from the injected capabilities.

    Args:
        script_writer: Writes the voiceover script from a topic.
        voice: Synthesizes the voiceover.
        video_jobs: ``JobSource`` for text-to-video generation.
        captions: Optional caption generator; without it subtitles are skipped.
        renderer: Optional composition ``JobSource``; without it compose is skipped.
        runner: Parallel task runner (default settings).
        registry: Optional job registry; video jobs are recorded there with
            the context needed to finish them later.
        subtitle_dir: Where caption files are written; None skips writing.
        poll_interval: Seconds between job polls (default from settings).
        max_poll_attempts: Polls per job before timing out (default from settings).
        sleep: Awaitable sleep handed to the pollers, replaceable in tests.
    """

    def __init__(
        self,
        script_writer: ScriptWriter,
        voice: VoiceSynthesizer,
        video_jobs: JobSource,
        captions: CaptionGenerator | None = None,
        renderer: JobSource | None = None,
        *,
        runner: ParallelTaskRunner | None = None,
        registry: JobRegistry | None = None,
        subtitle_dir: Path | None = None,
        poll_interval: float | None = None,
        max_poll_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._script_writer = script_writer
        self._voice = voice
        self._captions = captions
        self._runner = runner or ParallelTaskRunner()
        self._registry = registry
        self._subtitle_dir = subtitle_dir
        poller_kwargs = {"poll_interval": poll_interval, "max_attempts": max_poll_attempts, "sleep": sleep}
        self._video_poller = JobPoller(video_jobs, **poller_kwargs)
        self._render_poller = JobPoller(renderer, **poller_kwargs) if renderer is not None else None

    @property
    def compose_timeout(self) -> float | None:
        """Outer limit for compose: both poll ceilings plus ``compose_timeout_seconds``.

        The pollers run out first, so a slow job ends as a poller timeout.
        """
        if self._render_poller is None:
            return None
        return (
            self._video_poller.wait_budget
            + self._render_poller.wait_budget
            + settings.compose_timeout_seconds
        )

    # -- Single reel -----------------------------------------------------------

    async def create_reel(self, request: ReelRequest) -> ReelResult:
        """Run every stage the request and the configured backends allow."""
        started = time.monotonic()
        result = ReelResult()
        logger.info("Creating reel (topic=%r, custom_script=%s)", request.topic, bool(request.custom_script))

        script = await self._script_stage(request, result)
        if script is None:
            result.total_duration_ms = _elapsed_ms(started)
            logger.warning("Reel aborted before media generation: %s", result.errors[-1].error)
            return result
        result.script = script

        handle = await self._media_stage(request, result)

        if handle is not None and self._render_poller is not None and request.compose:
            compose = await self._runner.execute_task(
                "compose",
                lambda: self._compose(handle, request, result),
                timeout=self.compose_timeout,
            )
            result.record(compose)
            if compose.success:
                result.composed_url = compose.data

        result.total_duration_ms = _elapsed_ms(started)
        logger.info(
            "Reel finished in %dms with %d error(s)", result.total_duration_ms, len(result.errors)
        )
        return result

    async def _script_stage(self, request: ReelRequest, result: ReelResult) -> str | None:
        if request.custom_script and request.custom_script.strip():
            return request.custom_script.strip()
        if not request.topic.strip():
            result.errors.append(StepError("script", "a topic or a custom script is required"))
            return None

        task = await self._runner.execute_task(
            "script",
            lambda: self._script_writer.write_script(request.topic, SCRIPT_SECONDS),
            timeout=settings.script_timeout_seconds,
        )
        if task.success and not (task.data or "").strip():
            task.success = False
            task.error = "script generation returned no text"
        result.record(task)
        return task.data.strip() if task.success else None

    async def _media_stage(self, request: ReelRequest, result: ReelResult) -> JobHandle | None:
        """Run voiceover, subtitles and the video start together.

        Returns the video job handle when the start succeeded.
        """
        script = result.script or ""
        tasks = [
            TaskSpec(
                "voiceover",
                lambda: self._voice.synthesize(script, request.voice_style),
                settings.voiceover_timeout_seconds,
            ),
            TaskSpec(
                "video",
                lambda: self._video_poller.start({"prompt": request.resolved_video_prompt()}),
                settings.video_start_timeout_seconds,
            ),
        ]
        if request.generate_subtitles and self._captions is not None:
            tasks.append(
                TaskSpec(
                    "subtitles",
                    lambda: self._subtitles(script, request.voice_style),
                    settings.subtitles_timeout_seconds,
                )
            )

        outcome = await self._runner.execute_parallel(tasks)
        handle: JobHandle | None = None
        for task in outcome.results:
            result.record(task)
            if not task.success:
                continue
            if task.name == "voiceover":
                result.audio_url = task.data.audio_url
            elif task.name == "video":
                handle = task.data
                result.video_job_id = handle.id
            elif task.name == "subtitles":
                result.captions, result.subtitle_files = task.data

        if handle is not None and self._registry is not None:
            handle.metadata.update(
                {
                    "topic": request.topic,
                    "user_id": request.user_id,
                    "script": script,
                    "audio_url": result.audio_url,
                    "captions": [c.to_dict() for c in result.captions],
                    "text_overlay": request.text_overlay,
                }
            )
            error = await self._register(handle)
            if error is not None:
                result.errors.append(error)
        return handle

    async def _register(self, handle: JobHandle) -> StepError | None:
        if self._registry is None:
            return None
        try:
            await self._registry.register(handle)
        except Exception as exc:
            logger.exception("Could not register %s job %s", handle.provider, handle.id)
            return StepError("registry", str(exc) or type(exc).__name__)
        return None

    async def _subtitles(self, script: str, style: str) -> tuple[list[Caption], dict[str, str]]:
        captions = self._captions.compute_captions(script, style)
        files: dict[str, str] = {}
        if self._subtitle_dir is not None and captions:
            paths = await asyncio.to_thread(write_subtitle_files, captions, self._subtitle_dir)
            files = {fmt: str(path) for fmt, path in paths.items()}
        return captions, files

    async def _compose(self, handle: JobHandle, request: ReelRequest, result: ReelResult) -> str:
        video = await self._video_poller.wait_until_terminal(handle)
        error = await self._record(handle, video)
        if error is not None:
            result.errors.append(error)
        if not video.success:
            raise ProviderError(handle.provider, video.error or "video generation failed")
        video_url = first_output_url(video.output)
        if not video_url:
            raise ProviderError(handle.provider, "video job returned no URL")
        result.video_url = video_url

        overlay = request.text_overlay or (result.script or "")[:OVERLAY_CHARS]
        render = await self._render_poller.run(
            {
                "video_url": video_url,
                "audio_url": result.audio_url,
                "captions": [c.to_dict() for c in result.captions],
                "text": overlay or None,
            }
        )
        if not render.success:
            raise ProviderError(self._render_poller.source.name, render.error or "render failed")
        composed = first_output_url(render.output)
        if not composed:
            raise ProviderError(self._render_poller.source.name, "render returned no URL")
        return composed

    async def _record(self, handle: JobHandle, outcome: JobOutcome) -> StepError | None:
        if self._registry is None:
            return None
        try:
            await self._registry.record_outcome(handle.provider, outcome)
        except Exception as exc:
            logger.exception("Could not record outcome of %s job %s", handle.provider, handle.id)
            return StepError("registry", str(exc) or type(exc).__name__)
        return None

    # -- Batches ---------------------------------------------------------------

    async def batch_create(
        self,
        topics: list[str],
        *,
        voice_style: str = "energetic",
        video_style: str = "cinematic",
        batch_size: int | None = None,
    ) -> BatchResult:
        """Write every script in parallel, then voiceovers and video starts in windows."""
        started = time.monotonic()
        script_run = await self._runner.execute_parallel(
            [
                TaskSpec(
                    f"script_{i}",
                    lambda topic=topic: self._script_writer.write_script(topic, SCRIPT_SECONDS),
                    settings.script_timeout_seconds,
                )
                for i, topic in enumerate(topics)
            ]
        )

        errors: list[StepError] = []
        items: list[BatchItem] = []
        for topic, task in zip(topics, script_run.results, strict=True):
            if task.success and (task.data or "").strip():
                items.append(BatchItem(topic=topic, script=task.data.strip()))
            else:
                errors.append(StepError(task.name, task.error or "script generation returned no text"))

        media_tasks: list[TaskSpec] = []
        for index, item in enumerate(items):
            media_tasks.append(
                TaskSpec(
                    f"tts_{index}",
                    lambda item=item: self._voice.synthesize(item.script, voice_style),
                    settings.voiceover_timeout_seconds,
                )
            )
            media_tasks.append(
                TaskSpec(
                    f"video_{index}",
                    lambda item=item: self._video_poller.start(
                        {"prompt": f"{item.topic}, {video_style}, high quality, smooth motion"}
                    ),
                    settings.video_start_timeout_seconds,
                )
            )
        media_run = await self._runner.execute_batched(media_tasks, batch_size)
        by_name = media_run.by_name()

        voiceovers = videos = 0
        for index, item in enumerate(items):
            tts = by_name[f"tts_{index}"]
            if tts.success:
                item.audio_url = tts.data.audio_url
                voiceovers += 1
            else:
                item.errors.append(StepError("voiceover", tts.error or "Unknown error"))

            video = by_name[f"video_{index}"]
            if video.success:
                handle: JobHandle = video.data
                item.video_job_id = handle.id
                videos += 1
                handle.metadata.update(
                    {"topic": item.topic, "script": item.script, "audio_url": item.audio_url}
                )
                error = await self._register(handle)
                if error is not None:
                    item.errors.append(error)
            else:
                item.errors.append(StepError("video", video.error or "Unknown error"))

        result = BatchResult(
            items=items,
            topics=len(topics),
            scripts_generated=len(items),
            voiceovers_generated=voiceovers,
            videos_started=videos,
            total_duration_ms=_elapsed_ms(started),
            errors=errors,
        )
        logger.info(
            "Batch of %d topic(s): %d scripts, %d voiceovers, %d videos started",
            result.topics,
            result.scripts_generated,
            result.voiceovers_generated,
            result.videos_started,
        )
        return result

    async def wait_for_videos(self, job_ids: list[str]) -> dict[str, JobOutcome]:
        """Wait on several video jobs concurrently. Outcomes are keyed by job id."""
        provider = self._video_poller.source.name
        handles: list[JobHandle] = []
        for job_id in job_ids:
            handle = None
            if self._registry is not None:
                try:
                    handle = await self._registry.lookup(provider, job_id)
                except Exception:
                    logger.exception("Registry lookup failed for %s job %s", provider, job_id)
            handles.append(handle or JobHandle(id=job_id, provider=provider))

        outcomes = await self._video_poller.wait_all(handles)
        for handle in handles:
            # Failures are logged by _record; the outcomes are still returned.
            await self._record(handle, outcomes[handle.id])
        succeeded = sum(1 for o in outcomes.values() if o.success)
        logger.info("Waited on %d video job(s): %d succeeded", len(handles), succeeded)
        return outcomes


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
