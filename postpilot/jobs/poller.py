"""JobPoller: start an external job and wait for it to reach a terminal state."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from postpilot.config import settings
from postpilot.jobs.models import JobOutcome, JobStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from postpilot.capabilities import JobSource
    from postpilot.jobs.models import JobHandle

logger = logging.getLogger(__name__)


class JobPoller:
    """Polls a ``JobSource`` at a fixed interval until a job finishes.

    Each ``wait_until_terminal`` call is independent: the only state it
    mutates is the handle it was given, so many waits can run concurrently.

    Args:
        source: Provider to start and poll jobs with.
        poll_interval: Seconds between polls (default from settings).
        max_attempts: Polls before giving up with a timeout (default from settings).
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        source: JobSource,
        *,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.job_poll_interval_seconds
        )
        self._max_attempts = max_attempts or settings.job_max_poll_attempts
        self._sleep = sleep

    @property
    def source(self) -> JobSource:
        return self._source

    @property
    def wait_budget(self) -> float:
        """Seconds of sleeping a full ``wait_until_terminal`` spends before it times out."""
        return self._poll_interval * self._max_attempts

    async def start(self, spec: dict[str, Any]) -> JobHandle:
        """Submit a job without waiting for it."""
        handle = await self._source.start(spec)
        logger.info("Started %s job %s", self._source.name, handle.id)
        return handle

    async def wait_until_terminal(
        self,
        handle: JobHandle,
        *,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
        on_progress: Callable[[int, int, JobStatus], None] | None = None,
    ) -> JobOutcome:
        """Poll *handle* until it succeeds, fails, is canceled or runs out of attempts.

        Every iteration sleeps first, then polls.  An exception from a single
        poll is logged and the loop moves on to the next tick; only a
        provider-reported failure or attempt exhaustion ends the wait early.
        """
        interval = poll_interval if poll_interval is not None else self._poll_interval
        limit = max_attempts or self._max_attempts

        for attempt in range(1, limit + 1):
            await self._sleep(interval)
            try:
                result = await self._source.poll(handle)
            except Exception as exc:
                logger.warning(
                    "Poll %d/%d for %s job %s failed: %s",
                    attempt,
                    limit,
                    self._source.name,
                    handle.id,
                    exc,
                )
                continue

            handle.status = result.status
            logger.debug(
                "%s job %s: %s (attempt %d/%d)",
                self._source.name,
                handle.id,
                result.status,
                attempt,
                limit,
            )
            if on_progress is not None:
                on_progress(attempt, limit, result.status)

            if result.status == JobStatus.SUCCEEDED:
                logger.info("%s job %s succeeded after %d poll(s)", self._source.name, handle.id, attempt)
                return JobOutcome(
                    job_id=handle.id, success=True, output=result.output, attempts=attempt
                )
            if result.status == JobStatus.FAILED:
                error = result.error or "Job failed"
                logger.warning("%s job %s failed: %s", self._source.name, handle.id, error)
                return JobOutcome(job_id=handle.id, success=False, error=error, attempts=attempt)
            if result.status == JobStatus.CANCELED:
                logger.warning("%s job %s was canceled", self._source.name, handle.id)
                return JobOutcome(
                    job_id=handle.id,
                    success=False,
                    error=result.error or "Job was canceled",
                    attempts=attempt,
                )

        logger.warning(
            "Gave up on %s job %s after %d poll(s)", self._source.name, handle.id, limit
        )
        return JobOutcome(
            job_id=handle.id,
            success=False,
            error=f"Timed out after {limit} polls",
            timed_out=True,
            attempts=limit,
        )

    async def run(self, spec: dict[str, Any], **wait_kwargs: Any) -> JobOutcome:
        """Start a job and wait for it in one call."""
        handle = await self.start(spec)
        return await self.wait_until_terminal(handle, **wait_kwargs)

    async def wait_all(
        self, handles: list[JobHandle], **wait_kwargs: Any
    ) -> dict[str, JobOutcome]:
        """Wait on several handles concurrently. Returns outcomes keyed by job id."""
        outcomes = await asyncio.gather(
            *(self.wait_until_terminal(h, **wait_kwargs) for h in handles)
        )
        return {outcome.job_id: outcome for outcome in outcomes}
