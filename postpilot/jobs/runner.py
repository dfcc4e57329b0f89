"""ParallelTaskRunner: fault-isolated concurrent execution of async tasks.

Every task is wrapped so that its failure or timeout becomes a
``TaskResult(success=False)`` instead of an exception.  The join therefore
never cancels siblings and only returns once every task is terminal.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from postpilot.config import settings

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class TaskSpec:
    """One unit of work: a name, a zero-arg coroutine factory and a timeout in seconds."""

    name: str
    fn: Callable[[], Awaitable[Any]]
    timeout: float | None = None


@dataclass
class TaskResult:
    name: str
    success: bool
    data: Any = None
    error: str | None = None
    duration_ms: int = 0
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@dataclass
class ParallelSummary:
    total: int
    successful: int
    failed: int
    total_duration_ms: int = 0


@dataclass
class ParallelResult:
    results: list[TaskResult]
    summary: ParallelSummary

    def by_name(self) -> dict[str, TaskResult]:
        return {r.name: r for r in self.results}

    def get(self, name: str) -> TaskResult | None:
        return next((r for r in self.results if r.name == name), None)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class ParallelTaskRunner:
    """Runs batches of independent async tasks concurrently.

    Args:
        default_timeout: Seconds allowed per task when a spec has none.
        batch_size: Window size for ``execute_batched``.
    """

    def __init__(
        self,
        default_timeout: float | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._default_timeout = default_timeout or settings.task_default_timeout_seconds
        self._batch_size = batch_size or settings.task_batch_size

    async def execute_task(
        self,
        name: str,
        fn: Callable[[], Awaitable[Any]],
        timeout: float | None = None,
    ) -> TaskResult:
        """Run one task against its timeout and capture the outcome."""
        limit = timeout or self._default_timeout
        started = time.monotonic()
        try:
            data = await asyncio.wait_for(fn(), timeout=limit)
        except TimeoutError:
            duration = _elapsed_ms(started)
            error = f"Task {name} timed out after {limit:g}s"
            logger.warning(error)
            return TaskResult(name=name, success=False, error=error, duration_ms=duration)
        except Exception as exc:
            duration = _elapsed_ms(started)
            logger.warning("Task %r failed after %dms: %s", name, duration, exc)
            return TaskResult(
                name=name, success=False, error=str(exc) or type(exc).__name__, duration_ms=duration
            )

        duration = _elapsed_ms(started)
        logger.info("Task %r completed in %dms", name, duration)
        return TaskResult(name=name, success=True, data=data, duration_ms=duration)

    async def execute_parallel(self, tasks: list[TaskSpec]) -> ParallelResult:
        """Start every task at once and wait until all of them are terminal."""
        logger.info("Starting %d task(s) in parallel", len(tasks))
        started = time.monotonic()

        outcomes = await asyncio.gather(
            *(self.execute_task(t.name, t.fn, t.timeout) for t in tasks),
            return_exceptions=True,
        )

        results: list[TaskResult] = []
        for spec, outcome in zip(tasks, outcomes, strict=True):
            if isinstance(outcome, TaskResult):
                results.append(outcome)
            else:
                # Only reachable when the wrapper itself is interrupted.
                results.append(
                    TaskResult(name=spec.name, success=False, error=str(outcome) or "Unknown error")
                )

        summary = _summarise(results, _elapsed_ms(started))
        logger.info(
            "Parallel execution finished in %dms: %d succeeded, %d failed",
            summary.total_duration_ms,
            summary.successful,
            summary.failed,
        )
        return ParallelResult(results=results, summary=summary)

    async def execute_batched(
        self, tasks: list[TaskSpec], batch_size: int | None = None
    ) -> ParallelResult:
        """Run *tasks* in fixed-size windows, each window finishing before the next."""
        size = batch_size if batch_size is not None else self._batch_size
        if size < 1:
            msg = f"batch_size must be at least 1, got {size}"
            raise ValueError(msg)

        started = time.monotonic()
        results: list[TaskResult] = []
        batches = (len(tasks) + size - 1) // size
        for index in range(0, len(tasks), size):
            logger.info("Processing batch %d/%d", index // size + 1, batches)
            window = await self.execute_parallel(tasks[index : index + size])
            results.extend(window.results)

        return ParallelResult(results=results, summary=_summarise(results, _elapsed_ms(started)))


def _summarise(results: list[TaskResult], duration_ms: int) -> ParallelSummary:
    successful = sum(1 for r in results if r.success)
    return ParallelSummary(
        total=len(results),
        successful=successful,
        failed=len(results) - successful,
        total_duration_ms=duration_ms,
    )
