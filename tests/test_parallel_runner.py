"""Tests for ParallelTaskRunner: fault-isolated concurrent execution."""

import asyncio
import time

import pytest

from postpilot.jobs.runner import ParallelTaskRunner, TaskSpec


@pytest.fixture
def runner() -> ParallelTaskRunner:
    return ParallelTaskRunner(default_timeout=5, batch_size=2)


def _value(value, delay: float = 0.0):
    async def fn():
        await asyncio.sleep(delay)
        return value

    return fn


def _boom(message: str = "boom"):
    async def fn():
        raise RuntimeError(message)

    return fn


# -- execute_task --------------------------------------------------------------


async def test_task_success(runner: ParallelTaskRunner) -> None:
    result = await runner.execute_task("a", _value(42))
    assert result.success is True
    assert result.data == 42
    assert result.error is None
    assert result.duration_ms >= 0
    assert result.timestamp


async def test_task_failure_is_captured(runner: ParallelTaskRunner) -> None:
    result = await runner.execute_task("a", _boom("quota exceeded"))
    assert result.success is False
    assert result.error == "quota exceeded"


async def test_task_timeout(runner: ParallelTaskRunner) -> None:
    result = await runner.execute_task("slow", _value(1, delay=1), timeout=0.05)
    assert result.success is False
    assert result.error == "Task slow timed out after 0.05s"


async def test_task_without_message_reports_type(runner: ParallelTaskRunner) -> None:
    async def fn():
        raise KeyError

    result = await runner.execute_task("a", fn)
    assert result.error == "KeyError"


# -- execute_parallel ----------------------------------------------------------


async def test_parallel_partial_success(runner: ParallelTaskRunner) -> None:
    outcome = await runner.execute_parallel(
        [
            TaskSpec("ok1", _value(1)),
            TaskSpec("bad", _boom()),
            TaskSpec("ok2", _value(2)),
        ]
    )

    assert [r.name for r in outcome.results] == ["ok1", "bad", "ok2"]
    assert outcome.summary.total == 3
    assert outcome.summary.successful == 2
    assert outcome.summary.failed == 1
    assert outcome.get("ok2").data == 2
    assert outcome.by_name()["bad"].success is False
    assert outcome.get("missing") is None


async def test_failure_does_not_cancel_siblings(runner: ParallelTaskRunner) -> None:
    finished = []

    async def slow():
        await asyncio.sleep(0.05)
        finished.append("slow")
        return "done"

    outcome = await runner.execute_parallel([TaskSpec("bad", _boom()), TaskSpec("slow", slow)])

    assert finished == ["slow"]
    assert outcome.get("slow").success is True


async def test_timeout_does_not_cancel_siblings(runner: ParallelTaskRunner) -> None:
    outcome = await runner.execute_parallel(
        [TaskSpec("slow", _value(1, delay=1), timeout=0.05), TaskSpec("fast", _value(2, delay=0.1))]
    )
    assert outcome.get("slow").success is False
    assert outcome.get("fast").data == 2


async def test_runs_concurrently(runner: ParallelTaskRunner) -> None:
    started = time.monotonic()
    await runner.execute_parallel([TaskSpec(f"t{i}", _value(i, delay=0.2)) for i in range(5)])
    assert time.monotonic() - started < 0.8


async def test_empty_task_list(runner: ParallelTaskRunner) -> None:
    outcome = await runner.execute_parallel([])
    assert outcome.results == []
    assert outcome.summary.total == 0


# -- execute_batched -----------------------------------------------------------


async def test_batched_runs_windows_in_order(runner: ParallelTaskRunner) -> None:
    active = 0
    peak = 0

    def tracked(value):
        async def fn():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return value

        return fn

    outcome = await runner.execute_batched([TaskSpec(f"t{i}", tracked(i)) for i in range(5)])

    assert [r.name for r in outcome.results] == ["t0", "t1", "t2", "t3", "t4"]
    assert outcome.summary.successful == 5
    assert peak == 2


async def test_batched_explicit_size(runner: ParallelTaskRunner) -> None:
    outcome = await runner.execute_batched(
        [TaskSpec("a", _value(1)), TaskSpec("b", _boom()), TaskSpec("c", _value(3))], batch_size=3
    )
    assert outcome.summary.total == 3
    assert outcome.summary.failed == 1


async def test_batched_rejects_bad_size(runner: ParallelTaskRunner) -> None:
    with pytest.raises(ValueError, match="batch_size"):
        await runner.execute_batched([TaskSpec("a", _value(1))], batch_size=0)
