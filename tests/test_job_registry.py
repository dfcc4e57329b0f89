"""Tests for JobRegistry: expiring job records."""

from datetime import timedelta
from pathlib import Path

import pytest

from postpilot.jobs.models import JobHandle, JobOutcome, JobStatus
from postpilot.jobs.registry import JobRegistry

pytestmark = pytest.mark.usefixtures("_no_turso")


@pytest.fixture
async def registry(tmp_path: Path) -> JobRegistry:
    return JobRegistry(db_path=tmp_path / "test.db", ttl=timedelta(hours=1))


def _handle(job_id: str = "p1", **metadata) -> JobHandle:
    return JobHandle(id=job_id, provider="replicate", metadata=metadata)


async def test_register_and_lookup(registry: JobRegistry) -> None:
    await registry.register(_handle(prompt="waves", user_id="u1"))

    handle = await registry.lookup("replicate", "p1")

    assert handle is not None
    assert handle.status == JobStatus.STARTING
    assert handle.metadata == {"prompt": "waves", "user_id": "u1"}


async def test_lookup_unknown(registry: JobRegistry) -> None:
    assert await registry.lookup("replicate", "nope") is None


async def test_lookup_is_scoped_by_provider(registry: JobRegistry) -> None:
    await registry.register(_handle())
    assert await registry.lookup("shotstack", "p1") is None


async def test_expired_rows_are_invisible_and_purged(tmp_path: Path) -> None:
    registry = JobRegistry(db_path=tmp_path / "test.db", ttl=timedelta(seconds=-1))
    await registry.register(_handle())

    assert await registry.lookup("replicate", "p1") is None
    assert await registry.purge_expired() == 1
    assert await registry.purge_expired() == 0


async def test_purge_keeps_live_rows(registry: JobRegistry) -> None:
    await registry.register(_handle())
    assert await registry.purge_expired() == 0
    assert await registry.lookup("replicate", "p1") is not None


async def test_record_success_exposes_output(registry: JobRegistry) -> None:
    await registry.register(_handle())
    await registry.record_outcome(
        "replicate", JobOutcome(job_id="p1", success=True, output=["https://cdn/v.mp4"])
    )

    assert await registry.get_output("replicate", "p1") == ["https://cdn/v.mp4"]
    assert (await registry.lookup("replicate", "p1")).status == JobStatus.SUCCEEDED


async def test_record_failure_has_no_output(registry: JobRegistry) -> None:
    await registry.register(_handle())
    await registry.record_outcome("replicate", JobOutcome(job_id="p1", success=False, error="x"))

    assert await registry.get_output("replicate", "p1") is None
    assert (await registry.lookup("replicate", "p1")).status == JobStatus.FAILED


async def test_timeout_leaves_job_in_flight(registry: JobRegistry) -> None:
    await registry.register(_handle())
    await registry.record_outcome(
        "replicate", JobOutcome(job_id="p1", success=False, timed_out=True, error="Timed out")
    )
    assert (await registry.lookup("replicate", "p1")).status == JobStatus.PROCESSING


async def test_discard(registry: JobRegistry) -> None:
    await registry.register(_handle())
    assert await registry.discard("replicate", "p1") is True
    assert await registry.discard("replicate", "p1") is False
