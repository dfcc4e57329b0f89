"""Tests for ReplicateVideoJobs: text-to-video predictions."""

from unittest.mock import MagicMock

import httpx
import pytest

from postpilot.capabilities import JobSource
from postpilot.errors import ProviderError, ProviderNotConfiguredError
from postpilot.jobs.models import JobHandle, JobStatus
from postpilot.media.replicate import ReplicateVideoJobs, normalise_status

API = "https://api.replicate.com/v1"


def _resp(status: int, **kwargs) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("GET", API), **kwargs)


@pytest.fixture
def jobs() -> ReplicateVideoJobs:
    return ReplicateVideoJobs(api_token="r8_test", api_url=API, version="v1")


def test_is_a_job_source(jobs: ReplicateVideoJobs) -> None:
    assert isinstance(jobs, JobSource)
    assert jobs.name == "replicate"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("starting", JobStatus.STARTING),
        ("processing", JobStatus.PROCESSING),
        ("succeeded", JobStatus.SUCCEEDED),
        ("failed", JobStatus.FAILED),
        ("canceled", JobStatus.CANCELED),
        ("weird", JobStatus.PROCESSING),
        (None, JobStatus.PROCESSING),
    ],
)
def test_normalise_status(raw, expected) -> None:
    assert normalise_status(raw) == expected


async def test_start_posts_prediction(jobs: ReplicateVideoJobs, mock_http: MagicMock) -> None:
    mock_http.request.return_value = _resp(201, json={"id": "pred1", "status": "starting"})

    handle = await jobs.start({"prompt": "ocean waves at dawn"})

    assert handle.id == "pred1"
    assert handle.provider == "replicate"
    assert handle.status == JobStatus.STARTING
    assert handle.metadata == {"prompt": "ocean waves at dawn"}
    method, url = mock_http.request.call_args.args
    kwargs = mock_http.request.call_args.kwargs
    assert (method, url) == ("POST", f"{API}/predictions")
    assert kwargs["headers"] == {"Authorization": "Bearer r8_test"}
    assert kwargs["json"] == {
        "version": "v1",
        "input": {"prompt": "ocean waves at dawn", "prompt_optimizer": True},
    }


async def test_start_requires_prompt(jobs: ReplicateVideoJobs, mock_http: MagicMock) -> None:
    with pytest.raises(ProviderError, match="prompt"):
        await jobs.start({"prompt": "  "})
    mock_http.request.assert_not_awaited()


async def test_start_without_token() -> None:
    with pytest.raises(ProviderNotConfiguredError):
        await ReplicateVideoJobs(api_token="").start({"prompt": "x"})


async def test_start_missing_id(jobs: ReplicateVideoJobs, mock_http: MagicMock) -> None:
    mock_http.request.return_value = _resp(201, json={"status": "starting"})
    with pytest.raises(ProviderError, match="no id"):
        await jobs.start({"prompt": "x"})


async def test_poll_success(jobs: ReplicateVideoJobs, mock_http: MagicMock) -> None:
    mock_http.request.return_value = _resp(
        200, json={"id": "pred1", "status": "succeeded", "output": ["https://cdn/v.mp4"]}
    )

    result = await jobs.poll(JobHandle(id="pred1", provider="replicate"))

    assert result.status == JobStatus.SUCCEEDED
    assert result.output == ["https://cdn/v.mp4"]
    assert mock_http.request.call_args.args == ("GET", f"{API}/predictions/pred1")


async def test_poll_failure_without_error_text(
    jobs: ReplicateVideoJobs, mock_http: MagicMock
) -> None:
    mock_http.request.return_value = _resp(200, json={"id": "pred1", "status": "failed"})
    result = await jobs.poll(JobHandle(id="pred1", provider="replicate"))
    assert result.status == JobStatus.FAILED
    assert result.error == "Prediction failed"
