"""Job handle and poll result types shared by every external job source."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    STARTING = "starting"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELED)


@dataclass
class JobHandle:
    """Reference to an in-flight job at an external provider.

    Attributes:
        id: Provider-assigned job identifier.
        provider: Short provider name, used to pick the poller and registry rows.
        status: Last known normalised status.
        metadata: Caller context needed to finish processing on completion.
    """

    id: str
    provider: str
    status: JobStatus = JobStatus.STARTING
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class PollResult:
    """One status check, normalised."""

    status: JobStatus
    output: Any = None
    error: str | None = None
    progress: float | None = None


@dataclass
class JobOutcome:
    """Terminal result of waiting on a job.

    ``timed_out`` separates "we stopped waiting" from "the provider said no":
    a timed-out job may still finish, so callers should submit a fresh job
    rather than trust the stale handle.
    """

    job_id: str
    success: bool
    output: Any = None
    error: str | None = None
    timed_out: bool = False
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "timed_out": self.timed_out,
            "attempts": self.attempts,
        }


def first_output_url(output: Any) -> str | None:
    """Pick a URL out of provider output (a string or a list of strings)."""
    if isinstance(output, str):
        return output
    if isinstance(output, list | tuple) and output:
        return str(output[0])
    return None
