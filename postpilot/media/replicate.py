"""Text-to-video generation as Replicate predictions."""

from __future__ import annotations

import logging
from typing import Any

from postpilot.config import settings
from postpilot.errors import ProviderError, ProviderNotConfiguredError
from postpilot.http import request_json
from postpilot.jobs.models import JobHandle, JobStatus, PollResult

logger = logging.getLogger(__name__)

PROVIDER = "replicate"

_STATUS_MAP = {
    "starting": JobStatus.STARTING,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.CANCELED,
}


def normalise_status(raw: str | None) -> JobStatus:
    """Map a Replicate prediction status onto ``JobStatus``.

    Unrecognised values count as still processing.
    """
    return _STATUS_MAP.get((raw or "").lower(), JobStatus.PROCESSING)


class ReplicateVideoJobs:
    """``JobSource`` for text-to-video predictions.

    ``start`` takes ``{"prompt": ..., "version": optional, "input": optional
    extra model input}`` and returns immediately with the prediction id.
    """

    def __init__(
        self,
        api_token: str | None = None,
        api_url: str | None = None,
        version: str | None = None,
    ) -> None:
        self._api_token = api_token if api_token is not None else settings.replicate_api_token
        self._api_url = (api_url or settings.replicate_api_url).rstrip("/")
        self._version = version or settings.replicate_video_version

    @property
    def name(self) -> str:
        return PROVIDER

    def _headers(self) -> dict[str, str]:
        if not self._api_token:
            raise ProviderNotConfiguredError(PROVIDER, "REPLICATE_API_TOKEN")
        return {"Authorization": f"Bearer {self._api_token}"}

    async def start(self, spec: dict[str, Any]) -> JobHandle:
        prompt = (spec.get("prompt") or "").strip()
        if not prompt:
            raise ProviderError(PROVIDER, "a video prompt is required")

        body = {
            "version": spec.get("version") or self._version,
            "input": {"prompt": prompt, "prompt_optimizer": True, **spec.get("input", {})},
        }
        data = await request_json(
            PROVIDER, "POST", f"{self._api_url}/predictions", headers=self._headers(), json=body
        )
        prediction_id = data.get("id")
        if not prediction_id:
            raise ProviderError(PROVIDER, "prediction response had no id")

        logger.info("Started Replicate prediction %s", prediction_id)
        return JobHandle(
            id=prediction_id,
            provider=PROVIDER,
            status=normalise_status(data.get("status")),
            metadata={"prompt": prompt},
        )

    async def poll(self, handle: JobHandle) -> PollResult:
        data = await request_json(
            PROVIDER, "GET", f"{self._api_url}/predictions/{handle.id}", headers=self._headers()
        )
        status = normalise_status(data.get("status"))
        error = data.get("error")
        if status == JobStatus.FAILED and not error:
            error = "Prediction failed"
        return PollResult(
            status=status,
            output=data.get("output"),
            error=str(error) if error else None,
        )
