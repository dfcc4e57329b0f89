"""Cloud composition of reels through the Shotstack edit API."""

from __future__ import annotations

import logging
from typing import Any

from postpilot.config import settings
from postpilot.errors import ProviderError, ProviderNotConfiguredError
from postpilot.http import request_json
from postpilot.jobs.models import JobHandle, JobStatus, PollResult

logger = logging.getLogger(__name__)

PROVIDER = "shotstack"

DEFAULT_DURATION = 6.0
OUTPUT_SIZE = {"width": 1080, "height": 1920}

DEFAULT_SUBTITLE_STYLE: dict[str, Any] = {
    "style": "blockbuster",
    "color": "#ffffff",
    "size": "medium",
    "background": "#000000",
    "position": "bottom",
    "offset": {"x": 0, "y": -0.1},
}

_STATUS_MAP = {
    "queued": JobStatus.STARTING,
    "fetching": JobStatus.PROCESSING,
    "rendering": JobStatus.PROCESSING,
    "saving": JobStatus.PROCESSING,
    "done": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
}


def _title_clip(text: str, start: float, length: float, style: dict[str, Any]) -> dict[str, Any]:
    return {
        "asset": {"type": "title", "text": text, **style},
        "start": start,
        "length": round(length, 3),
    }


def build_timeline(
    video_url: str,
    audio_url: str | None = None,
    captions: list[dict[str, Any]] | None = None,
    *,
    text: str | None = None,
    duration: float | None = None,
    fps: int = 25,
    subtitle_style: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a 9:16 vertical edit: muted video, caption track, voiceover soundtrack.

    Without *captions*, *text* (when given) is shown for the whole reel.
    The length defaults to the end of the last caption, then to six seconds.
    """
    captions = captions or []
    style = subtitle_style or DEFAULT_SUBTITLE_STYLE
    length = duration or (max(c["end"] for c in captions) if captions else DEFAULT_DURATION)

    tracks: list[dict[str, Any]] = []
    if captions:
        clips = [_title_clip(c["text"], c["start"], c["end"] - c["start"], style) for c in captions]
        clips[0]["transition"] = {"in": "fade"}
        clips[-1].setdefault("transition", {})["out"] = "fade"
        tracks.append({"clips": clips})
    elif text:
        tracks.append({"clips": [_title_clip(text, 0, length, style)]})

    # Shotstack layers tracks top-down, so the video goes last.
    tracks.append(
        {
            "clips": [
                {
                    "asset": {"type": "video", "src": video_url, "volume": 0},
                    "start": 0,
                    "length": length,
                    "fit": "cover",
                    "scale": 1,
                    "position": "center",
                }
            ]
        }
    )

    timeline: dict[str, Any] = {"background": "#000000", "tracks": tracks}
    if audio_url:
        timeline["soundtrack"] = {"src": audio_url, "effect": "fadeOut", "volume": 1}

    return {
        "timeline": timeline,
        "output": {"format": "mp4", "fps": fps, "size": dict(OUTPUT_SIZE)},
    }


class ShotstackRenderer:
    """``JobSource`` for render jobs.

    ``start`` takes ``{"video_url", "audio_url", "captions", "text"}`` and
    submits the edit built by ``build_timeline``.
    """

    def __init__(self, api_key: str | None = None, host: str | None = None) -> None:
        self._api_key = api_key if api_key is not None else settings.shotstack_api_key
        self._host = (host or settings.shotstack_host).rstrip("/")

    @property
    def name(self) -> str:
        return PROVIDER

    @property
    def configured(self) -> bool:
        return bool(self._api_key.strip())

    def _headers(self) -> dict[str, str]:
        if not self.configured:
            raise ProviderNotConfiguredError(PROVIDER, "SHOTSTACK_API_KEY")
        return {"x-api-key": self._api_key}

    async def start(self, spec: dict[str, Any]) -> JobHandle:
        video_url = spec.get("video_url")
        if not video_url:
            raise ProviderError(PROVIDER, "video_url is required")

        edit = build_timeline(
            video_url,
            spec.get("audio_url"),
            spec.get("captions"),
            text=spec.get("text"),
            duration=spec.get("duration"),
        )
        data = await request_json(
            PROVIDER, "POST", f"{self._host}/render", headers=self._headers(), json=edit
        )
        render_id = (data.get("response") or {}).get("id")
        if not render_id:
            raise ProviderError(PROVIDER, data.get("message") or "render response had no id")

        logger.info("Submitted Shotstack render %s", render_id)
        return JobHandle(id=render_id, provider=PROVIDER, status=JobStatus.STARTING)

    async def poll(self, handle: JobHandle) -> PollResult:
        data = await request_json(
            PROVIDER, "GET", f"{self._host}/render/{handle.id}", headers=self._headers()
        )
        render = data.get("response") or {}
        status = _STATUS_MAP.get(render.get("status", ""), JobStatus.PROCESSING)
        if status == JobStatus.SUCCEEDED:
            if not render.get("url"):
                # Shotstack can report done a moment before the URL is attached.
                return PollResult(status=JobStatus.PROCESSING, progress=render.get("progress"))
            return PollResult(status=status, output=render["url"])
        if status == JobStatus.FAILED:
            return PollResult(status=status, error=render.get("error") or "Render failed")
        return PollResult(status=status, progress=render.get("progress"))
