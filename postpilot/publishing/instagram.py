"""Instagram publishing through the Graph API.

Publishing is three calls: create a media container, wait until Instagram
has processed it, then ``media_publish`` it.  Container processing is an
external job like any other, so it is polled through ``JobPoller``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from postpilot.capabilities import PublishResult
from postpilot.config import settings
from postpilot.errors import ProviderError, ProviderNotConfiguredError
from postpilot.http import request_json
from postpilot.jobs.models import JobHandle, JobStatus, PollResult
from postpilot.jobs.poller import JobPoller
from postpilot.scheduler.models import ContentType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from postpilot.content.models import Content, MediaAsset

logger = logging.getLogger(__name__)

PROVIDER = "instagram"

CONTAINER_POLL_INTERVAL = 2.0
CONTAINER_MAX_POLLS = 30

_CONTAINER_STATUS = {
    "FINISHED": JobStatus.SUCCEEDED,
    "PUBLISHED": JobStatus.SUCCEEDED,
    "IN_PROGRESS": JobStatus.PROCESSING,
    "ERROR": JobStatus.FAILED,
    "EXPIRED": JobStatus.FAILED,
}


def public_media_url(asset: MediaAsset) -> str:
    """Absolute URL for *asset*; relative paths are resolved against the media base URL."""
    if asset.url.startswith(("http://", "https://")):
        return asset.url
    return settings.get_media_url(asset.url.lstrip("/"))


class GraphClient:
    """Minimal Graph API access bound to one account and token."""

    def __init__(
        self,
        access_token: str | None = None,
        account_id: str | None = None,
        api_url: str | None = None,
    ) -> None:
        self.access_token = access_token if access_token is not None else settings.instagram_access_token
        self.account_id = account_id if account_id is not None else settings.instagram_account_id
        self.api_url = (api_url or settings.graph_api_url).rstrip("/")

    def check_configured(self) -> None:
        if not self.access_token:
            raise ProviderNotConfiguredError(PROVIDER, "INSTAGRAM_ACCESS_TOKEN")
        if not self.account_id:
            raise ProviderNotConfiguredError(PROVIDER, "INSTAGRAM_ACCOUNT_ID")

    async def get(self, path: str, **params: Any) -> dict[str, Any]:
        return await request_json(
            PROVIDER,
            "GET",
            f"{self.api_url}/{path}",
            params={**params, "access_token": self.access_token},
        )

    async def post(self, path: str, **params: Any) -> dict[str, Any]:
        return await request_json(
            PROVIDER,
            "POST",
            f"{self.api_url}/{path}",
            params={**params, "access_token": self.access_token},
        )


class ContainerJobs:
    """``JobSource`` for media containers: ``start`` creates one, ``poll`` reads ``status_code``."""

    def __init__(self, graph: GraphClient) -> None:
        self._graph = graph

    @property
    def name(self) -> str:
        return "instagram_container"

    async def start(self, spec: dict[str, Any]) -> JobHandle:
        data = await self._graph.post(f"{self._graph.account_id}/media", **spec)
        container_id = data.get("id")
        if not container_id:
            raise ProviderError(PROVIDER, "container response had no id")
        return JobHandle(id=container_id, provider=self.name, status=JobStatus.PROCESSING)

    async def poll(self, handle: JobHandle) -> PollResult:
        data = await self._graph.get(handle.id, fields="status_code,status")
        code = (data.get("status_code") or "").upper()
        status = _CONTAINER_STATUS.get(code, JobStatus.PROCESSING)
        error = None
        if status == JobStatus.FAILED:
            error = f"Media processing failed ({data.get('status') or code})"
        return PollResult(status=status, output=handle.id, error=error)


class InstagramPublisher:
    """``Publisher`` for posts, reels and stories on one Instagram business account.

    Content that already carries a ``provider_id`` was published by an
    earlier attempt; it is reported as published again without another post.
    """

    def __init__(
        self,
        graph: GraphClient | None = None,
        *,
        poll_interval: float = CONTAINER_POLL_INTERVAL,
        max_polls: int = CONTAINER_MAX_POLLS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._graph = graph or GraphClient()
        self._containers = ContainerJobs(self._graph)
        self._poller = JobPoller(
            self._containers, poll_interval=poll_interval, max_attempts=max_polls, sleep=sleep
        )

    async def publish(self, content: Content) -> PublishResult:
        if content.provider_id:
            logger.info("Content %s already published as %s", content.id, content.provider_id)
            return PublishResult.ok(content.provider_id, content.permalink)
        try:
            self._graph.check_configured()
            return await self._publish(content)
        except ProviderError as exc:
            logger.warning("Instagram publish failed for %s: %s", content.id, exc)
            return PublishResult.failed(str(exc))

    async def _publish(self, content: Content) -> PublishResult:
        if not content.media:
            return PublishResult.failed(f"{content.content_type} {content.id} has no media")

        container_id = await self._create_container(content)
        if content.has_video or content.content_type == ContentType.REEL:
            handle = JobHandle(id=container_id, provider=self._containers.name)
            outcome = await self._poller.wait_until_terminal(handle)
            if not outcome.success:
                return PublishResult.failed(outcome.error or "Media processing failed")

        published = await self._graph.post(
            f"{self._graph.account_id}/media_publish", creation_id=container_id
        )
        media_id = published.get("id")
        if not media_id:
            return PublishResult.failed("media_publish response had no id")

        permalink = await self._permalink(media_id)
        logger.info("Published %s %s to Instagram as %s", content.content_type, content.id, media_id)
        return PublishResult.ok(media_id, permalink)

    async def _create_container(self, content: Content) -> str:
        caption = content.formatted_caption()

        if content.content_type == ContentType.REEL:
            video = next((m for m in content.media if m.is_video), content.media[0])
            spec: dict[str, Any] = {
                "media_type": "REELS",
                "video_url": public_media_url(video),
                "caption": caption,
            }
            if content.cover_url:
                spec["cover_url"] = content.cover_url
            return (await self._containers.start(spec)).id

        if content.content_type == ContentType.STORY:
            asset = content.media[0]
            key = "video_url" if asset.is_video else "image_url"
            spec = {"media_type": "STORIES", key: public_media_url(asset)}
            return (await self._containers.start(spec)).id

        if len(content.media) > 1:
            children = []
            for asset in content.media:
                key = "video_url" if asset.is_video else "image_url"
                child = await self._containers.start(
                    {key: public_media_url(asset), "is_carousel_item": "true"}
                )
                if asset.is_video:
                    # Video children must be FINISHED before the carousel can reference them.
                    outcome = await self._poller.wait_until_terminal(child)
                    if not outcome.success:
                        raise ProviderError(
                            PROVIDER, outcome.error or "carousel video processing failed"
                        )
                children.append(child.id)
            spec = {"media_type": "CAROUSEL", "children": ",".join(children), "caption": caption}
            return (await self._containers.start(spec)).id

        asset = content.media[0]
        if asset.is_video:
            spec = {"media_type": "VIDEO", "video_url": public_media_url(asset), "caption": caption}
        else:
            spec = {"image_url": public_media_url(asset), "caption": caption}
        return (await self._containers.start(spec)).id

    async def _permalink(self, media_id: str) -> str | None:
        # The post is already live; a failed lookup only loses the link.
        try:
            data = await self._graph.get(media_id, fields="permalink")
        except ProviderError as exc:
            logger.warning("Permalink lookup failed for %s: %s", media_id, exc)
            return None
        return data.get("permalink")
