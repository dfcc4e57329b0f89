"""Tests for InstagramPublisher and the Graph API container flow."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from postpilot.capabilities import Publisher
from postpilot.content.models import MediaAsset
from postpilot.errors import ProviderError
from postpilot.jobs.models import JobHandle, JobStatus
from postpilot.publishing.instagram import (
    ContainerJobs,
    GraphClient,
    InstagramPublisher,
    public_media_url,
)
from postpilot.scheduler.models import ContentType
from tests.factories import make_content

GRAPH = "https://graph.facebook.com/v18.0"


@pytest.fixture
def graph() -> MagicMock:
    g = MagicMock()
    g.account_id = "acct"
    g.check_configured = MagicMock()
    g.post = AsyncMock(side_effect=_post)
    g.get = AsyncMock(side_effect=_get)
    return g


async def _post(path, **params):
    if path == "acct/media":
        return {"id": f"container-{params.get('media_type', 'IMAGE').lower()}"}
    if path == "acct/media_publish":
        return {"id": "media1"}
    raise AssertionError(path)


async def _get(path, **params):
    if params.get("fields") == "permalink":
        return {"permalink": "https://instagram.com/p/abc"}
    return {"status_code": "FINISHED"}


@pytest.fixture
def publisher(graph: MagicMock) -> InstagramPublisher:
    return InstagramPublisher(graph, poll_interval=0, max_polls=3, sleep=AsyncMock())


def test_is_a_publisher(publisher: InstagramPublisher) -> None:
    assert isinstance(publisher, Publisher)


# -- Publishing ----------------------------------------------------------------


async def test_publish_image(publisher: InstagramPublisher, graph: MagicMock) -> None:
    content = make_content(caption="Hi", hashtags=["tag"])

    result = await publisher.publish(content)

    assert result.success is True
    assert result.provider_id == "media1"
    assert result.permalink == "https://instagram.com/p/abc"
    create = graph.post.await_args_list[0]
    assert create.args == ("acct/media",)
    assert create.kwargs == {"image_url": "https://cdn.example.com/a.jpg", "caption": "Hi\n\n#tag"}
    publish = graph.post.await_args_list[1]
    assert publish.kwargs == {"creation_id": "container-image"}


async def test_publish_reel_waits_for_container(
    publisher: InstagramPublisher, graph: MagicMock
) -> None:
    statuses = iter([{"status_code": "IN_PROGRESS"}, {"status_code": "FINISHED"}])

    async def get(path, **params):
        if params.get("fields") == "permalink":
            return {"permalink": "https://instagram.com/reel/xyz"}
        return next(statuses)

    graph.get.side_effect = get
    content = make_content(
        content_type=ContentType.REEL,
        media=[MediaAsset("https://cdn/v.mp4", "video")],
        cover_url="https://cdn/cover.jpg",
    )

    result = await publisher.publish(content)

    assert result.success is True
    create = graph.post.await_args_list[0]
    assert create.kwargs["media_type"] == "REELS"
    assert create.kwargs["video_url"] == "https://cdn/v.mp4"
    assert create.kwargs["cover_url"] == "https://cdn/cover.jpg"
    status_polls = [c for c in graph.get.await_args_list if c.kwargs["fields"] == "status_code,status"]
    assert len(status_polls) == 2


async def test_container_error_fails_publish(publisher: InstagramPublisher, graph: MagicMock) -> None:
    graph.get.side_effect = None
    graph.get.return_value = {"status_code": "ERROR", "status": "Error: unsupported codec"}
    content = make_content(content_type=ContentType.REEL, media=[MediaAsset("v.mp4", "video")])

    result = await publisher.publish(content)

    assert result.success is False
    assert result.error == "Media processing failed (Error: unsupported codec)"
    assert all(c.args[0] != "acct/media_publish" for c in graph.post.await_args_list)


async def test_story(publisher: InstagramPublisher, graph: MagicMock) -> None:
    content = make_content(content_type=ContentType.STORY)
    await publisher.publish(content)
    create = graph.post.await_args_list[0]
    assert create.kwargs == {"media_type": "STORIES", "image_url": "https://cdn.example.com/a.jpg"}


async def test_carousel(publisher: InstagramPublisher, graph: MagicMock) -> None:
    ids = iter(["child1", "child2", "parent"])

    async def post(path, **params):
        if path == "acct/media":
            return {"id": next(ids)}
        return {"id": "media1"}

    graph.post.side_effect = post
    content = make_content(media=[MediaAsset("a.jpg"), MediaAsset("https://cdn/b.mp4", "video")])

    result = await publisher.publish(content)

    assert result.success is True
    calls = graph.post.await_args_list
    assert calls[0].kwargs["is_carousel_item"] == "true"
    assert calls[1].kwargs == {"video_url": "https://cdn/b.mp4", "is_carousel_item": "true"}
    assert calls[2].kwargs["media_type"] == "CAROUSEL"
    assert calls[2].kwargs["children"] == "child1,child2"
    assert calls[3].kwargs == {"creation_id": "parent"}


async def test_carousel_waits_for_video_children(
    publisher: InstagramPublisher, graph: MagicMock
) -> None:
    ids = iter(["child1", "child2", "parent"])
    events = []

    async def post(path, **params):
        if path == "acct/media":
            container_id = next(ids)
            events.append(("create", container_id))
            return {"id": container_id}
        return {"id": "media1"}

    statuses = iter([{"status_code": "IN_PROGRESS"}, {"status_code": "FINISHED"}])

    async def get(path, **params):
        if params.get("fields") == "permalink":
            return {"permalink": "https://instagram.com/p/abc"}
        events.append(("poll", path))
        return next(statuses, {"status_code": "FINISHED"})

    graph.post.side_effect = post
    graph.get.side_effect = get
    content = make_content(media=[MediaAsset("a.jpg"), MediaAsset("https://cdn/b.mp4", "video")])

    result = await publisher.publish(content)

    assert result.success is True
    assert events == [
        ("create", "child1"),
        ("create", "child2"),
        ("poll", "child2"),
        ("poll", "child2"),
        ("create", "parent"),
        ("poll", "parent"),
    ]


async def test_carousel_video_child_error_fails_publish(
    publisher: InstagramPublisher, graph: MagicMock
) -> None:
    ids = iter(["child1", "child2", "parent"])

    async def post(path, **params):
        if path == "acct/media":
            return {"id": next(ids)}
        return {"id": "media1"}

    async def get(path, **params):
        return {"status_code": "ERROR", "status": "unsupported codec"}

    graph.post.side_effect = post
    graph.get.side_effect = get
    content = make_content(media=[MediaAsset("a.jpg"), MediaAsset("https://cdn/b.mp4", "video")])

    result = await publisher.publish(content)

    assert result.success is False
    assert "unsupported codec" in result.error
    assert graph.post.await_count == 2


async def test_already_published_is_not_posted_again(
    publisher: InstagramPublisher, graph: MagicMock
) -> None:
    content = make_content(provider_id="media0", permalink="https://instagram.com/p/old")

    result = await publisher.publish(content)

    assert result.success is True
    assert result.provider_id == "media0"
    graph.post.assert_not_awaited()


async def test_no_media(publisher: InstagramPublisher, graph: MagicMock) -> None:
    result = await publisher.publish(make_content(media=[]))
    assert result.success is False
    assert "no media" in result.error
    graph.post.assert_not_awaited()


async def test_provider_error_becomes_failed_result(
    publisher: InstagramPublisher, graph: MagicMock
) -> None:
    graph.post.side_effect = ProviderError("instagram", "POST returned 400: invalid image")

    result = await publisher.publish(make_content())

    assert result.success is False
    assert result.error == "instagram: POST returned 400: invalid image"


async def test_permalink_lookup_failure_still_succeeds(
    publisher: InstagramPublisher, graph: MagicMock
) -> None:
    async def get(path, **params):
        raise ProviderError("instagram", "GET returned 500: oops")

    graph.get.side_effect = get

    result = await publisher.publish(make_content())

    assert result.success is True
    assert result.permalink is None


async def test_unconfigured_account() -> None:
    publisher = InstagramPublisher(GraphClient(access_token="", account_id="acct"))
    result = await publisher.publish(make_content())
    assert result.success is False
    assert "INSTAGRAM_ACCESS_TOKEN" in result.error


# -- Graph client and containers -----------------------------------------------


async def test_graph_client_adds_token(mock_http: MagicMock) -> None:
    mock_http.request.return_value = httpx.Response(
        200, json={"id": "1"}, request=httpx.Request("POST", GRAPH)
    )
    client = GraphClient(access_token="tok", account_id="acct", api_url=GRAPH + "/")

    await client.post("acct/media", image_url="x")

    assert mock_http.request.call_args.args == ("POST", f"{GRAPH}/acct/media")
    assert mock_http.request.call_args.kwargs["params"] == {"image_url": "x", "access_token": "tok"}


@pytest.mark.parametrize(
    ("code", "status"),
    [
        ("FINISHED", JobStatus.SUCCEEDED),
        ("PUBLISHED", JobStatus.SUCCEEDED),
        ("IN_PROGRESS", JobStatus.PROCESSING),
        ("EXPIRED", JobStatus.FAILED),
        ("", JobStatus.PROCESSING),
    ],
)
async def test_container_status_mapping(graph: MagicMock, code, status) -> None:
    graph.get.side_effect = None
    graph.get.return_value = {"status_code": code}
    result = await ContainerJobs(graph).poll(JobHandle(id="c1", provider="instagram_container"))
    assert result.status == status


def test_public_media_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("postpilot.config.settings.media_base_url", "https://media.example.com")
    assert public_media_url(MediaAsset("https://cdn/x.jpg")) == "https://cdn/x.jpg"
    assert public_media_url(MediaAsset("/reels/x.mp4")) == "https://media.example.com/reels/x.mp4"
