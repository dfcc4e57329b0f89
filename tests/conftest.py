"""Shared test fixtures."""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest


@pytest.fixture(autouse=False)
def _no_turso(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure tests use local file, not remote Turso."""
    monkeypatch.setattr("postpilot.config.settings.turso_database_url", "")


@pytest.fixture
def media_dir(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Point generated media at a temporary directory."""
    path = tmp_path / "media"
    monkeypatch.setattr("postpilot.config.settings.media_dir", path)
    monkeypatch.setattr("postpilot.config.settings.media_base_url", "")
    return path


@pytest.fixture
def mock_http(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    """Replace the httpx client used by provider calls.

    Set ``mock_http.request.return_value`` (or ``side_effect``) to
    ``httpx.Response`` objects.
    """
    client = MagicMock()
    client.request = AsyncMock(return_value=httpx.Response(200, json={}))
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=client)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    monkeypatch.setattr("postpilot.http.httpx.AsyncClient", factory)
    return client
