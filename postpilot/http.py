"""Shared httpx call for provider REST APIs."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from postpilot.errors import ProviderError, is_transient_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


async def request_json(
    provider: str,
    method: str,
    url: str,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    **kwargs: Any,
) -> dict[str, Any]:
    """Send one request and return the decoded JSON body.

    Network failures, error statuses and undecodable bodies raise
    ``ProviderError``; 429 and 5xx responses and network errors are marked
    transient.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        logger.warning("%s %s %s failed: %s", provider, method, url, exc)
        raise ProviderError(provider, f"request failed: {exc}", transient=True) from exc

    if resp.status_code >= 400:
        raise ProviderError(
            provider,
            f"{method} returned {resp.status_code}: {resp.text[:300]}",
            status_code=resp.status_code,
            transient=is_transient_status(resp.status_code),
        )

    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderError(provider, "response was not valid JSON") from exc
