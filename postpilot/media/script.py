"""Reel scripts written by Claude."""

from __future__ import annotations

import logging

import anthropic

from postpilot.config import settings
from postpilot.errors import ProviderError, ProviderNotConfiguredError, is_transient_status

logger = logging.getLogger(__name__)

PROVIDER = "anthropic"

_client: anthropic.AsyncAnthropic | None = None

SYSTEM_PROMPT = (
    "You are a viral Reels scriptwriter. Write the voiceover for a {seconds}-second "
    "vertical video: a hook in the first three seconds, the main point, then a "
    "call to action. Return only the words to be spoken, with no timestamps, "
    "stage directions or headings."
)


def _get_client() -> anthropic.AsyncAnthropic:
    """Lazily initialize the Anthropic client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _client


class ClaudeScriptWriter:
    """``ScriptWriter`` using a single Messages API call."""

    def __init__(self, model: str | None = None, max_tokens: int = 800) -> None:
        self._model = model or settings.script_model
        self._max_tokens = max_tokens

    async def write_script(self, topic: str, seconds: int = 15) -> str:
        if not settings.anthropic_api_key:
            raise ProviderNotConfiguredError(PROVIDER, "ANTHROPIC_API_KEY")
        if not topic.strip():
            raise ProviderError(PROVIDER, "a topic is required")

        try:
            response = await _get_client().messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                system=SYSTEM_PROMPT.format(seconds=seconds),
                messages=[{"role": "user", "content": f"Write a Reel script about: {topic}"}],
            )
        except anthropic.APIStatusError as exc:
            raise ProviderError(
                PROVIDER,
                str(exc),
                status_code=exc.status_code,
                transient=is_transient_status(exc.status_code),
            ) from exc
        except anthropic.APIError as exc:
            raise ProviderError(PROVIDER, str(exc), transient=True) from exc

        text = "".join(block.text for block in response.content if block.type == "text").strip()
        if not text:
            raise ProviderError(PROVIDER, "model returned an empty script")
        logger.info("Wrote %d-second script for %r (%d chars)", seconds, topic, len(text))
        return text
