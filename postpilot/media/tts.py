"""Voiceovers through the Google Cloud Text-to-Speech REST API."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from postpilot.capabilities import Voiceover
from postpilot.config import settings
from postpilot.errors import ProviderError, ProviderNotConfiguredError
from postpilot.http import request_json

logger = logging.getLogger(__name__)

PROVIDER = "google_tts"
SYNTHESIZE_URL = "https://texttospeech.googleapis.com/v1/text:synthesize"


@dataclass(frozen=True)
class VoicePreset:
    voice_name: str
    speaking_rate: float
    pitch: float


VOICE_PRESETS: dict[str, VoicePreset] = {
    "energetic": VoicePreset("en-US-Neural2-D", 1.1, 2.0),
    "calm": VoicePreset("en-US-Neural2-J", 0.9, -2.0),
    "professional": VoicePreset("en-US-Neural2-F", 1.0, 0.0),
    "friendly": VoicePreset("en-US-Neural2-C", 1.05, 1.0),
}


class GoogleTTS:
    """``VoiceSynthesizer`` that stores MP3 files under ``media_dir/audio``.

    Unknown styles use the configured default voice at normal rate and pitch.
    """

    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = api_key if api_key is not None else settings.google_tts_api_key

    def build_request(self, text: str, style: str) -> dict[str, Any]:
        preset = VOICE_PRESETS.get(style) or VoicePreset(settings.tts_voice_name, 1.0, 0.0)
        return {
            "input": {"text": text},
            "voice": {"languageCode": settings.tts_language_code, "name": preset.voice_name},
            "audioConfig": {
                "audioEncoding": "MP3",
                "speakingRate": preset.speaking_rate,
                "pitch": preset.pitch,
                "effectsProfileId": ["headphone-class-device"],
            },
        }

    async def synthesize(self, text: str, style: str) -> Voiceover:
        if not self._api_key:
            raise ProviderNotConfiguredError(PROVIDER, "GOOGLE_TTS_API_KEY")
        if not text.strip():
            raise ProviderError(PROVIDER, "cannot synthesize empty text")

        logger.info("Synthesizing %d characters (style=%s)", len(text), style)
        data = await request_json(
            PROVIDER,
            "POST",
            SYNTHESIZE_URL,
            params={"key": self._api_key},
            json=self.build_request(text, style),
        )
        encoded = data.get("audioContent")
        if not encoded:
            raise ProviderError(PROVIDER, "response had no audioContent")
        try:
            audio = base64.b64decode(encoded)
        except (binascii.Error, ValueError) as exc:
            raise ProviderError(PROVIDER, "audioContent was not valid base64") from exc

        filename = f"tts_{uuid.uuid4().hex}.mp3"
        audio_dir = settings.media_dir / "audio"
        await asyncio.to_thread(audio_dir.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread((audio_dir / filename).write_bytes, audio)
        logger.info("Saved voiceover %s (%d bytes)", filename, len(audio))

        return Voiceover(
            audio_url=settings.get_media_url(f"audio/{filename}"),
            filename=filename,
            is_public_url=bool(settings.media_base_url.strip()),
        )
