"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """Postpilot configuration. All values come from environment variables."""

    # Database
    database_path: Path = Field(default=Path("data/postpilot.db"))

    # Turso (hosted libSQL); when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Dispatch loop
    dispatch_interval_seconds: int = Field(default=60)
    dispatch_batch_size: int = Field(default=10)
    retry_backoff_minutes: int = Field(default=5)
    default_max_attempts: int = Field(default=3)
    stalled_after_minutes: int = Field(default=15)

    # External job polling
    job_poll_interval_seconds: float = Field(default=5.0)
    job_max_poll_attempts: int = Field(default=120)
    job_ttl_hours: int = Field(default=24)
    job_purge_interval_minutes: int = Field(default=30)

    # Parallel task runner
    task_default_timeout_seconds: float = Field(default=300.0)
    task_batch_size: int = Field(default=5)

    # Reel pipeline stage timeouts
    script_timeout_seconds: float = Field(default=60.0)
    voiceover_timeout_seconds: float = Field(default=60.0)
    subtitles_timeout_seconds: float = Field(default=10.0)
    video_start_timeout_seconds: float = Field(default=120.0)
    # Added on top of the video and render poll ceilings
    compose_timeout_seconds: float = Field(default=600.0)

    # Anthropic (reel scripts)
    anthropic_api_key: str = Field(default="")
    script_model: str = Field(default="claude-sonnet-4-5-20250929")

    # Replicate (text-to-video)
    replicate_api_token: str = Field(default="")
    replicate_api_url: str = Field(default="https://api.replicate.com/v1")
    replicate_video_version: str = Field(
        default="5aa835260ff7f40f4069c41185f72036accf99e29957bb4a3b3a911f3b6c1912"
    )

    # Shotstack (cloud composition)
    shotstack_api_key: str = Field(default="")
    shotstack_host: str = Field(default="https://api.shotstack.io/stage")

    # Google Cloud Text-to-Speech
    google_tts_api_key: str = Field(default="")
    tts_language_code: str = Field(default="en-US")
    tts_voice_name: str = Field(default="en-US-Neural2-J")

    # Generated media
    media_dir: Path = Field(default=Path("data/media"))
    media_base_url: str = Field(default="")

    # Instagram Graph API
    instagram_access_token: str = Field(default="")
    instagram_account_id: str = Field(default="")
    graph_api_url: str = Field(default="https://graph.facebook.com/v18.0")

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    @property
    def shotstack_enabled(self) -> bool:
        """True when a Shotstack API key is configured."""
        return bool(self.shotstack_api_key.strip())

    def get_media_url(self, filename: str) -> str:
        """Return the public URL for a generated media file.

        Falls back to the local path when MEDIA_BASE_URL is not set.
        """
        if not self.media_base_url.strip():
            return str(self.media_dir / filename)
        return f"{self.media_base_url.rstrip('/')}/{filename}"


settings = Settings()
