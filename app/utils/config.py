"""
Configuration management for Scribe.

Uses pydantic-settings to load configuration from environment variables
and .env files.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Ingestion
    watch_dir: Optional[Path] = None
    scan_existing: bool = True

    # Dedup ledger
    ledger_path: Path = Path("scribe_state.json")

    # Dispatch / worker configuration
    queue_capacity: int = 100
    worker_count: int = 4
    item_timeout_seconds: float = 300.0
    drain_on_shutdown: bool = True

    # Sidecar output
    sidecar_markdown: bool = False

    # Backend selection: auto, openai, local, placeholder
    backend: str = "auto"
    audio_backend: Optional[str] = None
    video_backend: Optional[str] = None
    image_backend: Optional[str] = None

    # OpenAI configuration
    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_transcription_model: str = "whisper-1"
    openai_vision_model: str = "gpt-4o-mini"
    openai_request_timeout: float = 120.0

    # Local model configuration
    whisper_model_path: Path = Path("models/ggml-base.en.bin")
    whisper_binary: str = "whisper-cli"
    ffmpeg_binary: str = "ffmpeg"
    tesseract_binary: str = "tesseract"

    # Relay network configuration
    relay_sources: str = "wss://relay.damus.io,wss://nos.lol,wss://relay.nostr.band"
    relay_sinks: str = "wss://nostr.wine,wss://relay.snort.social"
    relay_kinds: str = "1"
    relay_authors: str = ""
    relay_secret_key: Optional[str] = None
    relay_reconnect_delay: float = 5.0
    relay_publish_timeout: float = 10.0

    # Status API
    api_port: Optional[int] = None
    api_title: str = "Scribe Status API"
    api_version: str = "1.0.0"
    api_host: str = "127.0.0.1"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def get_relay_sources(self) -> list[str]:
        """Parse source relay URLs into a list."""
        return _split_csv(self.relay_sources)

    def get_relay_sinks(self) -> list[str]:
        """Parse sink relay URLs into a list."""
        return _split_csv(self.relay_sinks)

    def get_relay_kinds(self) -> list[int]:
        """Parse subscribed event kinds into a list of ints."""
        return [int(k) for k in _split_csv(self.relay_kinds)]

    def get_relay_authors(self) -> list[str]:
        """Parse author pubkeys into a list."""
        return _split_csv(self.relay_authors)

    def backend_for(self, media_kind: str) -> str:
        """Return the configured backend name for a media kind."""
        override = getattr(self, f"{media_kind}_backend", None)
        return (override or self.backend).strip().lower()


def _split_csv(value: str) -> list[str]:
    return [p.strip() for p in value.split(',') if p.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
