"""
Backend selection.

The media kind → backend mapping is resolved once at startup and shared,
read-only, by every worker.
"""

import shutil
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from loguru import logger

from app.models.schemas import MediaKind
from app.utils.config import Settings
from domains.media_scribe.backends.base import MediaBackend
from domains.media_scribe.backends.local import LocalModelBackend
from domains.media_scribe.backends.openai import OpenAIBackend
from domains.media_scribe.backends.placeholder import PlaceholderBackend
from domains.media_scribe.errors import ConfigurationError

BACKEND_NAMES = ("openai", "local", "placeholder")


@dataclass(frozen=True)
class BackendSelection:
    """Immutable mapping from media kind to the backend that handles it."""

    backends: Mapping[MediaKind, MediaBackend]

    def __post_init__(self):
        missing = [kind.value for kind in MediaKind if kind not in self.backends]
        if missing:
            raise ConfigurationError(f"No backend for media kinds: {', '.join(missing)}")
        object.__setattr__(self, "backends", MappingProxyType(dict(self.backends)))

    @classmethod
    def uniform(cls, backend: MediaBackend) -> "BackendSelection":
        """Use one backend for every media kind."""
        return cls({kind: backend for kind in MediaKind})

    def for_kind(self, media_kind: MediaKind) -> MediaBackend:
        return self.backends[media_kind]

    def describe(self) -> dict[str, str]:
        return {kind.value: backend.name for kind, backend in self.backends.items()}

    async def aclose(self):
        for backend in {id(b): b for b in self.backends.values()}.values():
            await backend.aclose()


def resolve_auto(media_kind: MediaKind, settings: Settings) -> str:
    """
    Pick a backend name from the credentials and model files present now.

    OpenAI when a key is configured, else the local model when its model file
    (audio/video) or Tesseract binary (image) is available, else placeholder.
    """
    if settings.openai_api_key:
        return "openai"
    if media_kind == MediaKind.IMAGE:
        if shutil.which(settings.tesseract_binary):
            return "local"
    elif settings.whisper_model_path.exists():
        return "local"
    return "placeholder"


def create_backend(name: str, settings: Settings) -> MediaBackend:
    """
    Instantiate a backend by name.

    Raises:
        ConfigurationError: For unknown names or missing credentials
    """
    name = name.lower()
    if name == "openai":
        if not settings.openai_api_key:
            raise ConfigurationError(
                "OpenAI backend requires an API key. Set OPENAI_API_KEY or use --api-key"
            )
        return OpenAIBackend(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            transcription_model=settings.openai_transcription_model,
            vision_model=settings.openai_vision_model,
            timeout=settings.openai_request_timeout,
        )
    if name == "local":
        return LocalModelBackend(
            model_path=settings.whisper_model_path,
            whisper_binary=settings.whisper_binary,
            ffmpeg_binary=settings.ffmpeg_binary,
            tesseract_binary=settings.tesseract_binary,
        )
    if name == "placeholder":
        return PlaceholderBackend()
    raise ConfigurationError(
        f"Unknown backend: {name}. Available backends: {', '.join(BACKEND_NAMES)}, auto"
    )


def build_selection(settings: Settings) -> BackendSelection:
    """Resolve the backend for every media kind, sharing instances by name."""
    instances: dict[str, MediaBackend] = {}
    backends: dict[MediaKind, MediaBackend] = {}

    for kind in MediaKind:
        name = settings.backend_for(kind.value)
        if name == "auto":
            name = resolve_auto(kind, settings)
        if name not in instances:
            instances[name] = create_backend(name, settings)
        backends[kind] = instances[name]

    selection = BackendSelection(backends)
    logger.info(f"Backend selection: {selection.describe()}")
    return selection


__all__ = [
    "BACKEND_NAMES",
    "BackendSelection",
    "LocalModelBackend",
    "MediaBackend",
    "OpenAIBackend",
    "PlaceholderBackend",
    "build_selection",
    "create_backend",
    "resolve_auto",
]
