"""Placeholder backend used when no real engine is configured."""

from loguru import logger

from app.models.schemas import Content, MediaKind
from domains.media_scribe.backends.base import MediaBackend


class PlaceholderBackend(MediaBackend):
    """Returns a fixed description instead of running a model."""

    name = "placeholder"

    async def process(self, locator: str, media_kind: MediaKind) -> Content:
        logger.info(f"Placeholder backend processing: {locator}")
        if media_kind == MediaKind.IMAGE:
            return Content(text=f"Placeholder backend - would describe image: {locator}")
        return Content(
            text=f"Placeholder backend - would transcribe {media_kind.value}: {locator}",
            language="unknown",
        )
