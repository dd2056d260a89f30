"""
Backend interface and shared media loading.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlsplit

import httpx
from loguru import logger

from app.models.schemas import Content, MediaKind
from domains.media_scribe.errors import BackendError


class MediaBackend(ABC):
    """A transcription/description provider."""

    name: str = "backend"

    @abstractmethod
    async def process(self, locator: str, media_kind: MediaKind) -> Content:
        """
        Produce text for the payload at ``locator``.

        Raises:
            BackendError: If the payload cannot be processed
        """

    async def aclose(self):
        """Release any held resources."""


def is_remote(locator: str) -> bool:
    return locator.startswith(("http://", "https://"))


def locator_filename(locator: str) -> str:
    """Return the trailing path segment of a path or URL."""
    if is_remote(locator) or locator.startswith("file://"):
        name = unquote(urlsplit(locator).path.rsplit("/", 1)[-1])
    else:
        name = Path(locator).name
    return name or "file"


def local_path(locator: str) -> Optional[Path]:
    """Return the filesystem path for a local locator, or None for URLs."""
    if locator.startswith("file://"):
        return Path(unquote(urlsplit(locator).path))
    if is_remote(locator):
        return None
    return Path(locator)


async def load_media(locator: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """
    Read the payload bytes for a path, file:// URL or http(s) URL.

    Raises:
        BackendError: If the payload cannot be read or downloaded
    """
    path = local_path(locator)
    if path is not None:
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise BackendError(f"Cannot read {path}: {e}") from e

    logger.info(f"Downloading media from {locator}")
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=60.0, follow_redirects=True)
    try:
        response = await client.get(locator)
        response.raise_for_status()
        logger.debug(f"Downloaded {len(response.content)} bytes from {locator}")
        return response.content
    except httpx.HTTPError as e:
        raise BackendError(f"Failed to download {locator}: {e}") from e
    finally:
        if owns_client:
            await client.aclose()
