"""
OpenAI backend.

Provides:
- Audio/video transcription via the Whisper transcription endpoint
- Image description via the chat completions endpoint (vision model)
"""

import asyncio
import base64
import io
import mimetypes
from typing import Optional, Tuple

import httpx
from loguru import logger
from PIL import Image, UnidentifiedImageError

from app.models.schemas import Content, MediaKind
from domains.media_scribe.backends.base import MediaBackend, load_media, locator_filename
from domains.media_scribe.errors import BackendError, BackendTimeout

DESCRIBE_PROMPT = (
    "Describe this image in detail. Include objects, people, text, colors, "
    "and scene context."
)

# Vision models reject or downscale anything larger
MAX_IMAGE_SIZE = (1120, 1120)


def fit_image(payload: bytes, mime_type: str) -> Tuple[bytes, str]:
    """
    Shrink an image to fit within ``MAX_IMAGE_SIZE``, keeping its aspect ratio.

    Images that already fit are returned untouched. Larger ones are
    re-encoded as JPEG.

    Raises:
        BackendError: If the payload is not a readable image
    """
    try:
        with Image.open(io.BytesIO(payload)) as img:
            if img.width <= MAX_IMAGE_SIZE[0] and img.height <= MAX_IMAGE_SIZE[1]:
                return payload, mime_type
            original = img.size
            img.thumbnail(MAX_IMAGE_SIZE)
            resized = img.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise BackendError(f"Unreadable image: {e}") from e

    buffer = io.BytesIO()
    resized.save(buffer, format="JPEG", quality=90)
    logger.info(f"Resized image {original[0]}x{original[1]} -> {resized.width}x{resized.height}")
    return buffer.getvalue(), "image/jpeg"


class OpenAIBackend(MediaBackend):
    """Remote transcription and image description through the OpenAI API."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        transcription_model: str = "whisper-1",
        vision_model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("OpenAI backend requires an API key")
        self.base_url = base_url.rstrip("/")
        self.transcription_model = transcription_model
        self.vision_model = vision_model
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def transcribe(self, locator: str) -> Content:
        """Transcribe an audio or video payload."""
        logger.info(f"OpenAI: Transcribing {locator}")
        payload = await load_media(locator, self._client)
        filename = locator_filename(locator)
        mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"

        data = await self._post(
            "/audio/transcriptions",
            data={"model": self.transcription_model, "response_format": "verbose_json"},
            files={"file": (filename, payload, mime_type)},
        )

        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise BackendError("Transcription response has no text")

        duration = data.get("duration")
        try:
            duration_ms = int(float(duration) * 1000) if duration is not None else None
        except (TypeError, ValueError):
            logger.warning(f"OpenAI: Ignoring unparseable duration {duration!r}")
            duration_ms = None
        logger.info(f"OpenAI: Transcript ready, {len(text)} characters")
        return Content(
            text=text,
            language=data.get("language"),
            duration_ms=duration_ms,
        )

    async def describe_image(self, locator: str) -> Content:
        """Describe an image payload."""
        logger.info(f"OpenAI: Describing image {locator}")
        payload = await load_media(locator, self._client)
        mime_type = mimetypes.guess_type(locator_filename(locator))[0] or "image/jpeg"
        payload, mime_type = await asyncio.to_thread(fit_image, payload, mime_type)
        encoded = base64.b64encode(payload).decode("ascii")

        data = await self._post(
            "/chat/completions",
            json={
                "model": self.vision_model,
                "messages": [
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": DESCRIBE_PROMPT},
                            {
                                "type": "image_url",
                                "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                            },
                        ],
                    }
                ],
                "max_tokens": 500,
            },
        )

        try:
            description = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise BackendError(f"Unexpected vision response: {e}") from e

        logger.info(f"OpenAI: Description ready, {len(description)} characters")
        return Content(text=description)

    async def _post(self, path: str, **kwargs) -> dict:
        try:
            response = await self._client.post(
                f"{self.base_url}{path}", headers=self._headers, **kwargs
            )
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            raise BackendTimeout(f"OpenAI request {path} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"OpenAI request {path} failed: HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise BackendError(f"OpenAI request {path} failed: {e}") from e

    async def process(self, locator: str, media_kind: MediaKind) -> Content:
        if media_kind == MediaKind.IMAGE:
            return await self.describe_image(locator)
        return await self.transcribe(locator)

    async def aclose(self):
        await self._client.aclose()
