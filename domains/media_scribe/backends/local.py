"""
Local model backend.

Processes media without network calls:
1. Audio/video: ffmpeg converts to 16kHz mono WAV, whisper.cpp transcribes
2. Images: Tesseract OCR extracts visible text
"""

import asyncio
import io
import tempfile
from pathlib import Path
from typing import Optional

import pytesseract
from loguru import logger
from PIL import Image, UnidentifiedImageError

from app.models.schemas import Content, MediaKind
from domains.media_scribe.backends.base import (
    MediaBackend,
    load_media,
    local_path,
    locator_filename,
)
from domains.media_scribe.errors import BackendError


async def run_command(*args: str) -> bytes:
    """
    Run a subprocess and return its stdout.

    The process is killed if the calling task is cancelled (e.g. by the
    worker's per-item timeout).

    Raises:
        BackendError: If the binary is missing or exits non-zero
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise BackendError(f"Cannot run {args[0]}: {e}") from e

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        proc.kill()
        await proc.wait()
        raise

    if proc.returncode != 0:
        message = stderr.decode(errors="replace").strip()[-500:]
        raise BackendError(f"{args[0]} failed ({proc.returncode}): {message}")

    return stdout


class LocalModelBackend(MediaBackend):
    """whisper.cpp transcription and Tesseract OCR."""

    name = "local"

    def __init__(
        self,
        model_path: Path,
        whisper_binary: str = "whisper-cli",
        ffmpeg_binary: str = "ffmpeg",
        tesseract_binary: str = "tesseract",
    ):
        self.model_path = model_path
        self.whisper_binary = whisper_binary
        self.ffmpeg_binary = ffmpeg_binary
        self.tesseract_binary = tesseract_binary

    async def transcribe(self, locator: str) -> Content:
        """Transcribe an audio or video payload with whisper.cpp."""
        if not self.model_path.exists():
            raise BackendError(
                f"Whisper model not found at {self.model_path}. Download a ggml model "
                "from https://huggingface.co/ggerganov/whisper.cpp"
            )

        with tempfile.TemporaryDirectory(prefix="scribe-") as tmp:
            tmp_dir = Path(tmp)
            source = await self._materialise(locator, tmp_dir)
            wav_path = tmp_dir / "audio.wav"

            logger.info(f"Converting {source} to 16kHz mono WAV")
            await run_command(
                self.ffmpeg_binary, "-nostdin", "-y", "-i", str(source),
                "-ar", "16000", "-ac", "1", "-c:a", "pcm_s16le", str(wav_path),
            )

            duration_ms = _wav_duration_ms(wav_path)

            logger.info(f"Running whisper model {self.model_path.name}")
            stdout = await run_command(
                self.whisper_binary, "-m", str(self.model_path),
                "-f", str(wav_path), "-nt", "-l", "auto",
            )

        text = " ".join(
            line.strip() for line in stdout.decode(errors="replace").splitlines() if line.strip()
        )
        logger.info(f"Local transcript ready, {len(text)} characters")
        return Content(text=text, duration_ms=duration_ms)

    async def ocr_image(self, locator: str) -> Content:
        """Extract text from an image with Tesseract."""
        payload = await load_media(locator)
        text = await asyncio.to_thread(_tesseract, payload, self.tesseract_binary)
        if not text:
            logger.debug(f"No text found in {locator}")
        return Content(text=text)

    async def _materialise(self, locator: str, tmp_dir: Path) -> Path:
        """Return a local path for ``locator``, downloading remote payloads."""
        path = local_path(locator)
        if path is not None:
            return path
        target = tmp_dir / locator_filename(locator)
        payload = await load_media(locator)
        try:
            await asyncio.to_thread(target.write_bytes, payload)
        except OSError as e:
            raise BackendError(f"Cannot stage {locator} in {tmp_dir}: {e}") from e
        return target

    async def process(self, locator: str, media_kind: MediaKind) -> Content:
        if media_kind == MediaKind.IMAGE:
            return await self.ocr_image(locator)
        return await self.transcribe(locator)


def _tesseract(payload: bytes, binary: str) -> str:
    pytesseract.pytesseract.tesseract_cmd = binary
    try:
        with Image.open(io.BytesIO(payload)) as img:
            return pytesseract.image_to_string(img).strip()
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise BackendError(f"Unreadable image: {e}") from e
    except pytesseract.TesseractError as e:
        raise BackendError(f"Tesseract OCR failed: {e}") from e
    except pytesseract.TesseractNotFoundError as e:
        raise BackendError("Tesseract binary not found") from e


def _wav_duration_ms(path: Path) -> Optional[int]:
    # 16kHz mono 16-bit PCM after the 44 byte header
    try:
        size = path.stat().st_size
    except OSError:
        return None
    return max(size - 44, 0) * 1000 // (16000 * 2)
