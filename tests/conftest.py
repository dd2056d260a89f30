import asyncio
from pathlib import Path

import pytest

from app.models.schemas import Content, MediaKind, ProcessingResult, WorkItem
from app.utils.config import Settings
from domains.media_scribe.backends.base import MediaBackend
from domains.media_scribe.errors import BackendError
from domains.media_scribe.ledger import DedupLedger


class StaticBackend(MediaBackend):
    """Backend that echoes the locator, optionally after a delay."""

    name = "static"

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: list[str] = []
        self.closed = False

    async def process(self, locator: str, media_kind: MediaKind) -> Content:
        self.calls.append(locator)
        if self.delay:
            await asyncio.sleep(self.delay)
        return Content(text=f"{media_kind.value}: {locator}", language="en")

    async def aclose(self):
        self.closed = True


class FailingBackend(MediaBackend):
    name = "failing"

    async def process(self, locator: str, media_kind: MediaKind) -> Content:
        raise BackendError("engine unavailable")


class RecordingSink:
    def __init__(self):
        self.results: list[ProcessingResult] = []

    async def emit(self, result: ProcessingResult) -> None:
        self.results.append(result)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key=None,
        backend="auto",
        ledger_path=tmp_path / "ledger.json",
        whisper_model_path=tmp_path / "models" / "missing.bin",
    )


@pytest.fixture
def ledger(tmp_path: Path) -> DedupLedger:
    return DedupLedger(tmp_path / "ledger.json")


@pytest.fixture
def make_item():
    def _make(locator: str = "/media/clip.mp3", kind: MediaKind = MediaKind.AUDIO, source_id=None):
        return WorkItem(source_id=source_id or locator, media_kind=kind, media_locator=locator)

    return _make
