"""
Result sinks.

A sink receives successful ProcessingResults and either writes a JSON
sidecar next to the source file or publishes a relay message that points
back at the originating event. Failures raise SinkPublishError; they never
touch the dedup ledger.
"""

import asyncio
from pathlib import Path
from typing import Optional, Protocol

from loguru import logger

from app.models.schemas import OutboundMessage, ProcessingResult, Sidecar
from app.utils.helpers import atomic_write_text, format_duration_ms, get_file_extension
from domains.media_scribe.backends.base import local_path, locator_filename
from domains.media_scribe.errors import SinkPublishError

SIDECAR_SUFFIX = "-scribe"


class ResultSink(Protocol):
    async def emit(self, result: ProcessingResult) -> None:
        ...


class Publisher(Protocol):
    async def publish(self, message: OutboundMessage) -> str:
        ...


def sidecar_path(source: Path, extension: str = "json") -> Path:
    """``<dir>/<stem>-scribe.<extension>`` for a source file."""
    return source.with_name(f"{source.stem}{SIDECAR_SUFFIX}.{extension}")


def is_sidecar(path: Path) -> bool:
    return path.stem.endswith(SIDECAR_SUFFIX)


def build_sidecar(result: ProcessingResult) -> Sidecar:
    if not result.ok:
        raise ValueError("Only successful results produce a sidecar")
    locator = result.work_item.media_locator
    return Sidecar(
        file_path=locator,
        file_type=get_file_extension(Path(locator_filename(locator))) or "unknown",
        backend_used=result.backend_name,
        timestamp=result.produced_at,
        content=result.content,
    )


def load_sidecar(path: Path) -> Sidecar:
    """Read a sidecar written by SidecarSink."""
    return Sidecar.model_validate_json(path.read_text(encoding="utf-8"))


def format_as_markdown(sidecar: Sidecar) -> str:
    """Render a sidecar as a human-readable Markdown document."""
    lines = [
        "# Scribe Processing Result",
        "",
        "## Metadata",
        "",
        f"- **File**: `{sidecar.file_path}`",
        f"- **File Type**: {sidecar.file_type}",
        f"- **Backend**: {sidecar.backend_used}",
        f"- **Timestamp**: {sidecar.timestamp.isoformat()}",
        "",
        "## Content",
        "",
    ]
    content = sidecar.content
    if content.language:
        lines += [f"**Language**: {content.language}", ""]
    if content.duration_ms is not None:
        lines += [f"**Duration**: {format_duration_ms(content.duration_ms)}", ""]
    lines += ["---", "", content.text, ""]
    return "\n".join(lines)


class SidecarSink:
    """
    Writes ``<stem>-scribe.json`` next to each processed file.

    Remote locators (and every locator, when ``output_dir`` is set) are
    written to ``output_dir`` (default: current directory) instead.
    """

    def __init__(self, write_markdown: bool = False, output_dir: Optional[Path] = None):
        self.write_markdown = write_markdown
        self.output_dir = output_dir

    def target(self, locator: str) -> Path:
        """Base path the sidecar name is derived from."""
        source = local_path(locator)
        if source is not None and self.output_dir is None:
            return source
        return (self.output_dir or Path(".")) / locator_filename(locator)

    def write(self, result: ProcessingResult) -> Path:
        """
        Atomically write the sidecar (and optional Markdown) for ``result``.

        Returns:
            Path of the JSON sidecar
        """
        sidecar = build_sidecar(result)
        source = self.target(sidecar.file_path)
        json_path = sidecar_path(source)

        try:
            atomic_write_text(json_path, sidecar.model_dump_json(indent=2))
            if self.write_markdown:
                atomic_write_text(sidecar_path(source, "md"), format_as_markdown(sidecar))
        except OSError as e:
            raise SinkPublishError(f"Cannot write sidecar for {source}: {e}") from e

        logger.info(f"Output saved to: {json_path}")
        return json_path

    async def emit(self, result: ProcessingResult) -> None:
        await asyncio.to_thread(self.write, result)


def build_outbound_message(result: ProcessingResult) -> OutboundMessage:
    """Compose the relay message announcing ``result``."""
    item = result.work_item
    file_type = locator_filename(item.media_locator).rsplit(".", 1)[-1].lower()
    label = "Description" if item.media_kind.value == "image" else "Transcript"

    content = (
        "Media Processing Result\n\n"
        f"Original Event: {item.source_id}\n"
        f"URL: {item.media_locator}\n"
        f"Type: {file_type}\n"
        f"Backend: {result.backend_name}\n\n"
        f"{label}: {result.content.text}"
    )
    return OutboundMessage(
        kind=1,
        content=content,
        tags=[
            ["e", item.source_id],
            ["processed-url", item.media_locator],
            ["processor", "scribe", result.backend_name],
        ],
    )


class RelaySink:
    """Publishes each result as a new relay message referencing the original."""

    def __init__(self, publisher: Publisher):
        self.publisher = publisher

    async def emit(self, result: ProcessingResult) -> None:
        if not result.ok:
            raise ValueError("Only successful results are published")
        message = build_outbound_message(result)
        try:
            event_id = await self.publisher.publish(message)
        except SinkPublishError:
            raise
        except Exception as e:
            raise SinkPublishError(f"Publishing result for {result.work_item.source_id} failed: {e}") from e
        logger.info(f"Published result {event_id} for event {result.work_item.source_id}")
