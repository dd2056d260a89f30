"""
Media reference extraction.

Turns a raw notification (a filesystem path or a relay event payload) into
zero or more WorkItems. Extraction never raises: anything unusable is logged
and yields an empty list.
"""

import re
from pathlib import Path
from typing import Any, Iterable, Optional
from urllib.parse import unquote, urlsplit

from loguru import logger
from pydantic import ValidationError

from app.models.schemas import MediaKind, RelayEvent, WorkItem
from app.utils.helpers import get_file_extension
from domains.media_scribe.errors import ExtractionNoise

AUDIO_EXTENSIONS = ("mp3", "wav", "flac", "aac", "ogg", "m4a", "webm")
VIDEO_EXTENSIONS = ("mp4", "avi", "mov", "mkv", "wmv", "m4v", "ogv")
IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "bmp", "svg", "webp")

# Checked in order; the first list containing the extension wins.
_EXTENSION_KINDS = (
    (MediaKind.AUDIO, frozenset(AUDIO_EXTENSIONS)),
    (MediaKind.VIDEO, frozenset(VIDEO_EXTENSIONS)),
    (MediaKind.IMAGE, frozenset(IMAGE_EXTENSIONS)),
)

_ALL_EXTENSIONS = "|".join(AUDIO_EXTENSIONS + VIDEO_EXTENSIONS + IMAGE_EXTENSIONS)

LOCATOR_PATTERN = re.compile(
    r"""https?://[^\s<>"']+\.(?:""" + _ALL_EXTENSIONS + r""")(?:\?[^\s<>"']*)?""",
    re.IGNORECASE,
)


def classify_extension(extension: str) -> Optional[MediaKind]:
    """Map a bare extension (no dot, any case) to a media kind."""
    ext = extension.lower().lstrip(".")
    for kind, extensions in _EXTENSION_KINDS:
        if ext in extensions:
            return kind
    return None


def classify_path(path: Path) -> Optional[MediaKind]:
    """Classify a filesystem path by its extension."""
    return classify_extension(get_file_extension(path))


def classify_locator(locator: str) -> Optional[MediaKind]:
    """Classify a URL by the extension of its trailing path segment."""
    segment = unquote(urlsplit(locator).path.rsplit("/", 1)[-1])
    if "." not in segment:
        return None
    return classify_extension(segment.rsplit(".", 1)[-1])


def extract_from_path(path: Path) -> list[WorkItem]:
    """
    Build a WorkItem for a media file.

    Args:
        path: File path reported by the filesystem source

    Returns:
        A single-item list, or an empty list for unsupported extensions
    """
    kind = classify_path(path)
    if kind is None:
        logger.debug(f"File type not supported: {path}")
        return []

    locator = str(path)
    return [WorkItem(source_id=locator, media_kind=kind, media_locator=locator)]


def find_locators(texts: Iterable[str]) -> list[str]:
    """Return distinct media URLs found in ``texts``, in first-seen order."""
    seen: dict[str, None] = {}
    for text in texts:
        for match in LOCATOR_PATTERN.finditer(text):
            seen.setdefault(match.group(0), None)
    return list(seen)


def _parse_event(message: Any) -> RelayEvent:
    if isinstance(message, RelayEvent):
        return message
    try:
        return RelayEvent.model_validate(message)
    except ValidationError as e:
        raise ExtractionNoise(f"{e.error_count()} validation error(s)") from e


def extract_from_message(message: Any) -> list[WorkItem]:
    """
    Build WorkItems for every media URL referenced by a relay event.

    Both the event content and every string inside its tags are searched.

    Args:
        message: Raw event payload (mapping) or an already parsed RelayEvent

    Returns:
        One WorkItem per distinct media URL
    """
    try:
        event = _parse_event(message)
    except ExtractionNoise as e:
        logger.warning(f"Dropping malformed event: {e}")
        return []

    texts = [event.content]
    for tag in event.tags:
        texts.extend(tag)

    items = []
    for locator in find_locators(texts):
        kind = classify_locator(locator)
        if kind is None:
            # Extension matched inside the query string only
            logger.debug(f"Unclassifiable locator in event {event.id}: {locator}")
            continue
        items.append(WorkItem(source_id=event.id, media_kind=kind, media_locator=locator))

    if items:
        logger.info(f"Found {len(items)} media URLs in event {event.id}")
    else:
        logger.debug(f"No media URLs found in event {event.id}")

    return items
