from pathlib import Path

import pytest

from app.models.schemas import MediaKind
from domains.media_scribe.extractor import (
    classify_extension,
    classify_locator,
    extract_from_message,
    extract_from_path,
    find_locators,
)


@pytest.mark.parametrize(
    "extension, kind",
    [
        ("mp3", MediaKind.AUDIO),
        ("WAV", MediaKind.AUDIO),
        (".webm", MediaKind.AUDIO),
        ("mkv", MediaKind.VIDEO),
        ("m4v", MediaKind.VIDEO),
        ("jpeg", MediaKind.IMAGE),
        ("svg", MediaKind.IMAGE),
        ("txt", None),
        ("", None),
    ],
)
def test_classify_extension(extension, kind):
    assert classify_extension(extension) == kind


def test_extract_from_path_builds_single_item():
    items = extract_from_path(Path("/data/Interview.MP4"))

    assert len(items) == 1
    item = items[0]
    assert item.media_kind == MediaKind.VIDEO
    assert item.source_id == item.media_locator == "/data/Interview.MP4"


def test_extract_from_path_ignores_unsupported_types():
    assert extract_from_path(Path("/data/notes.txt")) == []
    assert extract_from_path(Path("/data/no_extension")) == []


def test_item_key_depends_on_source_and_locator(make_item):
    a = make_item("https://cdn.example.com/a.png", MediaKind.IMAGE, source_id="event-1")
    b = make_item("https://cdn.example.com/a.png", MediaKind.IMAGE, source_id="event-1")
    c = make_item("https://cdn.example.com/a.png", MediaKind.IMAGE, source_id="event-2")

    assert a.key == b.key
    assert a.key != c.key
    assert len(a.key) == 64


def test_extract_from_message_searches_content_and_tags():
    event = {
        "id": "abc123",
        "content": "new episode https://cdn.example.com/ep1.mp3 and a cover https://cdn.example.com/cover.JPG",
        "tags": [["imeta", "url https://media.example.org/clip.mov"], ["t", "podcast"]],
    }

    items = extract_from_message(event)

    assert [(i.media_kind, i.media_locator) for i in items] == [
        (MediaKind.AUDIO, "https://cdn.example.com/ep1.mp3"),
        (MediaKind.IMAGE, "https://cdn.example.com/cover.JPG"),
        (MediaKind.VIDEO, "https://media.example.org/clip.mov"),
    ]
    assert all(item.source_id == "abc123" for item in items)


def test_extract_from_message_deduplicates_urls():
    url = "https://cdn.example.com/photo.png"
    event = {"id": "e1", "content": f"{url} again {url}", "tags": [["r", url]]}

    assert len(extract_from_message(event)) == 1


def test_query_strings_are_kept_but_not_classified():
    signed = "https://cdn.example.com/a.mp3?sig=abc"
    assert find_locators([f"see {signed}"]) == [signed]
    assert classify_locator(signed) == MediaKind.AUDIO

    # Extension only appears in the query
    event = {"id": "e2", "content": "https://example.com/download?file=a.mp3"}
    assert extract_from_message(event) == []


@pytest.mark.parametrize(
    "message",
    [
        {"content": "https://cdn.example.com/a.mp3"},  # no id
        {"id": "e3", "tags": "not-a-list"},
        "garbage",
        None,
    ],
)
def test_malformed_messages_yield_nothing(message):
    assert extract_from_message(message) == []


def test_message_without_media_yields_nothing():
    assert extract_from_message({"id": "e4", "content": "gm https://example.com/page"}) == []
