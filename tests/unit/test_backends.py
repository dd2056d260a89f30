import base64
import io
import json

import httpx
import pytest
from PIL import Image

from app.models.schemas import MediaKind
from domains.media_scribe.backends import (
    BackendSelection,
    OpenAIBackend,
    PlaceholderBackend,
    build_selection,
    create_backend,
    resolve_auto,
)
from domains.media_scribe.backends.base import load_media, locator_filename
from domains.media_scribe.backends.openai import fit_image
from domains.media_scribe.backends.local import LocalModelBackend, run_command
from domains.media_scribe.errors import BackendError, BackendTimeout, ConfigurationError


def _png(width: int, height: int) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), "red").save(buffer, format="PNG")
    return buffer.getvalue()


def _openai(handler) -> OpenAIBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIBackend(api_key="sk-test", base_url="https://api.test/v1", client=client)


def test_auto_prefers_openai_when_key_present(settings):
    settings = settings.model_copy(update={"openai_api_key": "sk-test"})
    for kind in MediaKind:
        assert resolve_auto(kind, settings) == "openai"


def test_auto_falls_back_to_placeholder(settings, monkeypatch):
    monkeypatch.setattr("domains.media_scribe.backends.shutil.which", lambda name: None)
    for kind in MediaKind:
        assert resolve_auto(kind, settings) == "placeholder"


def test_auto_uses_local_engines_when_available(settings, monkeypatch):
    monkeypatch.setattr("domains.media_scribe.backends.shutil.which", lambda name: f"/usr/bin/{name}")
    settings.whisper_model_path.parent.mkdir(parents=True)
    settings.whisper_model_path.write_bytes(b"ggml")

    assert resolve_auto(MediaKind.AUDIO, settings) == "local"
    assert resolve_auto(MediaKind.VIDEO, settings) == "local"
    assert resolve_auto(MediaKind.IMAGE, settings) == "local"


def test_create_backend_rejects_unknown_names(settings):
    with pytest.raises(ConfigurationError, match="Unknown backend"):
        create_backend("gemini", settings)


def test_openai_backend_requires_key(settings):
    with pytest.raises(ConfigurationError, match="API key"):
        create_backend("openai", settings)


def test_build_selection_shares_instances_and_honours_overrides(settings):
    settings = settings.model_copy(update={"backend": "placeholder", "image_backend": "LOCAL"})

    selection = build_selection(settings)

    assert selection.describe() == {"audio": "placeholder", "video": "placeholder", "image": "local"}
    assert selection.for_kind(MediaKind.AUDIO) is selection.for_kind(MediaKind.VIDEO)
    assert isinstance(selection.for_kind(MediaKind.IMAGE), LocalModelBackend)


def test_selection_requires_every_kind():
    with pytest.raises(ConfigurationError):
        BackendSelection({MediaKind.AUDIO: PlaceholderBackend()})


def test_selection_is_read_only():
    selection = BackendSelection.uniform(PlaceholderBackend())
    with pytest.raises(TypeError):
        selection.backends[MediaKind.AUDIO] = PlaceholderBackend()


async def test_placeholder_backend():
    backend = PlaceholderBackend()

    audio = await backend.process("/m/a.mp3", MediaKind.AUDIO)
    image = await backend.process("/m/b.png", MediaKind.IMAGE)

    assert audio.text == "Placeholder backend - would transcribe audio: /m/a.mp3"
    assert audio.language == "unknown"
    assert image.text == "Placeholder backend - would describe image: /m/b.png"


async def test_openai_transcription(tmp_path):
    source = tmp_path / "talk.mp3"
    source.write_bytes(b"audio-bytes")
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["authorization"]
        seen["body"] = request.content
        return httpx.Response(200, json={"text": "hello there", "language": "english", "duration": 2.5})

    backend = _openai(handler)
    content = await backend.process(str(source), MediaKind.AUDIO)
    await backend.aclose()

    assert seen["path"] == "/v1/audio/transcriptions"
    assert seen["auth"] == "Bearer sk-test"
    assert b"verbose_json" in seen["body"]
    assert b"audio-bytes" in seen["body"]
    assert content.text == "hello there"
    assert content.language == "english"
    assert content.duration_ms == 2500


async def test_openai_image_description_downloads_remote_media():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            assert request.url.host == "cdn.example.com"
            return httpx.Response(200, content=_png(4, 4))
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o-mini"
        image_url = body["messages"][0]["content"][1]["image_url"]["url"]
        assert image_url.startswith("data:image/png;base64,")
        return httpx.Response(200, json={"choices": [{"message": {"content": "A red square"}}]})

    backend = _openai(handler)
    content = await backend.process("https://cdn.example.com/a.png", MediaKind.IMAGE)

    assert content.text == "A red square"


async def test_openai_http_errors_become_backend_errors(tmp_path):
    source = tmp_path / "talk.mp3"
    source.write_bytes(b"x")
    backend = _openai(lambda request: httpx.Response(429, json={"error": "rate limited"}))

    with pytest.raises(BackendError, match="HTTP 429"):
        await backend.process(str(source), MediaKind.AUDIO)


async def test_load_media_reports_missing_files(tmp_path):
    with pytest.raises(BackendError):
        await load_media(str(tmp_path / "missing.mp3"))


def test_locator_filename():
    assert locator_filename("https://cdn.example.com/a%20b.mp3?x=1") == "a b.mp3"
    assert locator_filename("/m/clip.mov") == "clip.mov"
    assert locator_filename("https://cdn.example.com/") == "file"


async def test_run_command_missing_binary():
    with pytest.raises(BackendError, match="Cannot run"):
        await run_command("scribe-binary-that-does-not-exist", "--version")


async def test_local_backend_requires_model(tmp_path):
    backend = LocalModelBackend(model_path=tmp_path / "missing.bin")

    with pytest.raises(BackendError, match="Whisper model not found"):
        await backend.process(str(tmp_path / "a.wav"), MediaKind.AUDIO)


async def test_openai_request_timeout_is_reported_as_timeout(tmp_path):
    source = tmp_path / "talk.mp3"
    source.write_bytes(b"x")

    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(BackendTimeout):
        await _openai(handler).process(str(source), MediaKind.AUDIO)


def test_fit_image_leaves_small_images_alone():
    payload = _png(640, 480)

    assert fit_image(payload, "image/png") == (payload, "image/png")


def test_fit_image_shrinks_large_images_to_jpeg():
    resized, mime_type = fit_image(_png(2240, 1120), "image/png")

    assert mime_type == "image/jpeg"
    with Image.open(io.BytesIO(resized)) as img:
        assert img.format == "JPEG"
        assert img.size == (1120, 560)


def test_fit_image_rejects_garbage():
    with pytest.raises(BackendError, match="Unreadable image"):
        fit_image(b"not an image", "image/png")


async def test_openai_uploads_resized_image(tmp_path):
    photo = tmp_path / "photo.png"
    photo.write_bytes(_png(3000, 2000))
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        url = json.loads(request.content)["messages"][0]["content"][1]["image_url"]["url"]
        header, encoded = url.split(",", 1)
        sent["header"] = header
        sent["image"] = base64.b64decode(encoded)
        return httpx.Response(200, json={"choices": [{"message": {"content": "A red field"}}]})

    content = await _openai(handler).process(str(photo), MediaKind.IMAGE)

    assert content.text == "A red field"
    assert sent["header"] == "data:image/jpeg;base64"
    with Image.open(io.BytesIO(sent["image"])) as img:
        assert max(img.size) == 1120


async def test_openai_transcription_tolerates_odd_duration(tmp_path):
    source = tmp_path / "talk.mp3"
    source.write_bytes(b"x")
    backend = _openai(lambda request: httpx.Response(200, json={"text": "hi", "duration": "n/a"}))

    content = await backend.process(str(source), MediaKind.AUDIO)

    assert content.text == "hi"
    assert content.duration_ms is None


async def test_openai_non_object_response_is_backend_error(tmp_path):
    source = tmp_path / "talk.mp3"
    source.write_bytes(b"x")
    backend = _openai(lambda request: httpx.Response(200, json=["unexpected"]))

    with pytest.raises(BackendError, match="no text"):
        await backend.process(str(source), MediaKind.AUDIO)


async def test_local_backend_reports_unwritable_staging_dir(tmp_path, monkeypatch):
    backend = LocalModelBackend(model_path=tmp_path / "missing.bin")

    async def fake_load(locator, client=None):
        return b"payload"

    monkeypatch.setattr("domains.media_scribe.backends.local.load_media", fake_load)

    with pytest.raises(BackendError, match="Cannot stage"):
        await backend._materialise("https://cdn.example.com/a.mp3", tmp_path / "gone")
