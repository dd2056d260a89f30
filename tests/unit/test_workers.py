import asyncio

import pytest

from app.models.schemas import DedupStatus, ErrorKind, MediaKind
from domains.media_scribe.backends import BackendSelection
from domains.media_scribe.dispatcher import Dispatcher
from domains.media_scribe.errors import BackendTimeout, SinkPublishError
from domains.media_scribe.workers import WorkerPool, run_backend
from tests.conftest import FailingBackend, RecordingSink, StaticBackend


class BrokenSink:
    async def emit(self, result):
        raise SinkPublishError("relay unreachable")


def _pool(ledger, backend, sink, **kwargs):
    return WorkerPool(Dispatcher(10), BackendSelection.uniform(backend), ledger, sink, **kwargs)


def test_pool_size_must_be_positive(ledger):
    with pytest.raises(ValueError):
        _pool(ledger, StaticBackend(), RecordingSink(), size=0)


async def test_successful_item_is_emitted_then_done(ledger, make_item):
    sink = RecordingSink()
    pool = _pool(ledger, StaticBackend(), sink)
    item = make_item("/m/talk.mp3")
    ledger.check_and_reserve(item.key)

    result = await pool.handle(item)

    assert result.ok
    assert result.backend_name == "static"
    assert result.content.text == "audio: /m/talk.mp3"
    assert sink.results == [result]
    assert ledger.get(item.key).status == DedupStatus.DONE


async def test_slow_backend_times_out_and_fails_key(ledger, make_item):
    sink = RecordingSink()
    pool = _pool(ledger, StaticBackend(delay=0.1), sink, item_timeout=0.05)
    item = make_item("/m/long.wav")
    ledger.check_and_reserve(item.key)

    result = await pool.handle(item)

    assert result.error == ErrorKind.TIMEOUT
    assert result.content is None
    assert sink.results == []
    assert ledger.get(item.key).status == DedupStatus.FAILED


async def test_backend_error_fails_key(ledger, make_item):
    pool = _pool(ledger, FailingBackend(), RecordingSink())
    item = make_item("/m/cover.png", MediaKind.IMAGE)
    ledger.check_and_reserve(item.key)

    result = await pool.handle(item)

    assert result.error == ErrorKind.BACKEND_FAILURE
    assert "engine unavailable" in result.detail
    assert ledger.get(item.key).status == DedupStatus.FAILED


async def test_sink_error_still_marks_done(ledger, make_item):
    pool = _pool(ledger, StaticBackend(), BrokenSink())
    item = make_item("/m/talk.mp3")
    ledger.check_and_reserve(item.key)

    result = await pool.handle(item)

    assert result.ok
    assert ledger.get(item.key).status == DedupStatus.DONE


async def test_run_backend_uses_backend_for_kind(make_item):
    audio, image = StaticBackend(), FailingBackend()
    selection = BackendSelection({
        MediaKind.AUDIO: audio,
        MediaKind.VIDEO: audio,
        MediaKind.IMAGE: image,
    })

    ok = await run_backend(selection, make_item("/m/a.mp3"), timeout=1)
    failed = await run_backend(selection, make_item("/m/b.png", MediaKind.IMAGE), timeout=1)

    assert ok.ok and ok.backend_name == "static"
    assert not failed.ok and failed.backend_name == "failing"
    assert audio.calls == ["/m/a.mp3"]


async def test_workers_drain_queue_before_stopping(ledger, make_item):
    sink = RecordingSink()
    dispatcher = Dispatcher(10)
    pool = WorkerPool(dispatcher, BackendSelection.uniform(StaticBackend(delay=0.01)), ledger, sink, size=2)
    items = [make_item(f"/m/{i}.mp3") for i in range(5)]
    for item in items:
        ledger.check_and_reserve(item.key)
        await dispatcher.put(item)

    pool.start()
    assert pool.running
    await asyncio.wait_for(pool.stop(), timeout=2)

    assert not pool.running
    assert len(sink.results) == 5
    assert ledger.stats().done == 5


async def test_backend_timeout_is_reported_as_timeout(ledger, make_item):
    class TimingOut(FailingBackend):
        async def process(self, locator, media_kind):
            raise BackendTimeout("upstream timed out")

    pool = _pool(ledger, TimingOut(), RecordingSink())
    item = make_item("/m/a.mp3")
    ledger.check_and_reserve(item.key)

    result = await pool.handle(item)

    assert result.error == ErrorKind.TIMEOUT
    assert ledger.get(item.key).status == DedupStatus.FAILED


async def test_unexpected_backend_exception_fails_key(ledger, make_item):
    class DiskFull(FailingBackend):
        async def process(self, locator, media_kind):
            raise OSError("disk full while staging payload")

    pool = _pool(ledger, DiskFull(), RecordingSink())
    item = make_item("/m/a.mp3")
    ledger.check_and_reserve(item.key)

    result = await pool.handle(item)

    assert result.error == ErrorKind.BACKEND_FAILURE
    assert "disk full" in result.detail
    assert ledger.get(item.key).status == DedupStatus.FAILED


async def test_worker_crash_releases_reservation(ledger, make_item):
    class ExplodingSink:
        async def emit(self, result):
            raise RuntimeError("serializer bug")

    dispatcher = Dispatcher(10)
    pool = WorkerPool(dispatcher, BackendSelection.uniform(StaticBackend()), ledger, ExplodingSink(), size=1)
    item = make_item("/m/a.mp3")
    ledger.check_and_reserve(item.key)
    await dispatcher.put(item)

    pool.start()
    await asyncio.wait_for(pool.stop(), timeout=2)

    assert ledger.get(item.key).status == DedupStatus.FAILED
