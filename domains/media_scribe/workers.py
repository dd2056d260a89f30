"""
Worker pool.

Each worker pulls admitted items from the dispatcher, runs them through the
selected backend under a per-item timeout and records the outcome. Nothing
is retried in-process: a failed key is retried by the ledger after restart.
"""

import asyncio
import time
from typing import Optional

from loguru import logger

from app.models.schemas import DedupStatus, ErrorKind, ProcessingResult, WorkItem
from domains.media_scribe.backends import BackendSelection
from domains.media_scribe.dispatcher import Dispatcher
from domains.media_scribe.errors import (
    BackendError,
    BackendTimeout,
    LedgerError,
    SinkPublishError,
)
from domains.media_scribe.ledger import DedupLedger
from domains.media_scribe.sinks import ResultSink


async def run_backend(
    selection: BackendSelection, item: WorkItem, timeout: float
) -> ProcessingResult:
    """Run one item through its backend; backend exceptions become failed results."""
    backend = selection.for_kind(item.media_kind)
    content = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    started = time.monotonic()
    try:
        content = await asyncio.wait_for(
            backend.process(item.media_locator, item.media_kind), timeout=timeout
        )
    except asyncio.TimeoutError:
        error = ErrorKind.TIMEOUT
        detail = f"{backend.name} exceeded {timeout}s"
        logger.warning(f"Timed out processing {item.media_locator} after {timeout}s")
    except BackendTimeout as e:
        error = ErrorKind.TIMEOUT
        detail = str(e)
        logger.warning(f"Backend {backend.name} timed out on {item.media_locator}: {e}")
    except BackendError as e:
        error = ErrorKind.BACKEND_FAILURE
        detail = str(e)
        logger.error(f"Backend {backend.name} failed on {item.media_locator}: {e}")
    except Exception as e:
        error = ErrorKind.BACKEND_FAILURE
        detail = f"{type(e).__name__}: {e}"
        logger.exception(f"Backend {backend.name} raised on {item.media_locator}: {e}")
    else:
        elapsed = time.monotonic() - started
        logger.debug(f"{backend.name} processed {item.media_locator} in {elapsed:.2f}s")

    return ProcessingResult(
        work_item=item,
        backend_name=backend.name,
        content=content,
        error=error,
        detail=detail,
    )


class WorkerPool:
    """Fixed number of asyncio tasks draining the dispatcher."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        selection: BackendSelection,
        ledger: DedupLedger,
        sink: ResultSink,
        size: int = 4,
        item_timeout: float = 300.0,
    ):
        if size < 1:
            raise ValueError("worker pool size must be at least 1")
        self.dispatcher = dispatcher
        self.selection = selection
        self.ledger = ledger
        self.sink = sink
        self.size = size
        self.item_timeout = item_timeout
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self):
        """Spawn the worker tasks on the running loop."""
        if self._tasks:
            raise RuntimeError("worker pool already started")
        self._tasks = [
            asyncio.create_task(self._run(index), name=f"scribe-worker-{index}")
            for index in range(self.size)
        ]
        logger.info(f"Started {self.size} workers (timeout {self.item_timeout}s per item)")

    async def stop(self):
        """Let workers finish everything queued so far, then end them."""
        await self.dispatcher.close(len(self._tasks))
        await asyncio.gather(*self._tasks)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def _run(self, index: int):
        while True:
            item = await self.dispatcher.get()
            try:
                if item is None:
                    return
                logger.info(f"Worker {index} received {item.media_locator}")
                await self.handle(item)
            except Exception as e:
                # A broken item must not take the worker down with it.
                key = item.key[:12] if item else "-"
                logger.exception(f"Worker {index} crashed on item {key}: {e}")
                if item is not None:
                    await self._release(item)
            finally:
                self.dispatcher.task_done()

    async def process(self, item: WorkItem) -> ProcessingResult:
        return await run_backend(self.selection, item, self.item_timeout)

    async def handle(self, item: WorkItem) -> ProcessingResult:
        """Process ``item``, emit a successful result, record the terminal state."""
        result = await self.process(item)

        if result.ok:
            try:
                await self.sink.emit(result)
            except SinkPublishError as e:
                # At-least-once attempted: the key is still marked done.
                logger.error(f"Result emission failed for {item.media_locator}: {e}")
            await self._record(item, done=True)
            logger.success(f"Processing complete: {item.media_locator}")
        else:
            await self._record(item, done=False)

        return result

    async def _record(self, item: WorkItem, done: bool):
        mark = self.ledger.mark_done if done else self.ledger.mark_failed
        try:
            await asyncio.to_thread(mark, item.key)
        except LedgerError as e:
            logger.error(
                f"Ledger update to {'done' if done else 'failed'} failed for key "
                f"{item.key[:12]} ({item.media_locator}): {e}"
            )

    async def _release(self, item: WorkItem):
        """Mark a key failed if a crash left its reservation outstanding."""
        record = self.ledger.get(item.key)
        if record is not None and record.status == DedupStatus.PENDING:
            await self._record(item, done=False)
