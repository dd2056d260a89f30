"""
Pipeline wiring.

Connects ledger admission, the dispatcher and the worker pool, and owns the
shutdown sequence:

1. Stop accepting submissions (sources are stopped by their owner)
2. Let in-flight items finish or time out (and queued ones, when draining)
3. Stop the workers
4. Flush the ledger
"""

import asyncio
from typing import Optional

from loguru import logger

from app.models.schemas import Admission, WorkItem
from app.utils.config import Settings
from domains.media_scribe.backends import BackendSelection
from domains.media_scribe.dispatcher import Dispatcher
from domains.media_scribe.errors import LedgerIOError, PipelineClosedError
from domains.media_scribe.ledger import DedupLedger
from domains.media_scribe.sinks import ResultSink
from domains.media_scribe.workers import WorkerPool


class ScribePipeline:
    """Admission → queue → workers, with a graceful shutdown."""

    def __init__(
        self,
        ledger: DedupLedger,
        selection: BackendSelection,
        sink: ResultSink,
        queue_capacity: int = 100,
        worker_count: int = 4,
        item_timeout: float = 300.0,
    ):
        self.ledger = ledger
        self.selection = selection
        self.dispatcher = Dispatcher(queue_capacity)
        self.workers = WorkerPool(
            self.dispatcher,
            selection,
            ledger,
            sink,
            size=worker_count,
            item_timeout=item_timeout,
        )
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._accepting = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        selection: BackendSelection,
        sink: ResultSink,
        ledger: Optional[DedupLedger] = None,
    ) -> "ScribePipeline":
        return cls(
            ledger=ledger or DedupLedger(settings.ledger_path),
            selection=selection,
            sink=sink,
            queue_capacity=settings.queue_capacity,
            worker_count=settings.worker_count,
            item_timeout=settings.item_timeout_seconds,
        )

    @property
    def accepting(self) -> bool:
        return self._accepting

    async def start(self):
        """Start workers on the running loop and open for submissions."""
        self._loop = asyncio.get_running_loop()
        self.workers.start()
        self._accepting = True
        logger.success("Pipeline started")

    def close(self):
        """Reject further submissions; queued and in-flight items keep running."""
        self._accepting = False

    def _admit(self, item: WorkItem) -> Admission:
        if not self._accepting:
            raise PipelineClosedError(f"Pipeline closed, rejecting {item.media_locator}")

        try:
            admission = self.ledger.check_and_reserve(item.key)
        except LedgerIOError as e:
            logger.error(f"Cannot reserve {item.media_locator}, not dispatching: {e}")
            raise

        if admission != Admission.ADMITTED:
            logger.debug(f"Skipping {item.media_locator}: {admission.value}")
        return admission

    def submit(self, item: WorkItem, timeout: Optional[float] = None) -> Admission:
        """
        Admit and enqueue ``item`` from a thread outside the event loop.

        Blocks while the queue is full.

        Raises:
            PipelineClosedError: If the pipeline is not accepting work
            LedgerIOError: If the reservation could not be persisted
            TimeoutError: If the queue stayed full for ``timeout`` seconds
        """
        if self._loop is None:
            raise PipelineClosedError("Pipeline not started")
        admission = self._admit(item)
        if admission == Admission.ADMITTED:
            try:
                self.dispatcher.put_threadsafe(item, self._loop, timeout)
            except TimeoutError:
                # Reserved but never queued; leave it retryable.
                self.ledger.mark_failed(item.key)
                raise
        return admission

    async def submit_async(self, item: WorkItem) -> Admission:
        """Admit and enqueue ``item`` from a coroutine on the pipeline loop."""
        admission = await asyncio.to_thread(self._admit, item)
        if admission == Admission.ADMITTED:
            await self.dispatcher.put(item)
        return admission

    async def shutdown(self, drain: bool = True):
        """
        Stop accepting work, finish in-flight items and flush the ledger.

        With ``drain=False`` only items already picked up by a worker are
        finished; queued items stay pending and are retried after restart.
        """
        if self._loop is None:
            return
        logger.info("Shutting down pipeline...")
        self._accepting = False

        if drain:
            await self.dispatcher.join()
        else:
            dropped = self.dispatcher.discard_pending()
            if dropped:
                logger.warning(f"Left {dropped} queued items pending for the next run")

        await self.workers.stop()
        try:
            await asyncio.to_thread(self.ledger.flush)
        finally:
            await self.selection.aclose()
        self._loop = None
        logger.success("Pipeline shut down complete")

