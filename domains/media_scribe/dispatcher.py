"""
Bounded handoff between ingestion and the worker pool.

A full queue suspends (or, from a foreign thread, blocks) the producer
instead of dropping items, so a slow worker pool throttles its sources.
"""

import asyncio
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from loguru import logger

from app.models.schemas import WorkItem


class Dispatcher:
    """FIFO queue of admitted work items with fixed capacity."""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValueError("queue capacity must be at least 1")
        self.capacity = capacity
        self._queue: asyncio.Queue[Optional[WorkItem]] = asyncio.Queue(maxsize=capacity)

    @property
    def depth(self) -> int:
        """Number of items waiting for a worker."""
        return self._queue.qsize()

    async def put(self, item: WorkItem):
        """Enqueue ``item``, suspending while the queue is full."""
        if self._queue.full():
            logger.debug(f"Queue full ({self.capacity}), waiting to enqueue {item.media_locator}")
        await self._queue.put(item)
        logger.info(f"File successfully queued: {item.media_locator}")

    def put_threadsafe(
        self,
        item: WorkItem,
        loop: asyncio.AbstractEventLoop,
        timeout: Optional[float] = None,
    ):
        """
        Enqueue from a thread that is not running ``loop``.

        Blocks the calling thread until the item is accepted. An item that
        was queued just as the timeout expired counts as accepted.

        Raises:
            TimeoutError: If ``timeout`` elapses first
        """
        future = asyncio.run_coroutine_threadsafe(self.put(item), loop)
        try:
            future.result(timeout)
        except FutureTimeoutError:
            if future.cancel():
                raise TimeoutError(f"Timed out enqueueing {item.media_locator}")
            # Completed between the timeout and the cancel: the item is queued.
            future.result()

    async def get(self) -> Optional[WorkItem]:
        """Dequeue the next item; ``None`` tells the caller to stop."""
        return await self._queue.get()

    def task_done(self):
        self._queue.task_done()

    async def join(self):
        """Wait until every enqueued item has been processed."""
        await self._queue.join()

    async def close(self, consumers: int):
        """Queue one stop marker per consumer, behind any pending items."""
        for _ in range(consumers):
            await self._queue.put(None)

    def discard_pending(self) -> int:
        """Drop queued items without processing them; returns how many."""
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self._queue.task_done()
            if item is not None:
                dropped += 1
