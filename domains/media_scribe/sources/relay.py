"""
Relay network source and publisher.

A RelayClient keeps one subscription open against one relay and yields every
event it delivers, reconnecting forever on disconnection. Events replayed
after a reconnect are filtered by the dedup ledger downstream.
"""

import asyncio
import time
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional

import websockets
from loguru import logger

from app.models.schemas import Admission, OutboundMessage, RelayEvent
from domains.media_scribe.errors import LedgerIOError, PipelineClosedError, SinkPublishError
from domains.media_scribe.extractor import extract_from_message
from domains.media_scribe.nostr import (
    EventSigner,
    build_filter,
    event_frame,
    parse_frame,
    req_frame,
)
from domains.media_scribe.pipeline import ScribePipeline


class RelayClient:
    """Subscription to a single relay with automatic reconnection."""

    def __init__(
        self,
        url: str,
        filters: List[Dict[str, Any]],
        reconnect_delay: float = 5.0,
    ):
        self.url = url
        self.filters = filters or [{}]
        self.reconnect_delay = reconnect_delay
        self.connected = False

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield raw event payloads forever.

        Connection failures and disconnects are logged and retried after
        ``reconnect_delay`` seconds; only cancellation ends the iterator.
        """
        while True:
            subscription_id = uuid.uuid4().hex[:16]
            try:
                async with websockets.connect(self.url) as ws:
                    self.connected = True
                    logger.success(f"Connected to relay {self.url}")
                    await ws.send(req_frame(subscription_id, *self.filters))

                    async for raw in ws:
                        frame = parse_frame(raw)
                        if frame is None:
                            logger.debug(f"Ignoring malformed frame from {self.url}")
                            continue
                        if frame[0] == "EVENT" and len(frame) >= 3 and frame[1] == subscription_id:
                            yield frame[2]
                        elif frame[0] == "EOSE":
                            logger.debug(f"End of stored events from {self.url}")
                        elif frame[0] == "NOTICE":
                            logger.info(f"Relay notice from {self.url}: {frame[1:]}")
                        elif frame[0] == "CLOSED":
                            logger.warning(f"Relay {self.url} closed subscription: {frame[2:]}")
                            break
            except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
                logger.warning(f"Relay {self.url} stream error: {e}")
            finally:
                self.connected = False

            logger.info(f"Reconnecting to {self.url} in {self.reconnect_delay}s")
            await asyncio.sleep(self.reconnect_delay)


class RelayPublisher:
    """Signs outbound messages and sends them to every sink relay."""

    def __init__(self, urls: List[str], signer: EventSigner, timeout: float = 10.0):
        if not urls:
            raise ValueError("At least one sink relay must be configured")
        self.urls = urls
        self.signer = signer
        self.timeout = timeout

    async def _send(self, url: str, event: RelayEvent) -> bool:
        async with websockets.connect(url, open_timeout=self.timeout) as ws:
            await ws.send(event_frame(event))
            deadline = time.monotonic() + self.timeout
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TimeoutError(f"no OK from {url}")
                frame = parse_frame(await asyncio.wait_for(ws.recv(), remaining))
                if frame and frame[0] == "OK" and len(frame) >= 3 and frame[1] == event.id:
                    if not frame[2]:
                        logger.warning(f"Relay {url} rejected {event.id}: {frame[3:]}")
                    return bool(frame[2])

    async def publish(self, message: OutboundMessage) -> str:
        """
        Sign and publish ``message``.

        Returns:
            Event id of the published event

        Raises:
            SinkPublishError: If no sink relay accepted the event
        """
        event = self.signer.sign(message)
        results = await asyncio.gather(
            *(self._send(url, event) for url in self.urls), return_exceptions=True
        )

        accepted = 0
        for url, outcome in zip(self.urls, results):
            if isinstance(outcome, BaseException):
                logger.warning(f"Publishing to {url} failed: {outcome}")
            elif outcome:
                accepted += 1

        if not accepted:
            raise SinkPublishError(f"No sink relay accepted event {event.id}")
        logger.debug(f"Event {event.id} accepted by {accepted}/{len(self.urls)} relays")
        return event.id


class RelaySubscriber:
    """Feeds events from every source relay into the pipeline."""

    def __init__(
        self,
        urls: List[str],
        pipeline: ScribePipeline,
        kinds: Optional[List[int]] = None,
        authors: Optional[List[str]] = None,
        reconnect_delay: float = 5.0,
    ):
        if not urls:
            raise ValueError("At least one source relay must be configured")
        flt = build_filter(kinds or [], authors or [], since=int(time.time()))
        self.pipeline = pipeline
        self.clients = [RelayClient(url, [flt], reconnect_delay) for url in urls]
        self._tasks: list[asyncio.Task] = []

    async def handle_event(self, raw: Any) -> int:
        """
        Extract and submit every media reference in one event.

        Returns:
            Number of items admitted
        """
        admitted = 0
        for item in extract_from_message(raw):
            try:
                if await self.pipeline.submit_async(item) == Admission.ADMITTED:
                    admitted += 1
            except LedgerIOError as e:
                logger.error(f"Dropped {item.media_locator}, ledger unavailable: {e}")
            except PipelineClosedError:
                logger.debug(f"Pipeline closed, ignoring {item.media_locator}")
        return admitted

    async def _consume(self, client: RelayClient):
        async for raw in client.events():
            await self.handle_event(raw)

    def start(self):
        self._tasks = [
            asyncio.create_task(self._consume(client), name=f"relay-{client.url}")
            for client in self.clients
        ]
        logger.info(f"Subscribed to {len(self.clients)} source relays")

    async def stop(self):
        """Cancel every subscription and wait for the tasks to end."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Relay subscriptions stopped")
