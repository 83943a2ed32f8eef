"""
Ingestion queue - ordered, de-duplicating buffer between the content
source and the processing stages.

Items are released one at a time, at most once per configured interval,
to a single consumer. Each accepted item id is delivered at most once per
processing window; the queue never retries a delivery.
"""
import asyncio
import inspect
import logging
import time
from collections import OrderedDict, deque
from typing import Any, Awaitable, Callable, Deque, Dict, Iterable, Optional, Set, Union

from livefeed.core.entities import QueueEntry
from livefeed.ingestion.base import RawItem

logger = logging.getLogger(__name__)

OnReady = Callable[[RawItem], Union[Awaitable[Any], Any]]


class IngestionQueue:
    """
    Rate-limited single-consumer queue with per-window de-duplication.
    """

    def __init__(
        self,
        interval_ms: int = 2000,
        max_size: int = 50,
        window_size: int = 1000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.interval = interval_ms / 1000
        self.max_size = max_size
        self.window_size = window_size
        self._clock = clock
        self._sleep = sleep

        self._buffer: Deque[QueueEntry] = deque()
        self._queued_ids: Set[str] = set()
        self._delivered: "OrderedDict[str, None]" = OrderedDict()
        self._next_release_at: Optional[float] = None

        self._on_ready: Optional[OnReady] = None
        self._dequeue_lock = asyncio.Lock()
        self._has_items = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._running = False

        self.delivered_count = 0
        self.failed_count = 0

    def set_on_ready(self, callback: Optional[OnReady]) -> None:
        """Register the callback invoked once per delivered item."""
        self._on_ready = callback

    def __len__(self) -> int:
        return len(self._buffer)

    def is_known(self, item_id: str) -> bool:
        """True if the id is buffered or was delivered in the current window."""
        return item_id in self._queued_ids or item_id in self._delivered

    def enqueue(self, items: Iterable[RawItem]) -> int:
        """
        Append items to the tail, preserving order.

        Returns:
            Number of items accepted. Duplicates are dropped silently.
        """
        accepted = 0
        for item in items:
            if self.is_known(item.id):
                logger.debug(
                    f"Duplicate item filtered: {item.title[:30]}",
                    extra={"item_id": item.id, "stage": "queue"},
                )
                continue

            self._buffer.append(QueueEntry(item=item))
            self._queued_ids.add(item.id)
            accepted += 1

        # Trim the newest entries if the buffer exceeds its bound
        trimmed = 0
        while len(self._buffer) > self.max_size:
            entry = self._buffer.pop()
            self._queued_ids.discard(entry.item.id)
            accepted -= 1
            trimmed += 1
        if trimmed:
            logger.info(f"Queue trimmed {trimmed} items (max_size={self.max_size})")

        if accepted > 0:
            self._has_items.set()
            logger.debug(f"Queue accepted {accepted} items, {len(self._buffer)} buffered")

        return max(accepted, 0)

    async def dequeue(self) -> Optional[RawItem]:
        """
        Release the oldest entry, waiting on the rate-limit timer if needed.

        Returns:
            The item, or None if the queue is empty
        """
        async with self._dequeue_lock:
            if not self._buffer:
                return None

            if self._next_release_at is not None:
                wait = self._next_release_at - self._clock()
                if wait > 0:
                    await self._sleep(wait)

            # The buffer may have been cleared while we waited
            if not self._buffer:
                return None

            entry = self._buffer.popleft()
            entry.attempts += 1
            self._queued_ids.discard(entry.item.id)
            self._remember(entry.item.id)
            self._next_release_at = self._clock() + self.interval

            if not self._buffer:
                self._has_items.clear()

            return entry.item

    def _remember(self, item_id: str) -> None:
        self._delivered[item_id] = None
        while len(self._delivered) > self.window_size:
            self._delivered.popitem(last=False)

    async def _deliver(self, item: RawItem) -> bool:
        if self._on_ready is None:
            logger.warning(
                "No on_ready callback registered, dropping item",
                extra={"item_id": item.id, "stage": "queue"},
            )
            return False

        self._idle.clear()
        try:
            result = self._on_ready(item)
            if inspect.isawaitable(result):
                await result
            self.delivered_count += 1
            return True
        except Exception as e:
            self.failed_count += 1
            logger.error(
                f"Delivery failure, item dropped: {e}",
                extra={"item_id": item.id, "stage": "queue"},
            )
            return False
        finally:
            self._idle.set()

    async def process_next(self) -> Optional[RawItem]:
        """Dequeue one item and hand it to the callback."""
        item = await self.dequeue()
        if item is not None:
            await self._deliver(item)
        return item

    async def run(self) -> None:
        """Consumer loop. Runs until stop() is called."""
        self._running = True
        logger.info("Queue consumer started")
        try:
            while self._running:
                if not self._buffer:
                    await self._has_items.wait()
                    continue
                await self.process_next()
        finally:
            self._running = False
            logger.info("Queue consumer stopped")

    def stop(self) -> None:
        self._running = False
        # Wake the consumer if it is waiting for items
        self._has_items.set()

    async def drain(self, timeout: float) -> bool:
        """
        Wait for an in-flight delivery to finish.

        Returns:
            False if the delivery was still running after `timeout` seconds
        """
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def reset_window(self) -> None:
        """Start a new processing window. Previously delivered ids may be enqueued again."""
        self._delivered.clear()

    def clear(self) -> int:
        """Drop all buffered entries and the delivery window."""
        cleared = len(self._buffer)
        self._buffer.clear()
        self._queued_ids.clear()
        self._delivered.clear()
        self._has_items.clear()
        logger.info(f"Queue cleared ({cleared} buffered items dropped)")
        return cleared

    @property
    def is_running(self) -> bool:
        return self._running

    def status(self) -> Dict[str, Any]:
        return {
            "queue_length": len(self._buffer),
            "is_running": self._running,
            "delivered": self.delivered_count,
            "failed": self.failed_count,
            "window": len(self._delivered),
            "interval_ms": int(self.interval * 1000),
        }
