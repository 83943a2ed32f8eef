"""
LiveFeedPipeline - source → queue → enrichment → matcher → live feed.

One fetch task pulls batches from the content source, rotating through the
configured origins and listing sorts. One consumer task releases queued
items at the publishing interval and runs each through enrichment and
thread matching before it is made live and handed to the observer.
"""
import asyncio
import logging
from contextlib import suppress
from typing import Any, Dict, Optional

from livefeed.core.entities import DecisionType, EnrichedItem
from livefeed.core.errors import PersistenceFailure, SourceFetchError
from livefeed.delivery.base import Callback, CallbackObserver, FeedObserver
from livefeed.ingestion.base import RawItem, SourceAdapter
from livefeed.ingestion.queue import IngestionQueue
from livefeed.processing.enrichment import Enricher
from livefeed.processing.matcher import ThreadMatcher
from livefeed.processing.prefilter import filter_batch
from livefeed.services.config import PipelineConfig
from livefeed.services.database import Database
from livefeed.services.live_feed import LiveFeedSlot

logger = logging.getLogger(__name__)


class LiveFeedPipeline:
    def __init__(
        self,
        source: SourceAdapter,
        database: Database,
        slot: LiveFeedSlot,
        enricher: Enricher,
        matcher: ThreadMatcher,
        persistence_timeout: float = 5.0,
    ):
        self.source = source
        self.db = database
        self.slot = slot
        self.enricher = enricher
        self.matcher = matcher
        self.persistence_timeout = persistence_timeout

        self.config = PipelineConfig()
        self.queue: Optional[IngestionQueue] = None
        self.observer: FeedObserver = CallbackObserver()
        self._fetch_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._origin_index = 0
        self._sort_index = 0

        self.published = 0
        self.duplicates = 0
        self.persist_failures = 0

    @property
    def is_running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    async def restore(self) -> int:
        """Load persisted live items and rebuild their threads."""
        items = await self.db.get_live_items()
        loaded = self.slot.load(items)
        await self.matcher.restore(items)
        return loaded

    async def start(
        self,
        on_item: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
        on_loading: Optional[Callback] = None,
        config: Optional[PipelineConfig] = None,
        *,
        observer: Optional[FeedObserver] = None,
    ) -> bool:
        """
        Start fetching and publishing.

        Returns:
            False if the pipeline is already running or has no origins
        """
        if self.is_running:
            logger.warning("Pipeline already running")
            return False

        self.config = config or self.config
        self.observer = observer or CallbackObserver(on_item, on_error, on_loading)

        if not self.config.origins:
            logger.warning("No origins configured, pipeline not started", extra={"stage": "config"})
            await self._notify_error("No subreddits configured, the live feed is idle")
            return False

        self.queue = IngestionQueue(
            interval_ms=self.config.publishing_interval_ms,
            max_size=self.config.max_items_in_flight,
        )
        self.queue.set_on_ready(self.process)

        self._consumer_task = asyncio.create_task(self.queue.run())
        self._fetch_task = asyncio.create_task(self._fetch_loop())

        logger.info(f"Pipeline started for {len(self.config.origins)} origins")
        return True

    async def stop(self) -> bool:
        """
        Stop fetching, then wait up to the grace period for the in-flight item.

        Returns:
            False if the in-flight item did not finish within the grace period
        """
        if self.queue is None:
            return True

        if self._fetch_task is not None:
            self._fetch_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._fetch_task

        self.queue.stop()
        drained = await self.queue.drain(self.config.stop_grace_seconds)
        if not drained:
            logger.warning(
                f"In-flight item not finished after {self.config.stop_grace_seconds:g}s, stopping anyway",
                extra={"stage": "stop"},
            )

        if self._consumer_task is not None:
            self._consumer_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._consumer_task

        self._fetch_task = self._consumer_task = None
        logger.info(f"Pipeline stopped ({self.published} published, {self.duplicates} duplicates)")
        return drained

    async def _fetch_loop(self) -> None:
        while True:
            try:
                await self.fetch_once()
            except Exception as e:
                logger.error(f"Fetch failed: {type(e).__name__}: {e}", extra={"stage": "fetch"}, exc_info=True)
                await self._notify_error("Could not load new posts, will retry on the next fetch")
            await asyncio.sleep(self.config.fetch_interval_seconds)

    def _next_target(self):
        origins = self.config.origins
        sorts = self.config.sorts or ["hot"]
        origin = origins[self._origin_index % len(origins)]
        sort = sorts[self._sort_index % len(sorts)]
        self._origin_index += 1
        # Move to the next sort after a full round of origins
        if self._origin_index % len(origins) == 0:
            self._sort_index += 1
        return origin, sort

    async def fetch_once(self) -> int:
        """
        Fetch one batch from the next origin and enqueue it.

        Returns:
            Number of items accepted by the queue
        """
        if self.queue is None or not self.config.origins:
            return 0

        origin, sort = self._next_target()
        await self._notify_loading(True)
        try:
            items = await self.source.fetch(origin, sort, self.config.fetch_limit)
        except SourceFetchError as e:
            logger.warning(f"{e}", extra={"origin": origin, "stage": "fetch"})
            await self._notify_error(e.user_message())
            return 0
        finally:
            await self._notify_loading(False)

        batch = filter_batch(items, content_mode=self.config.content_mode)
        accepted = self.queue.enqueue(batch)
        logger.info(f"Queued {accepted} of {len(items)} items from r/{origin}/{sort}", extra={"origin": origin})
        return accepted

    async def process(self, raw: RawItem) -> Optional[EnrichedItem]:
        """
        Run one dequeued item through enrichment and matching, then publish it.

        The item is live and stored before the observer sees it, so an
        observer failure does not take it back out of the feed.

        Returns:
            The published item, or None for duplicates
        """
        item = await self.enricher.enrich(raw)
        decision = await self.matcher.match(item)

        if decision.decision == DecisionType.DUPLICATE:
            self.duplicates += 1
            return None

        async with self.slot.lock_for(item.id):
            if not self.slot.insert(item):
                logger.debug("Item already live", extra={"item_id": item.id, "stage": "publish"})
                return None
            await self._store(item)

        self.published += 1
        await self.observer.on_item(item)
        return item

    async def _store(self, item: EnrichedItem) -> None:
        try:
            await asyncio.wait_for(self.db.upsert_live_item(item), timeout=self.persistence_timeout)
        except Exception as e:
            reason = f"timed out after {self.persistence_timeout:g}s" if isinstance(e, asyncio.TimeoutError) else str(e)
            failure = PersistenceFailure("ingest", reason, item_id=item.id)
            self.persist_failures += 1
            logger.error(
                f"{failure}, item is held in memory only (data-loss risk)",
                extra={"item_id": item.id, "stage": "persist"},
            )
            await self._notify_error(failure.user_message())

    async def _notify_error(self, message: str) -> None:
        try:
            await self.observer.on_error(message)
        except Exception as e:
            logger.error(f"Observer on_error failed: {e}")

    async def _notify_loading(self, loading: bool) -> None:
        try:
            await self.observer.on_loading(loading)
        except Exception as e:
            logger.error(f"Observer on_loading failed: {e}")

    def status(self) -> Dict[str, Any]:
        return {
            "running": self.is_running,
            "live_items": len(self.slot),
            "published": self.published,
            "duplicates": self.duplicates,
            "persist_failures": self.persist_failures,
            "queue": self.queue.status() if self.queue else None,
        }
