"""
FeedMaintenance - keeps the live feed bounded and fresh.

One cycle, triggered externally:
1. CHECKING   - read slot size and enrichment status
2. ENRICHING  - score a bounded batch of stragglers (optional)
3. ARCHIVING  - retire stale threads, archive completed aged items, then
                archive the oldest items beyond the cap (optional)
4. IDLE

Archival of one item is persist-then-remove under the item's lock; an item
whose story write fails stays live and is retried by the next cycle.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from livefeed.core.entities import EnrichedItem, MaintenanceReport, Thread, utcnow
from livefeed.core.errors import PersistenceFailure
from livefeed.processing.enrichment import Enricher
from livefeed.processing.summarizer import full_narrative, minimal_narrative, story_from_item, story_from_thread
from livefeed.services.config import MaintenanceConfig
from livefeed.services.database import Database
from livefeed.services.live_feed import LiveFeedSlot
from livefeed.services.thread_store import ThreadStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MaintenanceState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    ENRICHING = "enriching"
    ARCHIVING = "archiving"


class FeedMaintenance:
    """
    Maintenance cycle over the live feed slot, thread store and durable store.
    Concurrent run_cycle() calls are serialised.
    """

    def __init__(
        self,
        database: Database,
        slot: LiveFeedSlot,
        store: ThreadStore,
        enricher: Enricher,
        config: Optional[MaintenanceConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = database
        self.slot = slot
        self.store = store
        self.enricher = enricher
        self.config = config or MaintenanceConfig()
        self.clock = clock

        self._state = MaintenanceState.IDLE
        self._cycle_lock = asyncio.Lock()
        self.last_report: Optional[MaintenanceReport] = None

    @property
    def state(self) -> MaintenanceState:
        return self._state

    @property
    def cutoff(self) -> datetime:
        return self.clock() - timedelta(hours=self.config.archive_age_hours)

    async def _persist(self, operation: str, call: Awaitable[T], item_id: Optional[str] = None) -> T:
        """Await a durable store call within the persistence timeout."""
        timeout = self.config.persistence_timeout_seconds
        try:
            return await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise PersistenceFailure(operation, f"timed out after {timeout:.1f}s", item_id=item_id) from e
        except PersistenceFailure:
            raise
        except Exception as e:
            raise PersistenceFailure(operation, str(e) or type(e).__name__, item_id=item_id) from e

    def _completed_candidates(self, cutoff: datetime) -> List[EnrichedItem]:
        """Enriched items older than the cutoff whose thread is archived."""
        candidates = []
        for item in self.slot.items():
            if not item.is_enriched or item.raw.created_at >= cutoff:
                continue
            thread = self.store.get(item.thread_id) if item.thread_id else None
            if thread is not None and not thread.is_active:
                candidates.append(item)
        return candidates

    def check(self) -> Dict[str, Any]:
        """
        Read-only maintenance requirements report.
        """
        cutoff = self.cutoff
        total = len(self.slot)
        unenriched = len(self.slot.unenriched())
        overflow = self.slot.overflow
        aged = sum(1 for item in self.slot.items() if item.raw.created_at < cutoff)
        stale_threads = len(self.store.stale(cutoff))
        completed = len(self._completed_candidates(cutoff))

        recommendations = []
        if overflow:
            recommendations.append(f"Archive {overflow} oldest items to restore the {self.slot.capacity} item cap")
        if unenriched:
            batch = min(unenriched, self.config.enrichment_batch_size)
            recommendations.append(f"Enrich {batch} of {unenriched} unenriched items")
        if stale_threads:
            recommendations.append(f"Retire {stale_threads} threads with no updates in {self.config.archive_age_hours:g}h")
        if completed:
            recommendations.append(f"Archive {completed} completed stories")

        return {
            "total": total,
            "capacity": self.slot.capacity,
            "needs_maintenance": bool(overflow or unenriched or stale_threads or completed),
            "to_archive": overflow,
            "needs_enrichment": unenriched,
            "aged_items": aged,
            "stale_threads": stale_threads,
            "completed_stories": completed,
            "recommendations": recommendations,
        }

    async def run_cycle(self) -> MaintenanceReport:
        """
        Run one maintenance pass.

        Returns:
            MaintenanceReport with counts for this pass. A second pass with no
            new arrivals reports nothing enriched or archived.
        """
        async with self._cycle_lock:
            enriched = archived = retired = failures = 0
            try:
                self._state = MaintenanceState.CHECKING
                requirements = self.check()
                logger.info(
                    f"Maintenance check: {requirements['total']} live, "
                    f"{requirements['needs_enrichment']} unenriched, {requirements['to_archive']} over cap",
                    extra={"stage": "maintenance"},
                )

                if requirements["needs_enrichment"] and self.config.enrichment_batch_size:
                    self._state = MaintenanceState.ENRICHING
                    enriched = await self._enrich_stragglers()

                # Enrichment can make aged items of retired threads archivable
                cutoff = self.cutoff
                if self.store.stale(cutoff) or self._completed_candidates(cutoff) or self.slot.overflow:
                    self._state = MaintenanceState.ARCHIVING

                    retired, failed = await self._retire_stale_threads(cutoff)
                    failures += failed

                    done, failed = await self._archive_completed(cutoff)
                    archived += done
                    failures += failed

                    done, failed = await self._archive_overflow()
                    archived += done
                    failures += failed

                self.store.prune(self.slot)
            finally:
                self._state = MaintenanceState.IDLE

            report = MaintenanceReport(
                enriched=enriched,
                archived=archived,
                remaining=len(self.slot),
                threads_retired=retired,
                failures=failures,
            )
            self.last_report = report
            logger.info(
                f"Maintenance complete: {enriched} enriched, {archived} archived, "
                f"{retired} threads retired, {report.remaining} remaining, {failures} failures",
                extra={"stage": "maintenance"},
            )
            return report

    async def _enrich_stragglers(self) -> int:
        enriched = 0
        for item in self.slot.unenriched(self.config.enrichment_batch_size):
            async with self.slot.lock_for(item.id):
                current = self.slot.get(item.id)
                if current is None or current.is_enriched:
                    continue

                updated = await self.enricher.reenrich(current)
                if not updated.is_enriched:
                    continue

                self.slot.update(updated)
                enriched += 1

                try:
                    await self._persist("enrich", self.db.upsert_live_item(updated), item_id=item.id)
                except PersistenceFailure as e:
                    logger.error(f"{e}, enrichment kept in memory only", extra={"item_id": item.id, "stage": "maintenance"})

        return enriched

    async def _retire_stale_threads(self, cutoff: datetime) -> Tuple[int, int]:
        retired = failed = 0
        for thread in self.store.stale(cutoff):
            # No member can join while the thread story is written
            async with self.store.matching_lock:
                if not thread.is_active or thread.last_update_at >= cutoff:
                    continue
                ok = await self._persist_thread_story(thread)
                if not ok:
                    failed += 1
                    continue
                if await self.store.archive(thread.id, stale_before=cutoff):
                    retired += 1

        return retired, failed

    async def _persist_thread_story(self, thread: Thread) -> bool:
        if len(thread.member_ids) < 2:
            return True

        members = [self.slot.get(i) for i in thread.member_ids]
        story = story_from_thread(
            thread,
            [m for m in members if m is not None],
            completed_at=self.clock(),
        )
        try:
            await self._persist("retire_thread", self.db.add_story(story))
        except PersistenceFailure as e:
            logger.error(
                f"{e}, thread stays active until the next cycle",
                extra={"thread_id": thread.id, "stage": "maintenance"},
            )
            return False
        return True

    async def _archive_completed(self, cutoff: datetime) -> Tuple[int, int]:
        archived = failed = 0
        for item in self._completed_candidates(cutoff):
            ok = await self._archive_item(
                item.id,
                story_id=f"completed_{item.id}",
                agent_type="editor",
                narrative=full_narrative,
            )
            if ok:
                archived += 1
            elif item.id in self.slot:
                failed += 1
        return archived, failed

    async def _archive_overflow(self) -> Tuple[int, int]:
        archived = failed = 0
        for item in self.slot.oldest(self.slot.overflow):
            ok = await self._archive_item(
                item.id,
                story_id=f"archived_{item.id}",
                agent_type="host",
                narrative=lambda i: minimal_narrative(i.raw),
            )
            if ok:
                archived += 1
            elif item.id in self.slot:
                failed += 1
        return archived, failed

    async def _archive_item(
        self,
        item_id: str,
        *,
        story_id: str,
        agent_type: str,
        narrative: Callable[[EnrichedItem], str],
    ) -> bool:
        async with self.slot.lock_for(item_id):
            item = self.slot.get(item_id)
            if item is None:
                return False

            story = story_from_item(
                item,
                story_id=story_id,
                agent_type=agent_type,
                narrative=narrative(item),
                completed_at=self.clock(),
            )
            try:
                await self._persist("archive", self.db.add_story(story), item_id=item_id)
            except PersistenceFailure as e:
                logger.error(
                    f"{e}, item kept for the next cycle",
                    extra={"item_id": item_id, "stage": "maintenance"},
                )
                return False

            self.slot.discard(item_id)

            try:
                await self._persist("archive", self.db.delete_live_item(item_id), item_id=item_id)
            except PersistenceFailure as e:
                logger.warning(
                    f"{e}, live row left behind for an archived item",
                    extra={"item_id": item_id, "stage": "maintenance"},
                )

        logger.info(
            f"Archived ({agent_type}): {item.title[:50]}",
            extra={"item_id": item_id, "stage": "maintenance"},
        )
        return True

    async def stats(self) -> Dict[str, Any]:
        """Live feed statistics, including the archive totals."""
        now = self.clock()
        items = self.slot.items()
        enriched = sum(1 for i in items if i.is_enriched)

        def added_since(hours: int) -> int:
            since = now - timedelta(hours=hours)
            return sum(1 for i in items if i.added_at >= since)

        archived_total = await self.db.count_stories()
        archived_24h = await self.db.count_stories(since=now - timedelta(hours=24))

        oldest_age = newest_age = None
        if items:
            oldest_age = round((now - items[0].added_at).total_seconds() / 3600, 2)
            newest_age = round((now - items[-1].added_at).total_seconds() / 3600, 2)

        healthy = len(items) <= self.slot.capacity and enriched == len(items)
        return {
            "total": len(items),
            "enriched": enriched,
            "unenriched": len(items) - enriched,
            "last_hour": added_since(1),
            "last_24h": added_since(24),
            "archived_total": archived_total,
            "archived_last_24h": archived_24h,
            "oldest_age_hours": oldest_age,
            "newest_age_hours": newest_age,
            **self.store.stats(),
            "health": "healthy" if healthy else "needs_maintenance",
            "state": self._state.value,
        }
