"""
ThreadStore - In-memory registry of narrative threads.

Threads are created and extended only through the thread matcher's
decisions. Mutations of one thread are serialised by a per-thread lock;
the registry itself is guarded by a store-level lock.

Lifecycle:
1. register(thread) → active thread with a single member
2. append(thread_id, item, kind) → member added, last_update_at refreshed
3. archive(thread_id) → thread retired, accepts no further members
4. prune(live_ids) → archived threads with no live member are forgotten;
   their item ids stay known for a bounded window
"""
import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from typing import Callable, Container, Dict, List, Optional, Set

from livefeed.core.entities import EnrichedItem, Thread, ThreadStatus, UpdateKind, utcnow
from livefeed.core.errors import ThreadArchivedError

logger = logging.getLogger(__name__)


class ThreadStore:
    """
    Registry of active and archived threads.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow, forget_window: int = 5000):
        self.clock = clock
        self.forget_window = forget_window
        self.threads: Dict[str, Thread] = {}
        self._item_index: Dict[str, str] = {}
        # item id -> thread id for members of pruned threads, oldest first
        self._forgotten: "OrderedDict[str, str]" = OrderedDict()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock = asyncio.Lock()

        # Held by the matcher across classify + apply
        self.matching_lock = asyncio.Lock()

    def _thread_lock(self, thread_id: str) -> asyncio.Lock:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = self._locks[thread_id] = asyncio.Lock()
        return lock

    async def register(self, thread: Thread) -> Thread:
        """Add a freshly built thread to the registry."""
        async with self._lock:
            if thread.id in self.threads:
                raise ValueError(f"Thread {thread.id} already registered")
            self.threads[thread.id] = thread
            for item_id in thread.member_ids:
                self._item_index[item_id] = thread.id

        logger.info(
            f"Created thread: {thread.title[:60]}",
            extra={"thread_id": thread.id, "stage": "match"},
        )
        return thread

    async def append(
        self,
        thread_id: str,
        item: EnrichedItem,
        kind: UpdateKind,
        *,
        entities: Optional[Set[str]] = None,
        title: Optional[str] = None,
        summary: Optional[str] = None,
        tone: Optional[str] = None,
        priority: Optional[str] = None,
    ) -> Thread:
        """
        Append an item to a thread.

        Title, summary, tone and priority are replaced only when given, which
        the matcher does for superseding update kinds.

        Raises:
            KeyError: If the thread is unknown
            ThreadArchivedError: If the thread no longer accepts members
        """
        async with self._thread_lock(thread_id):
            thread = self.threads[thread_id]
            if not thread.is_active:
                raise ThreadArchivedError(thread_id, item.id)

            if item.id in thread.member_ids:
                logger.debug(
                    f"Item already a member of {thread_id}, ignoring append",
                    extra={"item_id": item.id, "thread_id": thread_id},
                )
                return thread

            thread.member_ids.append(item.id)
            thread.priority_total += item.signals.priority_score
            thread.last_update_at = self.clock()
            published = item.raw.created_at
            if thread.last_published_at is None or published > thread.last_published_at:
                thread.last_published_at = published
            thread.categories.update(item.signals.categories)
            if entities:
                thread.entities.update(entities)

            if title is not None:
                thread.title = title
            if summary is not None:
                thread.summary = summary
            if tone is not None:
                thread.tone = tone
            if priority is not None:
                thread.priority = priority

            self._item_index[item.id] = thread_id

        logger.info(
            f"Appended {kind.value} to thread ({len(thread.member_ids)} members)",
            extra={"item_id": item.id, "thread_id": thread_id, "stage": "match"},
        )
        return thread

    async def archive(self, thread_id: str, *, stale_before: Optional[datetime] = None) -> bool:
        """
        Retire a thread.

        With `stale_before`, the thread is retired only if it has not been
        updated since then, checked under the thread's lock.

        Returns:
            False if it was already archived or has been updated since
        """
        async with self._thread_lock(thread_id):
            thread = self.threads[thread_id]
            if not thread.is_active:
                return False
            if stale_before is not None and thread.last_update_at >= stale_before:
                logger.debug(
                    "Thread updated since it went stale, keeping it active",
                    extra={"thread_id": thread_id, "stage": "maintenance"},
                )
                return False
            thread.status = ThreadStatus.ARCHIVED

        logger.info(
            f"Archived thread: {thread.title[:60]}",
            extra={"thread_id": thread_id, "stage": "maintenance"},
        )
        return True

    def get(self, thread_id: str) -> Optional[Thread]:
        return self.threads.get(thread_id)

    def thread_for(self, item_id: str) -> Optional[Thread]:
        thread_id = self._item_index.get(item_id)
        return self.threads.get(thread_id) if thread_id else None

    def known_thread_id(self, item_id: str) -> Optional[str]:
        """Thread an item was threaded into, including recently pruned threads."""
        return self._item_index.get(item_id) or self._forgotten.get(item_id)

    def prune(self, live_ids: Container[str]) -> int:
        """
        Forget archived threads none of whose members is still live.

        Returns:
            Number of threads removed
        """
        pruned = 0
        for thread in self.archived():
            lock = self._locks.get(thread.id)
            if lock is not None and lock.locked():
                continue
            if any(item_id in live_ids for item_id in thread.member_ids):
                continue

            del self.threads[thread.id]
            self._locks.pop(thread.id, None)
            for item_id in thread.member_ids:
                self._item_index.pop(item_id, None)
                self._forgotten[item_id] = thread.id
                self._forgotten.move_to_end(item_id)
            pruned += 1

        while len(self._forgotten) > self.forget_window:
            self._forgotten.popitem(last=False)

        if pruned:
            logger.info(f"Pruned {pruned} archived threads", extra={"stage": "maintenance"})
        return pruned

    def active(self) -> List[Thread]:
        return [t for t in self.threads.values() if t.is_active]

    def archived(self) -> List[Thread]:
        return [t for t in self.threads.values() if not t.is_active]

    def stale(self, cutoff: datetime) -> List[Thread]:
        """Active threads not updated since `cutoff`."""
        return [t for t in self.active() if t.last_update_at < cutoff]

    def stats(self) -> Dict[str, int]:
        active = self.active()
        return {
            "active_threads": len(active),
            "archived_threads": len(self.threads) - len(active),
            "threaded_items": len(self._item_index),
            "update_items": sum(max(0, len(t.member_ids) - 1) for t in self.threads.values()),
        }
