"""
LiveFeedSlot - the bounded, currently visible collection of items.

The slot may exceed its capacity between ingestion and the next maintenance
pass; maintenance restores the cap. Insert and remove of one item id are
serialised through lock_for(item_id).
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional

from livefeed.core.entities import EnrichedItem

logger = logging.getLogger(__name__)


class LiveFeedSlot:
    def __init__(self, capacity: int = 50):
        self.capacity = capacity
        self._items: Dict[str, EnrichedItem] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    @asynccontextmanager
    async def lock_for(self, item_id: str) -> AsyncIterator[None]:
        """
        Hold the lock for one item id. The lock is dropped once no task
        holds or waits for it and the item is not live.
        """
        lock = self._locks.get(item_id)
        if lock is None:
            lock = self._locks[item_id] = asyncio.Lock()
        self._lock_users[item_id] = self._lock_users.get(item_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[item_id] -= 1
            if not self._lock_users[item_id]:
                del self._lock_users[item_id]
                if item_id not in self._items:
                    del self._locks[item_id]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def get(self, item_id: str) -> Optional[EnrichedItem]:
        return self._items.get(item_id)

    # The methods below expect the caller to hold lock_for(item.id)

    def insert(self, item: EnrichedItem) -> bool:
        """Add an item. Returns False if the id is already live."""
        if item.id in self._items:
            return False
        self._items[item.id] = item
        return True

    def update(self, item: EnrichedItem) -> bool:
        """Swap in a new version of a live item. Returns False if it is not live."""
        if item.id not in self._items:
            return False
        self._items[item.id] = item
        return True

    def discard(self, item_id: str) -> Optional[EnrichedItem]:
        return self._items.pop(item_id, None)

    async def add(self, item: EnrichedItem) -> bool:
        async with self.lock_for(item.id):
            return self.insert(item)

    async def remove(self, item_id: str) -> Optional[EnrichedItem]:
        async with self.lock_for(item_id):
            return self.discard(item_id)

    def load(self, items: Iterable[EnrichedItem]) -> int:
        """Populate the slot from persisted items, e.g. after a restart."""
        loaded = 0
        for item in items:
            if self.insert(item):
                loaded += 1
        logger.info(f"Restored {loaded} live items")
        return loaded

    def items(self) -> List[EnrichedItem]:
        """Live items by arrival time, oldest first."""
        return sorted(self._items.values(), key=lambda i: i.added_at)

    def oldest(self, count: int) -> List[EnrichedItem]:
        if count <= 0:
            return []
        return self.items()[:count]

    def unenriched(self, limit: Optional[int] = None) -> List[EnrichedItem]:
        pending = [i for i in self.items() if not i.is_enriched]
        return pending if limit is None else pending[:limit]

    @property
    def overflow(self) -> int:
        return max(0, len(self._items) - self.capacity)
