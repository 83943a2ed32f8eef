"""
StoryHistory - Read and admin access to the permanent story archive.
Stories are written by the maintenance cycle and never modified.
"""
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from livefeed.core.entities import CompletedStory, utcnow
from livefeed.services.database import Database

logger = logging.getLogger(__name__)


class StoryHistory:
    """
    Query surface over archived stories used by the UI and the CLI.
    """

    def __init__(self, database: Database, clock: Callable = utcnow):
        self.db = database
        self.clock = clock
        self._initialized = False

    async def initialize(self) -> None:
        """Initialize the database tables."""
        if not self._initialized:
            await self.db.init_tables()
            self._initialized = True

    async def add(self, story: CompletedStory) -> bool:
        return await self.db.add_story(story)

    async def get(self, story_id: str) -> Optional[CompletedStory]:
        return await self.db.get_story(story_id)

    async def get_stories(self, limit: int = 100, agent_type: Optional[str] = None) -> List[CompletedStory]:
        return await self.db.get_stories(limit=limit, agent_type=agent_type)

    async def get_recent(self, hours: int = 24, limit: int = 100) -> List[CompletedStory]:
        since = self.clock() - timedelta(hours=hours)
        return await self.db.get_stories(limit=limit, since=since)

    async def by_priority(self, priority: str, limit: int = 50) -> List[CompletedStory]:
        return await self.db.query_stories("priority", priority, limit=limit)

    async def search(self, term: str, limit: int = 20) -> List[CompletedStory]:
        return await self.db.search_stories(term, limit=limit)

    async def stats(self) -> Dict[str, Any]:
        """
        Archive statistics: totals, recent activity, and breakdowns by
        agent, priority and tone.
        """
        total_words, total = await self.db.story_word_totals()
        last_24h = await self.db.count_stories(since=self.clock() - timedelta(hours=24))

        return {
            "total_stories": total,
            "stories_last_24h": last_24h,
            "by_agent": await self.db.story_counts_by("agent_type"),
            "by_priority": await self.db.story_counts_by("priority"),
            "by_tone": await self.db.story_counts_by("tone"),
            "total_words": total_words,
            "average_word_count": round(total_words / total) if total else 0,
        }

    async def clear_all(self, *, confirm: bool = False) -> int:
        """
        Delete the whole archive. Raises ConfirmationRequiredError unless
        confirm=True.
        """
        return await self.db.clear_history(confirm=confirm)
