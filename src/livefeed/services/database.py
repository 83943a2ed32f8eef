import json
import aiosqlite
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Any, Dict, List, Optional
import logging

from livefeed.core.entities import CompletedStory, EnrichedItem, UpdateKind
from livefeed.core.errors import ConfirmationRequiredError
from livefeed.core.schemas import EnrichmentSignals
from livefeed.ingestion.base import RawItem

logger = logging.getLogger(__name__)

# Story fields that may be used with query_stories()
STORY_QUERY_FIELDS = ("agent_type", "priority", "tone", "sentiment")


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    def __init__(self, path: str):
        self.path = path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    async def execute(self, query: str, params: tuple = ()) -> int:
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def init_tables(self) -> None:
        """Initialize the live feed and story history tables."""
        async with self.connect() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS live_feed_items (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    origin TEXT NOT NULL,
                    raw_json TEXT NOT NULL,
                    priority_score REAL NOT NULL DEFAULT 0,
                    quality_score REAL NOT NULL DEFAULT 0,
                    engagement_score REAL NOT NULL DEFAULT 0,
                    sentiment TEXT NOT NULL DEFAULT 'neutral',
                    categories TEXT NOT NULL DEFAULT '[]',
                    enrichment_level INTEGER NOT NULL DEFAULT 0,
                    enriched_at TIMESTAMP,
                    added_at TIMESTAMP NOT NULL,
                    thread_id TEXT,
                    is_update BOOLEAN DEFAULT 0,
                    update_kind TEXT
                )
            """)
            await conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_live_feed_items_added_at ON live_feed_items(added_at)
            """)
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS story_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    story_id TEXT NOT NULL UNIQUE,
                    narrative TEXT NOT NULL,
                    title TEXT,
                    tone TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    agent_type TEXT NOT NULL,
                    duration INTEGER NOT NULL,
                    word_count INTEGER NOT NULL,
                    char_count INTEGER NOT NULL,
                    sentiment TEXT,
                    topics TEXT NOT NULL DEFAULT '[]',
                    summary TEXT,
                    created_at TIMESTAMP NOT NULL,
                    completed_at TIMESTAMP NOT NULL,
                    original_item TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}'
                )
            """)
            for column in ("completed_at", "agent_type", "priority", "tone", "sentiment"):
                await conn.execute(
                    f"CREATE INDEX IF NOT EXISTS idx_story_history_{column} ON story_history({column})"
                )
            await conn.commit()
            logger.info("Database tables initialized")

    # ------------------------------------------------------------------
    # Live feed collection
    # ------------------------------------------------------------------

    async def upsert_live_item(self, item: EnrichedItem) -> None:
        """Insert or replace an enriched item in the live collection."""
        signals = item.signals
        await self.execute(
            """
            INSERT OR REPLACE INTO live_feed_items
            (id, title, origin, raw_json, priority_score, quality_score, engagement_score,
             sentiment, categories, enrichment_level, enriched_at, added_at,
             thread_id, is_update, update_kind)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.id,
                item.raw.title,
                item.raw.origin,
                item.raw.model_dump_json(),
                signals.priority_score,
                signals.quality_score,
                signals.engagement_score,
                signals.sentiment,
                json.dumps(signals.categories),
                item.enrichment_level,
                _ts(item.enriched_at),
                _ts(item.added_at),
                item.thread_id,
                int(item.is_update),
                item.update_kind.value if item.update_kind else None,
            ),
        )

    async def delete_live_item(self, item_id: str) -> bool:
        """Remove an item from the live collection. Returns True if a row was deleted."""
        deleted = await self.execute("DELETE FROM live_feed_items WHERE id = ?", (item_id,))
        return deleted > 0

    async def get_live_items(self, limit: Optional[int] = None) -> List[EnrichedItem]:
        """Live items ordered by arrival, oldest first."""
        query = "SELECT * FROM live_feed_items ORDER BY added_at ASC"
        params: tuple = ()
        if limit is not None:
            query += " LIMIT ?"
            params = (limit,)
        rows = await self.fetchall(query, params)
        return [self._row_to_item(row) for row in rows]

    async def count_live_items(self) -> int:
        row = await self.fetchone("SELECT COUNT(*) FROM live_feed_items")
        return row[0]

    @staticmethod
    def _row_to_item(row: aiosqlite.Row) -> EnrichedItem:
        signals = EnrichmentSignals(
            priority_score=row["priority_score"],
            quality_score=row["quality_score"],
            engagement_score=row["engagement_score"],
            sentiment=row["sentiment"],
            categories=json.loads(row["categories"]),
        )
        return EnrichedItem(
            raw=RawItem.model_validate_json(row["raw_json"]),
            signals=signals,
            enrichment_level=row["enrichment_level"],
            enriched_at=_dt(row["enriched_at"]),
            added_at=_dt(row["added_at"]),
            thread_id=row["thread_id"],
            is_update=bool(row["is_update"]),
            update_kind=UpdateKind(row["update_kind"]) if row["update_kind"] else None,
        )

    # ------------------------------------------------------------------
    # Story history collection
    # ------------------------------------------------------------------

    async def add_story(self, story: CompletedStory) -> bool:
        """
        Record a completed story. Idempotent on story_id.

        Returns:
            True if a new row was written, False if the story already existed
        """
        inserted = await self.execute(
            """
            INSERT OR IGNORE INTO story_history
            (story_id, narrative, title, tone, priority, agent_type, duration, word_count,
             char_count, sentiment, topics, summary, created_at, completed_at,
             original_item, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                story.story_id,
                story.narrative,
                story.title,
                story.tone,
                story.priority,
                story.agent_type,
                story.duration,
                story.word_count,
                story.char_count,
                story.sentiment,
                json.dumps(story.topics),
                story.summary,
                _ts(story.created_at),
                _ts(story.completed_at),
                json.dumps(story.original_item) if story.original_item else None,
                json.dumps(story.metadata, default=str),
            ),
        )
        if not inserted:
            logger.debug(f"Story {story.story_id} already exists in history")
        return inserted > 0

    async def get_story(self, story_id: str) -> Optional[CompletedStory]:
        row = await self.fetchone("SELECT * FROM story_history WHERE story_id = ?", (story_id,))
        return self._row_to_story(row) if row else None

    async def get_stories(
        self,
        limit: int = 100,
        agent_type: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[CompletedStory]:
        """Stories ordered by completion time, newest first."""
        clauses: List[str] = []
        params: List[Any] = []
        if agent_type:
            clauses.append("agent_type = ?")
            params.append(agent_type)
        if since:
            clauses.append("completed_at >= ?")
            params.append(_ts(since))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self.fetchall(
            f"SELECT * FROM story_history {where} ORDER BY completed_at DESC, id DESC LIMIT ?",
            (*params, limit),
        )
        return [self._row_to_story(row) for row in rows]

    async def query_stories(self, field: str, value: str, limit: int = 50) -> List[CompletedStory]:
        """Query stories by one indexed field."""
        if field not in STORY_QUERY_FIELDS:
            raise ValueError(f"Cannot query story_history by '{field}'")
        rows = await self.fetchall(
            f"SELECT * FROM story_history WHERE {field} = ? ORDER BY completed_at DESC, id DESC LIMIT ?",
            (value, limit),
        )
        return [self._row_to_story(row) for row in rows]

    async def search_stories(self, term: str, limit: int = 20) -> List[CompletedStory]:
        """
        Text search over story titles and narratives.
        Every whitespace separated word of `term` must appear.
        """
        words = [w for w in term.lower().split() if w]
        if not words:
            return []

        clauses = []
        params: List[Any] = []
        for word in words:
            clauses.append("(lower(title) LIKE ? OR lower(narrative) LIKE ?)")
            params.extend([f"%{word}%", f"%{word}%"])

        rows = await self.fetchall(
            f"SELECT * FROM story_history WHERE {' AND '.join(clauses)} "
            "ORDER BY completed_at DESC, id DESC LIMIT ?",
            (*params, limit),
        )
        return [self._row_to_story(row) for row in rows]

    async def count_stories(self, since: Optional[datetime] = None) -> int:
        if since:
            row = await self.fetchone(
                "SELECT COUNT(*) FROM story_history WHERE completed_at >= ?", (_ts(since),)
            )
        else:
            row = await self.fetchone("SELECT COUNT(*) FROM story_history")
        return row[0]

    async def story_counts_by(self, field: str) -> Dict[str, int]:
        if field not in STORY_QUERY_FIELDS:
            raise ValueError(f"Cannot group story_history by '{field}'")
        rows = await self.fetchall(
            f"SELECT {field}, COUNT(*) FROM story_history GROUP BY {field}"
        )
        return {row[0]: row[1] for row in rows if row[0] is not None}

    async def story_word_totals(self) -> tuple[int, int]:
        """Returns (total word count, story count)."""
        row = await self.fetchone("SELECT COALESCE(SUM(word_count), 0), COUNT(*) FROM story_history")
        return row[0], row[1]

    async def clear_history(self, *, confirm: bool = False) -> int:
        """Delete every story. Requires confirm=True."""
        if not confirm:
            raise ConfirmationRequiredError("clearing all stories")
        deleted = await self.execute("DELETE FROM story_history")
        logger.warning(f"Cleared {deleted} stories from history")
        return deleted

    @staticmethod
    def _row_to_story(row: aiosqlite.Row) -> CompletedStory:
        return CompletedStory(
            story_id=row["story_id"],
            narrative=row["narrative"],
            title=row["title"] or "",
            tone=row["tone"],
            priority=row["priority"],
            agent_type=row["agent_type"],
            duration=row["duration"],
            word_count=row["word_count"],
            char_count=row["char_count"],
            sentiment=row["sentiment"] or "neutral",
            topics=json.loads(row["topics"]),
            summary=row["summary"] or "",
            created_at=_dt(row["created_at"]),
            completed_at=_dt(row["completed_at"]),
            original_item=json.loads(row["original_item"]) if row["original_item"] else None,
            metadata=json.loads(row["metadata"]),
        )
