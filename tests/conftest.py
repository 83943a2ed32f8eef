from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from livefeed.core.entities import EnrichedItem
from livefeed.core.errors import SourceFetchError
from livefeed.core.schemas import EnrichmentSignals
from livefeed.ingestion.base import RawItem, SourceAdapter
from livefeed.processing.enrichment import ScoringModel
from livefeed.services.database import Database

NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_raw(
    item_id: str,
    title: str = "Example post",
    body: str = "",
    *,
    origin: str = "technology",
    score: int = 100,
    num_comments: int = 10,
    created_at: Optional[datetime] = None,
    over_18: bool = False,
) -> RawItem:
    return RawItem(
        id=item_id,
        title=title,
        author="tester",
        origin=origin,
        body=body,
        url=f"https://example.com/{item_id}",
        permalink=f"https://reddit.com/r/{origin}/comments/{item_id}/",
        score=score,
        num_comments=num_comments,
        upvote_ratio=0.9,
        created_at=created_at or NOW,
        over_18=over_18,
    )


def make_item(
    item_id: str,
    title: str = "Example post",
    body: str = "",
    *,
    priority: float = 0.5,
    categories: Tuple[str, ...] = ("technology",),
    level: int = 1,
    added_at: Optional[datetime] = None,
    created_at: Optional[datetime] = None,
) -> EnrichedItem:
    return EnrichedItem(
        raw=make_raw(item_id, title, body, created_at=created_at),
        signals=EnrichmentSignals(
            priority_score=priority,
            quality_score=0.5,
            engagement_score=0.3,
            categories=list(categories),
        ),
        enrichment_level=level,
        enriched_at=NOW if level else None,
        added_at=added_at or NOW,
    )


class ConstantScoringModel(ScoringModel):
    """Returns the same signals for every item."""

    def __init__(self, priority: float = 0.5):
        self.priority = priority
        self.calls: List[str] = []

    async def score(self, item: RawItem) -> EnrichmentSignals:
        self.calls.append(item.id)
        return EnrichmentSignals(priority_score=self.priority, quality_score=0.5, categories=[item.origin])


class FakeSource(SourceAdapter):
    """Serves canned batches per origin and records every fetch."""

    name = "fake"

    def __init__(self, batches: Optional[Dict[str, List[RawItem]]] = None, failing: Tuple[str, ...] = ()):
        self.batches = batches or {}
        self.failing = failing
        self.calls: List[Tuple[str, str, int]] = []

    async def fetch(self, origin: str, sort: str = "hot", limit: int = 10) -> List[RawItem]:
        self.calls.append((origin, sort, limit))
        if origin in self.failing:
            raise SourceFetchError(origin, "HTTP 429", rate_limited=True, status_code=429)
        return list(self.batches.get(origin, []))[:limit]


class FailingStoryDatabase(Database):
    """Database whose story writes always fail."""

    async def add_story(self, story) -> bool:
        raise RuntimeError("disk full")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest_asyncio.fixture
async def database(tmp_path) -> Database:
    db = Database(str(tmp_path / "livefeed.db"))
    await db.init_tables()
    return db


@pytest_asyncio.fixture
async def failing_database(tmp_path) -> Database:
    db = FailingStoryDatabase(str(tmp_path / "failing.db"))
    await db.init_tables()
    return db
