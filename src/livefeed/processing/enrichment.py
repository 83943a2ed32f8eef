"""
Enrichment stage - computes priority, quality, sentiment and topic signals
for raw items through a pluggable scoring model.

The stage never fails the pipeline: a model that times out, raises, or
returns signals outside the schema yields an item with neutral defaults at
enrichment level 0, which the maintenance cycle picks up later.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from livefeed.core.entities import EnrichedItem, utcnow
from livefeed.core.errors import EnrichmentTimeout
from livefeed.core.schemas import EnrichmentSignals
from livefeed.ingestion.base import RawItem
from livefeed.processing.similarity import tokenize

logger = logging.getLogger(__name__)


POSITIVE_WORDS = frozenset({
    "great", "amazing", "awesome", "excellent", "fantastic",
    "good", "best", "wonderful", "brilliant", "outstanding",
})
NEGATIVE_WORDS = frozenset({
    "terrible", "awful", "horrible", "disaster", "crisis",
    "bad", "worst", "fail", "failed", "failure", "problem", "issue",
})

# Matched against whole tokens of the title
TOPIC_KEYWORDS: Dict[str, frozenset] = {
    "technology": frozenset({
        "tech", "technology", "programming", "software", "computer",
        "computers", "ai", "robot", "robots", "robotics",
    }),
    "politics": frozenset({
        "politics", "political", "politician", "election", "elections",
        "government", "policy", "vote", "voters", "voting",
    }),
    "science": frozenset({
        "science", "scientific", "scientists", "research", "researchers",
        "study", "discovery", "experiment",
    }),
}


class ScoringModel(ABC):
    """
    Computes enrichment signals for one item.
    May return EnrichmentSignals or a plain dict validated against it.
    """

    @abstractmethod
    async def score(self, item: RawItem) -> Union[EnrichmentSignals, Dict[str, Any]]:
        raise NotImplementedError


def engagement_score(item: RawItem) -> float:
    score_part = min(max(item.score, 0) / 1000, 1.0)
    comments_part = min(max(item.num_comments, 0) / 500, 1.0)
    ratio = min(max(item.upvote_ratio, 0.0), 1.0)
    return 0.4 * score_part + 0.4 * comments_part + 0.2 * ratio


def detect_sentiment(text: str) -> str:
    tokens = tokenize(text)
    positive = len(tokens & POSITIVE_WORDS)
    negative = len(tokens & NEGATIVE_WORDS)

    if positive > negative + 1:
        return "positive"
    if negative > positive + 1:
        return "negative"
    return "neutral"


def extract_topics(item: RawItem) -> List[str]:
    topics = [item.origin.lower()]
    tokens = tokenize(item.title)
    for topic, keywords in TOPIC_KEYWORDS.items():
        if tokens & keywords:
            topics.append(topic)
    return topics


class HeuristicScoringModel(ScoringModel):
    """
    Keyword and engagement heuristics. Deterministic for a fixed clock.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow, half_life_hours: float = 6.0):
        self.clock = clock
        self.half_life_hours = half_life_hours

    def recency(self, item: RawItem) -> float:
        hours_old = max(0.0, (self.clock() - item.created_at).total_seconds() / 3600)
        return 1.0 / (1.0 + hours_old / self.half_life_hours)

    def quality(self, item: RawItem) -> float:
        ratio = min(max(item.upvote_ratio, 0.0), 1.0)
        body = min(len(item.body) / 1000, 1.0)
        title = min(len(item.title.split()) / 12, 1.0)
        return 0.5 * ratio + 0.3 * body + 0.2 * title

    async def score(self, item: RawItem) -> EnrichmentSignals:
        engagement = engagement_score(item)
        return EnrichmentSignals(
            priority_score=min(0.7 * engagement + 0.3 * self.recency(item), 1.0),
            quality_score=min(self.quality(item), 1.0),
            engagement_score=engagement,
            sentiment=detect_sentiment(item.text),
            categories=extract_topics(item),
        )


class Enricher:
    def __init__(
        self,
        model: Optional[ScoringModel] = None,
        timeout: float = 2.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.model = model or HeuristicScoringModel(clock=clock)
        self.timeout = timeout
        self.clock = clock

    async def _score(self, item: RawItem) -> Optional[EnrichmentSignals]:
        try:
            result = await asyncio.wait_for(self.model.score(item), timeout=self.timeout)
            if isinstance(result, EnrichmentSignals):
                return result
            return EnrichmentSignals.model_validate(result)

        except asyncio.TimeoutError:
            error = EnrichmentTimeout(item.id, self.timeout)
            logger.warning(f"{error}, using neutral signals", extra={"item_id": item.id, "stage": "enrich"})
        except ValidationError as e:
            logger.warning(
                f"Scoring model returned invalid signals: {e.error_count()} errors",
                extra={"item_id": item.id, "stage": "enrich"},
            )
        except Exception as e:
            logger.error(f"Scoring model failed: {e}", extra={"item_id": item.id, "stage": "enrich"})

        return None

    async def enrich(self, item: RawItem) -> EnrichedItem:
        """Enrich a freshly dequeued item. Never raises for model failures."""
        signals = await self._score(item)
        if signals is None:
            return EnrichedItem(raw=item, signals=EnrichmentSignals.neutral())

        return EnrichedItem(
            raw=item,
            signals=signals,
            enrichment_level=1,
            enriched_at=self.clock(),
        )

    async def reenrich(self, item: EnrichedItem) -> EnrichedItem:
        """
        Score an item already in the live view again.

        Lineage and arrival time are preserved. Returns the item unchanged
        if scoring fails again.
        """
        signals = await self._score(item.raw)
        if signals is None:
            return item

        return replace(
            item,
            signals=signals,
            enrichment_level=item.enrichment_level + 1,
            enriched_at=self.clock(),
        )
