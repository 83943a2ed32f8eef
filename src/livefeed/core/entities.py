from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any, Set

from livefeed.core.schemas import EnrichmentSignals
from livefeed.ingestion.base import RawItem


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ThreadStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class UpdateKind(str, Enum):
    NEW_DEVELOPMENT = "new_development"
    FOLLOW_UP = "follow_up"
    CLARIFICATION = "clarification"
    CORRECTION = "correction"

    @property
    def supersedes_summary(self) -> bool:
        return self in (UpdateKind.NEW_DEVELOPMENT, UpdateKind.CORRECTION)


class DecisionType(str, Enum):
    NEW_THREAD = "new_thread"
    UPDATE = "update"
    DUPLICATE = "duplicate"


@dataclass
class EnrichedItem:
    """
    A raw item plus the signals computed by the Enrichment Stage.
    Only the lineage fields are written after creation, by the Thread Matcher.
    """
    raw: RawItem
    signals: EnrichmentSignals
    enrichment_level: int = 0
    enriched_at: Optional[datetime] = None
    added_at: datetime = field(default_factory=utcnow)

    # Lineage, set by the Thread Matcher
    thread_id: Optional[str] = None
    is_update: bool = False
    update_kind: Optional[UpdateKind] = None

    @property
    def id(self) -> str:
        return self.raw.id

    @property
    def title(self) -> str:
        return self.raw.title

    @property
    def is_enriched(self) -> bool:
        return self.enrichment_level > 0


@dataclass
class Thread:
    """
    Narrative cluster of items. Members are append-only, in arrival order.
    """
    id: str
    title: str
    summary: str
    tone: str
    priority: str
    created_at: datetime
    last_update_at: datetime
    last_published_at: Optional[datetime] = None
    member_ids: List[str] = field(default_factory=list)
    categories: Set[str] = field(default_factory=set)
    entities: Set[str] = field(default_factory=set)
    priority_total: float = 0.0
    status: ThreadStatus = ThreadStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status == ThreadStatus.ACTIVE

    @property
    def average_priority(self) -> float:
        if not self.member_ids:
            return 0.0
        return self.priority_total / len(self.member_ids)

    @property
    def representative_text(self) -> str:
        return f"{self.title} {self.summary}".strip()


@dataclass(frozen=True)
class MatchDecision:
    """
    Outcome of classifying an item against the active threads.
    """
    decision: DecisionType
    thread_id: Optional[str] = None
    update_kind: Optional[UpdateKind] = None
    similarity: float = 0.0
    degraded: bool = False

    @classmethod
    def new_thread(cls, *, degraded: bool = False, similarity: float = 0.0) -> MatchDecision:
        return cls(DecisionType.NEW_THREAD, similarity=similarity, degraded=degraded)

    @classmethod
    def update(cls, thread_id: str, kind: UpdateKind, similarity: float) -> MatchDecision:
        return cls(DecisionType.UPDATE, thread_id=thread_id, update_kind=kind, similarity=similarity)

    @classmethod
    def duplicate(cls, thread_id: str, similarity: float) -> MatchDecision:
        return cls(DecisionType.DUPLICATE, thread_id=thread_id, similarity=similarity)


@dataclass(frozen=True)
class CompletedStory:
    """
    Terminal, durably persisted projection of a thread or a single item.
    """
    story_id: str
    narrative: str
    title: str
    tone: str
    priority: str
    agent_type: str
    duration: int
    word_count: int
    char_count: int
    sentiment: str
    topics: List[str]
    summary: str
    created_at: datetime
    completed_at: datetime
    original_item: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueueEntry:
    """
    Queue-internal wrapper, discarded once delivered.
    """
    item: RawItem
    enqueued_at: datetime = field(default_factory=utcnow)
    attempts: int = 0


@dataclass(frozen=True)
class MaintenanceReport:
    enriched: int
    archived: int
    remaining: int
    threads_retired: int = 0
    failures: int = 0
