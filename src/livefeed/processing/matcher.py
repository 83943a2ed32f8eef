"""
Thread Matcher - decides whether an enriched item starts a new narrative
thread, updates an active one, or duplicates one.

Decision flow:
1. Score the item against every active thread's title and summary
2. Best score >= duplicate threshold → DUPLICATE (no thread mutation)
3. Best score >= update threshold → UPDATE, sub-classified into
   correction, new_development, clarification or follow_up
4. Otherwise → NEW_THREAD

Similarity failures never block ingestion: the item gets its own thread.
"""
import logging
import re
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Iterable, List, Optional, Set

from livefeed.core.entities import DecisionType, EnrichedItem, MatchDecision, Thread, UpdateKind
from livefeed.core.errors import MatchingDegradation, ThreadArchivedError
from livefeed.core.scoring import determine_priority, determine_tone
from livefeed.processing.similarity import cosine_similarity, extract_entities, new_tokens, tokenize
from livefeed.processing.summarizer import build_summary
from livefeed.services.config import MatchingConfig
from livefeed.services.thread_store import ThreadStore

logger = logging.getLogger(__name__)

CORRECTION_PATTERN = re.compile(
    r"\b(correction|corrected|retract(?:s|ed|ion)?|errat(?:um|a)|misreported|debunked"
    r"|walk(?:s|ed)? back|not true|we were wrong)\b",
    re.IGNORECASE,
)


def new_thread_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class _Candidate:
    thread: Thread
    score: float
    tokens: Set[str]


class ThreadMatcher:
    def __init__(
        self,
        store: ThreadStore,
        config: Optional[MatchingConfig] = None,
        id_factory: Callable[[], str] = new_thread_id,
    ):
        self.store = store
        self.config = config or MatchingConfig()
        self.id_factory = id_factory

    def classify(self, item: EnrichedItem, active_threads: Iterable[Thread]) -> MatchDecision:
        """
        Classify an item against the given threads. Pure: reads only its
        arguments and the matcher configuration.
        """
        try:
            return self._classify(item, active_threads)
        except Exception as e:
            error = e if isinstance(e, MatchingDegradation) else MatchingDegradation(item.id, str(e))
            logger.warning(
                f"{error}, starting a new thread",
                extra={"item_id": item.id, "stage": "match"},
            )
            return MatchDecision.new_thread(degraded=True)

    def _classify(self, item: EnrichedItem, active_threads: Iterable[Thread]) -> MatchDecision:
        item_tokens = tokenize(item.raw.text)
        if not item_tokens:
            raise MatchingDegradation(item.id, "item has no comparable content")

        candidates: List[_Candidate] = []
        for thread in active_threads:
            if not thread.is_active:
                continue
            thread_tokens = tokenize(thread.representative_text)
            if not thread_tokens:
                continue
            score = cosine_similarity(item_tokens, thread_tokens)
            candidates.append(_Candidate(thread, score, thread_tokens))

        if not candidates:
            return MatchDecision.new_thread()

        # Highest similarity, then freshest thread, then smallest id
        candidates.sort(key=lambda c: (-c.score, -c.thread.last_update_at.timestamp(), c.thread.id))
        best = candidates[0]

        if best.score >= self.config.duplicate_threshold:
            return MatchDecision.duplicate(best.thread.id, best.score)

        if best.score >= self.config.update_threshold:
            kind = self.update_kind(item, best.thread, best.score, item_tokens, best.tokens)
            return MatchDecision.update(best.thread.id, kind, best.score)

        return MatchDecision.new_thread(similarity=best.score)

    def update_kind(
        self,
        item: EnrichedItem,
        thread: Thread,
        similarity: float,
        item_tokens: Set[str],
        thread_tokens: Set[str],
    ) -> UpdateKind:
        text = item.raw.text
        if CORRECTION_PATTERN.search(text):
            return UpdateKind.CORRECTION

        average = thread.average_priority
        priority = item.signals.priority_score
        substantially_higher = (
            priority >= average * self.config.development_ratio
            and priority >= average + self.config.development_margin
        )
        introduces_facts = bool(
            set(item.signals.categories) - thread.categories
            or extract_entities(text) - thread.entities
        )
        if substantially_higher and introduces_facts:
            return UpdateKind.NEW_DEVELOPMENT

        added = new_tokens(item_tokens, thread_tokens)
        if similarity >= self.config.clarification_threshold and len(added) <= self.config.clarification_max_new_tokens:
            return UpdateKind.CLARIFICATION

        # Later, expanded coverage is a follow-up, and so is anything unclassified
        return UpdateKind.FOLLOW_UP

    def _build_thread(self, item: EnrichedItem) -> Thread:
        now = self.store.clock()
        return Thread(
            id=self.id_factory(),
            title=item.title,
            summary=build_summary(item.raw),
            tone=determine_tone(item.raw, item.signals),
            priority=determine_priority(item.raw, item.signals),
            created_at=now,
            last_update_at=now,
            last_published_at=item.raw.created_at,
            member_ids=[item.id],
            categories=set(item.signals.categories),
            entities=extract_entities(item.raw.text),
            priority_total=item.signals.priority_score,
        )

    async def _start_thread(self, item: EnrichedItem, decision: MatchDecision) -> MatchDecision:
        thread = await self.store.register(self._build_thread(item))
        item.thread_id = thread.id
        item.is_update = False
        item.update_kind = None
        return replace(decision, decision=DecisionType.NEW_THREAD, thread_id=thread.id, update_kind=None)

    async def apply(self, item: EnrichedItem, decision: MatchDecision) -> MatchDecision:
        """
        Apply a decision to the thread store and set the item's lineage.

        Returns:
            The decision actually applied. An update against a thread that
            was archived in the meantime becomes a new thread.
        """
        if decision.decision == DecisionType.DUPLICATE:
            logger.info(
                f"Duplicate of thread {decision.thread_id} (similarity {decision.similarity:.2f})",
                extra={"item_id": item.id, "thread_id": decision.thread_id, "stage": "match"},
            )
            return decision

        if decision.decision == DecisionType.NEW_THREAD:
            return await self._start_thread(item, decision)

        kind = decision.update_kind or UpdateKind.FOLLOW_UP
        changes = {}
        if kind.supersedes_summary:
            changes = {
                "title": item.title,
                "summary": build_summary(item.raw),
                "tone": determine_tone(item.raw, item.signals),
                "priority": determine_priority(item.raw, item.signals),
            }

        try:
            await self.store.append(
                decision.thread_id,
                item,
                kind,
                entities=extract_entities(item.raw.text),
                **changes,
            )
        except (ThreadArchivedError, KeyError) as e:
            logger.warning(
                f"Cannot update thread {decision.thread_id} ({e}), starting a new thread",
                extra={"item_id": item.id, "thread_id": decision.thread_id, "stage": "match"},
            )
            return await self._start_thread(item, MatchDecision.new_thread(similarity=decision.similarity))

        item.thread_id = decision.thread_id
        item.is_update = True
        item.update_kind = kind
        return decision

    async def restore(self, items: Iterable[EnrichedItem]) -> int:
        """
        Rebuild threads from the lineage of persisted live items, e.g. after
        a restart. Items without lineage get their own thread.

        Returns:
            Number of threads created
        """
        created = 0
        async with self.store.matching_lock:
            for item in sorted(items, key=lambda i: i.added_at):
                if self.store.thread_for(item.id) is not None:
                    continue

                if item.thread_id and self.store.get(item.thread_id) is not None:
                    await self.store.append(
                        item.thread_id,
                        item,
                        item.update_kind or UpdateKind.FOLLOW_UP,
                        entities=extract_entities(item.raw.text),
                    )
                    continue

                thread = self._build_thread(item)
                if item.thread_id:
                    thread.id = item.thread_id
                await self.store.register(thread)
                item.thread_id = thread.id
                created += 1

        logger.info(f"Restored {created} threads")
        return created

    async def match(self, item: EnrichedItem) -> MatchDecision:
        """Classify against the active threads and apply, as one step."""
        async with self.store.matching_lock:
            known = self.store.known_thread_id(item.id)
            if known is not None:
                return MatchDecision.duplicate(known, 1.0)

            decision = self.classify(item, self.store.active())
            return await self.apply(item, decision)
