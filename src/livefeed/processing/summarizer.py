from collections import Counter
from datetime import datetime
from typing import List, Optional

from livefeed.core.entities import CompletedStory, EnrichedItem, Thread
from livefeed.core.scoring import determine_priority, determine_tone
from livefeed.ingestion.base import RawItem

SUMMARY_MAX_LENGTH = 150
WORDS_PER_MINUTE = 200


def build_summary(item: RawItem, max_length: int = SUMMARY_MAX_LENGTH) -> str:
    """Title plus the first sentence of the body, truncated."""
    summary = item.title
    if item.body:
        first_sentence = item.body.split(".")[0].strip()
        if first_sentence:
            summary = f"{item.title} - {first_sentence}"

    if len(summary) > max_length:
        return summary[: max_length - 3] + "..."
    return summary


def estimate_reading_time(text: str) -> int:
    """Reading time in seconds at 200 words per minute, at least 30."""
    word_count = len(text.split())
    return max(30, int(word_count / WORDS_PER_MINUTE * 60))


def minimal_narrative(item: RawItem) -> str:
    return f"{item.title}\n\n{item.body or 'No content'}"


def full_narrative(item: EnrichedItem) -> str:
    raw = item.raw
    signals = item.signals
    topics = ", ".join(signals.categories or [raw.origin])
    return (
        f"# {raw.title}\n\n"
        f"**Author:** {raw.author} | **Subreddit:** r/{raw.origin} | **Score:** {raw.score}\n\n"
        f"{raw.body or 'No additional content provided.'}\n\n"
        "---\n\n"
        "**Story Analysis:**\n"
        f"- **Sentiment:** {signals.sentiment}\n"
        f"- **Topics:** {topics}\n"
        f"- **Engagement Score:** {signals.engagement_score:.2f}\n"
        f"- **Enrichment Level:** {item.enrichment_level}\n\n"
        f"**Original Discussion:** [View on Reddit]({raw.permalink})\n"
    )


def thread_narrative(thread: Thread, members: List[EnrichedItem]) -> str:
    lines = [f"# {thread.title}", "", thread.summary, "", "---", "", "**Timeline:**"]
    for member in members:
        label = member.update_kind.value.replace("_", " ") if member.update_kind else "original"
        lines.append(f"- [{label}] {member.raw.title} (r/{member.raw.origin})")
    return "\n".join(lines) + "\n"


def _original_item(raw: RawItem) -> dict:
    return {
        "title": raw.title,
        "author": raw.author,
        "subreddit": raw.origin,
        "url": raw.url,
    }


def story_from_item(
    item: EnrichedItem,
    *,
    story_id: str,
    agent_type: str,
    narrative: str,
    completed_at: datetime,
) -> CompletedStory:
    """Project a single live item into a CompletedStory."""
    raw = item.raw
    text = f"{raw.title} {raw.body}"
    return CompletedStory(
        story_id=story_id,
        narrative=narrative,
        title=raw.title,
        tone=determine_tone(raw, item.signals),
        priority=determine_priority(raw, item.signals),
        agent_type=agent_type,
        duration=estimate_reading_time(text),
        word_count=len(text.split()),
        char_count=len(narrative),
        sentiment=item.signals.sentiment,
        topics=list(item.signals.categories) or [raw.origin],
        summary=build_summary(raw),
        created_at=raw.created_at,
        completed_at=completed_at,
        original_item=_original_item(raw),
        metadata={
            "completed_story": agent_type == "editor",
            "enrichment_level": item.enrichment_level,
            "engagement_score": item.signals.engagement_score,
            "original_score": raw.score,
            "thread_id": item.thread_id,
            "is_update": item.is_update,
            "update_kind": item.update_kind.value if item.update_kind else None,
        },
    )


def story_from_thread(
    thread: Thread,
    members: List[EnrichedItem],
    *,
    completed_at: datetime,
    agent_type: str = "editor",
) -> CompletedStory:
    """Project a multi-member thread into a CompletedStory."""
    narrative = thread_narrative(thread, members)
    sentiments = Counter(m.signals.sentiment for m in members)
    sentiment: Optional[str] = sentiments.most_common(1)[0][0] if sentiments else None
    first = members[0].raw if members else None

    return CompletedStory(
        story_id=f"thread_{thread.id}",
        narrative=narrative,
        title=thread.title,
        tone=thread.tone,
        priority=thread.priority,
        agent_type=agent_type,
        duration=estimate_reading_time(narrative),
        word_count=len(narrative.split()),
        char_count=len(narrative),
        sentiment=sentiment or "neutral",
        topics=sorted(thread.categories),
        summary=thread.summary,
        created_at=thread.created_at,
        completed_at=completed_at,
        original_item=_original_item(first) if first else None,
        metadata={
            "thread_id": thread.id,
            "member_ids": list(thread.member_ids),
            "update_count": max(0, len(thread.member_ids) - 1),
            "entities": sorted(thread.entities),
        },
    )
