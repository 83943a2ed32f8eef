"""
Module to classify the tone and priority of items and threads
"""

from livefeed.core.schemas import EnrichmentSignals
from livefeed.ingestion.base import RawItem


TONES = ("breaking", "developing", "analysis", "opinion", "human-interest")
PRIORITIES = ("high", "medium", "low")


def determine_tone(item: RawItem, signals: EnrichmentSignals) -> str:
    """
    Determines the editorial tone of an item from its engagement,
    sentiment and origin community.
    """
    origin = item.origin.lower()

    if item.score > 5000 or item.num_comments > 1000:
        return "breaking"

    if signals.sentiment == "negative" and item.num_comments > 100:
        return "breaking"

    if "news" in origin:
        return "developing"

    if "askreddit" in origin or "discussion" in origin:
        return "opinion"

    if "todayilearned" in origin or origin == "til":
        return "human-interest"

    return "analysis"


def determine_priority(item: RawItem, signals: EnrichmentSignals) -> str:
    """
    Buckets an item into high / medium / low priority.
    """
    if signals.engagement_score > 0.7 or item.score > 10000:
        return "high"

    if signals.engagement_score > 0.4 or item.score > 1000:
        return "medium"

    return "low"
