import logging
from typing import Iterable, List

from livefeed.ingestion.base import RawItem

logger = logging.getLogger(__name__)


def passes_content_mode(item: RawItem, content_mode: str) -> bool:
    """Check an item against the configured content mode (sfw, nsfw or all)."""
    if content_mode == "sfw":
        return not item.over_18
    if content_mode == "nsfw":
        return item.over_18
    return True


def passes_prefilter(item: RawItem, *, content_mode: str = "sfw", min_length: int = 1) -> bool:
    """Basic prefilter for content mode and empty posts."""
    if len(item.text) < min_length:
        return False

    return passes_content_mode(item, content_mode)


def filter_batch(
    items: Iterable[RawItem],
    *,
    content_mode: str = "sfw",
) -> List[RawItem]:
    """
    Filter a fetched batch before it is queued.

    Returns:
        Items that pass the prefilter, minus repeated ids within the batch,
        ordered by score, highest first
    """
    items = list(items)
    kept: List[RawItem] = []
    seen_ids = set()

    for item in items:
        # Skip if we've already seen this id in this batch
        if item.id in seen_ids:
            logger.debug(f"Skipping batch duplicate: {item.title}", extra={"item_id": item.id})
            continue

        if not passes_prefilter(item, content_mode=content_mode):
            logger.debug(f"Filtered by content mode: {item.title}", extra={"item_id": item.id})
            continue

        kept.append(item)
        seen_ids.add(item.id)

    kept.sort(key=lambda i: i.score, reverse=True)
    logger.info(f"Prefilter: {len(items)} -> {len(kept)} items")
    return kept
