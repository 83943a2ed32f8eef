"""
File observer - appends every published item to a JSON Lines file
"""
import json
import logging
from pathlib import Path

from livefeed.core.entities import EnrichedItem
from livefeed.delivery.base import FeedObserver

logger = logging.getLogger(__name__)


def item_record(item: EnrichedItem) -> dict:
    raw = item.raw
    return {
        "id": item.id,
        "title": raw.title,
        "author": raw.author,
        "origin": raw.origin,
        "url": raw.url,
        "permalink": raw.permalink,
        "created_at": raw.created_at.isoformat(),
        "added_at": item.added_at.isoformat(),
        "signals": item.signals.model_dump(),
        "enrichment_level": item.enrichment_level,
        "thread_id": item.thread_id,
        "is_update": item.is_update,
        "update_kind": item.update_kind.value if item.update_kind else None,
    }


class FileFeedObserver(FeedObserver):
    name = "file"

    def __init__(self, output_dir: str = "output", filename: str = "live_feed.jsonl"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.output_dir / filename

    async def on_item(self, item: EnrichedItem) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(item_record(item)) + "\n")

    async def on_error(self, message: str) -> None:
        logger.warning(f"Feed error: {message}")

    async def on_loading(self, loading: bool) -> None:
        logger.info("Fetching items" if loading else "Fetch complete")
