"""
Pipeline Factory - Builds the live feed components from configuration.
Every component is constructed explicitly and shared by reference.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from livefeed.ingestion.base import SourceAdapter
from livefeed.ingestion.source_factory import create_source_adapter
from livefeed.processing.enrichment import Enricher, ScoringModel
from livefeed.processing.matcher import ThreadMatcher
from livefeed.services.config import Config
from livefeed.services.database import Database
from livefeed.services.live_feed import LiveFeedSlot
from livefeed.services.story_history import StoryHistory
from livefeed.services.thread_store import ThreadStore
from livefeed.workflows.maintenance import FeedMaintenance
from livefeed.workflows.pipeline import LiveFeedPipeline

logger = logging.getLogger(__name__)


@dataclass
class LiveFeedApp:
    """The wired component graph for one deployment instance."""
    config: Config
    database: Database
    slot: LiveFeedSlot
    threads: ThreadStore
    enricher: Enricher
    matcher: ThreadMatcher
    pipeline: LiveFeedPipeline
    maintenance: FeedMaintenance
    history: StoryHistory

    async def initialize(self) -> None:
        await self.history.initialize()


def create_app(
    config: Config,
    *,
    source: Optional[SourceAdapter] = None,
    scoring_model: Optional[ScoringModel] = None,
    database: Optional[Database] = None,
) -> LiveFeedApp:
    """
    Wire the live feed components from configuration.

    Args:
        config: Loaded configuration
        source: Content source, defaults to the configured adapter
        scoring_model: Enrichment model, defaults to the heuristic model
        database: Durable store, defaults to the configured SQLite path

    Returns:
        LiveFeedApp holding every component
    """
    database = database or Database(config.DATABASE_PATH)
    slot = LiveFeedSlot(capacity=config.maintenance.max_live_items)
    threads = ThreadStore()
    enricher = Enricher(model=scoring_model, timeout=config.ENRICHMENT_TIMEOUT_SECONDS)
    matcher = ThreadMatcher(threads, config.matching)

    pipeline = LiveFeedPipeline(
        source=source or create_source_adapter(config.source),
        database=database,
        slot=slot,
        enricher=enricher,
        matcher=matcher,
        persistence_timeout=config.maintenance.persistence_timeout_seconds,
    )
    pipeline.config = config.pipeline

    maintenance = FeedMaintenance(
        database=database,
        slot=slot,
        store=threads,
        enricher=enricher,
        config=config.maintenance,
    )

    logger.info(f"Live feed components created (database: {database.path})")
    return LiveFeedApp(
        config=config,
        database=database,
        slot=slot,
        threads=threads,
        enricher=enricher,
        matcher=matcher,
        pipeline=pipeline,
        maintenance=maintenance,
        history=StoryHistory(database),
    )
