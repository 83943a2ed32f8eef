"""
Source Factory - Creates the content source adapter from configuration.
"""
import logging

from livefeed.core.errors import ConfigurationError
from livefeed.ingestion.base import SourceAdapter
from livefeed.ingestion.reddit import RedditAdapter
from livefeed.services.config import SourceConfig

logger = logging.getLogger(__name__)


def create_source_adapter(source_config: SourceConfig) -> SourceAdapter:
    """
    Create a source adapter from configuration.

    Args:
        source_config: Configuration for the source

    Returns:
        Configured SourceAdapter instance

    Raises:
        ConfigurationError: If the source is disabled or its type is unknown
    """
    if not source_config.enabled:
        raise ConfigurationError("Content source is disabled", field="source.enabled")

    source_type = source_config.type.lower()

    if source_type == "reddit":
        adapter = RedditAdapter(
            user_agent=source_config.user_agent,
            timeout=source_config.timeout,
        )
        logger.info(f"Created {source_type} adapter")
        return adapter

    raise ConfigurationError(f"Unknown source type: {source_type}", field="source.type")
