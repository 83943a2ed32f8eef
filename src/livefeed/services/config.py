"""
Loads and handles config from config.yml
Deployment overrides (database path, user agent, log level) are loaded from .env
"""
import logging
import os
from typing import List, Dict, Any, Optional, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError

from livefeed.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class SourceConfig(BaseModel):
    """Configuration for a single content source."""
    type: str = "reddit"
    enabled: bool = True
    user_agent: Optional[str] = None
    timeout: float = 30.0


class PipelineConfig(BaseModel):
    """
    Configuration for the live feed pipeline.
    Defines where items come from and how fast they are published.
    """
    origins: List[str] = []
    max_items_in_flight: int = Field(50, ge=1)
    publishing_interval_ms: int = Field(2000, ge=0)
    fetch_interval_seconds: float = Field(30.0, ge=0.0)
    fetch_limit: int = Field(10, ge=1, le=100)
    sorts: List[Literal["hot", "new", "rising", "top"]] = ["new", "rising", "hot"]
    content_mode: Literal["sfw", "nsfw", "all"] = "sfw"
    stop_grace_seconds: float = Field(2.0, ge=0.0)


class MatchingConfig(BaseModel):
    """Thresholds used by the thread matcher. All are tunables."""
    duplicate_threshold: float = Field(0.85, ge=0.0, le=1.0)
    update_threshold: float = Field(0.35, ge=0.0, le=1.0)
    clarification_threshold: float = Field(0.7, ge=0.0, le=1.0)
    clarification_max_new_tokens: int = Field(2, ge=0)
    development_ratio: float = Field(1.5, ge=1.0)
    development_margin: float = Field(0.15, ge=0.0)


class MaintenanceConfig(BaseModel):
    """Configuration for the feed maintenance cycle."""
    max_live_items: int = Field(50, ge=1)
    enrichment_batch_size: int = Field(5, ge=0)
    archive_age_hours: float = Field(24.0, gt=0.0)
    persistence_timeout_seconds: float = Field(5.0, gt=0.0)


class Config(BaseModel):
    # Core
    DATABASE_PATH: str = "data/livefeed.db"
    LOG_LEVEL: str = "INFO"

    # Enrichment
    ENRICHMENT_TIMEOUT_SECONDS: float = 2.0

    source: SourceConfig = SourceConfig()
    pipeline: PipelineConfig = PipelineConfig()
    matching: MatchingConfig = MatchingConfig()
    maintenance: MaintenanceConfig = MaintenanceConfig()


def _get_config_path() -> str:
    """Get the path to config.yml, handling different working directories."""
    env_path = os.getenv("LIVEFEED_CONFIG")
    if env_path:
        if os.path.exists(env_path):
            return env_path
        raise FileNotFoundError(f"Cannot find {env_path}")

    # Try relative path first
    if os.path.exists('resources/config.yml'):
        return 'resources/config.yml'

    # Try from project root
    project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))
    config_path = os.path.join(project_root, 'resources', 'config.yml')
    if os.path.exists(config_path):
        return config_path

    raise FileNotFoundError("Cannot find resources/config.yml")


def parse_config(data: Dict[str, Any]) -> Config:
    """Build a Config from already-parsed YAML data."""
    try:
        return Config(
            DATABASE_PATH=os.getenv("LIVEFEED_DATABASE_PATH", data.get("DATABASE_PATH", "data/livefeed.db")),
            LOG_LEVEL=os.getenv("LIVEFEED_LOG_LEVEL", data.get("LOG_LEVEL", "INFO")),
            ENRICHMENT_TIMEOUT_SECONDS=float(data.get("ENRICHMENT_TIMEOUT_SECONDS", 2.0)),
            source=SourceConfig(**{
                **data.get("source", {}),
                **({"user_agent": os.getenv("REDDIT_USER_AGENT")} if os.getenv("REDDIT_USER_AGENT") else {}),
            }),
            pipeline=PipelineConfig(**data.get("pipeline", {})),
            matching=MatchingConfig(**data.get("matching", {})),
            maintenance=MaintenanceConfig(**data.get("maintenance", {})),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_config(path: Optional[str] = None) -> Config:
    """Load configuration from config.yml and overrides from .env."""
    # Load .env for deployment overrides
    load_dotenv()

    config_path = path or _get_config_path()

    with open(config_path, 'r') as file:
        data = yaml.safe_load(file) or {}

    config = parse_config(data)
    logger.debug(f"Loaded configuration from {config_path}")
    return config
