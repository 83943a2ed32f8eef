"""
Base classes for Ingestion
"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


SortType = Literal["hot", "new", "rising", "top"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawItem(BaseModel):
    """
    A post exactly as delivered by the content source. Never mutated after fetch.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    author: str = "[deleted]"
    origin: str
    body: str = ""
    url: str = ""
    permalink: str = ""
    score: int = 0
    num_comments: int = 0
    upvote_ratio: float = 0.5
    created_at: datetime
    over_18: bool = False
    is_video: bool = False
    domain: str = ""
    sort: SortType = "hot"
    fetched_at: datetime = Field(default_factory=_utcnow)

    @property
    def text(self) -> str:
        """Title and body joined, the content used for matching."""
        return f"{self.title} {self.body}".strip()


class SourceAdapter(ABC):
    """
    Base interface for all content sources.
    """

    name: str

    @abstractmethod
    async def fetch(self, origin: str, sort: SortType, limit: int) -> List[RawItem]:
        """
        Fetch up to `limit` items from `origin` using the given listing sort.
        Raises SourceFetchError on failure; never raises anything else.
        """
        raise NotImplementedError
