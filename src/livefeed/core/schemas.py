"""
Validated schemas for values crossing the enrichment boundary
"""
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


Sentiment = Literal["positive", "negative", "neutral"]


class EnrichmentSignals(BaseModel):
    """
    Pydantic schema for the signals a scoring model computes for an item
    """
    model_config = ConfigDict(frozen=True)

    priority_score: float = Field(0.0, ge=0.0, le=1.0)
    quality_score: float = Field(0.0, ge=0.0, le=1.0)
    engagement_score: float = Field(0.0, ge=0.0, le=1.0)
    sentiment: Sentiment = "neutral"
    categories: List[str] = Field(default_factory=list)

    @field_validator("categories")
    @classmethod
    def _normalize_categories(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for category in value:
            category = category.strip().lower()
            if category and category not in seen:
                seen.append(category)
        return seen

    @classmethod
    def neutral(cls) -> "EnrichmentSignals":
        """Defaults used when the scoring model fails or times out."""
        return cls()
