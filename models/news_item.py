"""News item models extracted from newsletter content.

A newsletter usually carries several distinct news items. The extractor
agent returns them as ExtractedNewsItem records, which the pipeline turns
into persisted NewsItem records once source attribution and timestamps
are known.

Model Hierarchy:
    ExtractedNewsItem: Raw LLM output for one item
    ExtractionResult: Structured output wrapper for the extractor agent
    NewsItem: Persisted item with source attribution and linkage
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

Sentiment = Literal["positive", "neutral", "negative"]


def _clamp_unit(value: float | None, default: float) -> float:
    """Clamp a model-estimated score into [0, 1]."""
    if value is None:
        return default
    return max(0.0, min(1.0, float(value)))


def _clean_list(values: list[str] | None) -> list[str]:
    """Strip blanks and duplicates from an LLM-produced string list."""
    if not values:
        return []
    cleaned = [str(v).strip() for v in values if v is not None and str(v).strip()]
    return list(dict.fromkeys(cleaned))


class SourceInfo(BaseModel):
    """Attribution record for the newsletter a mention came from.

    Attributes:
        name: Sender display name
        email: Sender email address
        credibility_score: Source credibility in [0, 1]
        received_date: When the newsletter arrived
    """

    name: str = Field(default="Unknown", description="Sender display name")
    email: str = Field(default="", description="Sender email address")
    credibility_score: float = Field(default=0.5, ge=0.0, le=1.0)
    received_date: datetime | None = Field(default=None)


class ExtractedNewsItem(BaseModel):
    """A single news item as returned by the extraction model."""

    title: str = Field(description="Headline of the news item")
    summary: str = Field(default="", description="1-2 sentence summary")
    content: str = Field(default="", description="Relevant body text")
    url: str = Field(default="", description="Link to the story, if any")
    topics: list[str] = Field(default_factory=list, description="Topic tags")
    people_mentioned: list[str] = Field(default_factory=list)
    companies_mentioned: list[str] = Field(default_factory=list)
    products_mentioned: list[str] = Field(default_factory=list)
    sentiment: Sentiment = Field(default="neutral")
    importance_score: float = Field(default=0.5, description="Estimated importance 0-1")
    confidence_score: float = Field(default=0.5, description="Extraction confidence 0-1")

    @field_validator("sentiment", mode="before")
    @classmethod
    def normalize_sentiment(cls, v: object) -> str:
        """Coerce unknown sentiment labels to neutral."""
        label = str(v or "").strip().lower()
        return label if label in ("positive", "neutral", "negative") else "neutral"

    @field_validator("importance_score", "confidence_score", mode="before")
    @classmethod
    def clamp_scores(cls, v: object) -> float:
        """Clamp scores into [0, 1]; unparseable values become 0.5."""
        try:
            return _clamp_unit(v, 0.5)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.5

    @field_validator(
        "topics", "people_mentioned", "companies_mentioned", "products_mentioned",
        mode="before",
    )
    @classmethod
    def clean_lists(cls, v: object) -> list[str]:
        if isinstance(v, str):
            v = [v]
        return _clean_list(v)  # type: ignore[arg-type]

    @field_validator("title", "summary", "content", "url", mode="before")
    @classmethod
    def strip_text(cls, v: object) -> str:
        return str(v or "").strip()


class ExtractionResult(BaseModel):
    """Structured output of the extractor agent."""

    news_items: list[ExtractedNewsItem] = Field(
        default_factory=list,
        description="Distinct news items found in the newsletter, in reading order",
    )


class NewsItem(ExtractedNewsItem):
    """A persisted news item with source attribution.

    Immutable once stored except for the story_id linkage set by clustering.

    Attributes:
        id: Database row id (None before insert)
        user_id: Owner of the item
        newsletter_id: Newsletter the item was extracted from
        source_id: Matching newsletter source, if the sender is tracked
        story_id: Story the item was clustered into
        position: Order of the item within its newsletter
        source: Sender attribution
        extraction_model: Model that produced the item
        created_at: Ingestion timestamp (UTC)
        embedding: Vector for title + summary, if computed
    """

    id: int | None = None
    user_id: str = "default"
    newsletter_id: int | None = None
    source_id: int | None = None
    story_id: int | None = None
    position: int = 0
    source: SourceInfo = Field(default_factory=SourceInfo)
    extraction_model: str = ""
    created_at: datetime
    embedding: list[float] | None = Field(default=None, repr=False)

    @property
    def embedding_text(self) -> str:
        """Text used for the item's embedding vector."""
        return f"{self.title} {self.summary}"

    @classmethod
    def from_extracted(
        cls,
        extracted: ExtractedNewsItem,
        **fields: object,
    ) -> "NewsItem":
        """Build a NewsItem from extractor output plus persistence fields."""
        return cls.model_validate({**extracted.model_dump(), **fields})

    def __str__(self) -> str:
        return f"NewsItem({self.id}, '{self.title[:50]}')"
