"""Story model: a cluster of news items about the same real-world event.

A Story (stored in the ``stories`` table) is created when a freshly
extracted news item matches no recent story, and grows as later items
from other newsletters are matched into it.

Invariants:
    - mention_count == len(news_item_ids)
    - first_mentioned_at <= last_mentioned_at, and last_mentioned_at never
      moves backwards as members are added
    - trending_score and velocity_score are derived by the trend scorer and
      never edited by hand
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from models.news_item import SourceInfo


class KeyEntities(BaseModel):
    """Named actors that define a story, used for entity-overlap matching."""

    companies: list[str] = Field(default_factory=list)
    people: list[str] = Field(default_factory=list)
    products: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.companies or self.people or self.products)

    def merged(self, other: "KeyEntities") -> "KeyEntities":
        """Return the union of both entity maps, order preserving."""
        return KeyEntities(
            companies=list(dict.fromkeys(self.companies + other.companies)),
            people=list(dict.fromkeys(self.people + other.people)),
            products=list(dict.fromkeys(self.products + other.products)),
        )


class TrendScores(BaseModel):
    """Output of one trend-scoring pass for a story."""

    trending_score: float
    velocity_score: float


class StoryAnalysis(BaseModel):
    """Refined story text produced by the story analyst."""

    canonical_title: str = Field(description="Neutral headline for the event")
    canonical_summary: str = Field(description="2-3 sentence summary across all mentions")
    trend_analysis: str = Field(default="", description="Why the story is gaining attention")
    impact_assessment: str = Field(default="", description="Who is affected and how")
    key_entities: KeyEntities = Field(default_factory=KeyEntities)


class Story(BaseModel):
    """A cluster of news items believed to describe the same event.

    Attributes:
        id: Database row id (None before insert)
        user_id: Owner of the story
        cluster_id: Advisory slug for the defining event (not unique)
        canonical_title: Headline (first item's title, or LLM-refined)
        canonical_summary: Summary (first item's summary, or LLM-refined)
        news_item_ids: Member news items, in mention order
        mentioning_sources: Attribution for each mention
        mention_count: Number of members
        importance_score: Max importance over members
        trending_score: Derived popularity score
        velocity_score: Derived mentions-per-hour
        first_mentioned_at: When the first member was added
        last_mentioned_at: When the latest member was added
        key_entities: Companies/people/products for entity matching
        trend_analysis: Free-text trend notes
        impact_assessment: Free-text impact notes
        embedding: Vector for canonical title + summary
    """

    id: int | None = None
    user_id: str = "default"
    cluster_id: str = ""
    canonical_title: str
    canonical_summary: str = ""
    news_item_ids: list[int] = Field(default_factory=list)
    mentioning_sources: list[SourceInfo] = Field(default_factory=list)
    mention_count: int = 0
    importance_score: float = 0.0
    trending_score: float = 0.0
    velocity_score: float = 0.0
    first_mentioned_at: datetime
    last_mentioned_at: datetime
    key_entities: KeyEntities = Field(default_factory=KeyEntities)
    trend_analysis: str = ""
    impact_assessment: str = ""
    embedding: list[float] | None = Field(default=None, repr=False)

    @model_validator(mode="after")
    def check_invariants(self) -> "Story":
        if self.mention_count != len(self.news_item_ids):
            raise ValueError(
                f"mention_count ({self.mention_count}) does not match "
                f"member count ({len(self.news_item_ids)})"
            )
        if self.last_mentioned_at < self.first_mentioned_at:
            raise ValueError("last_mentioned_at precedes first_mentioned_at")
        return self

    @property
    def embedding_text(self) -> str:
        return f"{self.canonical_title} {self.canonical_summary}"

    def __str__(self) -> str:
        return f"Story({self.id}, '{self.canonical_title[:50]}', mentions={self.mention_count})"
