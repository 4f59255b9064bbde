"""Digest and consensus view models.

DigestSummary:
    LLM-synthesised digest for a period of newsletters.

ConsensusGroup:
    News items from different newsletters that describe the same thing,
    grouped by embedding similarity for the consensus feed.
"""

from pydantic import BaseModel, Field

from models.news_item import NewsItem


class SentimentBreakdown(BaseModel):
    """Counts of items per sentiment label."""

    positive: int = 0
    neutral: int = 0
    negative: int = 0


class DigestSummary(BaseModel):
    """Structured digest output for a period of newsletters."""

    summary_content: str = Field(description="3-5 sentence digest summary")
    top_topics: list[str] = Field(
        default_factory=list,
        description="Most important topics in the period",
    )
    key_insights: list[str] = Field(
        default_factory=list,
        description="Most referenced or interesting insights",
    )
    sentiment_analysis: SentimentBreakdown = Field(default_factory=SentimentBreakdown)

    @classmethod
    def empty(cls, reason: str = "Error synthesizing digest.") -> "DigestSummary":
        """Fallback digest used when synthesis fails."""
        return cls(summary_content=reason)


class ConsensusGroup(BaseModel):
    """Similar news items grouped around a representative item.

    Attributes:
        members: Items in the group, representative first
        similarities: Cosine similarity of each member to the representative
        relevance_score: 0.5 * mentions + 0.3 * avg importance + 0.2 * avg confidence
        avg_importance: Mean importance over members
        avg_confidence: Mean confidence over members
    """

    members: list[NewsItem]
    similarities: list[float]
    relevance_score: float
    avg_importance: float
    avg_confidence: float

    @property
    def representative(self) -> NewsItem:
        return self.members[0]

    @property
    def mention_count(self) -> int:
        return len(self.members)
