"""Pydantic models for the newsletter digest pipeline.

Newsletter / NewsletterSource:
    Inbox emails and the tracked senders they come from.

ExtractedNewsItem / ExtractionResult / NewsItem:
    News items extracted from newsletters, before and after persistence.

SourceInfo:
    Per-mention source attribution (name, email, credibility).

Story / KeyEntities / TrendScores / StoryAnalysis:
    Clusters of news items about the same event, with derived scores.

DigestSummary / SentimentBreakdown / ConsensusGroup:
    LLM-synthesised period digests and consensus feed groups.

Example:
    >>> from models import NewsItem, Story
    >>> story.mention_count == len(story.news_item_ids)
    True
"""

from models.news_item import ExtractedNewsItem, ExtractionResult, NewsItem, SourceInfo
from models.story import KeyEntities, Story, StoryAnalysis, TrendScores
from models.newsletter import Newsletter, NewsletterSource
from models.digest import ConsensusGroup, DigestSummary, SentimentBreakdown

__all__ = [
    "ExtractedNewsItem",
    "ExtractionResult",
    "NewsItem",
    "SourceInfo",
    "KeyEntities",
    "Story",
    "StoryAnalysis",
    "TrendScores",
    "Newsletter",
    "NewsletterSource",
    "ConsensusGroup",
    "DigestSummary",
    "SentimentBreakdown",
]
