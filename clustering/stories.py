"""Story lifecycle: creating stories and recording new mentions.

These functions are pure: they return new Story objects and leave
persistence to the caller.
"""

from collections.abc import Sequence
from datetime import datetime

from models.news_item import NewsItem
from models.story import KeyEntities, Story, StoryAnalysis


def item_entities(item: NewsItem) -> KeyEntities:
    """Key entities named by a single news item."""
    return KeyEntities(
        companies=list(item.companies_mentioned),
        people=list(item.people_mentioned),
        products=list(item.products_mentioned),
    )


def new_story(
    user_id: str,
    item: NewsItem,
    cluster_id: str,
    importance: float,
    now: datetime,
    embedding: Sequence[float] | None = None,
) -> Story:
    """Start a new story from its first news item."""
    if item.id is None:
        raise ValueError("News item must be stored before it can start a story")
    return Story(
        user_id=user_id,
        cluster_id=cluster_id,
        canonical_title=item.title,
        canonical_summary=item.summary,
        news_item_ids=[item.id],
        mentioning_sources=[item.source],
        mention_count=1,
        importance_score=importance,
        trending_score=importance,
        velocity_score=1.0,
        first_mentioned_at=now,
        last_mentioned_at=now,
        key_entities=item_entities(item),
        embedding=list(embedding) if embedding is not None else None,
    )


def add_mention(story: Story, item: NewsItem, importance: float, now: datetime) -> Story:
    """Record another mention of the story by a news item."""
    if item.id is None:
        raise ValueError("News item must be stored before it can join a story")
    data = story.model_dump()
    data.update(
        news_item_ids=story.news_item_ids + [item.id],
        mentioning_sources=[s.model_dump() for s in story.mentioning_sources] + [item.source.model_dump()],
        mention_count=story.mention_count + 1,
        importance_score=max(story.importance_score, importance),
        last_mentioned_at=max(story.last_mentioned_at, now),
    )
    return Story.model_validate(data)


def apply_analysis(story: Story, analysis: StoryAnalysis) -> Story:
    """Overwrite canonical text with a refined analysis and merge entities."""
    return story.model_copy(update={
        "canonical_title": analysis.canonical_title or story.canonical_title,
        "canonical_summary": analysis.canonical_summary or story.canonical_summary,
        "trend_analysis": analysis.trend_analysis,
        "impact_assessment": analysis.impact_assessment,
        "key_entities": story.key_entities.merged(analysis.key_entities),
    })
