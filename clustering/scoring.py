"""Trend scoring and importance scoring for stories.

Trending score:
    hours_since_last  = (now - last_mentioned_at) in hours
    time_decay        = max(0.1, 1 - hours_since_last / 168)
    recency_bonus     = 1.5 (< 24h), 1.2 (< 48h), else 1.0
    hours_since_first = max(1, (last_mentioned_at - first_mentioned_at) in hours)
    velocity          = mention_count / hours_since_first
    trending          = (mention_count * time_decay * recency_bonus
                         + velocity * 10) * importance_score

Both scores are rounded to 2 decimals. Scores are recomputed from scratch
on every pass; there is no incremental update.
"""

from collections.abc import Iterable
from datetime import datetime

from models.story import Story, TrendScores

DECAY_HOURS = 7 * 24
MIN_TIME_DECAY = 0.1
VELOCITY_WEIGHT = 10

IMPORTANCE_KEYWORDS = (
    "breakthrough",
    "announce",
    "launch",
    "release",
    "acquire",
    "funding",
    "ipo",
    "regulation",
    "partnership",
    "merger",
)
KEYWORD_BOOST = 0.1
DEFAULT_BASE_IMPORTANCE = 0.5


def _hours(delta_seconds: float) -> float:
    return delta_seconds / 3600


def time_decay(hours_since_last: float) -> float:
    """Linear decay over 7 days, floored at 0.1."""
    return max(MIN_TIME_DECAY, 1.0 - hours_since_last / DECAY_HOURS)


def recency_bonus(hours_since_last: float) -> float:
    """Step bonus for very fresh stories."""
    if hours_since_last < 24:
        return 1.5
    if hours_since_last < 48:
        return 1.2
    return 1.0


def score(story: Story, now: datetime) -> TrendScores:
    """Compute trending and velocity scores for a story at time `now`."""
    hours_since_last = _hours((now - story.last_mentioned_at).total_seconds())
    decay = time_decay(hours_since_last)
    bonus = recency_bonus(hours_since_last)

    span = _hours((story.last_mentioned_at - story.first_mentioned_at).total_seconds())
    hours_since_first = max(1.0, span)
    velocity = story.mention_count / hours_since_first

    trending = (story.mention_count * decay * bonus + velocity * VELOCITY_WEIGHT) * story.importance_score
    return TrendScores(
        trending_score=round(trending, 2),
        velocity_score=round(velocity, 2),
    )


def rescore(stories: Iterable[Story], now: datetime) -> list[Story]:
    """Return copies of the stories with freshly computed scores."""
    rescored = []
    for story in stories:
        scores = score(story, now)
        rescored.append(story.model_copy(update=scores.model_dump()))
    return rescored


def importance_score(
    base: float | None,
    credibility: float | None,
    title: str,
    summary: str = "",
) -> float:
    """Blend extraction importance with source credibility and keyword boosts.

    Args:
        base: Model-estimated importance (0-1); 0.5 when missing
        credibility: Source credibility (0-1), averaged in when available
        title: Item title
        summary: Item summary

    Returns:
        Importance in [0, 1], rounded to 2 decimals
    """
    value = DEFAULT_BASE_IMPORTANCE if base is None else base
    if credibility is not None:
        value = (value + credibility) / 2

    text = f"{title} {summary}".lower()
    hits = sum(1 for keyword in IMPORTANCE_KEYWORDS if keyword in text)
    value += KEYWORD_BOOST * hits

    return round(min(1.0, max(0.0, value)), 2)
