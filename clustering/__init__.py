"""Story clustering and trend scoring.

StoryMatcher:
    Tiered matcher (title, entity overlap, embedding similarity) that
    decides whether a news item joins a recent story.

ClusterIdGenerator:
    LLM-backed event slugs with a deterministic local fallback, used as a
    fast path before the matcher.

score / importance_score:
    Trending/velocity scoring and importance blending.

new_story / add_mention / apply_analysis:
    Pure story lifecycle functions.

Example:
    >>> from clustering import StoryMatcher, score
    >>> story = StoryMatcher().match(item, recent_stories)
    >>> scores = score(story, now)
"""

from clustering.matcher import MatchResult, StoryMatcher, StoryWindow, cosine_similarity
from clustering.cluster_id import (
    ClusterIdGenerator,
    fallback_cluster_id,
    find_by_cluster_id,
    validate_cluster_id,
)
from clustering.scoring import importance_score, rescore, score
from clustering.stories import add_mention, apply_analysis, new_story

__all__ = [
    "MatchResult",
    "StoryMatcher",
    "StoryWindow",
    "cosine_similarity",
    "ClusterIdGenerator",
    "fallback_cluster_id",
    "find_by_cluster_id",
    "validate_cluster_id",
    "importance_score",
    "rescore",
    "score",
    "add_mention",
    "apply_analysis",
    "new_story",
]
