"""Tiered story matcher.

Decides whether a freshly extracted news item belongs to one of a small
window of recent stories. Tiers run in strict order and the first hit wins:

    1. Title: the item title equals, or contains, the story's canonical
       title (case-insensitive). Catches re-posts of the same headline.
    2. Entities: the item names a company, person or product recorded in
       the story's key entities.
    3. Embedding: cosine similarity between the item embedding and the
       story embedding; the best candidate strictly above the threshold
       wins, ties going to the earliest candidate.

The candidate list is supplied by the caller (see StoryWindow) and is
expected to be small, so every tier is a linear scan.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

import numpy as np

from models.news_item import NewsItem
from models.story import Story

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.85

EmbedFn = Callable[[str], Sequence[float] | None]


@dataclass(frozen=True)
class StoryWindow:
    """Bounds on the candidate stories considered for a match.

    Attributes:
        hours: Trailing period, by last_mentioned_at
        limit: Maximum number of candidates (most recent first)
    """
    hours: int = 168
    limit: int = 50

    def since(self, now: datetime) -> datetime:
        return now - timedelta(hours=self.hours)


@dataclass
class MatchResult:
    """Outcome of a match attempt.

    Attributes:
        story: Matched story, or None
        tier: 'title', 'entity', 'embedding' or 'none'
        similarity: Cosine similarity for embedding matches
    """
    story: Story | None
    tier: str = "none"
    similarity: float | None = None

    @property
    def matched(self) -> bool:
        return self.story is not None


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for zero or mismatched vectors."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def _normalized(values: Iterable[str]) -> set[str]:
    return {v.strip().lower() for v in values if v and v.strip()}


def title_matches(item: NewsItem, story: Story) -> bool:
    """True if the item title equals or contains the story's canonical title."""
    canonical = story.canonical_title.strip().lower()
    if not canonical:
        return False
    title = item.title.strip().lower()
    return title == canonical or canonical in title


def entities_overlap(item: NewsItem, story: Story) -> bool:
    """True if any item company/person/product is among the story's key entities."""
    item_entities = _normalized(
        item.companies_mentioned + item.people_mentioned + item.products_mentioned
    )
    if not item_entities:
        return False
    entities = story.key_entities
    story_entities = _normalized(entities.companies + entities.people + entities.products)
    return not item_entities.isdisjoint(story_entities)


class StoryMatcher:
    """Matches news items to existing stories.

    Example:
        >>> matcher = StoryMatcher(embed=try_encode)
        >>> story = matcher.match(item, recent_stories)
        >>> if story is None:
        ...     # caller creates a new story
    """

    def __init__(
        self,
        embed: EmbedFn | None = None,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    ):
        """Initialize the matcher.

        Args:
            embed: Optional embedding provider used when the item carries
                   no embedding. May return None or raise on failure.
            similarity_threshold: Cosine similarity a candidate must exceed
        """
        self.embed = embed
        self.similarity_threshold = similarity_threshold

    def match(
        self,
        item: NewsItem,
        candidates: Sequence[Story],
        embedding: Sequence[float] | None = None,
    ) -> Story | None:
        """Return the story the item belongs to, or None for a new story."""
        return self.find_match(item, candidates, embedding).story

    def find_match(
        self,
        item: NewsItem,
        candidates: Sequence[Story],
        embedding: Sequence[float] | None = None,
    ) -> MatchResult:
        """Run the matching tiers and report which one hit."""
        if not candidates:
            return MatchResult(story=None)

        for story in candidates:
            if title_matches(item, story):
                logger.debug("Title match | item='%s' story=%s", item.title[:50], story.id)
                return MatchResult(story=story, tier="title")

        for story in candidates:
            if entities_overlap(item, story):
                logger.debug("Entity match | item='%s' story=%s", item.title[:50], story.id)
                return MatchResult(story=story, tier="entity")

        vector = self._item_embedding(item, embedding)
        if vector is None:
            return MatchResult(story=None)

        best: Story | None = None
        best_similarity = self.similarity_threshold
        for story in candidates:
            if not story.embedding:
                continue
            similarity = cosine_similarity(vector, story.embedding)
            # Strict comparison keeps the earliest candidate on ties
            if similarity > best_similarity:
                best = story
                best_similarity = similarity

        if best is None:
            return MatchResult(story=None)

        logger.debug(
            "Embedding match | item='%s' story=%s similarity=%.3f",
            item.title[:50], best.id, best_similarity,
        )
        return MatchResult(story=best, tier="embedding", similarity=best_similarity)

    def _item_embedding(
        self,
        item: NewsItem,
        embedding: Sequence[float] | None,
    ) -> Sequence[float] | None:
        """Supplied embedding, the item's own, or a freshly computed one."""
        if embedding is not None:
            return embedding
        if item.embedding:
            return item.embedding
        if self.embed is None:
            return None
        try:
            return self.embed(item.embedding_text)
        except Exception as e:
            logger.warning("Embedding tier skipped | item='%s' error=%s", item.title[:50], e)
            return None
