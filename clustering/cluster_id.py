"""Cluster-ID generation for stories.

A cluster ID is a short ``entity_action_object`` slug naming the event a
story is about (e.g. ``openai_releases_gpt5``). It is used as a fast path
before the tiered matcher: a new item whose slug exactly equals a recent
story's slug joins that story.

Cluster IDs are advisory. Two independent generations for the same event
may differ, so they are never treated as unique keys.
"""

import logging
import re
from collections.abc import Sequence

from agents.completion import TextCompleter, strip_code_fences
from models.news_item import NewsItem
from models.story import Story

logger = logging.getLogger(__name__)

CLUSTER_ID_PATTERN = re.compile(r"^[a-z0-9_]+$")
MAX_CLUSTER_ID_LENGTH = 50
FALLBACK_CLUSTER_ID = "story"

# Title words used by the local fallback slug
_TITLE_WORDS = 5

_NON_SLUG = re.compile(r"[^a-z0-9]+")

CLUSTER_ID_PROMPT = """Create a stable identifier for the real-world event described by this news item.

Format: entity_action_object, lowercase letters, digits and underscores only,
at most {max_length} characters. Use the main company or person, a verb, and
the object of the action. Two descriptions of the same event must produce the
same identifier.

Examples: openai_releases_gpt5, nvidia_acquires_runai, eu_passes_ai_act

Title: {title}
Summary: {summary}
Companies: {companies}
Topics: {topics}

Respond with the identifier only."""


def _slugify(text: str) -> str:
    return _NON_SLUG.sub("_", text.lower()).strip("_")


def fallback_cluster_id(item: NewsItem) -> str:
    """Deterministic local slug from company, topic and title tokens.

    Always matches CLUSTER_ID_PATTERN and is at most MAX_CLUSTER_ID_LENGTH
    characters, falling back to 'story' when no usable token exists.
    """
    tokens = []
    if item.companies_mentioned:
        tokens.append(_slugify(item.companies_mentioned[0]))
    if item.topics:
        tokens.append(_slugify(item.topics[0]))
    tokens.extend(_slugify(word) for word in item.title.split()[:_TITLE_WORDS])

    slug = "_".join(t for t in tokens if t)
    slug = slug[:MAX_CLUSTER_ID_LENGTH].strip("_")
    return slug or FALLBACK_CLUSTER_ID


def validate_cluster_id(text: str | None) -> str | None:
    """Return the slug if the model output is a valid cluster ID, else None."""
    if not text:
        return None
    candidate = strip_code_fences(text).strip().strip("`'\"").strip()
    if len(candidate) > MAX_CLUSTER_ID_LENGTH:
        return None
    if not CLUSTER_ID_PATTERN.fullmatch(candidate):
        return None
    return candidate


def find_by_cluster_id(cluster_id: str, candidates: Sequence[Story]) -> Story | None:
    """Return the first candidate with exactly this cluster ID."""
    if not cluster_id:
        return None
    for story in candidates:
        if story.cluster_id == cluster_id:
            return story
    return None


class ClusterIdGenerator:
    """Generates cluster IDs with an LLM, falling back to a local slug."""

    def __init__(self, completer: TextCompleter | None, enabled: bool = True):
        self.completer = completer
        self.enabled = enabled and completer is not None

    async def generate(self, item: NewsItem) -> str:
        """Return a cluster ID for the item; never raises."""
        if not self.enabled:
            return fallback_cluster_id(item)

        prompt = CLUSTER_ID_PROMPT.format(
            max_length=MAX_CLUSTER_ID_LENGTH,
            title=item.title,
            summary=item.summary[:500],
            companies=", ".join(item.companies_mentioned) or "none",
            topics=", ".join(item.topics) or "none",
        )
        try:
            response = await self.completer.complete(prompt)
        except Exception as e:
            logger.warning("Cluster ID generation failed | item='%s' error=%s", item.title[:50], e)
            return fallback_cluster_id(item)

        cluster_id = validate_cluster_id(response)
        if cluster_id is None:
            logger.debug("Invalid cluster ID from model | output=%r", (response or "")[:80])
            return fallback_cluster_id(item)
        return cluster_id
