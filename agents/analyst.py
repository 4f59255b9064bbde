"""Story analyst: refines growing stories and profiles newsletter sources.

When a story gains another mention, the analyst rewrites its canonical
title and summary across all member items and adds short trend and impact
notes. It also suggests expertise keywords for newsletter sources.

Both operations use the plain TextCompleter capability and parse the
model's JSON defensively. Any failure falls back to a local, deterministic
result, so callers never see provider errors.
"""

import logging
from collections.abc import Sequence

from agents.completion import TextCompleter, parse_json_fragment
from models.news_item import NewsItem
from models.newsletter import NewsletterSource
from models.story import KeyEntities, Story, StoryAnalysis
from ratelimit import RateLimiter, RateLimitExceeded

logger = logging.getLogger(__name__)

MAX_EXPERTISE_KEYWORDS = 5

STORY_ANALYSIS_PROMPT = """Several newsletters mentioned the same story. Write a canonical version of it.

Current title: {title}
Current summary: {summary}
Mentions: {mention_count}
Sources: {sources}

Member items:
{items}

Return ONLY valid JSON in this exact format:
{{
  "canonical_title": "...",
  "canonical_summary": "2-3 sentences covering all mentions",
  "trend_analysis": "1-2 sentences on why this is getting attention",
  "impact_assessment": "1-2 sentences on who is affected and how",
  "key_entities": {{"companies": [], "people": [], "products": []}}
}}"""

SOURCE_EXPERTISE_PROMPT = """Analyze the content from this newsletter source and identify their key expertise areas.

Source: {source}

Recent Content:
{items}

Identify the top {limit} expertise keywords that best describe what this source specializes in.
Focus on technology areas, industry sectors, business areas and role expertise.

Return as a JSON array of strings (lowercase, single words or short phrases):
["ai", "machine learning", "startups", "venture capital", "cryptocurrency"]"""


def _format_items(items: Sequence[NewsItem], limit: int = 10) -> str:
    lines = []
    for i, item in enumerate(items[:limit], 1):
        lines.append(f"{i}. {item.title}")
        if item.summary:
            lines.append(f"   Summary: {item.summary}")
        if item.topics:
            lines.append(f"   Topics: {', '.join(item.topics)}")
        if item.companies_mentioned:
            lines.append(f"   Companies: {', '.join(item.companies_mentioned)}")
    return "\n".join(lines)


def local_story_analysis(story: Story, items: Sequence[NewsItem]) -> StoryAnalysis:
    """Deterministic analysis used when the model is unavailable.

    Keeps the canonical text and merges member entities into the story's.
    """
    entities = story.key_entities
    for item in items:
        entities = entities.merged(KeyEntities(
            companies=item.companies_mentioned,
            people=item.people_mentioned,
            products=item.products_mentioned,
        ))

    names = list(dict.fromkeys(s.name for s in story.mentioning_sources if s.name))
    trend = f"Mentioned {story.mention_count} times"
    if names:
        trend += f" by {', '.join(names[:5])}"
    return StoryAnalysis(
        canonical_title=story.canonical_title,
        canonical_summary=story.canonical_summary,
        trend_analysis=trend + ".",
        impact_assessment=story.impact_assessment,
        key_entities=entities,
    )


def _parse_story_analysis(text: str) -> StoryAnalysis:
    data = parse_json_fragment(text)
    if not isinstance(data, dict):
        raise ValueError("Story analysis is not a JSON object")
    return StoryAnalysis.model_validate(data)


def _parse_keywords(text: str) -> list[str]:
    data = parse_json_fragment(text)
    if not isinstance(data, list):
        raise ValueError("Expertise keywords are not a JSON array")
    keywords = [str(k).strip().lower() for k in data if str(k).strip()]
    return list(dict.fromkeys(keywords))[:MAX_EXPERTISE_KEYWORDS]


class StoryAnalyst:
    """LLM-backed story refinement with local fallbacks.

    Example:
        >>> analyst = StoryAnalyst(completer)
        >>> analysis = await analyst.analyze(story, member_items)
    """

    def __init__(
        self,
        completer: TextCompleter | None,
        enabled: bool = True,
        rate_limiter: RateLimiter | None = None,
    ):
        self.completer = completer
        self.enabled = enabled and completer is not None
        self.rate_limiter = rate_limiter

    def _allowed(self, user_id: str) -> bool:
        if self.rate_limiter is None:
            return True
        try:
            self.rate_limiter.check(user_id, "analysis")
        except RateLimitExceeded as e:
            logger.info("Analysis skipped | user=%s reason=%s", user_id, e)
            return False
        return True

    async def analyze(self, story: Story, items: Sequence[NewsItem]) -> StoryAnalysis:
        """Refine a story across its member items; never raises."""
        if not self.enabled or not self._allowed(story.user_id):
            return local_story_analysis(story, items)

        prompt = STORY_ANALYSIS_PROMPT.format(
            title=story.canonical_title,
            summary=story.canonical_summary,
            mention_count=story.mention_count,
            sources=", ".join(s.name for s in story.mentioning_sources) or "Unknown",
            items=_format_items(items),
        )
        try:
            response = await self.completer.complete(prompt)
            analysis = _parse_story_analysis(response)
        except Exception as e:
            logger.warning("Story analysis failed | story=%s error=%s", story.id, e)
            return local_story_analysis(story, items)

        logger.debug("Story analyzed | story=%s title='%s'", story.id, analysis.canonical_title[:50])
        return analysis

    async def profile_source(
        self,
        source: NewsletterSource,
        items: Sequence[NewsItem],
    ) -> list[str]:
        """Suggest up to five expertise keywords; empty list on failure."""
        if not items or not self.enabled or not self._allowed(source.user_id):
            return []

        prompt = SOURCE_EXPERTISE_PROMPT.format(
            source=source.name or source.email_address,
            items=_format_items(items, limit=20),
            limit=MAX_EXPERTISE_KEYWORDS,
        )
        try:
            response = await self.completer.complete(prompt)
            return _parse_keywords(response)
        except Exception as e:
            logger.warning("Source profiling failed | source=%s error=%s", source.email_address, e)
            return []
