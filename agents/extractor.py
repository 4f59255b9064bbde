"""Extractor agent: turns newsletter content into structured news items.

A single newsletter typically bundles several unrelated stories. The
extractor splits it into ExtractedNewsItem records with tags, sentiment
and a model-estimated importance score.

Error Handling:
    Provider failures raise ExtractionError so the pipeline can mark the
    newsletter as failed and move on. Quota exhaustion raises
    RateLimitExceeded before any call is made.
"""

import logging

from pydantic_ai import Agent, PromptedOutput

from agents.base import create_model, parse_local_model
from config import Config
from models.news_item import ExtractedNewsItem, ExtractionResult
from ratelimit import RateLimiter

logger = logging.getLogger(__name__)


EXTRACTION_PROMPT = """You extract individual news items from email newsletters.

## Instructions
- Return every distinct news item, in the order it appears.
- Skip sponsor messages, housekeeping, unsubscribe text and social links.
- title: concise headline for the item (not the newsletter subject).
- summary: 1-2 sentences of what happened.
- content: the relevant text from the newsletter, lightly cleaned.
- url: the main link for the item if one is given, otherwise empty.
- topics: 1-4 short topic tags.
- people_mentioned, companies_mentioned, products_mentioned: proper names only.
- sentiment: positive, neutral or negative.
- importance_score: 0-1, how significant the news is for a professional reader.
- confidence_score: 0-1, how sure you are the item was extracted correctly.

## Constraints
1. Do not invent facts, links or names that are not in the newsletter.
2. If the newsletter has no news, return an empty list."""


class ExtractionError(Exception):
    """Raised when news items cannot be extracted from a newsletter."""


def _create_agent(model: str) -> Agent[None, ExtractionResult]:
    """Create the underlying PydanticAI agent for extraction."""
    is_local = parse_local_model(model) is not None
    # Local servers don't support tool_choice
    output_type = PromptedOutput(ExtractionResult) if is_local else ExtractionResult
    return Agent(
        create_model(model),
        output_type=output_type,
        system_prompt=EXTRACTION_PROMPT,
        retries=2,
    )


def build_user_message(content: str, sender_info: str, max_chars: int) -> str:
    """Build the extraction message for one newsletter."""
    return f"Newsletter from {sender_info}:\n\n{content[:max_chars]}"


class ExtractorAgent:
    """Extracts news items from newsletter content.

    Example:
        >>> extractor = ExtractorAgent(config, rate_limiter)
        >>> items = await extractor.extract(newsletter.content, newsletter.sender_info, "user-1")
    """

    def __init__(self, config: Config, rate_limiter: RateLimiter | None = None):
        self.config = config
        self.model_name = config.extraction_model
        self.rate_limiter = rate_limiter
        self._agent = _create_agent(config.extraction_model)

    async def extract(
        self,
        content: str,
        sender_info: str,
        user_id: str = "anonymous",
    ) -> list[ExtractedNewsItem]:
        """Extract news items from one newsletter.

        Raises:
            RateLimitExceeded: If the user's extraction quota is exhausted
            ExtractionError: If the model call fails
        """
        if not content.strip():
            return []

        if self.rate_limiter is not None:
            self.rate_limiter.check(user_id, "extraction")

        message = build_user_message(content, sender_info, self.config.content_max_chars)
        try:
            result = await self._agent.run(message)
        except Exception as e:
            logger.error("Extraction failed | sender=%s error=%s", sender_info, e, exc_info=True)
            raise ExtractionError(f"Failed to extract news items: {e}") from e

        usage = result.usage()
        items = [item for item in result.output.news_items if item.title]
        logger.info(
            "Extracted news items | sender=%s items=%d tokens=%d/%d",
            sender_info,
            len(items),
            usage.input_tokens or 0,
            usage.output_tokens or 0,
        )
        return items
