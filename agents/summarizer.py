"""Summarizer agent for period digest generation."""

import logging
from collections import Counter
from collections.abc import Sequence
from datetime import datetime

from pydantic_ai import Agent, PromptedOutput, UsageLimits

from agents.base import create_model, parse_local_model
from config import Config
from models.digest import DigestSummary, SentimentBreakdown
from models.news_item import NewsItem

logger = logging.getLogger(__name__)


SUMMARIZER_PROMPT = """You are an expert news digest assistant. Given newsletter items from one period, synthesize a concise, high-signal digest for the user.

## Instructions
- Surface consensus topics and trends (items mentioned in multiple newsletters).
- Highlight the most important, referenced, and interesting content.
- Group similar items and avoid repetition.

## Output requirements (must conform to DigestSummary)
- summary_content: a 3-5 sentence digest summary
- top_topics: the most important topics
- key_insights: the most referenced or interesting insights
- sentiment_analysis: counts of positive, neutral and negative items

## Constraints
1. Do not invent sources or facts.
2. Keep the writing readable and coherent."""


def _create_agent(model: str) -> Agent[None, DigestSummary]:
    """Create the underlying PydanticAI agent for digest summarization."""
    is_local = parse_local_model(model) is not None
    output_type = PromptedOutput(DigestSummary) if is_local else DigestSummary
    return Agent(
        create_model(model),
        output_type=output_type,
        system_prompt=SUMMARIZER_PROMPT,
        retries=2,
    )


def build_user_message(items: Sequence[NewsItem]) -> str:
    """Build the user message listing every item in the period."""
    lines = [f"Newsletter items: {len(items)}"]
    for i, item in enumerate(items, start=1):
        lines.extend([
            "",
            f"Item {i}:",
            f"Title: {item.title}",
            f"Summary: {item.summary}",
            f"Topics: {', '.join(item.topics)}",
            f"Sentiment: {item.sentiment}",
            f"Companies: {', '.join(item.companies_mentioned)}",
            f"People: {', '.join(item.people_mentioned)}",
            f"Source: {item.source.name}",
        ])
    return "\n".join(lines)


def count_sentiment(items: Sequence[NewsItem]) -> SentimentBreakdown:
    """Count items per sentiment label."""
    counts = Counter(item.sentiment for item in items)
    return SentimentBreakdown(
        positive=counts.get("positive", 0),
        neutral=counts.get("neutral", 0),
        negative=counts.get("negative", 0),
    )


def render_digest_markdown(
    digest: DigestSummary,
    period_start: datetime,
    period_end: datetime,
    item_count: int,
) -> str:
    """Render a DigestSummary into a human-readable markdown file."""
    generated_str = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines = [
        "# Newsletter Digest",
        "",
        f"**Period:** {period_start:%Y-%m-%d %H:%M} to {period_end:%Y-%m-%d %H:%M}",
        f"**Generated:** {generated_str}",
        f"**Items:** {item_count}",
    ]

    if digest.summary_content:
        lines.extend(["", "## Summary", "", digest.summary_content])

    if digest.top_topics:
        lines.extend(["", "## Top Topics", ""])
        lines.extend([f"- {topic}" for topic in digest.top_topics])

    if digest.key_insights:
        lines.extend(["", "## Key Insights", ""])
        lines.extend([f"- {insight}" for insight in digest.key_insights])

    sentiment = digest.sentiment_analysis
    lines.extend([
        "",
        "## Sentiment",
        "",
        f"- Positive: {sentiment.positive}",
        f"- Neutral: {sentiment.neutral}",
        f"- Negative: {sentiment.negative}",
    ])

    return "\n".join(lines)


class SummarizerAgent:
    """Generates a period digest from news items."""

    def __init__(self, config: Config):
        self.config = config
        self._agent = _create_agent(config.summary_model)

    async def summarize(self, items: Sequence[NewsItem]) -> DigestSummary:
        """Synthesize a digest; returns DigestSummary.empty() on failure."""
        if not items:
            return DigestSummary.empty("No newsletter items in this period.")

        message = build_user_message(items)
        try:
            result = await self._agent.run(
                message,
                usage_limits=UsageLimits(request_limit=3),
            )
        except Exception as e:
            logger.error("Digest synthesis failed | items=%d error=%s", len(items), e, exc_info=True)
            digest = DigestSummary.empty()
            digest.sentiment_analysis = count_sentiment(items)
            return digest

        usage = result.usage()
        logger.info(
            "Digest generated | items=%d input_tokens=%d output_tokens=%d",
            len(items),
            usage.input_tokens or 0,
            usage.output_tokens or 0,
        )
        return result.output
