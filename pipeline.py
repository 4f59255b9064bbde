"""Main pipeline orchestration for newsletter processing.

This module coordinates the newsletter digest workflow:

Pipeline Flow:
    1. FETCH: List and fetch recent newsletters from Gmail
    2. DEDUP: Skip Gmail messages that were already ingested
    3. FILTER: Link senders to tracked sources; when the user tracks any
       sources, only their newsletters are processed
    4. EXTRACT: Split each newsletter into news items (LLM)
    5. EMBED: Embed each item's title + summary (local model)
    6. CLUSTER: Join the item to a recent story (cluster-ID fast path, then
       the tiered matcher) or start a new story; refine stories that gain
       another mention with the story analyst
    7. RESCORE: Recompute trending/velocity scores for every story in the
       window

Execution is sequential: one newsletter, one item at a time. Failures of a
single newsletter mark it failed and the run continues with the next one.
"""

import asyncio
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from functools import partial
from pathlib import Path
from typing import Any, Protocol

from agents.analyst import StoryAnalyst
from agents.completion import AgentCompleter, TextCompleter
from agents.extractor import ExtractionError, ExtractorAgent
from agents.summarizer import SummarizerAgent, render_digest_markdown
from clustering.cluster_id import ClusterIdGenerator, find_by_cluster_id
from clustering.matcher import StoryMatcher, StoryWindow
from clustering.scoring import importance_score, rescore
from clustering.stories import add_mention, apply_analysis, new_story
from config import Config
from database import Database
from embeddings import try_encode
from gmail import GmailClient, GmailError, refresh_access_token
from headlines import content_frequency
from models.digest import DigestSummary
from models.news_item import ExtractedNewsItem, NewsItem, SourceInfo
from models.newsletter import Newsletter, NewsletterSource
from models.story import Story
from observability.logging import clear_context, set_run_context
from observability.tracing import trace_operation
from ratelimit import RateLimiter, RateLimitExceeded

logger = logging.getLogger(__name__)

# Recent items considered when profiling a source
PROFILE_DAYS = 30
PROFILE_ITEMS = 20


class Mailbox(Protocol):
    """Source of newsletters for a run (GmailClient in production)."""

    async def fetch_recent_newsletters(
        self,
        query: str,
        max_results: int,
        max_messages: int,
        max_chars: int,
    ) -> list[Newsletter]: ...


class Extractor(Protocol):
    model_name: str

    async def extract(self, content: str, sender_info: str, user_id: str) -> list[ExtractedNewsItem]: ...


@dataclass
class PipelineStats:
    """Statistics from a single pipeline run.

    Attributes:
        fetched: Newsletters fetched from the mailbox
        skipped: Newsletters already ingested
        filtered: Newsletters from untracked senders
        processed: Newsletters processed successfully
        failed: Newsletters marked failed
        items_extracted: News items stored
        stories_created: New stories started
        stories_updated: Existing stories that gained a mention
        rescored: Stories rescored at the end of the run
        errors: Errors encountered at any stage
        duration: Total run time in seconds
    """

    fetched: int = 0
    skipped: int = 0
    filtered: int = 0
    processed: int = 0
    failed: int = 0
    items_extracted: int = 0
    stories_created: int = 0
    stories_updated: int = 0
    rescored: int = 0
    errors: int = 0
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d["duration"] = round(d["duration"], 2)
        return d


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Pipeline:
    """Newsletter ingestion and story clustering pipeline.

    Every collaborator can be injected; anything not given is built from
    the configuration.

    Components:
        - Database: SQLite storage
        - Mailbox: Gmail client (opened per run)
        - ExtractorAgent: News item extraction (LLM)
        - ClusterIdGenerator / StoryAnalyst: LLM helpers with local fallbacks
        - StoryMatcher: Tiered story matching
        - RateLimiter: Per-user hourly quotas
    """

    def __init__(
        self,
        config: Config,
        db: Database | None = None,
        mailbox: Mailbox | None = None,
        extractor: Extractor | None = None,
        completer: TextCompleter | None = None,
        embed: Callable[[str], Sequence[float] | None] | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.config = config
        self.user_id = config.user_id
        self.db = db if db is not None else Database(config.db_path)
        self.mailbox = mailbox
        self.rate_limiter = rate_limiter or RateLimiter(config.rate_limits)
        self.extractor = extractor or ExtractorAgent(config, self.rate_limiter)
        self.embed = embed or partial(try_encode, model_name=config.embedding_model)

        if completer is None and (config.cluster_id_llm_enabled or config.story_analysis_enabled):
            completer = AgentCompleter(config.analysis_model)
        self.cluster_ids = ClusterIdGenerator(completer, enabled=config.cluster_id_llm_enabled)
        self.analyst = StoryAnalyst(
            completer,
            enabled=config.story_analysis_enabled,
            rate_limiter=self.rate_limiter,
        )
        self.matcher = StoryMatcher(self.embed, config.similarity_threshold)
        self.window = StoryWindow(config.story_window_hours, config.story_window_limit)

    # === Runs ===

    async def run_once(self) -> PipelineStats:
        """Execute one complete pipeline run.

        Returns:
            PipelineStats with counts from each stage
        """
        run_id = uuid.uuid4().hex[:8]
        set_run_context(run_id, user_id=self.user_id)
        start = time.time()
        stats = PipelineStats()

        logger.info("Pipeline started | user=%s query=%s", self.user_id, self.config.gmail_query)

        try:
            with trace_operation("pipeline.run", {"run_id": run_id, "user_id": self.user_id}) as attrs:
                try:
                    newsletters = await self._fetch_newsletters()
                except GmailError as e:
                    logger.error("Mailbox fetch failed | status=%s error=%s", e.status, e)
                    stats.errors += 1
                    newsletters = []
                stats.fetched = len(newsletters)

                for newsletter in newsletters:
                    if self.db.has_newsletter(self.user_id, newsletter.gmail_message_id):
                        stats.skipped += 1
                        continue
                    try:
                        await self.process_newsletter(newsletter, stats)
                    except RateLimitExceeded as e:
                        logger.warning("Newsletter quota exhausted, stopping run | reset=%s", e.reset_at.isoformat())
                        stats.errors += 1
                        break

                stats.rescored = self.rescore()
                attrs.update(stats.to_dict())

        except asyncio.CancelledError:
            logger.info("Pipeline run cancelled")
            raise
        finally:
            stats.duration = time.time() - start
            logger.info(
                "Pipeline done | duration=%.1fs fetched=%d processed=%d failed=%d items=%d "
                "stories_created=%d stories_updated=%d errors=%d",
                stats.duration, stats.fetched, stats.processed, stats.failed, stats.items_extracted,
                stats.stories_created, stats.stories_updated, stats.errors,
            )
            clear_context()
        return stats

    async def run_continuous(self) -> None:
        """Run the pipeline repeatedly, sleeping between runs."""
        run_count = 0
        total_items = 0
        total_errors = 0

        logger.info("Starting continuous mode | interval=%ds", self.config.poll_interval_seconds)

        try:
            while True:
                run_count += 1
                try:
                    stats = await self.run_once()
                    total_items += stats.items_extracted
                    total_errors += stats.errors
                except Exception as e:
                    logger.error("Run failed | run=%d error=%s", run_count, e, exc_info=True)
                    total_errors += 1

                self.rate_limiter.cleanup()
                logger.info("Run complete | run=%d total_items=%d total_errors=%d", run_count, total_items, total_errors)
                await asyncio.sleep(self.config.poll_interval_seconds)

        except asyncio.CancelledError:
            logger.info("Pipeline stopped | runs=%d total_items=%d total_errors=%d", run_count, total_items, total_errors)
            raise

    async def _fetch_newsletters(self) -> list[Newsletter]:
        cfg = self.config
        if self.mailbox is not None:
            return await self.mailbox.fetch_recent_newsletters(
                cfg.gmail_query, cfg.gmail_max_results, cfg.gmail_max_messages, cfg.content_max_chars,
            )

        token = cfg.gmail_access_token
        if not token:
            token = await refresh_access_token(
                cfg.gmail_client_id,
                cfg.gmail_client_secret,
                cfg.gmail_refresh_token,
                timeout=cfg.request_timeout,
            )
        async with GmailClient(token, timeout=cfg.request_timeout, user_id=self.user_id) as gmail:
            return await gmail.fetch_recent_newsletters(
                cfg.gmail_query, cfg.gmail_max_results, cfg.gmail_max_messages, cfg.content_max_chars,
            )

    # === Newsletters ===

    def _resolve_source(self, sender_email: str) -> tuple[NewsletterSource | None, bool]:
        """Matching active source, and whether the sender should be processed."""
        source = self.db.find_source_for_sender(self.user_id, sender_email)
        if source is not None:
            return source, True
        has_sources = bool(self.db.list_sources(self.user_id, active_only=True))
        return None, not has_sources

    async def process_newsletter(
        self,
        newsletter: Newsletter,
        stats: PipelineStats | None = None,
    ) -> list[NewsItem]:
        """Store one newsletter, extract its items and cluster them.

        Items and story changes of one newsletter are committed together;
        a failure part way through rolls them all back.

        Returns:
            The stored news items (empty if filtered or failed)

        Raises:
            RateLimitExceeded: If the user's newsletter quota is exhausted
        """
        stats = stats if stats is not None else PipelineStats()

        source, wanted = self._resolve_source(newsletter.sender_email)
        if not wanted:
            logger.debug("Untracked sender skipped | sender=%s", newsletter.sender_email)
            stats.filtered += 1
            return []

        self.rate_limiter.check(self.user_id, "newsletters")

        stored = self.db.insert_newsletter(newsletter.model_copy(update={
            "user_id": self.user_id,
            "status": "processing",
            "source_id": source.id if source else None,
        }))
        now = _utcnow()

        operation = "extraction"
        counts = PipelineStats()
        try:
            extracted = await self.extractor.extract(stored.content, stored.sender_info, self.user_id)

            operation = "clustering"
            source_info = SourceInfo(
                name=stored.sender_name or "Unknown",
                email=stored.sender_email,
                credibility_score=source.credibility_score if source else 0.5,
                received_date=stored.received_date,
            )
            items = []
            for position, extracted_item in enumerate(extracted):
                item = self.db.insert_news_item(NewsItem.from_extracted(
                    extracted_item,
                    user_id=self.user_id,
                    newsletter_id=stored.id,
                    source_id=source.id if source else None,
                    position=position,
                    source=source_info,
                    extraction_model=getattr(self.extractor, "model_name", ""),
                    created_at=now,
                    embedding=self._embed(extracted_item.title + " " + extracted_item.summary),
                ), commit=False)
                story = await self.cluster_item(item, now=now, stats=counts, commit=False)
                items.append(item.model_copy(update={"story_id": story.id}))

        except (ExtractionError, RateLimitExceeded, ValueError) as e:
            logger.warning(
                "Newsletter failed | id=%d operation=%s subject='%s' error=%s",
                stored.id, operation, stored.subject[:50], e,
            )
            self._mark_failed(stored, operation, e, now, stats)
            return []
        except sqlite3.Error:
            raise
        except Exception as e:
            logger.error(
                "Newsletter failed unexpectedly | id=%d operation=%s subject='%s' error=%s",
                stored.id, operation, stored.subject[:50], e, exc_info=True,
            )
            self._mark_failed(stored, operation, e, now, stats)
            return []

        self.db.commit()
        self.db.set_newsletter_status(stored.id, "completed", processed_at=now)
        if source is not None:
            self._update_source_activity(source, now)

        stats.processed += 1
        stats.items_extracted += len(items)
        stats.stories_created += counts.stories_created
        stats.stories_updated += counts.stories_updated
        logger.info("Newsletter processed | id=%d subject='%s' items=%d", stored.id, stored.subject[:50], len(items))
        return items

    def _mark_failed(
        self,
        newsletter: Newsletter,
        operation: str,
        error: Exception,
        now: datetime,
        stats: PipelineStats,
    ) -> None:
        """Discard the newsletter's uncommitted items and stories, then record the failure."""
        self.db.rollback()
        self.db.set_newsletter_status(newsletter.id, "failed", processed_at=now)
        self.db.log_processing(self.user_id, newsletter.id, operation, "failed", str(error))
        stats.failed += 1
        stats.errors += 1

    def _update_source_activity(self, source: NewsletterSource, now: datetime) -> None:
        recent = self.db.news_items_for_source(source.id, since=now - timedelta(days=PROFILE_DAYS), limit=PROFILE_ITEMS)
        self.db.update_source_activity(source.id, now, content_frequency(recent, now))

    def _embed(self, text: str) -> list[float] | None:
        try:
            vector = self.embed(text)
        except Exception as e:
            logger.warning("Embedding failed | error=%s", e)
            return None
        return list(vector) if vector is not None else None

    # === Stories ===

    async def cluster_item(
        self,
        item: NewsItem,
        now: datetime | None = None,
        stats: PipelineStats | None = None,
        commit: bool = True,
    ) -> Story:
        """Join a stored news item to a recent story or start a new one.

        Returns:
            The stored story the item now belongs to
        """
        now = now or _utcnow()
        importance = importance_score(
            item.importance_score,
            item.source.credibility_score,
            item.title,
            item.summary,
        )
        candidates = self.db.recent_stories(self.user_id, self.window, now)

        cluster_id = await self.cluster_ids.generate(item)
        story = find_by_cluster_id(cluster_id, candidates)
        tier = "cluster_id"
        if story is None:
            result = self.matcher.find_match(item, candidates, embedding=item.embedding)
            story, tier = result.story, result.tier

        if story is None:
            story = self.db.insert_story(new_story(
                self.user_id, item, cluster_id, importance, now, embedding=item.embedding,
            ), commit=commit)
            if stats is not None:
                stats.stories_created += 1
            logger.info("Story created | id=%d cluster=%s title='%s'", story.id, cluster_id, item.title[:60])
        else:
            story = await self._refine(add_mention(story, item, importance, now))
            self.db.update_story(story, commit=commit)
            if stats is not None:
                stats.stories_updated += 1
            logger.info(
                "Story updated | id=%d tier=%s mentions=%d title='%s'",
                story.id, tier, story.mention_count, story.canonical_title[:60],
            )

        self.db.link_news_item(item.id, story.id, commit=commit)
        return story

    async def _refine(self, story: Story) -> Story:
        """Re-analyse a story that gained a mention; re-embed changed text."""
        if story.mention_count < 2:
            return story
        members = self.db.news_items_by_ids(story.news_item_ids)
        analysis = await self.analyst.analyze(story, members)
        refined = apply_analysis(story, analysis)
        if refined.embedding_text != story.embedding_text:
            vector = self._embed(refined.embedding_text)
            if vector is not None:
                refined = refined.model_copy(update={"embedding": vector})
        return refined

    def rescore(self, now: datetime | None = None) -> int:
        """Recompute scores for every story in the window. Returns the count."""
        return rescore_window(self.db, self.user_id, self.window, now or _utcnow())

    def close(self) -> None:
        """Clean up resources."""
        self.db.close()


def rescore_window(db: Database, user_id: str, window: StoryWindow, now: datetime) -> int:
    """Recompute trending/velocity scores for all stories in the window.

    The window's candidate limit does not apply: every story mentioned
    within the trailing hours is rescored.
    """
    stories = db.stories_since(user_id, window.since(now))
    for story in rescore(stories, now):
        db.update_story_scores(story.id, story.trending_score, story.velocity_score, commit=False)
    db.commit()
    logger.info("Trending scores updated | stories=%d", len(stories))
    return len(stories)


async def profile_sources(
    db: Database,
    analyst: StoryAnalyst,
    user_id: str,
    email_address: str | None = None,
    now: datetime | None = None,
) -> dict[str, list[str]]:
    """Refresh expertise keywords and content frequency for active sources.

    Returns:
        Keywords per source address (sources without recent items omitted)
    """
    now = now or _utcnow()
    sources = db.list_sources(user_id, active_only=True)
    if email_address:
        sources = [s for s in sources if s.email_address == email_address.strip().lower()]

    profiles = {}
    for source in sources:
        items = db.news_items_for_source(source.id, since=now - timedelta(days=PROFILE_DAYS), limit=PROFILE_ITEMS)
        if not items:
            continue
        keywords = await analyst.profile_source(source, items)
        if keywords:
            db.update_source_expertise(source.id, keywords)
        db.update_source_activity(source.id, items[0].created_at, content_frequency(items, now))
        profiles[source.email_address] = keywords
        logger.info("Source profiled | source=%s keywords=%s", source.email_address, keywords)
    return profiles


async def generate_digest(
    config: Config,
    db: Database,
    period_start: datetime,
    period_end: datetime,
    summarizer: SummarizerAgent | None = None,
) -> tuple[DigestSummary, Path | None]:
    """Synthesize, store and render the digest for a period.

    Returns:
        The digest and the markdown report path (None if not written)
    """
    items = db.news_items_between(config.user_id, period_start, period_end)
    summarizer = summarizer or SummarizerAgent(config)

    with trace_operation("pipeline.digest", {"items": len(items)}):
        digest = await summarizer.summarize(items)

    db.save_digest(config.user_id, period_start, period_end, digest, len(items))
    markdown = render_digest_markdown(digest, period_start, period_end, len(items))
    try:
        config.reports_dir.mkdir(parents=True, exist_ok=True)
        path = config.reports_dir / f"digest_{period_end:%Y%m%d_%H%M}.md"
        path.write_text(markdown, encoding="utf-8")
    except OSError as e:
        logger.warning("Digest report not written | dir=%s error=%s", config.reports_dir, e)
        path = None

    logger.info("Digest generated | items=%d path=%s", len(items), path)
    return digest, path


async def run_once(config: Config) -> dict[str, Any]:
    """Run the pipeline once and return stats as a dict."""
    pipeline = Pipeline(config)
    try:
        return (await pipeline.run_once()).to_dict()
    finally:
        pipeline.close()


async def run_continuous(config: Config) -> None:
    """Run the pipeline continuously."""
    pipeline = Pipeline(config)
    try:
        await pipeline.run_continuous()
    finally:
        pipeline.close()
