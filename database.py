"""Database operations for the newsletter digest pipeline.

This module provides SQLite-based storage for newsletters, extracted news
items, stories and the derived views built on top of them.

Database Schema:
    sources table:
        - Tracked senders per user (address or bare domain), with voice
          priority, credibility and expertise profile
        - UNIQUE(user_id, email_address)

    newsletters table:
        - One row per fetched email, keyed by Gmail message id per user
        - status: pending | processing | completed | failed

    news_items table:
        - Items extracted from a newsletter, linked to a story once clustered
        - embedding (BLOB): float32 vector of title + summary

    stories table:
        - Clusters of news items with trending/velocity scores
        - news_item_ids, mentioning_sources, key_entities as JSON
        - embedding (BLOB): float32 vector of canonical title + summary

    processing_logs table:
        - Per-newsletter processing failures

    digests table:
        - Period digests, UNIQUE(user_id, period_start, period_end)

    news_item_groups / news_item_group_members tables:
        - Persisted consensus groups and their member items

Conventions:
    - Timestamps are stored as ISO-8601 UTC strings with fixed precision,
      so lexical order equals chronological order
    - Naive datetimes are treated as UTC
    - List and map columns are JSON text

Features:
    - WAL mode for concurrent read/write access
    - Pydantic validation when rows are read back
    - Context manager support for auto-cleanup
"""

import json
import logging
import sqlite3
from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np

from clustering.matcher import StoryWindow
from models.digest import ConsensusGroup, DigestSummary
from models.news_item import NewsItem
from models.newsletter import Newsletter, NewsletterSource, NewsletterStatus
from models.story import Story

logger = logging.getLogger(__name__)


def _iso(dt: datetime | None) -> str | None:
    """Format a datetime as a fixed-width ISO-8601 UTC string."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _now() -> str:
    return _iso(datetime.now(timezone.utc))


def _embedding_to_blob(embedding: Sequence[float] | None) -> bytes | None:
    """Convert an embedding to a SQLite BLOB."""
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32).tobytes()


def _blob_to_embedding(blob: bytes | None) -> list[float] | None:
    """Convert a SQLite BLOB back to an embedding."""
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).tolist()


def _decode(row: sqlite3.Row, json_columns: Sequence[str]) -> dict[str, Any]:
    """Row to dict with JSON columns parsed and the embedding decoded."""
    data = dict(row)
    for column in json_columns:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    if "embedding" in data:
        data["embedding"] = _blob_to_embedding(data["embedding"])
    return data


_NEWS_ITEM_JSON = ("topics", "people_mentioned", "companies_mentioned", "products_mentioned", "source")
_STORY_JSON = ("news_item_ids", "mentioning_sources", "key_entities")


class Database:
    """SQLite database for the digest pipeline.

    Example:
        >>> with Database("digest.db") as db:
        ...     stored = db.insert_newsletter(newsletter)
        ...     stories = db.recent_stories("default", StoryWindow(), now)
    """

    SCHEMA = """
    -- Tracked newsletter senders
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        email_address TEXT NOT NULL,      -- lower-cased address or bare domain
        name TEXT NOT NULL DEFAULT '',
        category TEXT NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1,
        voice_priority INTEGER NOT NULL DEFAULT 0,
        credibility_score REAL NOT NULL DEFAULT 0.5,
        last_content_at TEXT,
        content_frequency REAL NOT NULL DEFAULT 0,
        expertise_keywords TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        UNIQUE (user_id, email_address)
    );

    -- Fetched emails
    CREATE TABLE IF NOT EXISTS newsletters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        gmail_message_id TEXT NOT NULL,
        thread_id TEXT NOT NULL DEFAULT '',
        subject TEXT NOT NULL DEFAULT '',
        sender_email TEXT NOT NULL DEFAULT '',
        sender_name TEXT NOT NULL DEFAULT '',
        received_date TEXT NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        labels TEXT NOT NULL DEFAULT '[]',
        status TEXT NOT NULL DEFAULT 'pending',
        source_id INTEGER REFERENCES sources(id),
        processed_at TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (user_id, gmail_message_id)
    );

    CREATE INDEX IF NOT EXISTS idx_newsletters_received ON newsletters(user_id, received_date);

    -- Extracted news items
    CREATE TABLE IF NOT EXISTS news_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        newsletter_id INTEGER REFERENCES newsletters(id),
        source_id INTEGER REFERENCES sources(id),
        story_id INTEGER REFERENCES stories(id),
        position INTEGER NOT NULL DEFAULT 0,
        title TEXT NOT NULL,
        summary TEXT NOT NULL DEFAULT '',
        content TEXT NOT NULL DEFAULT '',
        url TEXT NOT NULL DEFAULT '',
        topics TEXT NOT NULL DEFAULT '[]',
        people_mentioned TEXT NOT NULL DEFAULT '[]',
        companies_mentioned TEXT NOT NULL DEFAULT '[]',
        products_mentioned TEXT NOT NULL DEFAULT '[]',
        sentiment TEXT NOT NULL DEFAULT 'neutral',
        importance_score REAL NOT NULL DEFAULT 0.5,
        confidence_score REAL NOT NULL DEFAULT 0.5,
        source TEXT NOT NULL DEFAULT '{}',
        extraction_model TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        embedding BLOB                    -- float32 vector of title + summary
    );

    CREATE INDEX IF NOT EXISTS idx_news_items_created ON news_items(user_id, created_at);
    CREATE INDEX IF NOT EXISTS idx_news_items_source ON news_items(source_id, created_at);

    -- Story clusters
    CREATE TABLE IF NOT EXISTS stories (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        cluster_id TEXT NOT NULL DEFAULT '',   -- advisory, not unique
        canonical_title TEXT NOT NULL,
        canonical_summary TEXT NOT NULL DEFAULT '',
        news_item_ids TEXT NOT NULL DEFAULT '[]',
        mentioning_sources TEXT NOT NULL DEFAULT '[]',
        mention_count INTEGER NOT NULL DEFAULT 0,
        importance_score REAL NOT NULL DEFAULT 0,
        trending_score REAL NOT NULL DEFAULT 0,
        velocity_score REAL NOT NULL DEFAULT 0,
        first_mentioned_at TEXT NOT NULL,
        last_mentioned_at TEXT NOT NULL,
        key_entities TEXT NOT NULL DEFAULT '{}',
        trend_analysis TEXT NOT NULL DEFAULT '',
        impact_assessment TEXT NOT NULL DEFAULT '',
        embedding BLOB,                   -- float32 vector of canonical text
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_stories_last ON stories(user_id, last_mentioned_at);
    CREATE INDEX IF NOT EXISTS idx_stories_cluster ON stories(user_id, cluster_id);

    -- Processing failures
    CREATE TABLE IF NOT EXISTS processing_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        newsletter_id INTEGER REFERENCES newsletters(id),
        operation TEXT NOT NULL,
        status TEXT NOT NULL,
        message TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    );

    -- Period digests
    CREATE TABLE IF NOT EXISTS digests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        period_start TEXT NOT NULL,
        period_end TEXT NOT NULL,
        summary_content TEXT NOT NULL,
        top_topics TEXT NOT NULL DEFAULT '[]',
        key_insights TEXT NOT NULL DEFAULT '[]',
        sentiment_analysis TEXT NOT NULL DEFAULT '{}',
        item_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        UNIQUE (user_id, period_start, period_end)
    );

    -- Consensus groups
    CREATE TABLE IF NOT EXISTS news_item_groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        period_start TEXT NOT NULL,
        period_end TEXT NOT NULL,
        representative_item_id INTEGER REFERENCES news_items(id),
        title TEXT NOT NULL,
        summary TEXT NOT NULL DEFAULT '',
        mention_count INTEGER NOT NULL,
        relevance_score REAL NOT NULL,
        avg_importance REAL NOT NULL,
        avg_confidence REAL NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS news_item_group_members (
        group_id INTEGER NOT NULL REFERENCES news_item_groups(id),
        news_item_id INTEGER NOT NULL REFERENCES news_items(id),
        similarity REAL NOT NULL,
        PRIMARY KEY (group_id, news_item_id)
    );
    """

    path: Path
    conn: sqlite3.Connection

    def __init__(self, path: Path | str):
        """Initialize database connection.

        Creates the database file if it doesn't exist and sets up
        the schema. Uses WAL mode for better concurrent access.

        Args:
            path: Path to SQLite database file (or ':memory:')
        """
        self.path = Path(path)
        self.conn = sqlite3.connect(str(path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()
        logger.debug("Database initialized | path=%s", self.path)

    def _init_schema(self) -> None:
        self.conn.executescript(self.SCHEMA)
        self.conn.commit()

    def commit(self) -> None:
        """Commit pending changes."""
        self.conn.commit()

    def rollback(self) -> None:
        """Discard uncommitted changes."""
        self.conn.rollback()

    # === Sources ===

    def _row_to_source(self, row: sqlite3.Row) -> NewsletterSource:
        data = _decode(row, ("expertise_keywords",))
        data["is_active"] = bool(data["is_active"])
        data.pop("created_at", None)
        return NewsletterSource.model_validate(data)

    def get_source(self, user_id: str, email_address: str) -> NewsletterSource | None:
        """Get a source by its address or domain."""
        row = self.conn.execute(
            "SELECT * FROM sources WHERE user_id = ? AND email_address = ?",
            (user_id, email_address.strip().lower()),
        ).fetchone()
        return self._row_to_source(row) if row else None

    def upsert_source(self, source: NewsletterSource) -> NewsletterSource:
        """Add a source, or update and reactivate an existing one.

        Returns:
            The stored source with its id
        """
        self.conn.execute(
            """
            INSERT INTO sources
            (user_id, email_address, name, category, description, is_active,
             voice_priority, credibility_score, created_at)
            VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
            ON CONFLICT (user_id, email_address) DO UPDATE SET
                name = excluded.name,
                category = excluded.category,
                description = excluded.description,
                voice_priority = excluded.voice_priority,
                credibility_score = excluded.credibility_score,
                is_active = 1
            """,
            (
                source.user_id,
                source.email_address,
                source.name,
                source.category,
                source.description,
                source.voice_priority,
                source.credibility_score,
                _now(),
            ),
        )
        self.conn.commit()
        logger.debug("Source saved | user=%s email=%s", source.user_id, source.email_address)
        return self.get_source(source.user_id, source.email_address)

    def list_sources(self, user_id: str, active_only: bool = False) -> list[NewsletterSource]:
        """Sources for a user, highest voice priority first."""
        query = "SELECT * FROM sources WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        query += " ORDER BY voice_priority DESC, name, email_address"
        cursor = self.conn.execute(query, (user_id,))
        return [self._row_to_source(row) for row in cursor.fetchall()]

    def deactivate_source(self, user_id: str, email_address: str) -> bool:
        """Stop tracking a source. Returns False if it does not exist."""
        cursor = self.conn.execute(
            "UPDATE sources SET is_active = 0 WHERE user_id = ? AND email_address = ?",
            (user_id, email_address.strip().lower()),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def set_voice_priority(self, user_id: str, email_address: str, priority: int) -> bool:
        """Set a source's voice priority.

        Raises:
            ValueError: If priority is outside 0-10
        """
        if not 0 <= priority <= 10:
            raise ValueError("Priority must be between 0 and 10")
        cursor = self.conn.execute(
            "UPDATE sources SET voice_priority = ? WHERE user_id = ? AND email_address = ?",
            (priority, user_id, email_address.strip().lower()),
        )
        self.conn.commit()
        return cursor.rowcount > 0

    def update_source_activity(
        self,
        source_id: int,
        last_content_at: datetime,
        content_frequency: float | None = None,
    ) -> None:
        """Record when a source last sent content and its weekly frequency."""
        if content_frequency is None:
            self.conn.execute(
                "UPDATE sources SET last_content_at = ? WHERE id = ?",
                (_iso(last_content_at), source_id),
            )
        else:
            self.conn.execute(
                "UPDATE sources SET last_content_at = ?, content_frequency = ? WHERE id = ?",
                (_iso(last_content_at), content_frequency, source_id),
            )
        self.conn.commit()

    def update_source_expertise(self, source_id: int, keywords: list[str]) -> None:
        """Replace a source's expertise keywords."""
        self.conn.execute(
            "UPDATE sources SET expertise_keywords = ? WHERE id = ?",
            (json.dumps(keywords), source_id),
        )
        self.conn.commit()

    def find_source_for_sender(self, user_id: str, sender_email: str) -> NewsletterSource | None:
        """Active source matching a sender, exact address before domain."""
        domain_match = None
        for source in self.list_sources(user_id, active_only=True):
            if not source.matches(sender_email):
                continue
            if "@" in source.email_address:
                return source
            domain_match = domain_match or source
        return domain_match

    # === Newsletters ===

    def _row_to_newsletter(self, row: sqlite3.Row) -> Newsletter:
        data = _decode(row, ("labels",))
        data.pop("created_at", None)
        return Newsletter.model_validate(data)

    def has_newsletter(self, user_id: str, gmail_message_id: str) -> bool:
        """True if this Gmail message was already ingested."""
        row = self.conn.execute(
            "SELECT 1 FROM newsletters WHERE user_id = ? AND gmail_message_id = ?",
            (user_id, gmail_message_id),
        ).fetchone()
        return row is not None

    def insert_newsletter(self, newsletter: Newsletter) -> Newsletter:
        """Insert a newsletter and return it with its id."""
        cursor = self.conn.execute(
            """
            INSERT INTO newsletters
            (user_id, gmail_message_id, thread_id, subject, sender_email, sender_name,
             received_date, content, labels, status, source_id, processed_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                newsletter.user_id,
                newsletter.gmail_message_id,
                newsletter.thread_id,
                newsletter.subject,
                newsletter.sender_email,
                newsletter.sender_name,
                _iso(newsletter.received_date),
                newsletter.content,
                json.dumps(newsletter.labels),
                newsletter.status,
                newsletter.source_id,
                _iso(newsletter.processed_at),
                _now(),
            ),
        )
        self.conn.commit()
        logger.debug("Newsletter saved | id=%d gmail_id=%s", cursor.lastrowid, newsletter.gmail_message_id)
        return newsletter.model_copy(update={"id": cursor.lastrowid})

    def set_newsletter_status(
        self,
        newsletter_id: int,
        status: NewsletterStatus,
        processed_at: datetime | None = None,
    ) -> None:
        self.conn.execute(
            "UPDATE newsletters SET status = ?, processed_at = COALESCE(?, processed_at) WHERE id = ?",
            (status, _iso(processed_at), newsletter_id),
        )
        self.conn.commit()

    def newsletters_between(self, user_id: str, start: datetime, end: datetime) -> list[Newsletter]:
        """Newsletters received in [start, end], newest first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM newsletters
            WHERE user_id = ? AND received_date >= ? AND received_date <= ?
            ORDER BY received_date DESC
            """,
            (user_id, _iso(start), _iso(end)),
        )
        return [self._row_to_newsletter(row) for row in cursor.fetchall()]

    # === News items ===

    def _row_to_news_item(self, row: sqlite3.Row) -> NewsItem:
        return NewsItem.model_validate(_decode(row, _NEWS_ITEM_JSON))

    def insert_news_item(self, item: NewsItem, commit: bool = True) -> NewsItem:
        """Insert a news item and return it with its id."""
        cursor = self.conn.execute(
            """
            INSERT INTO news_items
            (user_id, newsletter_id, source_id, story_id, position, title, summary,
             content, url, topics, people_mentioned, companies_mentioned,
             products_mentioned, sentiment, importance_score, confidence_score,
             source, extraction_model, created_at, embedding)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                item.user_id,
                item.newsletter_id,
                item.source_id,
                item.story_id,
                item.position,
                item.title,
                item.summary,
                item.content,
                item.url,
                json.dumps(item.topics),
                json.dumps(item.people_mentioned),
                json.dumps(item.companies_mentioned),
                json.dumps(item.products_mentioned),
                item.sentiment,
                item.importance_score,
                item.confidence_score,
                item.source.model_dump_json(),
                item.extraction_model,
                _iso(item.created_at),
                _embedding_to_blob(item.embedding),
            ),
        )
        if commit:
            self.conn.commit()
        return item.model_copy(update={"id": cursor.lastrowid})

    def link_news_item(self, item_id: int, story_id: int, commit: bool = True) -> None:
        """Attach a news item to its story."""
        self.conn.execute("UPDATE news_items SET story_id = ? WHERE id = ?", (story_id, item_id))
        if commit:
            self.conn.commit()

    def news_items_by_ids(self, item_ids: Sequence[int]) -> list[NewsItem]:
        """News items by id, in the order given (missing ids skipped)."""
        if not item_ids:
            return []
        placeholders = ",".join("?" * len(item_ids))
        cursor = self.conn.execute(
            f"SELECT * FROM news_items WHERE id IN ({placeholders})",
            list(item_ids),
        )
        by_id = {row["id"]: self._row_to_news_item(row) for row in cursor.fetchall()}
        return [by_id[i] for i in item_ids if i in by_id]

    def news_items_between(self, user_id: str, start: datetime, end: datetime) -> list[NewsItem]:
        """News items created in [start, end], newest first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM news_items
            WHERE user_id = ? AND created_at >= ? AND created_at <= ?
            ORDER BY created_at DESC, id DESC
            """,
            (user_id, _iso(start), _iso(end)),
        )
        return [self._row_to_news_item(row) for row in cursor.fetchall()]

    def news_items_for_source(
        self,
        source_id: int,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[NewsItem]:
        """A source's news items, newest first."""
        query = "SELECT * FROM news_items WHERE source_id = ?"
        params: list[Any] = [source_id]
        if since is not None:
            query += " AND created_at >= ?"
            params.append(_iso(since))
        query += " ORDER BY created_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        cursor = self.conn.execute(query, params)
        return [self._row_to_news_item(row) for row in cursor.fetchall()]

    # === Stories ===

    def _row_to_story(self, row: sqlite3.Row) -> Story:
        data = _decode(row, _STORY_JSON)
        data.pop("updated_at", None)
        return Story.model_validate(data)

    def _story_params(self, story: Story) -> tuple:
        return (
            story.user_id,
            story.cluster_id,
            story.canonical_title,
            story.canonical_summary,
            json.dumps(story.news_item_ids),
            json.dumps([s.model_dump(mode="json") for s in story.mentioning_sources]),
            story.mention_count,
            story.importance_score,
            story.trending_score,
            story.velocity_score,
            _iso(story.first_mentioned_at),
            _iso(story.last_mentioned_at),
            story.key_entities.model_dump_json(),
            story.trend_analysis,
            story.impact_assessment,
            _embedding_to_blob(story.embedding),
            _now(),
        )

    def insert_story(self, story: Story, commit: bool = True) -> Story:
        """Insert a story and return it with its id."""
        cursor = self.conn.execute(
            """
            INSERT INTO stories
            (user_id, cluster_id, canonical_title, canonical_summary, news_item_ids,
             mentioning_sources, mention_count, importance_score, trending_score,
             velocity_score, first_mentioned_at, last_mentioned_at, key_entities,
             trend_analysis, impact_assessment, embedding, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            self._story_params(story),
        )
        if commit:
            self.conn.commit()
        logger.debug("Story created | id=%d cluster=%s", cursor.lastrowid, story.cluster_id)
        return story.model_copy(update={"id": cursor.lastrowid})

    def update_story(self, story: Story, commit: bool = True) -> None:
        """Overwrite every column of an existing story."""
        if story.id is None:
            raise ValueError("Cannot update a story that was never inserted")
        self.conn.execute(
            """
            UPDATE stories SET
                user_id = ?, cluster_id = ?, canonical_title = ?, canonical_summary = ?,
                news_item_ids = ?, mentioning_sources = ?, mention_count = ?,
                importance_score = ?, trending_score = ?, velocity_score = ?,
                first_mentioned_at = ?, last_mentioned_at = ?, key_entities = ?,
                trend_analysis = ?, impact_assessment = ?, embedding = ?, updated_at = ?
            WHERE id = ?
            """,
            (*self._story_params(story), story.id),
        )
        if commit:
            self.conn.commit()

    def update_story_scores(
        self,
        story_id: int,
        trending_score: float,
        velocity_score: float,
        commit: bool = True,
    ) -> None:
        self.conn.execute(
            "UPDATE stories SET trending_score = ?, velocity_score = ?, updated_at = ? WHERE id = ?",
            (trending_score, velocity_score, _now(), story_id),
        )
        if commit:
            self.conn.commit()

    def get_story(self, story_id: int) -> Story | None:
        row = self.conn.execute("SELECT * FROM stories WHERE id = ?", (story_id,)).fetchone()
        return self._row_to_story(row) if row else None

    def recent_stories(self, user_id: str, window: StoryWindow, now: datetime) -> list[Story]:
        """Candidate stories for matching: most recently mentioned first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM stories
            WHERE user_id = ? AND last_mentioned_at >= ?
            ORDER BY last_mentioned_at DESC, id DESC
            LIMIT ?
            """,
            (user_id, _iso(window.since(now)), window.limit),
        )
        return [self._row_to_story(row) for row in cursor.fetchall()]

    def stories_since(self, user_id: str, since: datetime) -> list[Story]:
        """All stories mentioned since a time, unbounded (for rescoring)."""
        cursor = self.conn.execute(
            """
            SELECT * FROM stories
            WHERE user_id = ? AND last_mentioned_at >= ?
            ORDER BY last_mentioned_at DESC, id DESC
            """,
            (user_id, _iso(since)),
        )
        return [self._row_to_story(row) for row in cursor.fetchall()]

    def top_stories(
        self,
        user_id: str,
        since: datetime,
        min_mentions: int = 1,
        limit: int = 10,
    ) -> list[Story]:
        """Stories mentioned since a time, by trending score."""
        cursor = self.conn.execute(
            """
            SELECT * FROM stories
            WHERE user_id = ? AND last_mentioned_at >= ? AND mention_count >= ?
            ORDER BY trending_score DESC, last_mentioned_at DESC
            LIMIT ?
            """,
            (user_id, _iso(since), min_mentions, limit),
        )
        return [self._row_to_story(row) for row in cursor.fetchall()]

    # === Logs, digests, consensus ===

    def log_processing(
        self,
        user_id: str,
        newsletter_id: int | None,
        operation: str,
        status: str,
        message: str = "",
    ) -> None:
        self.conn.execute(
            """
            INSERT INTO processing_logs (user_id, newsletter_id, operation, status, message, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, newsletter_id, operation, status, message, _now()),
        )
        self.conn.commit()

    def processing_logs(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent processing log rows."""
        cursor = self.conn.execute(
            "SELECT * FROM processing_logs WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        return [dict(row) for row in cursor.fetchall()]

    def save_digest(
        self,
        user_id: str,
        period_start: datetime,
        period_end: datetime,
        digest: DigestSummary,
        item_count: int,
    ) -> int:
        """Insert or replace the digest for a period. Returns its id."""
        self.conn.execute(
            """
            INSERT INTO digests
            (user_id, period_start, period_end, summary_content, top_topics,
             key_insights, sentiment_analysis, item_count, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (user_id, period_start, period_end) DO UPDATE SET
                summary_content = excluded.summary_content,
                top_topics = excluded.top_topics,
                key_insights = excluded.key_insights,
                sentiment_analysis = excluded.sentiment_analysis,
                item_count = excluded.item_count,
                created_at = excluded.created_at
            """,
            (
                user_id,
                _iso(period_start),
                _iso(period_end),
                digest.summary_content,
                json.dumps(digest.top_topics),
                json.dumps(digest.key_insights),
                digest.sentiment_analysis.model_dump_json(),
                item_count,
                _now(),
            ),
        )
        self.conn.commit()
        row = self.conn.execute(
            "SELECT id FROM digests WHERE user_id = ? AND period_start = ? AND period_end = ?",
            (user_id, _iso(period_start), _iso(period_end)),
        ).fetchone()
        return row["id"]

    def get_digest(self, user_id: str, period_start: datetime, period_end: datetime) -> DigestSummary | None:
        row = self.conn.execute(
            "SELECT * FROM digests WHERE user_id = ? AND period_start = ? AND period_end = ?",
            (user_id, _iso(period_start), _iso(period_end)),
        ).fetchone()
        if row is None:
            return None
        return DigestSummary.model_validate(
            _decode(row, ("top_topics", "key_insights", "sentiment_analysis"))
        )

    def save_consensus_groups(
        self,
        user_id: str,
        groups: Sequence[ConsensusGroup],
        period_start: datetime,
        period_end: datetime,
    ) -> list[int]:
        """Persist consensus groups with their members. Returns group ids."""
        group_ids = []
        created_at = _now()
        for group in groups:
            cursor = self.conn.execute(
                """
                INSERT INTO news_item_groups
                (user_id, period_start, period_end, representative_item_id, title, summary,
                 mention_count, relevance_score, avg_importance, avg_confidence, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    _iso(period_start),
                    _iso(period_end),
                    group.representative.id,
                    group.representative.title,
                    group.representative.summary,
                    group.mention_count,
                    group.relevance_score,
                    group.avg_importance,
                    group.avg_confidence,
                    created_at,
                ),
            )
            group_id = cursor.lastrowid
            self.conn.executemany(
                "INSERT OR IGNORE INTO news_item_group_members (group_id, news_item_id, similarity) VALUES (?, ?, ?)",
                [
                    (group_id, member.id, similarity)
                    for member, similarity in zip(group.members, group.similarities)
                    if member.id is not None
                ],
            )
            group_ids.append(group_id)
        self.conn.commit()
        if group_ids:
            logger.info("Consensus groups saved | user=%s groups=%d", user_id, len(group_ids))
        return group_ids

    def stats(self, user_id: str | None = None) -> dict[str, int]:
        """Row counts per table (optionally for one user)."""
        counts = {}
        for table in ("sources", "newsletters", "news_items", "stories", "digests", "processing_logs"):
            if user_id is None:
                row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
            else:
                row = self.conn.execute(f"SELECT COUNT(*) AS n FROM {table} WHERE user_id = ?", (user_id,)).fetchone()
            counts[table] = row["n"] or 0

        query = "SELECT COUNT(*) AS n FROM newsletters WHERE status = 'failed'"
        params: tuple = ()
        if user_id is not None:
            query += " AND user_id = ?"
            params = (user_id,)
        counts["failed_newsletters"] = self.conn.execute(query, params).fetchone()["n"] or 0
        return counts

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
