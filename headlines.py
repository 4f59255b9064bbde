"""Read-side views over stored stories, sources and news items.

top_referenced:
    Stories mentioned by several newsletters, by trending score.

voice_updates:
    The latest headline from each prioritised source.

consensus_feed:
    News items from different newsletters grouped by embedding similarity.

All views return plain dicts ready for JSON output.
"""

import logging
import re
import time
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from clustering.matcher import cosine_similarity
from database import Database
from models.digest import ConsensusGroup
from models.news_item import NewsItem

logger = logging.getLogger(__name__)

VOICE_ITEMS_PER_SOURCE = 5

_NAME_SEPARATORS = re.compile(r"[._-]")


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def extract_name_from_email(email: str) -> str:
    """Readable sender name from an email address.

    'noreply@substack.com' -> 'substack', 'jane.doe@x.com' -> 'Jane Doe'
    """
    if not email:
        return "Unknown"
    local, _, domain = email.partition("@")
    if ("noreply" in local or "no-reply" in local) and domain:
        return domain.split(".")[0]
    words = _NAME_SEPARATORS.sub(" ", local).split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def content_frequency(items: Sequence[NewsItem], now: datetime) -> float:
    """Items per week over the span since the oldest item (at least one day)."""
    if not items:
        return 0.0
    oldest = min(item.created_at for item in items)
    days = max(1.0, (now - oldest).total_seconds() / 86400)
    return round(len(items) / days * 7, 1)


def top_referenced(
    db: Database,
    user_id: str,
    period_hours: int = 24,
    min_mentions: int = 2,
    limit: int = 10,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Stories mentioned at least min_mentions times in the period."""
    start = time.perf_counter()
    now = now or datetime.now(timezone.utc)
    period_start = now - timedelta(hours=period_hours)

    stories = db.top_stories(user_id, period_start, min_mentions=min_mentions, limit=limit)
    headlines = [
        {
            "id": story.id,
            "cluster_id": story.cluster_id,
            "title": story.canonical_title,
            "summary": story.canonical_summary,
            "mention_count": story.mention_count,
            "trending_score": story.trending_score,
            "velocity_score": story.velocity_score,
            "importance_score": story.importance_score,
            "sources": [s.model_dump(mode="json") for s in story.mentioning_sources],
            "first_seen": _iso(story.first_mentioned_at),
            "last_updated": _iso(story.last_mentioned_at),
            "trend_analysis": story.trend_analysis,
            "impact_assessment": story.impact_assessment,
            "key_entities": story.key_entities.model_dump(),
        }
        for story in stories
    ]

    return {
        "headlines": headlines,
        "metadata": {
            "total_stories": len(headlines),
            "scan_time_ms": _elapsed_ms(start),
            "period_covered": f"{period_hours} hours",
            "period_start": _iso(period_start),
            "filters": {"min_mentions": min_mentions, "limit": limit},
        },
    }


def _headline_rank(item: NewsItem) -> float:
    # Importance plus a small recency term (epoch seconds / 1e9)
    return item.importance_score + item.created_at.timestamp() / 1e9


def voice_updates(
    db: Database,
    user_id: str,
    period_hours: int = 24,
    min_priority: int = 0,
    limit: int = 10,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Latest headline per active source at or above min_priority."""
    start = time.perf_counter()
    now = now or datetime.now(timezone.utc)
    period_start = now - timedelta(hours=period_hours)

    voices = [
        source for source in db.list_sources(user_id, active_only=True)
        if source.voice_priority >= min_priority
        and source.last_content_at is not None
        and source.last_content_at >= period_start
    ]
    voices.sort(key=lambda s: (s.voice_priority, s.last_content_at), reverse=True)
    voices = voices[:limit]

    updates = []
    for source in voices:
        items = db.news_items_for_source(source.id, since=period_start, limit=VOICE_ITEMS_PER_SOURCE)
        if not items:
            continue

        best = items[0]
        for item in items[1:]:
            if _headline_rank(item) > _headline_rank(best):
                best = item

        updates.append({
            "source": {
                "id": source.id,
                "name": source.name or extract_name_from_email(source.email_address),
                "email": source.email_address,
                "voice_priority": source.voice_priority,
                "authority_score": source.credibility_score,
                "expertise_keywords": source.expertise_keywords,
            },
            "latest_headline": {
                "id": best.id,
                "title": best.title,
                "summary": best.summary,
                "published_at": _iso(best.created_at),
                "importance_score": best.importance_score,
                "newsletter_id": best.newsletter_id,
            },
            "activity_summary": {
                "items_this_period": len(items),
                "last_active": _iso(items[0].created_at),
                "frequency_score": source.content_frequency,
            },
            "_published": best.created_at,
        })

    updates.sort(key=lambda u: (u["source"]["voice_priority"], u["_published"]), reverse=True)
    for update in updates:
        del update["_published"]

    return {
        "updates": updates[:limit],
        "metadata": {
            "tracked_voices": len(voices),
            "active_voices": len(updates),
            "scan_time_ms": _elapsed_ms(start),
            "period_covered": f"{period_hours} hours",
            "period_start": _iso(period_start),
            "filters": {"min_priority": min_priority, "limit": limit},
        },
    }


def relevance_score(mention_count: int, avg_importance: float, avg_confidence: float) -> float:
    """Weighted consensus relevance: mentions 0.5, importance 0.3, confidence 0.2."""
    return 0.5 * mention_count + 0.3 * avg_importance + 0.2 * avg_confidence


def consensus_groups(
    items: Sequence[NewsItem],
    threshold: float = 0.85,
    max_per_query: int = 20,
    min_mentions: int = 2,
) -> list[ConsensusGroup]:
    """Greedy grouping of embedded items by cosine similarity.

    Each ungrouped item, in list order, collects the items at or above the
    threshold (itself included), best first, capped at max_per_query; items
    already grouped are then dropped from that list. Groups with fewer than
    min_mentions members are discarded. Sorted by relevance, best first.
    """
    embedded = [item for item in items if item.embedding]
    grouped: set[int] = set()
    groups = []

    for index, item in enumerate(embedded):
        if index in grouped:
            continue

        similar = []
        for other_index, other in enumerate(embedded):
            similarity = cosine_similarity(item.embedding, other.embedding)
            if other_index == index or similarity >= threshold:
                similar.append((other_index, 1.0 if other_index == index else similarity))
        similar.sort(key=lambda pair: pair[1], reverse=True)
        members = [(i, s) for i, s in similar[:max_per_query] if i not in grouped]
        if not members:
            continue
        grouped.update(i for i, _ in members)

        member_items = [embedded[i] for i, _ in members]
        avg_importance = sum(m.importance_score for m in member_items) / len(member_items)
        avg_confidence = sum(m.confidence_score for m in member_items) / len(member_items)
        groups.append(ConsensusGroup(
            members=member_items,
            similarities=[round(s, 4) for _, s in members],
            relevance_score=relevance_score(len(member_items), avg_importance, avg_confidence),
            avg_importance=avg_importance,
            avg_confidence=avg_confidence,
        ))

    consensus = [g for g in groups if g.mention_count >= min_mentions]
    consensus.sort(key=lambda g: g.relevance_score, reverse=True)
    return consensus


def _group_to_dict(group: ConsensusGroup, index: int) -> dict[str, Any]:
    lead = group.representative
    return {
        "group_id": f"group_{index}",
        "title": lead.title,
        "summary": lead.summary,
        "mentions": [
            {
                "news_item_id": item.id,
                "newsletter_id": item.newsletter_id,
                "sender_name": item.source.name,
                "sender_email": item.source.email,
                "received_date": _iso(item.source.received_date),
                "individual_summary": item.summary,
                "importance_score": item.importance_score,
                "confidence_score": item.confidence_score,
                "similarity": similarity,
            }
            for item, similarity in zip(group.members, group.similarities)
        ],
        "mention_count": group.mention_count,
        "avg_importance": round(group.avg_importance, 3),
        "avg_confidence": round(group.avg_confidence, 3),
        "relevance_score": round(group.relevance_score, 3),
        "topics": list(dict.fromkeys(t for item in group.members for t in item.topics)),
        "companies": list(dict.fromkeys(c for item in group.members for c in item.companies_mentioned)),
        "people": list(dict.fromkeys(p for item in group.members for p in item.people_mentioned)),
    }


def consensus_feed(
    db: Database,
    user_id: str,
    period_start: datetime,
    period_end: datetime,
    threshold: float = 0.85,
    max_per_query: int = 20,
    min_mentions: int = 2,
    persist: bool = True,
) -> dict[str, Any]:
    """Consensus groups for a period, optionally persisted."""
    items = db.news_items_between(user_id, period_start, period_end)
    embedded_count = sum(1 for item in items if item.embedding)
    groups = consensus_groups(items, threshold, max_per_query, min_mentions)

    if persist and groups:
        db.save_consensus_groups(user_id, groups, period_start, period_end)

    logger.info(
        "Consensus computed | user=%s items=%d embedded=%d groups=%d",
        user_id, len(items), embedded_count, len(groups),
    )
    return {
        "consensus": [_group_to_dict(group, i) for i, group in enumerate(groups)],
        "metadata": {
            "total_items": embedded_count,
            "groups_found": len(groups),
            "similarity_threshold": threshold,
            "max_per_query": max_per_query,
        },
    }
