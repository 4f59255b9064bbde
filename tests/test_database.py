from datetime import datetime, timedelta

import pytest

from clustering.matcher import StoryWindow
from database import Database
from models.digest import DigestSummary, SentimentBreakdown
from models.newsletter import Newsletter, NewsletterSource


def _newsletter(gmail_id: str, received: datetime, **fields) -> Newsletter:
    return Newsletter(
        gmail_message_id=gmail_id,
        subject="Weekly",
        sender_email="news@example.com",
        sender_name="Example",
        received_date=received,
        content="Body",
        **fields,
    )


def test_source_upsert_list_and_deactivate(db) -> None:
    db.upsert_source(NewsletterSource(email_address="Low@Example.com", voice_priority=1))
    high = db.upsert_source(NewsletterSource(email_address="high@example.com", name="High", voice_priority=9))

    assert high.id is not None
    assert [s.email_address for s in db.list_sources("default")] == ["high@example.com", "low@example.com"]

    assert db.deactivate_source("default", "LOW@example.com")
    assert [s.email_address for s in db.list_sources("default", active_only=True)] == ["high@example.com"]
    assert not db.deactivate_source("default", "missing@example.com")

    # Re-adding reactivates and updates
    again = db.upsert_source(NewsletterSource(email_address="low@example.com", name="Low", credibility_score=0.9))
    assert again.is_active
    assert again.name == "Low"
    assert again.credibility_score == 0.9


def test_voice_priority_bounds(db) -> None:
    db.upsert_source(NewsletterSource(email_address="a@example.com"))

    assert db.set_voice_priority("default", "a@example.com", 10)
    assert db.get_source("default", "a@example.com").voice_priority == 10
    assert not db.set_voice_priority("default", "b@example.com", 5)
    with pytest.raises(ValueError, match="between 0 and 10"):
        db.set_voice_priority("default", "a@example.com", 11)


def test_find_source_prefers_exact_address_over_domain(db) -> None:
    domain = db.upsert_source(NewsletterSource(email_address="substack.com"))
    exact = db.upsert_source(NewsletterSource(email_address="alice@substack.com"))

    assert db.find_source_for_sender("default", "Alice@Substack.com").id == exact.id
    assert db.find_source_for_sender("default", "bob@substack.com").id == domain.id
    assert db.find_source_for_sender("default", "bob@other.com") is None

    db.deactivate_source("default", "substack.com")
    assert db.find_source_for_sender("default", "bob@substack.com") is None


def test_source_activity_and_expertise(db, now) -> None:
    source = db.upsert_source(NewsletterSource(email_address="a@example.com"))

    db.update_source_activity(source.id, now, 3.5)
    db.update_source_expertise(source.id, ["ai", "chips"])
    stored = db.get_source("default", "a@example.com")

    assert stored.last_content_at == now
    assert stored.content_frequency == 3.5
    assert stored.expertise_keywords == ["ai", "chips"]


def test_newsletter_insert_status_and_dedup(db, now) -> None:
    stored = db.insert_newsletter(_newsletter("m1", now, labels=["INBOX"]))

    assert db.has_newsletter("default", "m1")
    assert not db.has_newsletter("other-user", "m1")

    db.set_newsletter_status(stored.id, "completed", processed_at=now)
    [loaded] = db.newsletters_between("default", now - timedelta(hours=1), now)
    assert loaded.status == "completed"
    assert loaded.processed_at == now
    assert loaded.labels == ["INBOX"]


def test_news_item_roundtrip_keeps_embedding_and_source(db, make_item, now) -> None:
    item = make_item(
        id=None,
        title="Chip news",
        topics=["semiconductors"],
        companies_mentioned=["TSMC"],
        embedding=[0.25, 0.5, 1.0],
    )

    stored = db.insert_news_item(item)
    [loaded] = db.news_items_by_ids([stored.id])

    assert loaded.title == "Chip news"
    assert loaded.companies_mentioned == ["TSMC"]
    assert loaded.embedding == [0.25, 0.5, 1.0]
    assert loaded.source.email == "sender@example.com"
    assert loaded.created_at == now


def test_news_items_by_ids_keeps_requested_order(db, make_item) -> None:
    a = db.insert_news_item(make_item(id=None, title="A"))
    b = db.insert_news_item(make_item(id=None, title="B"))

    assert [i.title for i in db.news_items_by_ids([b.id, 999, a.id])] == ["B", "A"]
    assert db.news_items_by_ids([]) == []


def test_news_items_for_source_newest_first(db, make_item, now) -> None:
    for hours in (5, 1, 3):
        db.insert_news_item(make_item(id=None, title=f"{hours}h", source_id=7, created_at=now - timedelta(hours=hours)))
    db.insert_news_item(make_item(id=None, title="other", source_id=8))

    items = db.news_items_for_source(7, since=now - timedelta(hours=4), limit=5)

    assert [i.title for i in items] == ["1h", "3h"]


def test_story_insert_update_and_link(db, make_item, make_story, now) -> None:
    item = db.insert_news_item(make_item(id=None, title="Item"))
    story = db.insert_story(make_story(id=None, news_item_ids=[item.id], embedding=[1.0, 0.0]))
    db.link_news_item(item.id, story.id)

    updated = story.model_copy(update={"canonical_title": "Refined", "trending_score": 3.2})
    db.update_story(updated)
    loaded = db.get_story(story.id)

    assert loaded.canonical_title == "Refined"
    assert loaded.trending_score == 3.2
    assert loaded.embedding == [1.0, 0.0]
    assert db.news_items_by_ids([item.id])[0].story_id == story.id


def test_update_story_requires_id(db, make_story) -> None:
    with pytest.raises(ValueError):
        db.update_story(make_story(id=None))


def test_recent_stories_honours_window(db, make_story, now) -> None:
    for hours in (1, 2, 3, 100):
        db.insert_story(make_story(
            id=None,
            canonical_title=f"{hours}h",
            first_mentioned_at=now - timedelta(hours=hours),
            last_mentioned_at=now - timedelta(hours=hours),
        ))

    recent = db.recent_stories("default", StoryWindow(hours=48, limit=2), now)

    assert [s.canonical_title for s in recent] == ["1h", "2h"]
    assert len(db.stories_since("default", now - timedelta(hours=48))) == 3


def test_top_stories_orders_by_trending_and_filters_mentions(db, make_story, now) -> None:
    db.insert_story(make_story(id=None, canonical_title="single", trending_score=50.0))
    db.insert_story(make_story(id=None, canonical_title="low", news_item_ids=[1, 2], trending_score=2.0))
    db.insert_story(make_story(id=None, canonical_title="high", news_item_ids=[3, 4, 5], trending_score=9.0))

    top = db.top_stories("default", now - timedelta(hours=24), min_mentions=2)

    assert [s.canonical_title for s in top] == ["high", "low"]


def test_digest_upsert(db, now) -> None:
    start, end = now - timedelta(days=7), now
    first = db.save_digest("default", start, end, DigestSummary(summary_content="v1"), 3)
    second = db.save_digest(
        "default", start, end,
        DigestSummary(summary_content="v2", top_topics=["ai"], sentiment_analysis=SentimentBreakdown(positive=2)),
        4,
    )

    loaded = db.get_digest("default", start, end)

    assert first == second
    assert loaded.summary_content == "v2"
    assert loaded.top_topics == ["ai"]
    assert loaded.sentiment_analysis.positive == 2
    assert db.get_digest("default", start, end + timedelta(seconds=1)) is None


def test_processing_logs_and_stats(db, now) -> None:
    stored = db.insert_newsletter(_newsletter("m1", now))
    db.set_newsletter_status(stored.id, "failed")
    db.log_processing("default", stored.id, "extraction", "failed", "boom")

    [log] = db.processing_logs("default")
    stats = db.stats("default")

    assert log["operation"] == "extraction"
    assert log["message"] == "boom"
    assert stats["newsletters"] == 1
    assert stats["failed_newsletters"] == 1
    assert stats["stories"] == 0
