from datetime import timedelta

import pytest

from headlines import (
    consensus_feed,
    consensus_groups,
    content_frequency,
    extract_name_from_email,
    relevance_score,
    top_referenced,
    voice_updates,
)
from models.newsletter import NewsletterSource


@pytest.mark.parametrize(
    ("email", "expected"),
    [
        ("", "Unknown"),
        ("noreply@substack.com", "substack"),
        ("no-reply@morningbrew.com", "morningbrew"),
        ("jane.doe@example.com", "Jane Doe"),
        ("the_batch-weekly@x.ai", "The Batch Weekly"),
    ],
)
def test_extract_name_from_email(email, expected) -> None:
    assert extract_name_from_email(email) == expected


def test_content_frequency(make_item, now) -> None:
    items = [make_item(created_at=now - timedelta(days=d)) for d in (0, 3, 7, 14)]

    # 4 items over 14 days
    assert content_frequency(items, now) == 2.0
    assert content_frequency([make_item(created_at=now)], now) == 7.0
    assert content_frequency([], now) == 0.0


def test_relevance_score_weights() -> None:
    assert relevance_score(3, 0.5, 1.0) == pytest.approx(1.5 + 0.15 + 0.2)


def test_top_referenced(db, make_story, now) -> None:
    db.insert_story(make_story(id=None, canonical_title="Hot", news_item_ids=[1, 2, 3], trending_score=8.0))
    db.insert_story(make_story(id=None, canonical_title="Lonely", trending_score=20.0))
    db.insert_story(make_story(
        id=None,
        canonical_title="Old",
        news_item_ids=[4, 5],
        first_mentioned_at=now - timedelta(days=3),
        last_mentioned_at=now - timedelta(days=2),
    ))

    result = top_referenced(db, "default", period_hours=24, min_mentions=2, now=now)

    assert [h["title"] for h in result["headlines"]] == ["Hot"]
    assert result["headlines"][0]["mention_count"] == 3
    assert result["metadata"]["total_stories"] == 1
    assert result["metadata"]["period_covered"] == "24 hours"


def test_voice_updates_picks_best_recent_headline(db, make_item, now) -> None:
    loud = db.upsert_source(NewsletterSource(email_address="loud@example.com", name="Loud", voice_priority=9))
    quiet = db.upsert_source(NewsletterSource(email_address="noreply@quiet.com", voice_priority=2))
    stale = db.upsert_source(NewsletterSource(email_address="stale@example.com", voice_priority=10))
    db.update_source_activity(loud.id, now - timedelta(hours=1), 5.0)
    db.update_source_activity(quiet.id, now - timedelta(hours=2))
    db.update_source_activity(stale.id, now - timedelta(days=5))

    db.insert_news_item(make_item(id=None, title="Minor", source_id=loud.id, importance_score=0.3,
                                  created_at=now - timedelta(hours=1)))
    db.insert_news_item(make_item(id=None, title="Major", source_id=loud.id, importance_score=0.9,
                                  created_at=now - timedelta(hours=3)))
    db.insert_news_item(make_item(id=None, title="Quiet news", source_id=quiet.id,
                                  created_at=now - timedelta(hours=2)))

    result = voice_updates(db, "default", period_hours=24, now=now)

    assert [u["source"]["email"] for u in result["updates"]] == ["loud@example.com", "noreply@quiet.com"]
    assert result["updates"][0]["latest_headline"]["title"] == "Major"
    assert result["updates"][0]["activity_summary"]["items_this_period"] == 2
    assert result["updates"][1]["source"]["name"] == "quiet"
    assert result["metadata"]["tracked_voices"] == 2


def test_voice_updates_min_priority(db, make_item, now) -> None:
    low = db.upsert_source(NewsletterSource(email_address="low@example.com", voice_priority=1))
    db.update_source_activity(low.id, now)
    db.insert_news_item(make_item(id=None, source_id=low.id))

    assert voice_updates(db, "default", min_priority=5, now=now)["updates"] == []


def test_consensus_groups_greedy(make_item) -> None:
    a = make_item(title="A", embedding=[1.0, 0.0], importance_score=0.8, confidence_score=0.9)
    b = make_item(title="B", embedding=[0.99, 0.05], importance_score=0.6, confidence_score=0.7)
    c = make_item(title="C", embedding=[0.0, 1.0])
    d = make_item(title="D", embedding=None)

    [group] = consensus_groups([a, b, c, d], threshold=0.85, min_mentions=2)

    assert [m.title for m in group.members] == ["A", "B"]
    assert group.similarities[0] == 1.0
    assert group.avg_importance == pytest.approx(0.7)
    assert group.relevance_score == pytest.approx(relevance_score(2, 0.7, 0.8))


def test_consensus_groups_cap_and_ordering(make_item) -> None:
    cluster = [make_item(title=f"X{i}", embedding=[1.0, 0.01 * i]) for i in range(4)]
    pair = [make_item(title=f"Y{i}", embedding=[0.0, 1.0]) for i in range(2)]

    groups = consensus_groups(cluster + pair, max_per_query=3, min_mentions=2)

    assert [g.mention_count for g in groups] == [3, 2]
    assert all(len(g.members) <= 3 for g in groups)


def test_consensus_feed_persists_groups(db, make_item, now) -> None:
    for title, vector in (("A", [1.0, 0.0]), ("B", [1.0, 0.02]), ("C", [0.0, 1.0])):
        db.insert_news_item(make_item(id=None, title=title, embedding=vector, created_at=now - timedelta(hours=1)))

    result = consensus_feed(db, "default", now - timedelta(hours=24), now)

    assert result["metadata"]["groups_found"] == 1
    assert result["metadata"]["total_items"] == 3
    group = result["consensus"][0]
    assert group["mention_count"] == 2
    assert {m["news_item_id"] for m in group["mentions"]} == {1, 2}
    assert db.conn.execute("SELECT COUNT(*) FROM news_item_group_members").fetchone()[0] == 2


def test_consensus_feed_without_persist(db, make_item, now) -> None:
    for vector in ([1.0, 0.0], [1.0, 0.0]):
        db.insert_news_item(make_item(id=None, embedding=vector, created_at=now))

    consensus_feed(db, "default", now - timedelta(hours=1), now, persist=False)

    assert db.conn.execute("SELECT COUNT(*) FROM news_item_groups").fetchone()[0] == 0
