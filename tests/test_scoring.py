from datetime import timedelta

import pytest

from clustering.scoring import importance_score, recency_bonus, rescore, score, time_decay


def test_single_fresh_mention_scores_5_75(make_story, now) -> None:
    story = make_story(
        importance_score=0.5,
        first_mentioned_at=now,
        last_mentioned_at=now,
    )

    scores = score(story, now)

    assert scores.velocity_score == 1.0
    assert scores.trending_score == 5.75


def test_score_is_idempotent(make_story, now) -> None:
    story = make_story(
        news_item_ids=[1, 2, 3],
        importance_score=0.8,
        first_mentioned_at=now - timedelta(hours=30),
        last_mentioned_at=now - timedelta(hours=5),
    )

    assert score(story, now) == score(story, now)


def test_decay_floors_at_point_one_for_stale_story(make_story, now) -> None:
    stale = now - timedelta(days=30)
    story = make_story(importance_score=1.0, first_mentioned_at=stale, last_mentioned_at=stale)

    assert time_decay(30 * 24) == 0.1
    # 1 * 0.1 * 1.0 + (1 / 1) * 10
    assert score(story, now).trending_score == 10.1


@pytest.mark.parametrize(
    ("hours", "expected"),
    [(0, 1.5), (23.9, 1.5), (24, 1.2), (47.9, 1.2), (48, 1.0), (500, 1.0)],
)
def test_recency_bonus_steps(hours, expected) -> None:
    assert recency_bonus(hours) == expected


def test_velocity_uses_span_between_first_and_last(make_story, now) -> None:
    story = make_story(
        news_item_ids=[1, 2, 3, 4],
        importance_score=1.0,
        first_mentioned_at=now - timedelta(hours=8),
        last_mentioned_at=now,
    )

    scores = score(story, now)

    assert scores.velocity_score == 0.5
    # 4 * 1.0 * 1.5 + 0.5 * 10
    assert scores.trending_score == 11.0


def test_rescore_returns_updated_copies(make_story, now) -> None:
    story = make_story(trending_score=99.0, first_mentioned_at=now, last_mentioned_at=now)

    [rescored] = rescore([story], now)

    assert rescored.trending_score == 5.75
    assert story.trending_score == 99.0


def test_importance_averages_credibility_and_boosts_keywords() -> None:
    # (0.6 + 0.8) / 2 = 0.7, plus 'launch' and 'funding'
    assert importance_score(0.6, 0.8, "Startup launches product", "after new funding round") == 0.9


def test_importance_without_credibility_uses_base() -> None:
    assert importance_score(0.4, None, "Quarterly update") == 0.4


def test_importance_missing_base_defaults_to_half() -> None:
    assert importance_score(None, None, "Nothing notable") == 0.5


def test_importance_is_capped_at_one() -> None:
    title = "Breakthrough: company announces launch and release after merger"
    assert importance_score(0.9, 0.9, title, "IPO and regulation news") == 1.0


def test_importance_counts_each_keyword_once() -> None:
    assert importance_score(0.5, None, "Release release release") == 0.6
