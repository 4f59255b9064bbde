import math

import pytest

from clustering.matcher import StoryMatcher, StoryWindow, cosine_similarity
from models.story import KeyEntities


def _vector_with_similarity(similarity: float) -> list[float]:
    """Unit vector whose cosine with [1, 0] equals `similarity`."""
    return [similarity, math.sqrt(1 - similarity ** 2)]


def test_exact_title_match_is_case_insensitive(make_item, make_story) -> None:
    story = make_story(canonical_title="OpenAI releases GPT-5")
    item = make_item(title="openai RELEASES gpt-5")

    result = StoryMatcher().find_match(item, [make_story(), story])

    assert result.story is story
    assert result.tier == "title"


def test_item_title_containing_story_title_matches(make_item, make_story) -> None:
    story = make_story(canonical_title="Nvidia acquires Run:ai")
    item = make_item(title="Breaking: Nvidia acquires Run:ai for $700M")

    assert StoryMatcher().match(item, [story]) is story


def test_blank_canonical_title_never_matches_by_title(make_item, make_story) -> None:
    story = make_story(canonical_title="   ")

    assert StoryMatcher().match(make_item(title="Anything at all"), [story]) is None


def test_entity_overlap_matches_when_title_differs(make_item, make_story) -> None:
    story = make_story(
        canonical_title="Chipmaker expands in Europe",
        key_entities=KeyEntities(companies=["Nvidia"], people=["Jensen Huang"]),
    )
    item = make_item(title="New fab plans announced", people_mentioned=["jensen huang "])

    result = StoryMatcher().find_match(item, [story])

    assert result.story is story
    assert result.tier == "entity"


def test_title_tier_wins_over_earlier_entity_candidate(make_item, make_story) -> None:
    by_entity = make_story(key_entities=KeyEntities(companies=["Apple"]))
    by_title = make_story(canonical_title="Apple ships Vision Pro")
    item = make_item(title="Apple ships Vision Pro", companies_mentioned=["Apple"])

    assert StoryMatcher().match(item, [by_entity, by_title]) is by_title


def test_embedding_tier_picks_highest_similarity_above_threshold(make_item, make_story) -> None:
    low = make_story(embedding=_vector_with_similarity(0.80))
    high = make_story(embedding=_vector_with_similarity(0.90))
    item = make_item(title="Something different", embedding=[1.0, 0.0])

    result = StoryMatcher().find_match(item, [low, high])

    assert result.story is high
    assert result.tier == "embedding"
    assert result.similarity == pytest.approx(0.90, abs=1e-9)


def test_embedding_tier_returns_none_below_threshold(make_item, make_story) -> None:
    stories = [
        make_story(embedding=_vector_with_similarity(0.80)),
        make_story(embedding=_vector_with_similarity(0.84)),
    ]
    item = make_item(title="Something different", embedding=[1.0, 0.0])

    assert StoryMatcher().match(item, stories) is None


def test_embedding_ties_go_to_first_candidate(make_item, make_story) -> None:
    first = make_story(embedding=[1.0, 0.0])
    second = make_story(embedding=[2.0, 0.0])
    item = make_item(title="Something different", embedding=[1.0, 0.0])

    assert StoryMatcher().match(item, [first, second]) is first


def test_supplied_embedding_takes_precedence(make_item, make_story) -> None:
    story = make_story(embedding=[0.0, 1.0])
    item = make_item(title="Something different", embedding=[1.0, 0.0])

    assert StoryMatcher().match(item, [story], embedding=[0.0, 1.0]) is story


def test_embed_provider_used_when_item_has_no_embedding(make_item, make_story) -> None:
    calls = []

    def embed(text):
        calls.append(text)
        return [1.0, 0.0]

    story = make_story(embedding=[1.0, 0.0])
    item = make_item(title="Fresh headline", summary="With a summary")

    assert StoryMatcher(embed=embed).match(item, [story]) is story
    assert calls == ["Fresh headline With a summary"]


def test_embed_failure_falls_through_to_no_match(make_item, make_story) -> None:
    def embed(text):
        raise RuntimeError("model unavailable")

    story = make_story(embedding=[1.0, 0.0])

    assert StoryMatcher(embed=embed).match(make_item(title="Fresh headline"), [story]) is None


def test_embed_returning_none_is_no_match(make_item, make_story) -> None:
    story = make_story(embedding=[1.0, 0.0])

    assert StoryMatcher(embed=lambda text: None).match(make_item(title="Fresh"), [story]) is None


def test_no_candidates_is_no_match(make_item) -> None:
    result = StoryMatcher().find_match(make_item(title="Anything"), [])

    assert not result.matched
    assert result.tier == "none"


def test_cosine_similarity_handles_degenerate_vectors() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
    assert cosine_similarity([], []) == 0.0
    assert cosine_similarity([3.0, 4.0], [3.0, 4.0]) == pytest.approx(1.0, abs=1e-9)


def test_story_window_since(now) -> None:
    window = StoryWindow(hours=48, limit=10)

    assert (now - window.since(now)).total_seconds() == 48 * 3600
