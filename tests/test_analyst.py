import asyncio
import json

from agents.analyst import StoryAnalyst, local_story_analysis
from clustering.stories import add_mention, apply_analysis, new_story
from models.newsletter import NewsletterSource
from models.news_item import SourceInfo
from models.story import KeyEntities
from ratelimit import RateLimiter

ANALYSIS = {
    "canonical_title": "Nvidia acquires Run:ai",
    "canonical_summary": "Nvidia bought the GPU orchestration startup.",
    "trend_analysis": "Covered by several newsletters.",
    "impact_assessment": "Consolidates the AI infrastructure market.",
    "key_entities": {"companies": ["Nvidia", "Run:ai"], "people": [], "products": []},
}


def _two_mention_story(make_item, make_story):
    story = make_story(
        canonical_title="Nvidia buys startup",
        news_item_ids=[1, 2],
        mentioning_sources=[SourceInfo(name="Alpha"), SourceInfo(name="Beta")],
        key_entities=KeyEntities(companies=["Nvidia"]),
    )
    items = [
        make_item(id=1, title="Nvidia buys startup", companies_mentioned=["Nvidia"]),
        make_item(id=2, title="Run:ai acquired", companies_mentioned=["Run:ai"], people_mentioned=["Omri Geller"]),
    ]
    return story, items


def test_analyze_parses_fenced_json(make_item, make_story, fake_completer) -> None:
    story, items = _two_mention_story(make_item, make_story)
    completer = fake_completer(f"```json\n{json.dumps(ANALYSIS)}\n```")

    analysis = asyncio.run(StoryAnalyst(completer).analyze(story, items))

    assert analysis.canonical_title == "Nvidia acquires Run:ai"
    assert analysis.key_entities.companies == ["Nvidia", "Run:ai"]
    assert "Run:ai acquired" in completer.prompts[0]


def test_analyze_falls_back_on_bad_json(make_item, make_story, fake_completer) -> None:
    story, items = _two_mention_story(make_item, make_story)

    analysis = asyncio.run(StoryAnalyst(fake_completer("I cannot help with that")).analyze(story, items))

    assert analysis == local_story_analysis(story, items)


def test_analyze_falls_back_on_provider_error(make_item, make_story, fake_completer) -> None:
    story, items = _two_mention_story(make_item, make_story)

    analysis = asyncio.run(StoryAnalyst(fake_completer(TimeoutError())).analyze(story, items))

    assert analysis.canonical_title == "Nvidia buys startup"


def test_analyze_respects_analysis_quota(make_item, make_story, fake_completer) -> None:
    story, items = _two_mention_story(make_item, make_story)
    completer = fake_completer(json.dumps(ANALYSIS))
    analyst = StoryAnalyst(completer, rate_limiter=RateLimiter({"analysis": 1}))

    first = asyncio.run(analyst.analyze(story, items))
    second = asyncio.run(analyst.analyze(story, items))

    assert first.canonical_title == "Nvidia acquires Run:ai"
    assert second.canonical_title == "Nvidia buys startup"
    assert len(completer.prompts) == 1


def test_local_analysis_merges_member_entities(make_item, make_story) -> None:
    story, items = _two_mention_story(make_item, make_story)

    analysis = local_story_analysis(story, items)

    assert analysis.canonical_title == story.canonical_title
    assert analysis.key_entities.companies == ["Nvidia", "Run:ai"]
    assert analysis.key_entities.people == ["Omri Geller"]
    assert analysis.trend_analysis == "Mentioned 2 times by Alpha, Beta."


def test_profile_source_keywords(make_item, fake_completer) -> None:
    source = NewsletterSource(email_address="news@a16z.com", name="a16z")
    completer = fake_completer('["AI", "Venture Capital", "ai", "crypto", "fintech", "bio", "games"]')

    keywords = asyncio.run(StoryAnalyst(completer).profile_source(source, [make_item(title="Seed round")]))

    assert keywords == ["ai", "venture capital", "crypto", "fintech", "bio"]


def test_profile_source_failures_return_empty(make_item, fake_completer) -> None:
    source = NewsletterSource(email_address="news@a16z.com")

    assert asyncio.run(StoryAnalyst(fake_completer('{"not": "a list"}')).profile_source(source, [make_item()])) == []
    assert asyncio.run(StoryAnalyst(fake_completer("[]")).profile_source(source, [])) == []


def test_story_lifecycle(make_item, now) -> None:
    first = make_item(id=10, title="Nvidia buys startup", companies_mentioned=["Nvidia"])
    story = new_story("default", first, "nvidia_buys_startup", 0.6, now, embedding=[1.0, 0.0])

    assert story.news_item_ids == [10]
    assert story.mention_count == 1
    assert story.key_entities.companies == ["Nvidia"]
    assert story.first_mentioned_at == story.last_mentioned_at == now

    second = make_item(id=11, title="Run:ai acquired", source=SourceInfo(name="Beta"))
    grown = add_mention(story, second, 0.9, now)

    assert grown.news_item_ids == [10, 11]
    assert grown.mention_count == 2
    assert grown.importance_score == 0.9
    assert [s.name for s in grown.mentioning_sources] == ["Sender", "Beta"]

    # Mentions never move last_mentioned_at backwards
    earlier = make_item(id=12, title="Late arrival")
    late = add_mention(grown, earlier, 0.1, now.replace(hour=1))
    assert late.last_mentioned_at == now
    assert late.importance_score == 0.9


def test_apply_analysis_keeps_text_when_blank(make_item, now) -> None:
    story = new_story("default", make_item(id=1, title="Original", companies_mentioned=["Acme"]), "x", 0.5, now)
    analysis = local_story_analysis(story, []).model_copy(update={
        "canonical_title": "",
        "key_entities": KeyEntities(companies=["Globex"]),
    })

    refined = apply_analysis(story, analysis)

    assert refined.canonical_title == "Original"
    assert refined.key_entities.companies == ["Acme", "Globex"]
