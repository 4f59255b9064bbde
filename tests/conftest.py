from datetime import datetime, timedelta, timezone

import pytest

from config import Config
from database import Database
from models.news_item import NewsItem, SourceInfo
from models.story import KeyEntities, Story

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_item():
    """Factory for NewsItem records with sensible defaults."""
    counter = iter(range(1, 10_000))

    def _make(**overrides) -> NewsItem:
        fields = {
            "id": next(counter),
            "title": "Untitled",
            "summary": "",
            "created_at": NOW,
            "source": SourceInfo(name="Sender", email="sender@example.com"),
        }
        fields.update(overrides)
        return NewsItem(**fields)

    return _make


@pytest.fixture
def make_story():
    """Factory for Story records; members default to a single item."""
    counter = iter(range(1, 10_000))

    def _make(**overrides) -> Story:
        fields = {
            "id": next(counter),
            "canonical_title": "Unrelated story",
            "canonical_summary": "",
            "news_item_ids": [100],
            "mention_count": 1,
            "importance_score": 0.5,
            "first_mentioned_at": NOW - timedelta(hours=2),
            "last_mentioned_at": NOW - timedelta(hours=1),
            "key_entities": KeyEntities(),
        }
        fields.update(overrides)
        if "news_item_ids" in overrides and "mention_count" not in overrides:
            fields["mention_count"] = len(fields["news_item_ids"])
        return Story(**fields)

    return _make


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(
        openai_api_key="test-key",
        db_path=tmp_path / "test.db",
        log_dir=tmp_path / "log",
        reports_dir=tmp_path / "reports",
        cluster_id_llm_enabled=False,
        story_analysis_enabled=False,
    )


class FakeCompleter:
    """TextCompleter returning canned responses (or raising) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def fake_completer():
    return FakeCompleter
