from pathlib import Path

import pytest

from config import Config


@pytest.fixture
def clean_env(monkeypatch):
    for key in (
        "OPENAI_API_KEY", "GEMINI_API_KEY", "USER_ID", "GMAIL_ACCESS_TOKEN", "GMAIL_CLIENT_ID",
        "GMAIL_CLIENT_SECRET", "GMAIL_REFRESH_TOKEN", "EXTRACTION_MODEL", "SIMILARITY_THRESHOLD",
        "STORY_WINDOW_HOURS", "STORY_WINDOW_LIMIT", "RATE_LIMIT_EXTRACTION", "LOG_LEVEL", "LOG_FORMAT", "DB_PATH",
        "CLUSTER_ID_LLM_ENABLED", "RATE_LIMIT_NEWSLETTERS", "RATE_LIMIT_ANALYSIS",
    ):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_load_defaults(clean_env) -> None:
    config = Config.load()

    assert config.user_id == "default"
    assert config.story_window_hours == 168
    assert config.story_window_limit == 50
    assert config.similarity_threshold == 0.85
    assert config.rate_limits == {"newsletters": 20, "extraction": 50, "analysis": 100}
    assert config.db_path == Path("digest.db")


def test_load_from_environment(clean_env) -> None:
    clean_env.setenv("USER_ID", "alice")
    clean_env.setenv("SIMILARITY_THRESHOLD", "0.9")
    clean_env.setenv("STORY_WINDOW_HOURS", "72")
    clean_env.setenv("RATE_LIMIT_EXTRACTION", "5")
    clean_env.setenv("CLUSTER_ID_LLM_ENABLED", "off")
    clean_env.setenv("LOG_LEVEL", "debug")

    config = Config.load()

    assert config.user_id == "alice"
    assert config.similarity_threshold == 0.9
    assert config.story_window_hours == 72
    assert config.rate_limits["extraction"] == 5
    assert config.cluster_id_llm_enabled is False
    assert config.log_level == "DEBUG"


def test_invalid_integer_raises(clean_env) -> None:
    clean_env.setenv("STORY_WINDOW_HOURS", "a week")

    with pytest.raises(ValueError, match="STORY_WINDOW_HOURS"):
        Config.load()


def test_validate_requires_provider_key() -> None:
    assert "OPENAI_API_KEY" in Config().validate()
    assert Config(openai_api_key="sk-test").validate() is None
    assert "GEMINI_API_KEY" in Config(extraction_model="google-gla:gemini-2.5-flash").validate()


def test_validate_local_model_needs_no_key() -> None:
    assert Config(extraction_model="openai:qwen3@http://127.0.0.1:8080/v1").validate() is None


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"similarity_threshold": 0.0}, "SIMILARITY_THRESHOLD"),
        ({"similarity_threshold": 1.5}, "SIMILARITY_THRESHOLD"),
        ({"story_window_limit": 0}, "STORY_WINDOW_LIMIT"),
        ({"rate_limit_analysis": 0}, "RATE_LIMIT_"),
        ({"log_format": "xml"}, "LOG_FORMAT"),
        ({"user_id": ""}, "USER_ID"),
    ],
)
def test_validate_rejects_bad_values(overrides, message) -> None:
    assert message in Config(openai_api_key="sk-test", **overrides).validate()


def test_mailbox_credentials() -> None:
    assert Config().validate_mailbox() is not None
    assert Config(gmail_access_token="token").validate_mailbox() is None
    refresh = Config(gmail_client_id="id", gmail_client_secret="secret", gmail_refresh_token="refresh")
    assert refresh.has_gmail_credentials
    assert Config(gmail_client_id="id").has_gmail_credentials is False
