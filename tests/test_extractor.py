import asyncio

from agents.extractor import ExtractorAgent, build_user_message
from ratelimit import RateLimiter

LOCAL_MODEL = "openai:qwen3@http://127.0.0.1:8080/v1"


def test_blank_content_does_not_use_quota(config) -> None:
    config.extraction_model = LOCAL_MODEL
    limiter = RateLimiter({"extraction": 1})
    extractor = ExtractorAgent(config, limiter)

    assert asyncio.run(extractor.extract("  \n ", "Sender <s@example.com>", "default")) == []
    assert limiter.remaining("default", "extraction") == 1


def test_build_user_message_truncates_content() -> None:
    message = build_user_message("x" * 100, "Sender", max_chars=10)

    assert message == "Newsletter from Sender:\n\n" + "x" * 10
