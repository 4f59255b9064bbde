import pytest

from agents.base import parse_local_model
from agents.completion import parse_json_fragment, strip_code_fences


def test_strip_code_fences_with_language_tag() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'


def test_strip_code_fences_leaves_plain_text() -> None:
    assert strip_code_fences("  plain_token  ") == "plain_token"


def test_parse_json_fragment_plain_object() -> None:
    assert parse_json_fragment('{"canonical_title": "X"}') == {"canonical_title": "X"}


def test_parse_json_fragment_fenced_array() -> None:
    assert parse_json_fragment('```json\n["ai", "startups"]\n```') == ["ai", "startups"]


def test_parse_json_fragment_embedded_in_prose() -> None:
    text = 'Here is the analysis:\n{"canonical_title": "X", "canonical_summary": "Y"}\nHope it helps!'

    assert parse_json_fragment(text) == {"canonical_title": "X", "canonical_summary": "Y"}


def test_parse_json_fragment_array_in_prose() -> None:
    assert parse_json_fragment('Keywords: ["ai", "chips"].') == ["ai", "chips"]


@pytest.mark.parametrize("text", ["", "   ", "not json at all", "{broken: json"])
def test_parse_json_fragment_rejects_garbage(text) -> None:
    with pytest.raises(ValueError):
        parse_json_fragment(text)


def test_parse_local_model() -> None:
    assert parse_local_model("openai:qwen3@http://127.0.0.1:8080/v1") == ("qwen3", "http://127.0.0.1:8080/v1")
    assert parse_local_model("openai:gpt-4o-mini") is None
    assert parse_local_model("google-gla:gemini-2.5-flash") is None
