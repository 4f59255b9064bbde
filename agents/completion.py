"""Plain text completion and defensive parsing of model output.

Call sites that need a single token or a loose JSON fragment (cluster IDs,
story analysis, source expertise) depend on the small TextCompleter
capability rather than on a structured-output agent, and compose their own
local fallback around it.
"""

import json
import logging
import re
from typing import Any, Protocol

from pydantic_ai import Agent

from agents.base import create_model

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


class TextCompleter(Protocol):
    """complete(prompt) -> text; raises on provider failure."""

    async def complete(self, prompt: str) -> str: ...


class AgentCompleter:
    """TextCompleter backed by a PydanticAI agent with plain-text output."""

    def __init__(self, model: str, system_prompt: str = "", retries: int = 1):
        self.model = model
        self._agent = Agent(
            create_model(model),
            output_type=str,
            system_prompt=system_prompt or "You are a precise news analysis assistant.",
            retries=retries,
        )

    async def complete(self, prompt: str) -> str:
        result = await self._agent.run(prompt)
        usage = result.usage()
        logger.debug(
            "Completion | model=%s requests=%d tokens=%d/%d",
            self.model,
            usage.requests,
            usage.input_tokens or 0,
            usage.output_tokens or 0,
        )
        return result.output


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if present."""
    content = text.strip()
    match = _FENCE.match(content)
    if match:
        return match.group(1).strip()
    return content


def parse_json_fragment(text: str) -> Any:
    """Parse JSON from model output.

    Handles Markdown fencing and prose around a single JSON object or array.

    Raises:
        ValueError: If no JSON value can be parsed
    """
    if not text or not text.strip():
        raise ValueError("Empty model output")

    content = strip_code_fences(text)
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        pass

    # Fall back to the outermost object or array embedded in prose
    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = content.find(open_char)
        end = content.rfind(close_char)
        if start != -1 and end > start:
            try:
                return json.loads(content[start:end + 1])
            except json.JSONDecodeError:
                continue

    raise ValueError(f"Model output is not valid JSON: {content[:80]!r}")
