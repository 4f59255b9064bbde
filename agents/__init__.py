"""PydanticAI agents for the newsletter digest pipeline.

ExtractorAgent:
    Splits newsletter content into structured news items.

StoryAnalyst:
    Refines canonical story text and profiles newsletter sources, with
    local fallbacks when the model is unavailable.

SummarizerAgent:
    Synthesizes a digest for a period of news items.

AgentCompleter:
    Plain text completion used for cluster IDs and story analysis.

Example:
    >>> from agents import ExtractorAgent, AgentCompleter
    >>> extractor = ExtractorAgent(config)
    >>> completer = AgentCompleter(config.analysis_model)
"""

from agents.completion import AgentCompleter, TextCompleter, parse_json_fragment, strip_code_fences
from agents.extractor import ExtractionError, ExtractorAgent
from agents.analyst import StoryAnalyst, local_story_analysis
from agents.summarizer import SummarizerAgent, render_digest_markdown

__all__ = [
    "AgentCompleter",
    "TextCompleter",
    "parse_json_fragment",
    "strip_code_fences",
    "ExtractionError",
    "ExtractorAgent",
    "StoryAnalyst",
    "local_story_analysis",
    "SummarizerAgent",
    "render_digest_markdown",
]
