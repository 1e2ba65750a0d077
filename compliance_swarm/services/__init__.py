"""Services — LLM completion and report rendering."""

from compliance_swarm.services.llm_service import (
    ChatCompletion,
    GroqChatCompletion,
    LLMResponseError,
    parse_json_object,
    parse_llm_response,
)
from compliance_swarm.services.report_renderer import render_json, render_markdown

__all__ = [
    "ChatCompletion",
    "GroqChatCompletion",
    "LLMResponseError",
    "parse_json_object",
    "parse_llm_response",
    "render_json",
    "render_markdown",
]
