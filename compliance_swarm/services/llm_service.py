"""
LLM Service — chat completion client and JSON response parsing.

Provides:
  - ChatCompletion        → (system_prompt, user_prompt, temperature) → text
  - GroqChatCompletion    → default implementation over langchain-groq ChatGroq
  - parse_json_object()   → tolerant JSON-object extraction from LLM text
  - parse_llm_response()  → parse + validate into a Pydantic model
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from compliance_swarm.config import ConfigurationError, Settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class LLMResponseError(ValueError):
    """The LLM answered, but not with the JSON shape we asked for."""


class ChatCompletion(ABC):
    @abstractmethod
    async def complete(
        self, system_prompt: str, user_prompt: str, temperature: Optional[float] = None
    ) -> str: ...


class GroqChatCompletion(ChatCompletion):
    """Groq-hosted chat model via langchain-groq, created on first call."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._llm = None

    def _get_llm(self):
        if self._llm is not None:
            return self._llm

        if not self.settings.groq_api_key:
            raise ConfigurationError("GROQ_API_KEY is not set in environment / .env file")

        from langchain_groq import ChatGroq

        self._llm = ChatGroq(
            api_key=self.settings.groq_api_key,
            model=self.settings.llm_model,
            temperature=self.settings.llm_temperature,
            max_tokens=self.settings.llm_max_tokens,
        )
        logger.info(f"Initialized Groq LLM: {self.settings.llm_model}")
        return self._llm

    async def complete(
        self, system_prompt: str, user_prompt: str, temperature: Optional[float] = None
    ) -> str:
        from langchain_core.messages import HumanMessage, SystemMessage

        llm = self._get_llm()
        messages = [SystemMessage(content=system_prompt), HumanMessage(content=user_prompt)]
        kwargs: dict[str, Any] = {}
        if temperature is not None:
            kwargs["temperature"] = temperature

        logger.debug(f"[LLM-TEXT] Prompt length: {len(system_prompt) + len(user_prompt)} chars")

        t0 = time.perf_counter()
        response = await asyncio.wait_for(
            llm.ainvoke(messages, **kwargs),
            timeout=self.settings.llm_timeout_seconds,
        )
        elapsed = time.perf_counter() - t0
        content = response.content or ""

        meta = getattr(response, "response_metadata", {}) or {}
        logger.info(
            f"[LLM-TEXT] Response received in {elapsed:.2f}s | "
            f"Response length: {len(content)} chars | "
            f"finish_reason={meta.get('finish_reason', 'unknown')}"
        )
        return content


# ── Response parsing ─────────────────────────────────────


def parse_json_object(raw: str) -> dict[str, Any]:
    """
    Extract a JSON object from an LLM reply.
    Strips markdown fencing, then falls back to the first {...} block.
    """
    cleaned = (raw or "").strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise LLMResponseError(f"No JSON object in LLM response: {cleaned[:120]!r}")
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as exc:
            raise LLMResponseError(f"Invalid JSON in LLM response: {exc}") from exc

    if not isinstance(data, dict):
        raise LLMResponseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_llm_response(raw: str, output_model: Type[T]) -> T:
    """Parse *raw* and validate it against *output_model*."""
    data = parse_json_object(raw)
    try:
        return output_model.model_validate(data)
    except ValidationError as exc:
        raise LLMResponseError(
            f"LLM response does not match {output_model.__name__}: {exc.error_count()} errors"
        ) from exc
