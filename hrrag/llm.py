"""Shared helpers for the chat-completion calls.

Translation, semantic chunking and metadata generation all talk to the
same OpenAI-compatible endpoint.  They each build a client per call (as
the query path does) and treat every completion as untrusted text:
``parse_json_object`` raises ``LLMOutputError`` on anything that is not
a JSON object, and callers map that to their documented fallback.
"""

from __future__ import annotations

import json
import re
from typing import Any

from openai import AsyncOpenAI

from config import settings
from hrrag.errors import ConfigurationError, LLMOutputError

_DEFAULT_BASE_URL = "https://api.openai.com/v1"

# USD per 1M tokens (input, output).
LLM_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
}


def llm_api_key() -> str | None:
    return settings.llm_api_key or settings.openai_api_key


def get_llm_client() -> AsyncOpenAI:
    api_key = llm_api_key()
    if api_key is None and settings.llm_base_url.rstrip("/") == _DEFAULT_BASE_URL:
        raise ConfigurationError("OPENAI_API_KEY (or LLM_API_KEY) is not configured.")
    # Local OpenAI-compatible servers accept any key.
    return AsyncOpenAI(base_url=settings.llm_base_url, api_key=api_key or "not-needed")


def completion_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    input_price, output_price = LLM_PRICING.get(model, LLM_PRICING["gpt-4o-mini"])
    return (prompt_tokens * input_price + completion_tokens * output_price) / 1_000_000


def usage_of(response: Any) -> tuple[int, int, int]:
    """(prompt, completion, total) tokens; zeros when the provider omits usage."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return 0, 0, 0
    prompt = int(getattr(usage, "prompt_tokens", 0) or 0)
    completion = int(getattr(usage, "completion_tokens", 0) or 0)
    total = int(getattr(usage, "total_tokens", 0) or prompt + completion)
    return prompt, completion, total


def strip_markdown_fences(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        raw = re.sub(r"^```(?:json)?\s*", "", raw)
        raw = re.sub(r"```\s*$", "", raw)
    return raw.strip()


def parse_json_object(raw: str | None) -> dict[str, Any]:
    if not raw:
        raise LLMOutputError("Empty completion.")
    try:
        data = json.loads(strip_markdown_fences(raw))
    except json.JSONDecodeError as exc:
        raise LLMOutputError(f"Completion is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise LLMOutputError(f"Expected a JSON object, got {type(data).__name__}.")
    return data
