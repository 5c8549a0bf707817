#!/usr/bin/env python
# coding: utf-8
"""
Context window / output limits per model, used for context compression
and for sizing ChatLLM requests.
"""

from typing import Dict, List, NamedTuple, Optional


class ModelTokenLimit(NamedTuple):
    context_window: int
    max_output: Optional[int] = None
    description: str = ""


TOKEN_LIMITS: Dict[str, ModelTokenLimit] = {
    # OpenAI GPT-4.1 family
    "gpt-4.1": ModelTokenLimit(1_000_000, 32_000, "GPT-4.1 with 1M context window"),
    "gpt-4.1-mini": ModelTokenLimit(1_000_000, 16_000, "GPT-4.1 mini with 1M context window"),
    "gpt-4.1-nano": ModelTokenLimit(1_000_000, 8_000, "GPT-4.1 nano with 1M context window"),
    # OpenAI reasoning models
    "o3": ModelTokenLimit(200_000, 100_000, "OpenAI o3 with 200k context window"),
    "o3-pro": ModelTokenLimit(200_000, 100_000, "OpenAI o3 Pro with 200k context window"),
    "o3-pro-2025-06-10": ModelTokenLimit(200_000, 100_000, "OpenAI o3 Pro (2025-06-10) with 200k context window"),
    "o4-mini": ModelTokenLimit(200_000, 32_000, "OpenAI o4-mini with 200k context window"),
    # Claude 4
    "claude-4-opus": ModelTokenLimit(200_000, 8_000, "Claude 4 Opus with 200k context window"),
    "claude-4-sonnet": ModelTokenLimit(200_000, 8_000, "Claude 4 Sonnet with 200k context window"),
    # Gemini 2.x
    "gemini-2.5-pro": ModelTokenLimit(1_000_000, 8_000, "Gemini 2.5 Pro with 1M context window"),
    "gemini-2.5-flash": ModelTokenLimit(1_048_576, 8_000, "Gemini 2.5 Flash with 1,048,576 context window"),
    "gemini-2.5-flash-lite": ModelTokenLimit(1_000_000, 8_000, "Gemini 2.5 Flash-Lite with 1M context window"),
    "gemini-2.0-flash-exp": ModelTokenLimit(1_048_576, 8_000, "Gemini 2.0 Flash Experimental"),
    # Gemini 1.5
    "gemini-1.5-pro": ModelTokenLimit(2_097_152, 8_000, "Gemini 1.5 Pro with 2M context window"),
    "gemini-1.5-flash": ModelTokenLimit(1_048_576, 8_000, "Gemini 1.5 Flash with 1,048,576 context window"),
    # older OpenAI
    "gpt-4": ModelTokenLimit(128_000, 4_000, "GPT-4 with 128k context window"),
    "gpt-4-turbo": ModelTokenLimit(128_000, 4_000, "GPT-4 Turbo with 128k context window"),
    "gpt-4o": ModelTokenLimit(128_000, 16_000, "GPT-4o with 128k context window"),
    "gpt-4o-mini": ModelTokenLimit(128_000, 16_000, "GPT-4o mini with 128k context window"),
    # Claude 3
    "claude-3-5-sonnet": ModelTokenLimit(200_000, 8_000, "Claude 3.5 Sonnet with 200k context window"),
    "claude-3-opus": ModelTokenLimit(200_000, 4_000, "Claude 3 Opus with 200k context window"),
    "claude-3-haiku": ModelTokenLimit(200_000, 4_000, "Claude 3 Haiku with 200k context window"),
}

_ALIASES = {
    "gpt-4-1": "gpt-4.1",
    "gpt-4.1.0": "gpt-4.1",
    "claude-opus-4": "claude-4-opus",
    "claude-sonnet-4": "claude-4-sonnet",
    "gemini-pro-2.5": "gemini-2.5-pro",
    "gemini-flash-2.5": "gemini-2.5-flash",
}

DEFAULT_COMPRESSION_THRESHOLD = 0.95
DEFAULT_CONTEXT_WINDOW = 128_000


def normalize_model_name(model: str) -> str:
    model = (model or "").strip()
    if model.startswith("models/"):
        model = model[len("models/"):]
    return _ALIASES.get(model, model)


def get_token_limit(model: str) -> Optional[ModelTokenLimit]:
    return TOKEN_LIMITS.get(normalize_model_name(model))


def get_compression_threshold(model: str) -> Optional[int]:
    """Token count at which history should be compressed (95% of the window)."""
    limit = get_token_limit(model)
    if limit is None:
        return None
    return int(limit.context_window * DEFAULT_COMPRESSION_THRESHOLD)


def supports_large_context(model: str) -> bool:
    limit = get_token_limit(model)
    return limit.context_window >= 1_000_000 if limit else False


def get_models_by_context_size() -> Dict[str, List[str]]:
    large: List[str] = []
    medium: List[str] = []
    standard: List[str] = []

    for model, limit in TOKEN_LIMITS.items():
        if limit.context_window >= 1_000_000:
            large.append(model)
        elif limit.context_window >= 200_000:
            medium.append(model)
        else:
            standard.append(model)

    return {"large": large, "medium": medium, "standard": standard}
