"""Stable constants shared across plancast planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Token estimation: ceil(characters / CHARS_PER_TOKEN).
CHARS_PER_TOKEN: Final[int] = 4
DEFAULT_RESERVE_OUTPUT_TOKENS: Final[int] = 4096

# Generation timing defaults (seconds).
DEFAULT_CALL_TIMEOUT_SECONDS: Final[float] = 120.0
DEFAULT_FIRST_CHUNK_TIMEOUT_SECONDS: Final[float] = 25.0
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 300.0

# Providers with known OpenAI-compatible chat endpoints.
KNOWN_PROVIDER_BASE_URLS: Final[dict[str, str]] = {
    "openrouter": "https://openrouter.ai/api/v1",
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "perplexity": "https://api.perplexity.ai",
}

__all__ = [
    "CHARS_PER_TOKEN",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CALL_TIMEOUT_SECONDS",
    "DEFAULT_FIRST_CHUNK_TIMEOUT_SECONDS",
    "DEFAULT_REQUEST_TIMEOUT_SECONDS",
    "DEFAULT_RESERVE_OUTPUT_TOKENS",
    "KNOWN_PROVIDER_BASE_URLS",
]
