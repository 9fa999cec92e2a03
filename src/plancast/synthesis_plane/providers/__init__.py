"""Model caller contract, provider error taxonomy, and the OpenAI-compatible caller."""

from plancast.synthesis_plane.providers.base import (
    CallOptions,
    ChatMessage,
    ModelCaller,
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServiceError,
    ProviderTimeoutError,
    ProviderTransportError,
    ProviderUnavailableError,
    RawResponse,
    TokenUsage,
    is_terminal_provider_error,
    normalize_caller_error,
)
from plancast.synthesis_plane.providers.openai_adapter import OpenAICompatibleCaller

__all__ = [
    "CallOptions",
    "ChatMessage",
    "ModelCaller",
    "OpenAICompatibleCaller",
    "ProviderAuthenticationError",
    "ProviderError",
    "ProviderRateLimitError",
    "ProviderResponseError",
    "ProviderServiceError",
    "ProviderTimeoutError",
    "ProviderTransportError",
    "ProviderUnavailableError",
    "RawResponse",
    "TokenUsage",
    "is_terminal_provider_error",
    "normalize_caller_error",
]
