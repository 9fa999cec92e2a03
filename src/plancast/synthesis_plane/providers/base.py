"""
plancast - model caller contract and provider error taxonomy

File: src/plancast/synthesis_plane/providers/base.py
Last updated: 2026-10-16

Purpose
- Provider-agnostic request/response values and the ``ModelCaller`` protocol the
  generation cascade drives.

What should be included in this file
- Chat message, call options, token usage, and raw response models.
- ``ModelCaller`` protocol with streaming and buffered entry points.
- Normalized ``ProviderError`` taxonomy with retryability classification.

Functional requirements
- Any exception escaping a model caller must be expressible as one taxonomy member.
- Error messages carry deterministic machine-readable fields.

Non-functional requirements
- Must make it easy to add new callers without touching cascade logic.
- Credentials never appear in errors or serialized values.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Protocol, runtime_checkable

from plancast.domain.plan import JSONValue

if TYPE_CHECKING:
    from plancast.synthesis_plane.cascade import Candidate
    from plancast.utils.concurrency import CancellationToken

_ROLES = frozenset({"system", "user", "assistant"})


@dataclass(frozen=True, slots=True)
class ChatMessage:
    """One chat turn sent to the model."""

    role: str
    content: str

    def __post_init__(self) -> None:
        role = self.role.strip().lower()
        if role not in _ROLES:
            raise ValueError(f"ChatMessage.role must be one of {sorted(_ROLES)}, got {self.role!r}")
        if not isinstance(self.content, str):
            raise TypeError("ChatMessage.content must be a string")
        object.__setattr__(self, "role", role)

    def to_dict(self) -> dict[str, JSONValue]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True, slots=True)
class CallOptions:
    temperature: float = 0.2
    max_output_tokens: int | None = None
    cancel_token: CancellationToken | None = None

    def __post_init__(self) -> None:
        if isinstance(self.temperature, bool) or not isinstance(self.temperature, int | float):
            raise TypeError("CallOptions.temperature must be numeric")
        if not 0.0 <= self.temperature <= 2.0:
            raise ValueError("CallOptions.temperature must be within [0, 2]")
        if self.max_output_tokens is not None and self.max_output_tokens <= 0:
            raise ValueError("CallOptions.max_output_tokens must be > 0")
        object.__setattr__(self, "temperature", float(self.temperature))


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token accounting for one call. Providers may omit either count."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    latency_ms: int | None = None

    def __post_init__(self) -> None:
        for name in ("input_tokens", "output_tokens", "latency_ms"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"TokenUsage.{name} must be an integer")
            if value < 0:
                raise ValueError(f"TokenUsage.{name} must be >= 0")

    @property
    def total_tokens(self) -> int | None:
        if self.input_tokens is None and self.output_tokens is None:
            return None
        return (self.input_tokens or 0) + (self.output_tokens or 0)

    def to_dict(self) -> dict[str, JSONValue]:
        fields = {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "latency_ms": self.latency_ms,
        }
        return {key: value for key, value in fields.items() if value is not None}


@dataclass(frozen=True, slots=True)
class RawResponse:
    """Full text returned by one buffered call."""

    content: str
    usage: TokenUsage = TokenUsage()

    def __post_init__(self) -> None:
        if not isinstance(self.content, str):
            raise TypeError("RawResponse.content must be a string")
        if not isinstance(self.usage, TokenUsage):
            raise TypeError("RawResponse.usage must be TokenUsage")


@runtime_checkable
class ModelCaller(Protocol):
    """External collaborator that talks to a model provider.

    ``stream`` yields text chunks lazily; ``chat`` returns the buffered response.
    Both must honour ``options.cancel_token`` and raise ``ProviderError`` members
    for provider-side failures.
    """

    def stream(
        self,
        candidate: Candidate,
        messages: Sequence[ChatMessage],
        options: CallOptions,
    ) -> AsyncIterator[str]:
        """Stream response text chunks."""

    async def chat(
        self,
        candidate: Candidate,
        messages: Sequence[ChatMessage],
        options: CallOptions,
    ) -> RawResponse:
        """Return the full response text and usage."""


class ProviderError(RuntimeError):
    """A model call failure, normalized across providers.

    ``str()`` renders ``key=value`` pairs in a fixed order so log lines can be grepped
    and compared across runs.
    """

    code: ClassVar[str] = "provider_error"
    default_retryable: ClassVar[bool] = False
    default_http_status: ClassVar[int | None] = None

    def __init__(
        self,
        detail: str,
        *,
        provider: str = "provider",
        retryable: bool | None = None,
        http_status: int | None = None,
        provider_code: str | None = None,
    ) -> None:
        self.provider = provider.strip() or "provider"
        self.detail = " ".join(str(detail).split()) or "unknown error"
        self.retryable = self.default_retryable if retryable is None else bool(retryable)
        self.http_status = self.default_http_status if http_status is None else http_status
        self.provider_code = provider_code.strip() if provider_code else None

        parts = [
            f"provider={self.provider}",
            f"code={self.code}",
            f"retryable={str(self.retryable).lower()}",
        ]
        if self.http_status is not None:
            parts.append(f"http_status={self.http_status}")
        if self.provider_code is not None:
            parts.append(f"provider_code={self.provider_code}")
        parts.append(f"detail={self.detail}")
        super().__init__(" ".join(parts))

    def summary(self) -> str:
        status = f" ({self.http_status})" if self.http_status is not None else ""
        return f"{self.code}{status}: {self.detail}"


class ProviderUnavailableError(ProviderError):
    """The provider SDK is missing or unusable."""

    code = "unavailable"


class ProviderAuthenticationError(ProviderError):
    code = "auth"


class ProviderTransportError(ProviderError):
    """The provider endpoint could not be reached (DNS, TLS, refused connection)."""

    code = "transport"


class ProviderRateLimitError(ProviderError):
    code = "rate_limit"
    default_retryable = True
    default_http_status = 429


class ProviderTimeoutError(ProviderError):
    code = "timeout"
    default_retryable = True


class ProviderServiceError(ProviderError):
    """Server-side failure; 5xx responses are retryable, other 4xx are not."""

    code = "service"
    default_retryable = True


class ProviderResponseError(ProviderError):
    """The response could not be read as chat-completion output."""

    code = "invalid_response"


def is_terminal_provider_error(error: BaseException) -> bool:
    """Auth and transport failures cannot be fixed by trying again or elsewhere."""

    return isinstance(error, ProviderAuthenticationError | ProviderTransportError)


def normalize_caller_error(exc: Exception, *, provider: str) -> ProviderError:
    """Map anything a model caller raised onto the provider error taxonomy."""

    if isinstance(exc, ProviderError):
        return exc
    detail = str(exc).strip() or type(exc).__name__
    if isinstance(exc, TimeoutError | asyncio.TimeoutError):
        return ProviderTimeoutError(detail, provider=provider)
    return ProviderServiceError(detail, provider=provider)


__all__ = [
    "CallOptions",
    "ChatMessage",
    "ModelCaller",
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
