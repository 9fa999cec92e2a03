"""
plancast - OpenAI-compatible model caller

File: src/plancast/synthesis_plane/providers/openai_adapter.py
Last updated: 2026-10-16

Purpose
- Reference ``ModelCaller`` for OpenAI-compatible chat completion endpoints
  (OpenAI, OpenRouter, Gemini's OpenAI surface, Perplexity, local servers).

What should be included in this file
- Lazy ``openai`` SDK import with an injectable client factory.
- Streaming and buffered chat completion calls.
- Mapping of SDK exceptions onto the provider error taxonomy.
- Usage normalization across ``input/output`` and ``prompt/completion`` naming.

Functional requirements
- Honour the cancellation token between streamed chunks.
- One client per (endpoint, credential) pair; never log or echo the credential.

Non-functional requirements
- Must be configurable and safe; do not hardcode keys.
"""

from __future__ import annotations

import asyncio
import importlib
import time
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Protocol, cast

from plancast.synthesis_plane.providers.base import (
    CallOptions,
    ChatMessage,
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
)
from plancast.utils.hashing import sha256_text

if TYPE_CHECKING:
    from plancast.synthesis_plane.cascade import Candidate

_NO_KEY_PLACEHOLDER = "no-key"


class _Completions(Protocol):
    async def create(self, **kwargs: object) -> object: ...


class _Chat(Protocol):
    completions: _Completions


class _OpenAIClient(Protocol):
    chat: _Chat


ClientFactory = Callable[["Candidate"], _OpenAIClient]


class OpenAICompatibleCaller:
    """``ModelCaller`` over the chat-completions API.

    The ``openai`` package is imported on first use, so parsing and validation work
    without the ``providers`` extra. Tests inject ``client_factory`` instead.
    """

    def __init__(
        self,
        *,
        client_factory: ClientFactory | None = None,
        timeout_seconds: float | None = None,
        organization: str | None = None,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._client_factory = client_factory or self._sdk_client
        self._timeout_seconds = timeout_seconds
        self._organization = organization
        self._clients: dict[tuple[str | None, str], _OpenAIClient] = {}

    async def stream(
        self,
        candidate: Candidate,
        messages: Sequence[ChatMessage],
        options: CallOptions,
    ) -> AsyncIterator[str]:
        request = _request(candidate, messages, options, stream=True)
        try:
            response = await self._client(candidate).chat.completions.create(**request)
            if not hasattr(response, "__aiter__"):
                raise ProviderResponseError(
                    "streaming call did not return an async iterator",
                    provider=candidate.provider_id,
                )
            async for chunk in cast("AsyncIterator[object]", response):
                if options.cancel_token is not None:
                    options.cancel_token.raise_if_cancelled()
                text = _lookup(chunk, "choices", 0, "delta", "content")
                if isinstance(text, str) and text:
                    yield text
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise _as_provider_error(exc, candidate.provider_id) from exc

    async def chat(
        self,
        candidate: Candidate,
        messages: Sequence[ChatMessage],
        options: CallOptions,
    ) -> RawResponse:
        request = _request(candidate, messages, options, stream=False)
        started = time.perf_counter()
        try:
            response = await self._client(candidate).chat.completions.create(**request)
        except ProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise _as_provider_error(exc, candidate.provider_id) from exc
        latency_ms = int((time.perf_counter() - started) * 1000)

        if _lookup(response, "choices", 0) is None:
            raise ProviderResponseError(
                "chat completion returned no choices", provider=candidate.provider_id
            )
        content = _lookup(response, "choices", 0, "message", "content")
        if content is not None and not isinstance(content, str):
            raise ProviderResponseError(
                f"message content must be text, got {type(content).__name__}",
                provider=candidate.provider_id,
            )
        return RawResponse(content=content or "", usage=_usage(response, latency_ms))

    def _client(self, candidate: Candidate) -> _OpenAIClient:
        # Keyed by a digest so the credential itself is never held as a dict key.
        fingerprint = sha256_text(candidate.credential)[:16] if candidate.credential else ""
        key = (candidate.base_url, fingerprint)
        if key not in self._clients:
            self._clients[key] = self._client_factory(candidate)
        return self._clients[key]

    def _sdk_client(self, candidate: Candidate) -> _OpenAIClient:
        try:
            sdk = importlib.import_module("openai")
        except ImportError as exc:
            raise ProviderUnavailableError(
                "openai SDK is not installed; install plancast[providers]",
                provider=candidate.provider_id,
            ) from exc

        options: dict[str, object] = {"api_key": self._resolve_api_key(candidate)}
        if candidate.base_url is not None:
            options["base_url"] = candidate.base_url
        if self._organization is not None:
            options["organization"] = self._organization
        if self._timeout_seconds is not None:
            options["timeout"] = self._timeout_seconds
        return cast("_OpenAIClient", sdk.AsyncOpenAI(**options))

    def _resolve_api_key(self, candidate: Candidate) -> str:
        if candidate.credential is not None:
            return candidate.credential
        if candidate.base_url is not None:
            # Local OpenAI-compatible servers accept any key.
            return _NO_KEY_PLACEHOLDER
        raise ProviderAuthenticationError(
            f"missing API key for provider {candidate.provider_id}",
            provider=candidate.provider_id,
            http_status=401,
        )


def _request(
    candidate: Candidate,
    messages: Sequence[ChatMessage],
    options: CallOptions,
    *,
    stream: bool,
) -> dict[str, object]:
    request: dict[str, object] = {
        "model": candidate.model_id,
        "messages": [message.to_dict() for message in messages],
        "temperature": options.temperature,
        "stream": stream,
    }
    if options.max_output_tokens is not None:
        request["max_tokens"] = options.max_output_tokens
    return request


def _as_provider_error(exc: Exception, provider: str) -> ProviderError:
    """Classify SDK exceptions by HTTP status first, then by exception class name."""

    status = _status_code(exc)
    name = type(exc).__name__.lower()
    detail = str(exc).strip() or type(exc).__name__

    if status in (401, 403) or "auth" in name or "permission" in name:
        return ProviderAuthenticationError(detail, provider=provider, http_status=status)
    if status == 429 or "ratelimit" in name:
        return ProviderRateLimitError(detail, provider=provider, http_status=status)
    if isinstance(exc, TimeoutError | asyncio.TimeoutError) or "timeout" in name:
        return ProviderTimeoutError(detail, provider=provider)
    if status is not None and status >= 400:
        return ProviderServiceError(
            detail, provider=provider, retryable=status >= 500, http_status=status
        )
    if "connection" in name:
        return ProviderTransportError(detail, provider=provider)
    return ProviderServiceError(detail, provider=provider)


def _status_code(exc: BaseException) -> int | None:
    for holder, attr in (
        (exc, "status_code"),
        (exc, "status"),
        (exc, "http_status"),
        (getattr(exc, "response", None), "status_code"),
    ):
        value = getattr(holder, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _usage(response: object, latency_ms: int) -> TokenUsage:
    def count(*names: str) -> int | None:
        for name in names:
            value = _lookup(response, "usage", name)
            if isinstance(value, int) and not isinstance(value, bool):
                return value
        return None

    return TokenUsage(
        input_tokens=count("input_tokens", "prompt_tokens"),
        output_tokens=count("output_tokens", "completion_tokens"),
        latency_ms=latency_ms,
    )


def _lookup(value: object, *path: str | int) -> object | None:
    """Walk SDK objects and plain dicts alike; ``None`` when any step is missing."""

    for step in path:
        if value is None:
            return None
        if isinstance(step, int):
            items = value if isinstance(value, Sequence) and not isinstance(value, str) else ()
            value = items[step] if len(items) > step else None
        elif isinstance(value, Mapping):
            value = value.get(step)
        else:
            value = getattr(value, step, None)
    return value


__all__ = ["ClientFactory", "OpenAICompatibleCaller"]
