"""
Unit tests for the model caller contract and the OpenAI-compatible caller.

Coverage:
- Value validation for chat messages, call options and token usage.
- Deterministic provider error taxonomy and caller-error normalization.
- SDK exception mapping, usage normalization and streamed delta extraction.
- Client reuse per (endpoint, credential) and the local no-key placeholder.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from types import SimpleNamespace

import pytest

from plancast.synthesis_plane.cascade import Candidate, Capability
from plancast.synthesis_plane.providers import (
    CallOptions,
    ChatMessage,
    OpenAICompatibleCaller,
    ProviderAuthenticationError,
    ProviderRateLimitError,
    ProviderResponseError,
    ProviderServiceError,
    ProviderTimeoutError,
    ProviderTransportError,
    TokenUsage,
    is_terminal_provider_error,
    normalize_caller_error,
)
from plancast.utils.concurrency import CancellationToken

_MESSAGES = [ChatMessage("system", "plan"), ChatMessage("user", "build it")]


@dataclass(slots=True)
class _ScriptedCompletions:
    outcomes: deque[object]
    calls: list[dict[str, object]] = field(default_factory=list)

    async def create(self, **kwargs: object) -> object:
        self.calls.append(dict(kwargs))
        if not self.outcomes:
            raise RuntimeError("scripted completions exhausted")
        outcome = self.outcomes.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass(slots=True)
class _FakeClient:
    completions: _ScriptedCompletions

    @property
    def chat(self) -> SimpleNamespace:
        return SimpleNamespace(completions=self.completions)


class _ChunkStream:
    def __init__(self, chunks: list[object]) -> None:
        self._chunks = list(chunks)

    def __aiter__(self) -> _ChunkStream:
        return self

    async def __anext__(self) -> object:
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)


class RateLimitError(Exception):
    status_code = 429


class AuthenticationError(Exception):
    status_code = 401


class APIConnectionError(Exception):
    pass


class BadRequestError(Exception):
    status_code = 400


class InternalServerError(Exception):
    status_code = 503


def _candidate(*, credential: str | None = "sk-test", base_url: str | None = None) -> Candidate:
    return Candidate(
        provider_id="openai",
        model_id="gpt-4o-mini",
        capabilities=frozenset({Capability.STREAMING, Capability.PLANNING}),
        label="GPT-4o Mini",
        credential=credential,
        base_url=base_url,
    )


def _caller(*outcomes: object) -> tuple[OpenAICompatibleCaller, _ScriptedCompletions]:
    completions = _ScriptedCompletions(deque(outcomes))
    caller = OpenAICompatibleCaller(client_factory=lambda candidate: _FakeClient(completions))
    return caller, completions


def _delta(text: str | None) -> dict[str, object]:
    return {"choices": [{"delta": {"content": text}}]}


def test_chat_message_normalizes_role_and_rejects_unknown() -> None:
    assert ChatMessage(" User ", "hi").role == "user"
    with pytest.raises(ValueError):
        ChatMessage("tool", "hi")


def test_call_options_bounds() -> None:
    assert CallOptions(temperature=1).temperature == 1.0
    with pytest.raises(ValueError):
        CallOptions(temperature=2.5)
    with pytest.raises(ValueError):
        CallOptions(max_output_tokens=0)


def test_token_usage_totals_and_serialization() -> None:
    assert TokenUsage().total_tokens is None
    usage = TokenUsage(input_tokens=10, latency_ms=5)
    assert usage.total_tokens == 10
    assert usage.to_dict() == {"input_tokens": 10, "total_tokens": 10, "latency_ms": 5}
    with pytest.raises(ValueError):
        TokenUsage(output_tokens=-1)


def test_provider_error_message_is_deterministic() -> None:
    error = ProviderRateLimitError("too   many\nrequests", provider="openrouter")

    assert str(error) == (
        "provider=openrouter code=rate_limit retryable=true http_status=429 "
        "detail=too many requests"
    )
    assert error.summary() == "rate_limit (429): too many requests"
    assert error.retryable is True
    assert not is_terminal_provider_error(error)
    assert is_terminal_provider_error(ProviderTransportError("refused"))


def test_normalize_caller_error_maps_plain_exceptions() -> None:
    timeout = normalize_caller_error(TimeoutError(), provider="openai")
    service = normalize_caller_error(ValueError("bad thing"), provider="openai")
    existing = ProviderAuthenticationError("nope")

    assert isinstance(timeout, ProviderTimeoutError)
    assert timeout.detail == "TimeoutError"
    assert isinstance(service, ProviderServiceError)
    assert service.detail == "bad thing"
    assert normalize_caller_error(existing, provider="openai") is existing


async def test_chat_returns_content_and_normalized_usage() -> None:
    caller, completions = _caller(
        {
            "choices": [{"message": {"content": '{"steps": []}'}}],
            "usage": {"prompt_tokens": 12, "completion_tokens": 3},
        }
    )

    response = await caller.chat(_candidate(), _MESSAGES, CallOptions(max_output_tokens=256))

    assert response.content == '{"steps": []}'
    assert response.usage.input_tokens == 12
    assert response.usage.output_tokens == 3
    sent = completions.calls[0]
    assert sent["model"] == "gpt-4o-mini"
    assert sent["stream"] is False
    assert sent["max_tokens"] == 256
    assert sent["messages"] == [m.to_dict() for m in _MESSAGES]


async def test_chat_with_null_content_is_empty_string() -> None:
    message = SimpleNamespace(content=None)
    caller, _ = _caller(SimpleNamespace(choices=[SimpleNamespace(message=message)]))

    response = await caller.chat(_candidate(), _MESSAGES, CallOptions())

    assert response.content == ""
    assert response.usage.total_tokens is None


async def test_chat_without_choices_is_response_error() -> None:
    caller, _ = _caller({"choices": []})

    with pytest.raises(ProviderResponseError):
        await caller.chat(_candidate(), _MESSAGES, CallOptions())


@pytest.mark.parametrize(
    ("raised", "expected"),
    [
        (RateLimitError("slow down"), ProviderRateLimitError),
        (AuthenticationError("bad key"), ProviderAuthenticationError),
        (APIConnectionError("dns failure"), ProviderTransportError),
        (asyncio.TimeoutError(), ProviderTimeoutError),
        (InternalServerError("upstream"), ProviderServiceError),
        (BadRequestError("bad model"), ProviderServiceError),
    ],
)
async def test_sdk_exceptions_map_onto_taxonomy(raised: Exception, expected: type) -> None:
    caller, _ = _caller(raised)

    with pytest.raises(expected) as caught:
        await caller.chat(_candidate(), _MESSAGES, CallOptions())

    assert caught.value.provider == "openai"


async def test_client_error_statuses_are_not_retryable() -> None:
    caller, _ = _caller(BadRequestError("bad model"))

    with pytest.raises(ProviderServiceError) as caught:
        await caller.chat(_candidate(), _MESSAGES, CallOptions())

    assert caught.value.retryable is False
    assert caught.value.http_status == 400


async def test_stream_yields_delta_text_only() -> None:
    stream = _ChunkStream(
        [_delta("Planning. "), _delta(None), {"choices": []}, _delta('{"steps"')]
    )
    caller, completions = _caller(stream)

    chunks = [chunk async for chunk in caller.stream(_candidate(), _MESSAGES, CallOptions())]

    assert chunks == ["Planning. ", '{"steps"']
    assert completions.calls[0]["stream"] is True


async def test_stream_honours_cancellation_between_chunks() -> None:
    token = CancellationToken()
    token.cancel("stop")
    caller, _ = _caller(_ChunkStream([_delta("a"), _delta("b")]))

    with pytest.raises(asyncio.CancelledError):
        async for _ in caller.stream(_candidate(), _MESSAGES, CallOptions(cancel_token=token)):
            pass


async def test_stream_maps_sdk_errors() -> None:
    caller, _ = _caller(RateLimitError("quota"))

    with pytest.raises(ProviderRateLimitError):
        async for _ in caller.stream(_candidate(), _MESSAGES, CallOptions()):
            pass


async def test_clients_are_reused_per_endpoint_and_credential() -> None:
    created: list[Candidate] = []
    completions = _ScriptedCompletions(deque([{"choices": [{"message": {"content": "x"}}]}] * 3))

    def factory(candidate: Candidate) -> _FakeClient:
        created.append(candidate)
        return _FakeClient(completions)

    caller = OpenAICompatibleCaller(client_factory=factory)
    await caller.chat(_candidate(), _MESSAGES, CallOptions())
    await caller.chat(_candidate(), _MESSAGES, CallOptions())
    await caller.chat(_candidate(credential="sk-other"), _MESSAGES, CallOptions())

    assert len(created) == 2


def test_local_endpoint_without_key_uses_placeholder() -> None:
    caller = OpenAICompatibleCaller()

    local = _candidate(credential=None, base_url="http://localhost:1234/v1")

    assert caller._resolve_api_key(local) == "no-key"
    with pytest.raises(ProviderAuthenticationError):
        caller._resolve_api_key(_candidate(credential=None))


def test_non_positive_timeout_is_rejected() -> None:
    with pytest.raises(ValueError):
        OpenAICompatibleCaller(timeout_seconds=0)
