"""
plancast - plan generation orchestrator

File: src/plancast/synthesis_plane/orchestrator.py
Last updated: 2026-10-16

Purpose
- Drives one "produce a plan" request end to end: call a candidate, stream or buffer
  the response, recover JSON, validate the plan, and decide whether to retry the same
  candidate, advance the cascade, repair, or fail terminally.

What should be included in this file
- ``CascadeStage`` state machine and the per-request ``CascadeState``.
- Typed ``RetryBudgets`` per failure class and explicit ``OrchestratorSettings``.
- Streaming with first-chunk timeout and same-attempt fallback to a buffered call.
- Budget reserve before the first call and guaranteed refund.
- Ordered agent events for every transition.

Functional requirements
- Always terminates: at most ``len(candidates) * (1 + max budget)`` model calls.
- Every exit is a ``GenerationResult`` or a ``GenerationFailedError`` subclass.
- Repair retries never make the outcome worse than the plan being repaired.

Non-functional requirements
- Deterministic for identical model outputs.
- No state shared across requests; credentials never reach events or logs.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from plancast.constants import (
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_FIRST_CHUNK_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RESERVE_OUTPUT_TOKENS,
)
from plancast.control_plane.budgets import (
    BudgetGuard,
    estimate_request_tokens,
    estimate_tokens_from_chars,
)
from plancast.domain.events import AgentEventType
from plancast.domain.plan import JSONValue, Plan
from plancast.errors import (
    AgentProtocolError,
    BudgetExceededError,
    EmptyResponseError,
    GenerationCancelledError,
    GenerationFailedError,
    ModelsExhaustedError,
    NoCapableCandidatesError,
    ProviderAuthFailedError,
    ProviderTransportFailedError,
)
from plancast.observability.events import EventEmitter
from plancast.parsing.recovery import Failed, extract
from plancast.planning.manifest_repair import (
    MANIFEST_FILENAME,
    find_manifest_gaps,
    is_manifest_path,
    synthesize_manifest_repair,
)
from plancast.planning.normalizer import (
    PlanNormalizationError,
    normalize_for_deterministic,
    plan_fingerprint,
)
from plancast.planning.validator import validate_plan
from plancast.synthesis_plane.cascade import Candidate, Capability
from plancast.synthesis_plane.model_catalog import ModelCatalog, load_model_catalog
from plancast.synthesis_plane.prompt_templates import (
    CorrectiveNote,
    PromptTemplateEngine,
    build_plan_messages,
    render_corrective_note,
)
from plancast.synthesis_plane.providers.base import (
    CallOptions,
    ChatMessage,
    ModelCaller,
    ProviderAuthenticationError,
    ProviderError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    TokenUsage,
    is_terminal_provider_error,
    normalize_caller_error,
)
from plancast.synthesis_plane.streaming import ReasoningChunker
from plancast.utils.concurrency import CancellationToken, run_with_timeout

_CODE_MARKERS = ("def ", "function ", "import ", "const ", "class ", "margin:", "font-family:")
_MAX_RECOMMENDATIONS = 5
_PLAN_KEYS = ("steps",)


class CascadeStage(StrEnum):
    SELECTING = "selecting"
    CALLING = "calling"
    PARSING = "parsing"
    VALIDATING = "validating"
    REPAIRING = "repairing"
    RETRY_SAME_CANDIDATE = "retry_same_candidate"
    ADVANCE_CANDIDATE = "advance_candidate"
    SUCCESS = "success"
    TERMINAL_FAILURE = "terminal_failure"


class FailureClass(StrEnum):
    """Why the cascade last moved away from a candidate."""

    EMPTY = "empty"
    MALFORMED = "malformed"
    RATE_LIMIT = "rate_limit"
    PROVIDER = "provider"


class RepairKind(StrEnum):
    EMPTY_STEPS = "empty_steps"
    MANIFEST = "manifest"


def _validate_budget(value: int, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{field_name} must be an integer")
    if value < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return value


def _validate_positive_seconds(value: float, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{field_name} must be numeric")
    if value <= 0:
        raise ValueError(f"{field_name} must be > 0")
    return float(value)


@dataclass(frozen=True, slots=True)
class RetryBudgets:
    """Same-candidate retry budget per failure class.

    ``invalid_output`` is granted again on every candidate; the other budgets are
    spent once per request.
    """

    empty_response: int = 1
    invalid_output: int = 1
    empty_steps: int = 1
    manifest_repair: int = 1

    def __post_init__(self) -> None:
        for name in ("empty_response", "invalid_output", "empty_steps", "manifest_repair"):
            _validate_budget(getattr(self, name), f"RetryBudgets.{name}")

    @property
    def per_candidate_cap(self) -> int:
        return max(self.empty_response, self.invalid_output, self.empty_steps, self.manifest_repair)

    @classmethod
    def from_config(cls, retries: Mapping[str, Any]) -> RetryBudgets:
        return cls(
            empty_response=int(retries.get("empty_response", 1)),
            invalid_output=int(retries.get("invalid_output", 1)),
            empty_steps=int(retries.get("empty_steps", 1)),
            manifest_repair=int(retries.get("manifest_repair", 1)),
        )


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    """Explicit knobs for one orchestrator instance."""

    retries: RetryBudgets = field(default_factory=RetryBudgets)
    streaming_enabled: bool = True
    temperature: float = 0.2
    max_output_tokens: int | None = None
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS
    first_chunk_timeout_seconds: float = DEFAULT_FIRST_CHUNK_TIMEOUT_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    deterministic: bool = False
    reserve_output_tokens: int = DEFAULT_RESERVE_OUTPUT_TOKENS

    def __post_init__(self) -> None:
        for name in (
            "call_timeout_seconds",
            "first_chunk_timeout_seconds",
            "request_timeout_seconds",
        ):
            object.__setattr__(
                self, name, _validate_positive_seconds(getattr(self, name), name)
            )
        _validate_budget(self.reserve_output_tokens, "reserve_output_tokens")
        # Reuse CallOptions validation for temperature and max_output_tokens.
        CallOptions(temperature=self.temperature, max_output_tokens=self.max_output_tokens)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> OrchestratorSettings:
        generation = config.get("generation", {})
        budget = config.get("budget", {})
        return cls(
            retries=RetryBudgets.from_config(config.get("retries", {})),
            streaming_enabled=bool(generation.get("streaming_enabled", True)),
            temperature=float(generation.get("temperature", 0.2)),
            max_output_tokens=generation.get("max_output_tokens"),
            call_timeout_seconds=float(
                generation.get("call_timeout_seconds", DEFAULT_CALL_TIMEOUT_SECONDS)
            ),
            first_chunk_timeout_seconds=float(
                generation.get("first_chunk_timeout_seconds", DEFAULT_FIRST_CHUNK_TIMEOUT_SECONDS)
            ),
            request_timeout_seconds=float(
                generation.get("request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS)
            ),
            deterministic=bool(generation.get("deterministic", False)),
            reserve_output_tokens=int(
                budget.get("reserve_output_tokens", DEFAULT_RESERVE_OUTPUT_TOKENS)
            ),
        )


@dataclass(slots=True)
class CascadeState:
    """Mutable bookkeeping for one in-flight request. Never shared."""

    candidates: tuple[Candidate, ...]
    index: int = 0
    buffer: str = ""
    parsed: object = None
    calls: int = 0
    empty_response_retries: int = 0
    invalid_output_retries: int = 0
    empty_steps_retries: int = 0
    manifest_repair_retries: int = 0
    same_candidate_retries: int = 0
    corrective_note: str | None = None
    pending_plan: Plan | None = None
    pending_repair: RepairKind | None = None
    pending_warnings: list[str] = field(default_factory=list)
    last_failure: FailureClass | None = None
    last_reason: str = ""
    last_preview: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    consumed_tokens: int = 0
    usage_estimated: bool = False
    attempted: list[str] = field(default_factory=list)
    provider_errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def current(self) -> Candidate | None:
        if self.index < len(self.candidates):
            return self.candidates[self.index]
        return None

    def advance(self) -> None:
        self.index += 1
        self.invalid_output_retries = 0
        self.same_candidate_retries = 0
        self.pending_plan = None
        self.pending_repair = None
        self.pending_warnings = []

    def record_usage(self, usage: TokenUsage, *, prompt_chars: int, response_chars: int) -> None:
        # streamed calls report no counts; missing sides are estimated from characters
        input_tokens = usage.input_tokens
        if input_tokens is None:
            input_tokens = estimate_tokens_from_chars(prompt_chars)
            self.usage_estimated = True
        output_tokens = usage.output_tokens
        if output_tokens is None:
            output_tokens = estimate_tokens_from_chars(response_chars)
            self.usage_estimated = True
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.consumed_tokens += input_tokens + output_tokens

    def usage(self) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens or None,
            output_tokens=self.output_tokens or None,
        )


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Successful outcome of one request."""

    plan: Plan
    model: str
    provider: str
    label: str
    usage: TokenUsage
    elapsed: float
    fallback_used: bool
    attempted: tuple[str, ...]
    provider_errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    plan_hash: str | None = None
    calls: int = 0
    usage_estimated: bool = False

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "plan": self.plan.to_dict(),
            "model": self.model,
            "provider": self.provider,
            "label": self.label,
            "usage": self.usage.to_dict(),
            "usageEstimated": self.usage_estimated,
            "elapsedSeconds": round(self.elapsed, 3),
            "fallbackUsed": self.fallback_used,
            "attempted": list(self.attempted),
            "providerErrors": list(self.provider_errors),
            "warnings": list(self.warnings),
            "planHash": self.plan_hash,
            "calls": self.calls,
        }


def looks_like_code(text: str) -> bool:
    """True when a response is source code rather than a JSON plan."""

    trimmed = text.strip()
    if trimmed.startswith(("{", "[")):
        return False
    if '"steps"' in trimmed or "'steps'" in trimmed:
        return False
    return any(marker in trimmed for marker in _CODE_MARKERS)


class PlanGenerator:
    """Walk a candidate cascade until one produces a usable plan."""

    def __init__(
        self,
        candidates: Sequence[Candidate],
        caller: ModelCaller,
        *,
        settings: OrchestratorSettings | None = None,
        emitter: EventEmitter | None = None,
        budget: BudgetGuard | None = None,
        prompt_engine: PromptTemplateEngine | None = None,
        catalog: ModelCatalog | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._candidates = tuple(candidates)
        self._caller = caller
        self._settings = settings if settings is not None else OrchestratorSettings()
        self._emitter = emitter if emitter is not None else EventEmitter()
        self._budget = budget
        self._engine = prompt_engine
        self._catalog = catalog
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def emitter(self) -> EventEmitter:
        return self._emitter

    @property
    def settings(self) -> OrchestratorSettings:
        return self._settings

    async def generate(
        self,
        instruction: str,
        *,
        workspace_context: str = "",
        workspace_manifests: Mapping[str, str] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResult:
        """Produce one validated plan for ``instruction``.

        Raises a ``GenerationFailedError`` subclass on every terminal failure.
        """

        if not isinstance(instruction, str) or not instruction.strip():
            raise ValueError("instruction must be a non-empty string")

        token = cancel_token if cancel_token is not None else CancellationToken()
        deadline = token.cancel_after(
            self._settings.request_timeout_seconds,
            reason=f"request exceeded {self._settings.request_timeout_seconds:g}s",
        )
        started = self._clock()
        state = CascadeState(candidates=self._candidates)
        manifests = dict(workspace_manifests or {})
        reserved = 0
        try:
            if not state.candidates:
                raise NoCapableCandidatesError("no model candidates are available")

            base_messages = self._messages(instruction, workspace_context, None)
            reserved = await self._reserve(base_messages)
            plan = await self._run(state, instruction, workspace_context, manifests, token)
            return await self._succeed(state, plan, started)
        except GenerationFailedError as exc:
            await self._fail(state, exc)
            raise
        finally:
            deadline.cancel()
            if reserved:
                await self._refund(max(0, reserved - state.consumed_tokens))

    async def _run(
        self,
        state: CascadeState,
        instruction: str,
        workspace_context: str,
        manifests: Mapping[str, str],
        token: CancellationToken,
    ) -> Plan:
        stage = CascadeStage.SELECTING
        plan: Plan | None = None
        while True:
            if token.is_cancelled:
                raise self._cancelled(state, token)

            if stage is CascadeStage.SELECTING:
                candidate = state.current
                if candidate is None:
                    raise self._exhausted(state)
                state.attempted.append(candidate.label)
                await self._emitter.emit(
                    AgentEventType.STATUS,
                    f"Trying {candidate.label}",
                    {
                        "stage": stage.value,
                        "candidate": candidate.label,
                        "provider": candidate.provider_id,
                        "model": candidate.model_id,
                        "index": state.index,
                    },
                )
                stage = CascadeStage.CALLING

            elif stage is CascadeStage.CALLING:
                stage = await self._call(state, instruction, workspace_context, token)

            elif stage is CascadeStage.PARSING:
                stage = await self._parse(state)

            elif stage is CascadeStage.VALIDATING:
                stage, plan = self._validate(state, manifests)

            elif stage is CascadeStage.REPAIRING:
                plan = self._finalize_pending(state, manifests)
                stage = CascadeStage.SUCCESS

            elif stage is CascadeStage.RETRY_SAME_CANDIDATE:
                candidate = self._require_current(state)
                state.same_candidate_retries += 1
                await self._emitter.emit(
                    AgentEventType.STATUS,
                    f"Retrying {candidate.label}: {state.last_reason}",
                    {
                        "stage": stage.value,
                        "candidate": candidate.label,
                        "reason": state.last_reason,
                        "retry": state.same_candidate_retries,
                    },
                )
                stage = CascadeStage.CALLING

            elif stage is CascadeStage.ADVANCE_CANDIDATE:
                candidate = self._require_current(state)
                failure = state.last_failure.value if state.last_failure else "unknown"
                self._logger.info(
                    "plan_generation_advance",
                    candidate=candidate.label,
                    failure=failure,
                    reason=state.last_reason,
                    calls=state.calls,
                )
                await self._emitter.emit(
                    AgentEventType.STATUS,
                    f"{candidate.label} failed ({state.last_reason}); trying next candidate",
                    {
                        "stage": stage.value,
                        "candidate": candidate.label,
                        "failure": failure,
                        "reason": state.last_reason,
                    },
                )
                state.advance()
                stage = CascadeStage.SELECTING

            elif stage is CascadeStage.SUCCESS:
                if plan is None:
                    raise AssertionError("success stage reached without a plan")
                return plan

            else:
                raise AssertionError(f"unhandled stage {stage}")

    async def _call(
        self,
        state: CascadeState,
        instruction: str,
        workspace_context: str,
        token: CancellationToken,
    ) -> CascadeStage:
        candidate = self._require_current(state)
        messages = self._messages(instruction, workspace_context, state.corrective_note)
        prompt_chars = sum(len(message.content) for message in messages)
        options = CallOptions(
            temperature=self._settings.temperature,
            max_output_tokens=self._settings.max_output_tokens,
            cancel_token=token,
        )
        streaming = self._settings.streaming_enabled and candidate.supports(Capability.STREAMING)
        state.calls += 1
        self._logger.info(
            "plan_generation_attempt",
            candidate=candidate.label,
            call=state.calls,
            streaming=streaming,
            retry=state.same_candidate_retries,
            repair=state.pending_repair.value if state.pending_repair else None,
        )
        await self._emitter.emit(
            AgentEventType.TOOL_CALL,
            f"Calling {candidate.label}",
            {
                "candidate": candidate.label,
                "provider": candidate.provider_id,
                "model": candidate.model_id,
                "streaming": streaming,
                "call": state.calls,
            },
        )

        call_started = self._clock()
        try:
            text, usage = await self._invoke(candidate, messages, options, token, streaming)
        except asyncio.CancelledError:
            if token.is_cancelled:
                raise self._cancelled(state, token) from None
            raise
        except Exception as exc:  # noqa: BLE001
            error = normalize_caller_error(exc, provider=candidate.provider_id)
            return await self._on_provider_error(state, candidate, error)

        latency_ms = int(round(max(0.0, self._clock() - call_started) * 1000))
        state.record_usage(usage, prompt_chars=prompt_chars, response_chars=len(text))
        state.buffer = text
        await self._emitter.emit(
            AgentEventType.TOOL_RESULT,
            f"Received {len(text)} characters from {candidate.label}",
            {
                "candidate": candidate.label,
                "chars": len(text),
                "usage": usage.to_dict(),
                "latency_ms": latency_ms,
            },
        )

        if not text.strip():
            state.last_preview = ""
            return self._on_empty_response(state)
        return CascadeStage.PARSING

    async def _invoke(
        self,
        candidate: Candidate,
        messages: Sequence[ChatMessage],
        options: CallOptions,
        token: CancellationToken,
        streaming: bool,
    ) -> tuple[str, TokenUsage]:
        if streaming:
            stream_started = self._clock()
            try:
                text = await self._stream(candidate, messages, options, token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                error = normalize_caller_error(exc, provider=candidate.provider_id)
                if is_terminal_provider_error(error) or isinstance(error, ProviderRateLimitError):
                    if error is exc:
                        raise
                    raise error from exc
                self._logger.info(
                    "stream_fallback",
                    candidate=candidate.label,
                    error=error.summary(),
                )
                await self._emitter.emit(
                    AgentEventType.STATUS,
                    f"Streaming from {candidate.label} failed; retrying without streaming",
                    {"candidate": candidate.label, "error": error.summary()},
                )
            else:
                latency_ms = int(round(max(0.0, self._clock() - stream_started) * 1000))
                return text, TokenUsage(latency_ms=latency_ms)

        response = await run_with_timeout(
            self._caller.chat(candidate, messages, options),
            self._settings.call_timeout_seconds,
            token,
        )
        return response.content, response.usage

    async def _stream(
        self,
        candidate: Candidate,
        messages: Sequence[ChatMessage],
        options: CallOptions,
        token: CancellationToken,
    ) -> str:
        iterator = aiter(self._caller.stream(candidate, messages, options))
        chunker = ReasoningChunker()
        parts: list[str] = []
        call_deadline = self._clock() + self._settings.call_timeout_seconds
        try:
            try:
                chunk = await run_with_timeout(
                    _next_chunk(iterator),
                    self._settings.first_chunk_timeout_seconds,
                    token,
                )
            except TimeoutError as exc:
                raise ProviderTimeoutError(
                    "no stream chunk within "
                    f"{self._settings.first_chunk_timeout_seconds:g}s",
                    provider=candidate.provider_id,
                ) from exc

            while chunk is not None:
                parts.append(chunk)
                for message in chunker.feed(chunk):
                    await self._emitter.emit(
                        AgentEventType.REASONING, message, {"candidate": candidate.label}
                    )
                remaining = call_deadline - self._clock()
                if remaining <= 0:
                    raise ProviderTimeoutError(
                        f"stream exceeded {self._settings.call_timeout_seconds:g}s",
                        provider=candidate.provider_id,
                    )
                chunk = await run_with_timeout(_next_chunk(iterator), remaining, token)
        finally:
            await _close_iterator(iterator)

        for message in chunker.flush():
            await self._emitter.emit(
                AgentEventType.REASONING, message, {"candidate": candidate.label}
            )
        return "".join(parts)

    async def _on_provider_error(
        self,
        state: CascadeState,
        candidate: Candidate,
        error: ProviderError,
    ) -> CascadeStage:
        summary = f"{candidate.label}: {error.summary()}"
        state.provider_errors.append(summary)
        state.last_reason = error.summary()
        await self._emitter.emit(
            AgentEventType.TOOL_RESULT,
            f"{candidate.label} call failed: {error.summary()}",
            {
                "candidate": candidate.label,
                "error": error.code,
                "retryable": error.retryable,
                "http_status": error.http_status,
            },
        )

        if state.pending_plan is not None:
            return CascadeStage.REPAIRING

        if is_terminal_provider_error(error):
            if isinstance(error, ProviderAuthenticationError):
                raise ProviderAuthFailedError(
                    f"{candidate.label} rejected the credentials; check the API key for "
                    f"provider {candidate.provider_id!r}",
                    attempted=state.attempted,
                    provider_errors=state.provider_errors,
                )
            raise ProviderTransportFailedError(
                f"could not reach provider {candidate.provider_id!r}: {error.detail}",
                attempted=state.attempted,
                provider_errors=state.provider_errors,
            )
        if isinstance(error, ProviderRateLimitError):
            state.last_failure = FailureClass.RATE_LIMIT
        else:
            state.last_failure = FailureClass.PROVIDER
        return CascadeStage.ADVANCE_CANDIDATE

    def _on_empty_response(self, state: CascadeState) -> CascadeStage:
        state.last_reason = "empty response"
        if state.pending_plan is not None:
            return CascadeStage.REPAIRING
        state.corrective_note = render_corrective_note(
            CorrectiveNote.EMPTY_RESPONSE, engine=self._engine
        )
        if self._can_retry(state, state.empty_response_retries, self._budgets.empty_response):
            state.empty_response_retries += 1
            return CascadeStage.RETRY_SAME_CANDIDATE
        state.last_failure = FailureClass.EMPTY
        return CascadeStage.ADVANCE_CANDIDATE

    async def _parse(self, state: CascadeState) -> CascadeStage:
        candidate = self._require_current(state)
        await self._emitter.emit(
            AgentEventType.REASONING,
            "Parsing plan response...",
            {"candidate": candidate.label},
        )
        outcome = extract(state.buffer, _PLAN_KEYS)
        if isinstance(outcome, Failed):
            state.last_preview = outcome.preview
            return self._on_malformed(state, outcome.reason)
        state.parsed = outcome.value
        state.last_preview = outcome.preview
        return CascadeStage.VALIDATING

    def _on_malformed(self, state: CascadeState, reason: str) -> CascadeStage:
        state.last_reason = reason
        if state.pending_plan is not None:
            return CascadeStage.REPAIRING
        if looks_like_code(state.buffer):
            state.last_reason = "returned code instead of a JSON plan"
            state.corrective_note = render_corrective_note(
                CorrectiveNote.CODE_INSTEAD_OF_PLAN,
                engine=self._engine,
                preview=state.buffer,
            )
        else:
            state.corrective_note = render_corrective_note(
                CorrectiveNote.INVALID_OUTPUT,
                engine=self._engine,
                error=reason,
                preview=state.buffer,
            )
        if self._can_retry(state, state.invalid_output_retries, self._budgets.invalid_output):
            state.invalid_output_retries += 1
            return CascadeStage.RETRY_SAME_CANDIDATE
        state.last_failure = FailureClass.MALFORMED
        return CascadeStage.ADVANCE_CANDIDATE

    def _validate(
        self, state: CascadeState, manifests: Mapping[str, str]
    ) -> tuple[CascadeStage, Plan | None]:
        result = validate_plan(state.parsed)

        if result.is_empty_plan and result.plan is not None:
            state.last_reason = "plan has no steps"
            if state.pending_plan is not None:
                return CascadeStage.REPAIRING, None
            if self._can_retry(state, state.empty_steps_retries, self._budgets.empty_steps):
                state.empty_steps_retries += 1
                state.pending_plan = result.plan
                state.pending_repair = RepairKind.EMPTY_STEPS
                state.corrective_note = render_corrective_note(
                    CorrectiveNote.EMPTY_STEPS, engine=self._engine
                )
                return CascadeStage.RETRY_SAME_CANDIDATE, None
            state.pending_plan = result.plan
            state.pending_repair = RepairKind.EMPTY_STEPS
            return CascadeStage.REPAIRING, None

        if not result.is_valid or result.plan is None:
            return self._on_malformed(state, result.describe()), None

        plan = result.plan
        response_warnings: list[str] = []
        if result.invalid_steps:
            dropped = "; ".join(step.describe() for step in result.invalid_steps)
            response_warnings.append(
                f"dropped {len(result.invalid_steps)} invalid step(s): {dropped}"
            )

        gaps = find_manifest_gaps(plan, manifests)
        if not gaps:
            state.pending_plan = None
            state.pending_repair = None
            state.pending_warnings = []
            state.warnings.extend(response_warnings)
            return CascadeStage.SUCCESS, plan

        scripts = [gap.script for gap in gaps]
        state.last_reason = "undeclared scripts: " + ", ".join(scripts)
        state.pending_plan = plan
        state.pending_warnings = response_warnings
        retrying_manifest = state.pending_repair is RepairKind.MANIFEST
        state.pending_repair = RepairKind.MANIFEST
        if not retrying_manifest and self._can_retry(
            state, state.manifest_repair_retries, self._budgets.manifest_repair
        ):
            state.manifest_repair_retries += 1
            state.corrective_note = render_corrective_note(
                CorrectiveNote.MISSING_MANIFEST,
                engine=self._engine,
                manifest_path=_manifest_path(plan, manifests),
                scripts=scripts,
            )
            return CascadeStage.RETRY_SAME_CANDIDATE, None
        return CascadeStage.REPAIRING, None

    def _finalize_pending(self, state: CascadeState, manifests: Mapping[str, str]) -> Plan:
        plan = state.pending_plan
        if plan is None:
            raise AssertionError("repair stage reached without a pending plan")
        if state.pending_repair is RepairKind.MANIFEST:
            gaps = find_manifest_gaps(plan, manifests)
            repaired = synthesize_manifest_repair(plan, gaps, manifests)
            state.warnings.extend(state.pending_warnings)
            scripts = ", ".join(gap.script for gap in gaps)
            state.warnings.append(f"added missing manifest scripts: {scripts}")
            self._logger.info("manifest_synthesized", scripts=[gap.script for gap in gaps])
            return repaired
        state.warnings.append("plan has no steps; accepted as-is")
        return plan

    async def _succeed(
        self, state: CascadeState, plan: Plan, started: float
    ) -> GenerationResult:
        candidate = self._require_current(state)
        if self._settings.deterministic:
            try:
                normalized = normalize_for_deterministic(plan)
            except PlanNormalizationError as exc:
                raise AgentProtocolError(
                    f"plan could not be normalized: {exc}",
                    preview=state.buffer,
                    attempted=state.attempted,
                    provider_errors=state.provider_errors,
                ) from exc
            plan, plan_hash = normalized.plan, normalized.plan_hash
        else:
            plan_hash = plan_fingerprint(plan)

        result = GenerationResult(
            plan=plan,
            model=candidate.model_id,
            provider=candidate.provider_id,
            label=candidate.label,
            usage=state.usage(),
            elapsed=max(0.0, self._clock() - started),
            fallback_used=state.index > 0,
            attempted=tuple(state.attempted),
            provider_errors=tuple(state.provider_errors),
            warnings=tuple(state.warnings),
            plan_hash=plan_hash,
            calls=state.calls,
            usage_estimated=state.usage_estimated,
        )
        await self._emitter.emit(
            AgentEventType.REASONING,
            f"Plan generated: {len(plan.steps)} step(s)",
            {"candidate": candidate.label, "steps": len(plan.steps)},
        )
        await self._emitter.emit(
            AgentEventType.PLAN,
            plan.summary or f"Plan with {len(plan.steps)} step(s)",
            result.to_dict(),
        )
        self._logger.info(
            "plan_generation_succeeded",
            candidate=candidate.label,
            calls=state.calls,
            steps=len(plan.steps),
            fallback_used=result.fallback_used,
            warnings=len(result.warnings),
        )
        return result

    async def _fail(self, state: CascadeState, error: GenerationFailedError) -> None:
        self._logger.warning(
            "plan_generation_terminal",
            code=error.code.value,
            attempted=list(error.attempted),
            calls=state.calls,
            reason=error.message,
        )
        await self._emitter.emit(AgentEventType.ERROR, error.message, error.to_dict())

    def _exhausted(self, state: CascadeState) -> GenerationFailedError:
        if state.last_failure is FailureClass.EMPTY:
            return EmptyResponseError(
                "every candidate returned an empty response",
                attempted=state.attempted,
                provider_errors=state.provider_errors,
            )
        if state.last_failure is FailureClass.MALFORMED:
            return AgentProtocolError(
                f"no candidate produced a valid plan: {state.last_reason}",
                preview=state.buffer,
                attempted=state.attempted,
                provider_errors=state.provider_errors,
            )
        providers, models = self._recommendations(state)
        return ModelsExhaustedError(
            "all candidates were rate-limited or failed; switch model or add an API key",
            attempted=state.attempted,
            provider_errors=state.provider_errors,
            recommended_providers=providers,
            recommended_models=models,
        )

    def _cancelled(
        self, state: CascadeState, token: CancellationToken
    ) -> GenerationCancelledError:
        return GenerationCancelledError(
            f"generation cancelled: {token.reason or 'operation cancelled'}",
            preview=state.buffer,
            attempted=state.attempted,
            provider_errors=state.provider_errors,
        )

    def _recommendations(self, state: CascadeState) -> tuple[list[str], list[str]]:
        catalog = self._catalog if self._catalog is not None else load_model_catalog()
        tried = {candidate.key for candidate in state.candidates}
        models: list[str] = []
        providers: list[str] = []
        for entry in catalog.models:
            if entry.rate_limited or not entry.planning_preferred:
                continue
            if f"{entry.provider}:{entry.model}" in tried:
                continue
            models.append(entry.model)
            if entry.provider not in providers:
                providers.append(entry.provider)
            if len(models) >= _MAX_RECOMMENDATIONS:
                break
        return providers, models

    async def _reserve(self, messages: Sequence[ChatMessage]) -> int:
        if self._budget is None:
            return 0
        amount = estimate_request_tokens(
            (message.content for message in messages),
            reserve_output_tokens=self._settings.reserve_output_tokens,
        )
        reservation = await self._budget.reserve(amount)
        if not reservation.ok:
            raise BudgetExceededError(
                f"token budget exceeded: requested {amount}",
                requested=amount,
                remaining=reservation.remaining,
            )
        return amount

    async def _refund(self, amount: int) -> None:
        if self._budget is None or amount <= 0:
            return
        try:
            await self._budget.refund(amount)
        except Exception as exc:  # noqa: BLE001
            self._logger.warning(
                "budget_refund_failed",
                amount=amount,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _messages(
        self, instruction: str, workspace_context: str, note: str | None
    ) -> list[ChatMessage]:
        return build_plan_messages(
            instruction,
            workspace_context=workspace_context,
            corrective_notes=(note,) if note else (),
            engine=self._engine,
        )

    def _can_retry(self, state: CascadeState, spent: int, budget: int) -> bool:
        return spent < budget and state.same_candidate_retries < self._budgets.per_candidate_cap

    @property
    def _budgets(self) -> RetryBudgets:
        return self._settings.retries

    @staticmethod
    def _require_current(state: CascadeState) -> Candidate:
        candidate = state.current
        if candidate is None:
            raise AssertionError("no current candidate")
        return candidate


async def _next_chunk(iterator: AsyncIterator[str]) -> str | None:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


async def _close_iterator(iterator: AsyncIterator[str]) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


def _manifest_path(plan: Plan, manifests: Mapping[str, str]) -> str:
    for step in plan.file_edits:
        if is_manifest_path(step.path):
            return step.path
    for path in manifests:
        if is_manifest_path(path):
            return path
    return MANIFEST_FILENAME


__all__ = [
    "CascadeStage",
    "CascadeState",
    "FailureClass",
    "GenerationResult",
    "OrchestratorSettings",
    "PlanGenerator",
    "RepairKind",
    "RetryBudgets",
    "looks_like_code",
]
