"""
plancast - terminal generation errors

File: src/plancast/errors.py
Last updated: 2026-10-16

Purpose
- Named terminal failures for one plan-generation request.

What should be included in this file
- Stable machine-readable ``ErrorCode`` values.
- ``GenerationFailedError`` and one subclass per terminal failure class.
- JSON payload used as the meta of the terminal ``error`` event.

Functional requirements
- Every failure carries a bounded raw preview, the attempted candidate labels and
  the provider-error summaries collected along the way.
- Payloads never include credentials.

Non-functional requirements
- Error objects are cheap to construct and safe to log.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum
from typing import ClassVar

from plancast.domain.plan import JSONValue
from plancast.parsing.recovery import FAILURE_PREVIEW_CHARS, truncate_preview

SWITCH_MODEL_USER_ACTION = "switch_model_or_add_api_key"


class ErrorCode(StrEnum):
    EMPTY_RESPONSE = "EMPTY_RESPONSE"
    AGENT_PROTOCOL_FAILURE = "AGENT_PROTOCOL_FAILURE"
    ALL_MODELS_EXHAUSTED = "ALL_MODELS_EXHAUSTED"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    AUTH_FAILED = "AUTH_FAILED"
    PROVIDER_TRANSPORT = "PROVIDER_TRANSPORT"
    NO_CAPABLE_CANDIDATES = "NO_CAPABLE_CANDIDATES"
    CANCELLED = "CANCELLED"


class GenerationFailedError(RuntimeError):
    """Base terminal failure for a plan-generation request."""

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        *,
        preview: str = "",
        attempted: Sequence[str] = (),
        provider_errors: Sequence[str] = (),
        details: Mapping[str, JSONValue] | None = None,
    ) -> None:
        self.code = ErrorCode(code)
        self.message = " ".join(str(message).split()) or "generation failed"
        self.preview = truncate_preview(preview or "", FAILURE_PREVIEW_CHARS)
        self.attempted = tuple(attempted)
        self.provider_errors = tuple(provider_errors)
        self.details: dict[str, JSONValue] = dict(details or {})
        super().__init__(f"{self.code.value}: {self.message}")

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "code": self.code.value,
            "message": self.message,
            "preview": self.preview,
            "attempted": list(self.attempted),
            "providerErrors": list(self.provider_errors),
        }
        payload.update(self.details)
        return payload


class _FixedCodeError(GenerationFailedError):
    fixed_code: ClassVar[ErrorCode]

    def __init__(
        self,
        message: str,
        *,
        preview: str = "",
        attempted: Sequence[str] = (),
        provider_errors: Sequence[str] = (),
        details: Mapping[str, JSONValue] | None = None,
    ) -> None:
        super().__init__(
            self.fixed_code,
            message,
            preview=preview,
            attempted=attempted,
            provider_errors=provider_errors,
            details=details,
        )


class EmptyResponseError(_FixedCodeError):
    """Every candidate returned empty content."""

    fixed_code = ErrorCode.EMPTY_RESPONSE


class AgentProtocolError(_FixedCodeError):
    """Output could not be parsed or validated as a plan on any candidate."""

    fixed_code = ErrorCode.AGENT_PROTOCOL_FAILURE


class ModelsExhaustedError(_FixedCodeError):
    """Rate limits or provider errors consumed every candidate."""

    fixed_code = ErrorCode.ALL_MODELS_EXHAUSTED

    def __init__(
        self,
        message: str,
        *,
        preview: str = "",
        attempted: Sequence[str] = (),
        provider_errors: Sequence[str] = (),
        recommended_providers: Sequence[str] = (),
        recommended_models: Sequence[str] = (),
    ) -> None:
        self.recommended_providers = tuple(recommended_providers)
        self.recommended_models = tuple(recommended_models)
        super().__init__(
            message,
            preview=preview,
            attempted=attempted,
            provider_errors=provider_errors,
            details={
                "recommendedProviders": list(self.recommended_providers),
                "recommendedModels": list(self.recommended_models),
                "userAction": SWITCH_MODEL_USER_ACTION,
            },
        )


class BudgetExceededError(_FixedCodeError):
    """The budget guard refused the up-front reservation."""

    fixed_code = ErrorCode.BUDGET_EXCEEDED

    def __init__(self, message: str, *, requested: int, remaining: int | None = None) -> None:
        self.requested = requested
        self.remaining = remaining
        details: dict[str, JSONValue] = {"requestedTokens": requested}
        if remaining is not None:
            details["remainingTokens"] = remaining
        super().__init__(message, details=details)


class ProviderAuthFailedError(_FixedCodeError):
    """Credentials were rejected; retrying cannot help."""

    fixed_code = ErrorCode.AUTH_FAILED


class ProviderTransportFailedError(_FixedCodeError):
    """The model caller could not reach the provider at all."""

    fixed_code = ErrorCode.PROVIDER_TRANSPORT


class NoCapableCandidatesError(_FixedCodeError):
    """Capability filtering left nothing to try."""

    fixed_code = ErrorCode.NO_CAPABLE_CANDIDATES


class GenerationCancelledError(_FixedCodeError):
    """The caller's cancellation signal fired before a plan was produced."""

    fixed_code = ErrorCode.CANCELLED


__all__ = [
    "SWITCH_MODEL_USER_ACTION",
    "AgentProtocolError",
    "BudgetExceededError",
    "EmptyResponseError",
    "ErrorCode",
    "GenerationCancelledError",
    "GenerationFailedError",
    "ModelsExhaustedError",
    "NoCapableCandidatesError",
    "ProviderAuthFailedError",
    "ProviderTransportFailedError",
]
