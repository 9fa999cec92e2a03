"""
Token budget guard and reservation accounting.

This module enforces the token envelope around plan generation:
- an opaque ``BudgetGuard`` protocol (reserve-then-refund)
- an in-memory guard that serializes reservations with an ``asyncio.Lock``
- deterministic token estimates from character counts

It integrates with:
- the generation orchestrator, which reserves before the first model call and
  refunds the unused remainder in guaranteed cleanup
- ``structlog`` for machine-parseable decision logs
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, runtime_checkable

import structlog

from plancast.constants import CHARS_PER_TOKEN, DEFAULT_RESERVE_OUTPUT_TOKENS


class ReserveOutcome(StrEnum):
    OK = "ok"
    EXCEEDED = "exceeded"


@dataclass(frozen=True, slots=True)
class BudgetReservation:
    """Result of one reservation request."""

    outcome: ReserveOutcome
    amount: int
    remaining: int | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is ReserveOutcome.OK

    def to_dict(self) -> dict[str, object]:
        return {
            "outcome": self.outcome.value,
            "amount": self.amount,
            "remaining": self.remaining,
        }


@runtime_checkable
class BudgetGuard(Protocol):
    """Shared token counter consumed by generation requests."""

    async def reserve(self, amount: int) -> BudgetReservation: ...

    async def refund(self, amount: int) -> None: ...


def estimate_tokens_from_chars(characters: int) -> int:
    """Estimate tokens as ``ceil(characters / CHARS_PER_TOKEN)``."""

    if characters < 0:
        raise ValueError("characters must be >= 0")
    return math.ceil(characters / CHARS_PER_TOKEN)


def estimate_request_tokens(
    texts: Iterable[str],
    *,
    reserve_output_tokens: int = DEFAULT_RESERVE_OUTPUT_TOKENS,
) -> int:
    """Prompt estimate for ``texts`` plus headroom for the response."""

    if reserve_output_tokens < 0:
        raise ValueError("reserve_output_tokens must be >= 0")
    characters = sum(len(text) for text in texts)
    return estimate_tokens_from_chars(characters) + reserve_output_tokens


class InMemoryBudgetGuard:
    """Process-local token budget with serialized reserve/refund."""

    def __init__(self, max_tokens: int, *, logger: Any | None = None) -> None:
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int):
            raise TypeError("max_tokens must be an integer")
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        self._max_tokens = max_tokens
        self._used = 0
        self._lock = asyncio.Lock()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls, config: Mapping[str, Any], *, logger: Any | None = None
    ) -> InMemoryBudgetGuard | None:
        """Guard for the ``budget`` config section, or ``None`` when budgeting is disabled."""

        section = config.get("budget", {})
        if not section.get("enabled", True):
            return None
        return cls(int(section.get("max_tokens", 1_000_000)), logger=logger)

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return self._max_tokens - self._used

    async def reserve(self, amount: int) -> BudgetReservation:
        if amount < 0:
            raise ValueError("amount must be >= 0")
        async with self._lock:
            if self._used + amount > self._max_tokens:
                reservation = BudgetReservation(
                    outcome=ReserveOutcome.EXCEEDED, amount=amount, remaining=self.remaining
                )
            else:
                self._used += amount
                reservation = BudgetReservation(
                    outcome=ReserveOutcome.OK, amount=amount, remaining=self.remaining
                )
        self._logger.info("budget_reserve", **reservation.to_dict())
        return reservation

    async def refund(self, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must be >= 0")
        async with self._lock:
            refunded = min(amount, self._used)
            self._used -= refunded
        self._logger.info("budget_refund", amount=refunded, remaining=self.remaining)


__all__ = [
    "BudgetGuard",
    "BudgetReservation",
    "InMemoryBudgetGuard",
    "ReserveOutcome",
    "estimate_request_tokens",
    "estimate_tokens_from_chars",
]
