"""Control-plane public API."""

from plancast.control_plane.budgets import (
    BudgetGuard,
    BudgetReservation,
    InMemoryBudgetGuard,
    ReserveOutcome,
    estimate_request_tokens,
    estimate_tokens_from_chars,
)

__all__ = [
    "BudgetGuard",
    "BudgetReservation",
    "InMemoryBudgetGuard",
    "ReserveOutcome",
    "estimate_request_tokens",
    "estimate_tokens_from_chars",
]
