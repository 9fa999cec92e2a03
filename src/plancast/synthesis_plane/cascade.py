"""
plancast - candidate cascade builder

File: src/plancast/synthesis_plane/cascade.py
Last updated: 2026-10-16

Purpose
- Order resolved (provider, model, credential) entries into the candidate cascade a
  single generation attempt walks through.

What should be included in this file
- Immutable ``Candidate`` values with capability sets.
- Explicit ``CascadeRequirements`` built from configuration.
- Deterministic ordering: capability tier, then prior success, then input order.
- Proactive streaming swap for position 0.

Functional requirements
- A filter that leaves nothing must raise ``NoCapableCandidatesError``; never fall
  back to an unfiltered candidate.
- Unknown models are treated as streaming- and planning-capable.

Non-functional requirements
- Deterministic for identical inputs. Credentials never appear in logs or dicts.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import structlog

from plancast.config.resolver import ResolvedCandidateConfig
from plancast.domain.plan import JSONValue
from plancast.errors import NoCapableCandidatesError
from plancast.synthesis_plane.model_catalog import (
    ModelCatalog,
    PlanningStrength,
    load_model_catalog,
)


class Capability(StrEnum):
    STREAMING = "streaming"
    PLANNING = "planning"
    WEAK_PLANNING = "weak_planning"
    PLANNING_PREFERRED = "planning_preferred"


_PERMISSIVE_CAPABILITIES = frozenset({Capability.STREAMING, Capability.PLANNING})


@dataclass(frozen=True, slots=True)
class Candidate:
    """One (provider, model) entry in a generation cascade."""

    provider_id: str
    model_id: str
    capabilities: frozenset[Capability]
    label: str
    rate_limited: bool = False
    credential: str | None = field(default=None, repr=False, compare=False)
    base_url: str | None = None

    def __post_init__(self) -> None:
        for name in ("provider_id", "model_id", "label"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"Candidate.{name} must be a non-empty string")
            object.__setattr__(self, name, value.strip())
        object.__setattr__(
            self, "capabilities", frozenset(Capability(item) for item in self.capabilities)
        )

    @property
    def key(self) -> str:
        return f"{self.provider_id}:{self.model_id}"

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "providerId": self.provider_id,
            "modelId": self.model_id,
            "label": self.label,
            "capabilities": sorted(item.value for item in self.capabilities),
            "rateLimited": self.rate_limited,
            "baseUrl": self.base_url,
        }


@dataclass(frozen=True, slots=True)
class CascadeRequirements:
    """Capability requirements a candidate must meet to sort into the first tier."""

    streaming: bool = True
    planning: bool = True
    allow_weak_models: bool = False
    exclude_rate_limited: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> CascadeRequirements:
        generation = config.get("generation", {})
        cascade = config.get("cascade", {})
        return cls(
            streaming=bool(generation.get("streaming_enabled", True)),
            planning=bool(cascade.get("require_planning", True)),
            allow_weak_models=bool(cascade.get("allow_weak_models", False)),
            exclude_rate_limited=bool(cascade.get("exclude_rate_limited", False)),
        )

    def meets_planning(self, candidate: Candidate) -> bool:
        if not self.planning:
            return True
        if candidate.supports(Capability.PLANNING):
            return True
        return self.allow_weak_models and candidate.supports(Capability.WEAK_PLANNING)

    def is_met_by(self, candidate: Candidate) -> bool:
        if self.streaming and not candidate.supports(Capability.STREAMING):
            return False
        return self.meets_planning(candidate)


def candidate_from_resolved(
    resolved: ResolvedCandidateConfig,
    catalog: ModelCatalog | None = None,
) -> Candidate:
    """Build a ``Candidate``; explicit config wins over catalog data."""

    entry = catalog.get(resolved.model, provider=resolved.provider) if catalog else None

    if resolved.capabilities is not None:
        capabilities = frozenset(Capability(item) for item in resolved.capabilities)
    elif entry is not None:
        derived: set[Capability] = set()
        if entry.streaming:
            derived.add(Capability.STREAMING)
        if entry.planning is PlanningStrength.STRONG:
            derived.add(Capability.PLANNING)
        elif entry.planning is PlanningStrength.WEAK:
            derived.add(Capability.WEAK_PLANNING)
        if entry.planning_preferred:
            derived.add(Capability.PLANNING_PREFERRED)
        capabilities = frozenset(derived)
    else:
        capabilities = _PERMISSIVE_CAPABILITIES

    if resolved.rate_limited is not None:
        rate_limited = resolved.rate_limited
    else:
        rate_limited = entry.rate_limited if entry is not None else False

    label = resolved.label or (entry.label if entry is not None else None)
    return Candidate(
        provider_id=resolved.provider,
        model_id=resolved.model,
        capabilities=capabilities,
        label=label or f"{resolved.provider}:{resolved.model}",
        rate_limited=rate_limited,
        credential=resolved.credential,
        base_url=resolved.base_url,
    )


def build_cascade(
    resolved_configs: Iterable[ResolvedCandidateConfig],
    requirements: CascadeRequirements | None = None,
    *,
    prior_success: Mapping[str, float] | None = None,
    catalog: ModelCatalog | None = None,
    logger: Any | None = None,
) -> tuple[Candidate, ...]:
    """Return candidates ordered for one generation attempt.

    Raises ``NoCapableCandidatesError`` when the input is empty or filtering removes
    every candidate.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    reqs = requirements if requirements is not None else CascadeRequirements()
    effective_catalog = catalog if catalog is not None else load_model_catalog()
    history = dict(prior_success or {})

    candidates = [candidate_from_resolved(item, effective_catalog) for item in resolved_configs]
    if not candidates:
        raise NoCapableCandidatesError("no model candidates are configured")

    if reqs.exclude_rate_limited:
        kept = [item for item in candidates if not item.rate_limited]
        if not kept:
            raise NoCapableCandidatesError(
                "every configured candidate is rate-limited and rate-limited tiers are excluded",
                attempted=tuple(item.label for item in candidates),
            )
        candidates = kept

    indexed = list(enumerate(candidates))
    indexed.sort(
        key=lambda pair: (
            0 if reqs.is_met_by(pair[1]) else 1,
            -history.get(pair[1].key, 0.0),
            pair[0],
        )
    )
    ordered = [candidate for _, candidate in indexed]

    swapped_with: int | None = None
    if reqs.streaming:
        ordered, swapped_with = promote_streaming(ordered, reqs)

    log.info(
        "cascade_built",
        order=[item.key for item in ordered],
        swapped_with=swapped_with,
        streaming=reqs.streaming,
        exclude_rate_limited=reqs.exclude_rate_limited,
    )
    return tuple(ordered)


def promote_streaming(
    ordered: Sequence[Candidate], requirements: CascadeRequirements
) -> tuple[list[Candidate], int | None]:
    """Swap the first streaming candidate that also meets planning into position 0.

    Returns the reordered list and the index swapped with, or ``None``.
    """

    items = list(ordered)
    if not items or items[0].supports(Capability.STREAMING):
        return items, None
    for index in range(1, len(items)):
        candidate = items[index]
        if candidate.supports(Capability.STREAMING) and requirements.meets_planning(candidate):
            items[0], items[index] = items[index], items[0]
            return items, index
    return items, None


__all__ = [
    "Candidate",
    "CascadeRequirements",
    "Capability",
    "build_cascade",
    "candidate_from_resolved",
    "promote_streaming",
]
