"""
plancast - synthesis plane

File: src/plancast/synthesis_plane/__init__.py
Last updated: 2026-10-16

Purpose
- Synthesis plane: candidate cascade, prompt assembly, provider callers, and the
  orchestrator that turns model output into a validated plan.

Functional requirements
- Must be provider-agnostic through the ``ModelCaller`` protocol.
"""

from plancast.synthesis_plane.cascade import (
    Candidate,
    CascadeRequirements,
    Capability,
    build_cascade,
    candidate_from_resolved,
)
from plancast.synthesis_plane.orchestrator import (
    CascadeStage,
    CascadeState,
    GenerationResult,
    OrchestratorSettings,
    PlanGenerator,
    RetryBudgets,
    looks_like_code,
)

__all__ = [
    "Candidate",
    "CascadeRequirements",
    "CascadeStage",
    "CascadeState",
    "Capability",
    "GenerationResult",
    "OrchestratorSettings",
    "PlanGenerator",
    "RetryBudgets",
    "build_cascade",
    "candidate_from_resolved",
    "looks_like_code",
]
