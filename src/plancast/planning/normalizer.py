"""Deterministic plan normalization and fingerprinting."""

from __future__ import annotations

import re
from dataclasses import dataclass

from plancast.domain.plan import Command, FileEdit, JSONValue, Plan, Step
from plancast.utils.hashing import sha256_json

MAX_PATH_DEPTH = 3
PLAN_HASH_LENGTH = 16

_REPEATED_SLASHES_RE = re.compile(r"/{2,}")


class PlanNormalizationError(ValueError):
    """A plan cannot be normalized (for example a path nested too deeply)."""


@dataclass(frozen=True, slots=True)
class NormalizedPlan:
    plan: Plan
    plan_hash: str


def normalize_path(path: str) -> str:
    normalized = path.strip()
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return _REPEATED_SLASHES_RE.sub("/", normalized)


def path_depth(path: str) -> int:
    """Number of directory segments before the file name."""
    parts = [part for part in normalize_path(path).split("/") if part]
    return max(0, len(parts) - 1)


def plan_fingerprint(plan: Plan) -> str:
    """Short SHA-256 over the canonical ``{steps: [...]}`` identity of a plan."""
    canonical: list[JSONValue] = []
    for step in plan.steps:
        if isinstance(step, FileEdit):
            canonical.append({"type": step.step_type.value, "path": step.path})
        else:
            canonical.append({"type": step.step_type.value, "command": step.command})
    return sha256_json({"steps": canonical}, length=PLAN_HASH_LENGTH)


def normalize_for_deterministic(plan: Plan) -> NormalizedPlan:
    """Normalize paths, order file edits by path then commands by text, and hash."""
    file_edits: list[FileEdit] = []
    for step in plan.file_edits:
        if path_depth(step.path) > MAX_PATH_DEPTH:
            raise PlanNormalizationError(
                f"path {step.path!r} exceeds max depth of {MAX_PATH_DEPTH} nested directories"
            )
        path = normalize_path(step.path)
        if not path:
            raise PlanNormalizationError(f"path {step.path!r} is empty after normalization")
        file_edits.append(
            FileEdit(
                path=path,
                new_content=step.new_content,
                old_content=step.old_content,
                description=step.description,
            )
        )

    commands: list[Command] = sorted(plan.commands, key=lambda step: step.command)
    ordered: list[Step] = [*sorted(file_edits, key=lambda step: step.path), *commands]
    normalized = plan.with_steps(ordered)
    return NormalizedPlan(plan=normalized, plan_hash=plan_fingerprint(normalized))


__all__ = [
    "MAX_PATH_DEPTH",
    "PLAN_HASH_LENGTH",
    "NormalizedPlan",
    "PlanNormalizationError",
    "normalize_for_deterministic",
    "normalize_path",
    "path_depth",
    "plan_fingerprint",
]
