"""
plancast - plan shape validation

File: src/plancast/planning/validator.py
Last updated: 2026-10-16

Purpose
- Turn a parsed JSON value into a typed ``Plan`` or a structured rejection.

What should be included in this file
- One-level flattening of ``steps`` that arrive as arrays of arrays.
- Per-step classification into ``FileEdit`` / ``Command`` / ``InvalidStep``.
- Rejection kinds the orchestrator can react to (notably ``empty_steps`` and
  ``string_steps``).
- Result/assert API pair (``validate_plan`` never raises, ``assert_valid_plan``
  raises ``PlanValidationError``).

Functional requirements
- Valid steps keep their original relative order; invalid ones are reported with
  index, reason and visible keys, never dropped silently.
- A plan with zero surviving steps is never reported as valid.

Non-functional requirements
- Pure and deterministic; no I/O and no logging.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from plancast.domain.plan import Command, FileEdit, InvalidStep, Plan, Step, StepType


class PlanRejection(StrEnum):
    NOT_AN_OBJECT = "not_an_object"
    MISSING_STEPS = "missing_steps"
    STEPS_NOT_ARRAY = "steps_not_array"
    EMPTY_STEPS = "empty_steps"
    STRING_STEPS = "string_steps"
    NO_VALID_STEPS = "no_valid_steps"


_REJECTION_MESSAGES: dict[PlanRejection, str] = {
    PlanRejection.NOT_AN_OBJECT: "plan must be a JSON object",
    PlanRejection.MISSING_STEPS: "plan is missing the 'steps' array",
    PlanRejection.STEPS_NOT_ARRAY: "'steps' must be an array",
    PlanRejection.EMPTY_STEPS: "'steps' is empty",
    PlanRejection.STRING_STEPS: "'steps' contains descriptions instead of step objects",
    PlanRejection.NO_VALID_STEPS: "no step in 'steps' is valid",
}


@dataclass(frozen=True, slots=True)
class PlanValidationResult:
    """Outcome of validating one parsed value.

    ``plan`` is set when the shape is valid, and also for ``empty_steps`` (an
    empty plan the caller may repair or accept with a warning).
    """

    plan: Plan | None
    rejection: PlanRejection | None = None
    invalid_steps: tuple[InvalidStep, ...] = ()
    flattened: bool = False
    visible_keys: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return self.rejection is None and self.plan is not None

    @property
    def is_empty_plan(self) -> bool:
        return self.rejection is PlanRejection.EMPTY_STEPS

    def describe(self) -> str:
        if self.rejection is None:
            if not self.invalid_steps:
                return "plan is valid"
            dropped = "; ".join(step.describe() for step in self.invalid_steps)
            return f"plan is valid; dropped invalid steps: {dropped}"
        message = _REJECTION_MESSAGES[self.rejection]
        if self.rejection in (PlanRejection.NOT_AN_OBJECT, PlanRejection.MISSING_STEPS):
            keys = ", ".join(self.visible_keys) if self.visible_keys else "none"
            return f"{message} (keys: {keys})"
        if self.invalid_steps:
            reasons = "; ".join(step.describe() for step in self.invalid_steps)
            return f"{message}: {reasons}"
        return message


class PlanValidationError(ValueError):
    """Raised by ``assert_valid_plan`` with the full validation result attached."""

    def __init__(self, result: PlanValidationResult) -> None:
        self.result = result
        super().__init__(f"invalid plan: {result.describe()}")

    @property
    def rejection(self) -> PlanRejection | None:
        return self.result.rejection


def validate_plan(value: object) -> PlanValidationResult:
    if not isinstance(value, Mapping):
        return PlanValidationResult(plan=None, rejection=PlanRejection.NOT_AN_OBJECT)

    visible = _visible_keys(value)
    if "steps" not in value:
        return PlanValidationResult(
            plan=None, rejection=PlanRejection.MISSING_STEPS, visible_keys=visible
        )

    raw_steps = value["steps"]
    if not isinstance(raw_steps, list):
        return PlanValidationResult(
            plan=None, rejection=PlanRejection.STEPS_NOT_ARRAY, visible_keys=visible
        )

    elements, flattened = _flatten_once(raw_steps)
    if not elements:
        return PlanValidationResult(
            plan=_build_plan(value, ()),
            rejection=PlanRejection.EMPTY_STEPS,
            flattened=flattened,
            visible_keys=visible,
        )

    if all(isinstance(element, str) for element in elements):
        return PlanValidationResult(
            plan=None,
            rejection=PlanRejection.STRING_STEPS,
            flattened=flattened,
            visible_keys=visible,
        )

    steps: list[Step] = []
    invalid: list[InvalidStep] = []
    for index, element in enumerate(elements):
        step = classify_step(index, element)
        if isinstance(step, InvalidStep):
            invalid.append(step)
        else:
            steps.append(step)

    if not steps:
        return PlanValidationResult(
            plan=None,
            rejection=PlanRejection.NO_VALID_STEPS,
            invalid_steps=tuple(invalid),
            flattened=flattened,
            visible_keys=visible,
        )

    return PlanValidationResult(
        plan=_build_plan(value, tuple(steps)),
        invalid_steps=tuple(invalid),
        flattened=flattened,
        visible_keys=visible,
    )


def assert_valid_plan(value: object) -> Plan:
    result = validate_plan(value)
    if not result.is_valid or result.plan is None:
        raise PlanValidationError(result)
    return result.plan


def classify_step(index: int, element: object) -> Step | InvalidStep:
    """Resolve one ``steps`` element to a typed step or an ``InvalidStep``."""
    if not isinstance(element, Mapping):
        return InvalidStep(index, f"expected an object, got {_type_label(element)}")

    keys = _visible_keys(element)
    step_type = element.get("type")
    if step_type is None:
        return InvalidStep(index, "missing 'type'", keys)

    if step_type == StepType.FILE_EDIT.value:
        path = element.get("path")
        if not _is_non_blank(path):
            return InvalidStep(index, "file_edit requires a non-empty 'path'", keys)
        new_content = element.get("newContent")
        if not isinstance(new_content, str) or not new_content:
            return InvalidStep(index, "file_edit requires a non-empty string 'newContent'", keys)
        return FileEdit(
            path=str(path),
            new_content=new_content,
            old_content=_optional_str(element.get("oldContent")),
            description=_optional_str(element.get("description")),
        )

    if step_type == StepType.COMMAND.value:
        command = element.get("command")
        if not _is_non_blank(command):
            return InvalidStep(index, "command requires a non-empty 'command'", keys)
        return Command(command=str(command), description=_optional_str(element.get("description")))

    return InvalidStep(index, f"unsupported type {step_type!r}", keys)


def _flatten_once(raw_steps: list[object]) -> tuple[list[object], bool]:
    if not any(isinstance(element, list) for element in raw_steps):
        return list(raw_steps), False
    flattened: list[object] = []
    for element in raw_steps:
        if isinstance(element, list):
            flattened.extend(element)
        else:
            flattened.append(element)
    return flattened, True


def _build_plan(value: Mapping[str, object], steps: tuple[Step, ...]) -> Plan:
    stack_raw = value.get("stack")
    stack: tuple[str, ...] = ()
    if isinstance(stack_raw, list):
        stack = tuple(item for item in stack_raw if isinstance(item, str) and item.strip())
    return Plan(
        steps=steps,
        summary=_optional_str(value.get("summary")),
        architecture=_optional_str(value.get("architecture")),
        stack=stack,
    )


def _visible_keys(value: Mapping[object, object]) -> tuple[str, ...]:
    return tuple(sorted(str(key) for key in value))


def _is_non_blank(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _optional_str(value: object) -> str | None:
    return value if isinstance(value, str) else None


def _type_label(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, str):
        return "string"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, list):
        return "array"
    return type(value).__name__


__all__ = [
    "PlanRejection",
    "PlanValidationError",
    "PlanValidationResult",
    "assert_valid_plan",
    "classify_step",
    "validate_plan",
]
