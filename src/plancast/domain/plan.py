"""
plancast - plan domain model

File: src/plancast/domain/plan.py
Last updated: 2026-10-16

Purpose
- Typed change-plan model produced by the generation cascade.

What should be included in this file
- Step tagged union (file edit / command) with eager field validation.
- Plan container with wire serialization (camelCase keys, as models emit them).
- Structured invalid-step record used by validation diagnostics.

Functional requirements
- Every Step resolves to exactly one variant with its required fields non-empty.
- Wire form round-trips through ``to_dict`` without loss of optional fields.

Non-functional requirements
- Immutable value objects; safe to share across events and results.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import ClassVar, TypeAlias

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]


class StepType(StrEnum):
    """Discriminator values accepted in a step's ``type`` field."""

    FILE_EDIT = "file_edit"
    COMMAND = "command"


def _validate_non_empty_str(value: object, field_name: str) -> str:
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} cannot be empty")
    return value


def _validate_optional_str(value: object, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string")
    return value


@dataclass(frozen=True, slots=True)
class FileEdit:
    """Replace (or create) the file at ``path`` with ``new_content``."""

    step_type: ClassVar[StepType] = StepType.FILE_EDIT

    path: str
    new_content: str
    old_content: str | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        _validate_non_empty_str(self.path, "FileEdit.path")
        if not isinstance(self.new_content, str):
            raise TypeError("FileEdit.new_content must be a string")
        if not self.new_content:
            raise ValueError("FileEdit.new_content cannot be empty")
        _validate_optional_str(self.old_content, "FileEdit.old_content")
        _validate_optional_str(self.description, "FileEdit.description")

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "type": self.step_type.value,
            "path": self.path,
            "newContent": self.new_content,
        }
        if self.old_content is not None:
            payload["oldContent"] = self.old_content
        if self.description is not None:
            payload["description"] = self.description
        return payload


@dataclass(frozen=True, slots=True)
class Command:
    """Run ``command`` in the workspace shell."""

    step_type: ClassVar[StepType] = StepType.COMMAND

    command: str
    description: str | None = None

    def __post_init__(self) -> None:
        _validate_non_empty_str(self.command, "Command.command")
        _validate_optional_str(self.description, "Command.description")

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "type": self.step_type.value,
            "command": self.command,
        }
        if self.description is not None:
            payload["description"] = self.description
        return payload


Step: TypeAlias = FileEdit | Command


@dataclass(frozen=True, slots=True)
class InvalidStep:
    """A rejected ``steps`` element with the reason it was rejected."""

    index: int
    reason: str
    visible_keys: tuple[str, ...] = ()

    def describe(self) -> str:
        keys = ", ".join(self.visible_keys) if self.visible_keys else "none"
        return f"step {self.index}: {self.reason} (keys: {keys})"

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "index": self.index,
            "reason": self.reason,
            "visible_keys": list(self.visible_keys),
        }


@dataclass(frozen=True, slots=True)
class Plan:
    """Ordered change plan. ``steps`` may only be empty on the accepted-with-warning path."""

    steps: tuple[Step, ...]
    summary: str | None = None
    architecture: str | None = None
    stack: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        steps = tuple(self.steps)
        for index, step in enumerate(steps):
            if not isinstance(step, (FileEdit, Command)):
                raise TypeError(f"Plan.steps[{index}] must be FileEdit or Command")
        object.__setattr__(self, "steps", steps)
        _validate_optional_str(self.summary, "Plan.summary")
        _validate_optional_str(self.architecture, "Plan.architecture")
        stack = tuple(self.stack)
        for index, item in enumerate(stack):
            _validate_non_empty_str(item, f"Plan.stack[{index}]")
        object.__setattr__(self, "stack", stack)

    @property
    def file_edits(self) -> tuple[FileEdit, ...]:
        return tuple(step for step in self.steps if isinstance(step, FileEdit))

    @property
    def commands(self) -> tuple[Command, ...]:
        return tuple(step for step in self.steps if isinstance(step, Command))

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def with_steps(self, steps: tuple[Step, ...] | list[Step]) -> Plan:
        return replace(self, steps=tuple(steps))

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "steps": [step.to_dict() for step in self.steps],
        }
        if self.summary is not None:
            payload["summary"] = self.summary
        if self.architecture is not None:
            payload["architecture"] = self.architecture
        if self.stack:
            payload["stack"] = list(self.stack)
        return payload


__all__ = [
    "Command",
    "FileEdit",
    "InvalidStep",
    "JSONScalar",
    "JSONValue",
    "Plan",
    "Step",
    "StepType",
]
