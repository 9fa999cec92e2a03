"""
plancast - unit tests for plan validation

File: tests/unit/planning/test_validator.py
Last updated: 2026-10-16

Purpose
- Validate shape checks, step classification, and the result/assert API pair.

What this test file should cover
- Each rejection kind, including flattened arrays of arrays.
- Per-step invalid reasons with index and visible keys.
- Property: valid steps survive in order, invalid ones never leak into the plan.

Functional requirements
- Offline and deterministic.

Non-functional requirements
- Hypothesis runs derandomized.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from plancast.domain.plan import Command, FileEdit
from plancast.planning.validator import (
    PlanRejection,
    PlanValidationError,
    assert_valid_plan,
    classify_step,
    validate_plan,
)


@pytest.mark.parametrize(
    ("value", "rejection"),
    [
        ([1, 2], PlanRejection.NOT_AN_OBJECT),
        ({"summary": "x"}, PlanRejection.MISSING_STEPS),
        ({"steps": "do things"}, PlanRejection.STEPS_NOT_ARRAY),
        ({"steps": []}, PlanRejection.EMPTY_STEPS),
        ({"steps": [[], []]}, PlanRejection.EMPTY_STEPS),
        ({"steps": ["create a file", "run tests"]}, PlanRejection.STRING_STEPS),
        ({"steps": [{"type": "delete", "path": "a"}]}, PlanRejection.NO_VALID_STEPS),
    ],
)
def test_rejection_kinds(value: object, rejection: PlanRejection) -> None:
    result = validate_plan(value)
    assert result.rejection is rejection
    assert result.is_valid is False


def test_empty_steps_keeps_plan_metadata_for_repair() -> None:
    result = validate_plan({"steps": [], "summary": "nothing to do"})

    assert result.is_empty_plan
    assert result.plan is not None
    assert result.plan.is_empty
    assert result.plan.summary == "nothing to do"


def test_flattens_one_level_of_nested_steps() -> None:
    result = validate_plan(
        {
            "steps": [
                [{"type": "command", "command": "npm test"}],
                [{"type": "file_edit", "path": "a.ts", "newContent": "x"}],
            ]
        }
    )

    assert result.is_valid
    assert result.flattened is True
    assert result.plan is not None
    assert result.plan.steps == (Command("npm test"), FileEdit("a.ts", "x"))


def test_classify_step_reasons_include_visible_keys() -> None:
    missing_type = classify_step(0, {"path": "a.ts"})
    assert missing_type.describe() == "step 0: missing 'type' (keys: path)"

    no_path = classify_step(1, {"type": "file_edit", "newContent": "x"})
    assert no_path.describe() == (
        "step 1: file_edit requires a non-empty 'path' (keys: newContent, type)"
    )

    blank_content = classify_step(2, {"type": "file_edit", "path": "a", "newContent": ""})
    assert "non-empty string 'newContent'" in blank_content.describe()

    blank_command = classify_step(3, {"type": "command", "command": "   "})
    assert "non-empty 'command'" in blank_command.describe()

    scalar = classify_step(4, 7)
    assert scalar.describe() == "step 4: expected an object, got number (keys: none)"


def test_optional_fields_are_carried_through() -> None:
    plan = assert_valid_plan(
        {
            "steps": [
                {
                    "type": "file_edit",
                    "path": "src/app.ts",
                    "newContent": "export {}",
                    "oldContent": "",
                    "description": "stub",
                },
                {"type": "command", "command": "npm i", "description": 5},
            ],
            "summary": "scaffold",
            "architecture": "spa",
            "stack": ["react", "", 3],
        }
    )

    edit = plan.steps[0]
    assert isinstance(edit, FileEdit)
    assert edit.old_content == ""
    assert edit.description == "stub"
    assert plan.steps[1] == Command("npm i")
    assert plan.summary == "scaffold"
    assert plan.architecture == "spa"
    assert plan.stack == ("react",)


def test_assert_valid_plan_raises_with_all_reasons() -> None:
    with pytest.raises(PlanValidationError) as caught:
        assert_valid_plan({"steps": [{"type": "command"}, {"kind": "file_edit"}]})

    assert caught.value.rejection is PlanRejection.NO_VALID_STEPS
    message = str(caught.value)
    assert message.startswith("invalid plan: no step in 'steps' is valid")
    assert "step 0: command requires a non-empty 'command'" in message
    assert "step 1: missing 'type' (keys: kind)" in message


def test_partially_invalid_plan_is_valid_and_reports_dropped_steps() -> None:
    result = validate_plan(
        {"steps": [{"type": "command", "command": "ls"}, {"type": "noop"}]}
    )

    assert result.is_valid
    assert len(result.invalid_steps) == 1
    assert result.invalid_steps[0].index == 1
    assert "dropped invalid steps" in result.describe()


_NAMES = st.text(alphabet="abcdefghijklmnop", min_size=1, max_size=8)
_VALID_STEPS = st.one_of(
    st.builds(
        lambda name, body: {"type": "file_edit", "path": f"src/{name}.ts", "newContent": body},
        _NAMES,
        _NAMES,
    ),
    st.builds(lambda name: {"type": "command", "command": f"npm run {name}"}, _NAMES),
)
_INVALID_STEPS = st.one_of(
    st.builds(lambda name: {"path": name}, _NAMES),
    st.builds(lambda name: {"type": "rename", "path": name}, _NAMES),
    st.builds(lambda name: {"type": "file_edit", "path": name}, _NAMES),
    st.builds(lambda name: {"type": "command", "command": ""}, _NAMES),
    st.integers(),
    st.none(),
    _NAMES,
)


def _expected_step(raw: object) -> FileEdit | Command:
    assert isinstance(raw, dict)
    if raw["type"] == "file_edit":
        return FileEdit(raw["path"], raw["newContent"])
    return Command(raw["command"])


@settings(max_examples=40, derandomize=True, deadline=None)
@given(
    entries=st.lists(
        st.one_of(
            st.tuples(st.just(True), _VALID_STEPS),
            st.tuples(st.just(False), _INVALID_STEPS),
        ),
        min_size=2,
        max_size=8,
    ).filter(lambda items: any(ok for ok, _ in items) and not all(ok for ok, _ in items))
)
def test_no_silent_data_loss(entries: list[tuple[bool, object]]) -> None:
    result = validate_plan({"steps": [raw for _, raw in entries]})

    expected = [_expected_step(raw) for ok, raw in entries if ok]
    assert result.is_valid
    assert result.plan is not None
    assert list(result.plan.steps) == expected
    assert [item.index for item in result.invalid_steps] == [
        index for index, (ok, _) in enumerate(entries) if not ok
    ]
