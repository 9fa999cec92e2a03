"""
plancast - unit tests for the recovery parser

File: tests/unit/parsing/test_recovery.py
Last updated: 2026-10-16

Purpose
- Validate ``extract``/``extract_all`` end to end on realistic model output.

What this test file should cover
- Single-quoted, trailing-comma plan wrapped in narration.
- Fast-fail inputs (empty, non-string, no structure) and required-key enforcement.
- Escalation through the aggressive and missing-comma attempts.
- Preview caps on success and failure.
- Property: comment-looking text inside quoted values survives verbatim.

Functional requirements
- Offline and deterministic.

Non-functional requirements
- Hypothesis runs derandomized.
"""

from __future__ import annotations

import json

from hypothesis import given, settings
from hypothesis import strategies as st

from plancast.parsing import Failed, Parsed, ParseStage, extract, extract_all
from plancast.parsing.recovery import (
    FAILURE_PREVIEW_CHARS,
    NO_JSON_FOUND,
    SUCCESS_PREVIEW_CHARS,
)


def test_single_quoted_plan_with_trailing_commas_in_narration() -> None:
    text = (
        "Looking at this: {'steps': "
        "[{'type':'file_edit','path':'a.ts','newContent':'x'},], 'summary':'ok',}"
    )
    outcome = extract(text, ("steps",))

    assert isinstance(outcome, Parsed)
    assert outcome.ok is True
    assert outcome.value == {
        "steps": [{"type": "file_edit", "path": "a.ts", "newContent": "x"}],
        "summary": "ok",
    }


def test_fast_fail_inputs() -> None:
    empty = extract("   ")
    assert isinstance(empty, Failed)
    assert empty.reason == "empty input"

    not_text = extract(None)
    assert isinstance(not_text, Failed)
    assert not_text.reason == "input must be a string, got NoneType"
    assert not_text.preview == ""

    prose = extract("I could not produce a plan this time.")
    assert isinstance(prose, Failed)
    assert prose.reason == NO_JSON_FOUND
    assert prose.ok is False


def test_required_keys_are_enforced_after_parse() -> None:
    missing = extract('{"summary": "x"}', ("steps",))
    assert isinstance(missing, Failed)
    assert missing.reason == "missing required keys: steps"

    wrong_shape = extract("[1, 2]", ("steps",))
    assert isinstance(wrong_shape, Failed)
    assert wrong_shape.reason == "expected a JSON object with keys: steps"


def test_fenced_output_with_comments_and_python_literals() -> None:
    text = 'Here you go:\n```json\n{"steps": [], // none yet\n "ok": True}\n```'
    outcome = extract(text, ("steps",))

    assert isinstance(outcome, Parsed)
    assert outcome.value == {"steps": [], "ok": True}
    assert outcome.stage is ParseStage.STRICT


def test_raw_newlines_inside_strings_are_escaped() -> None:
    outcome = extract('{"newContent": "line1\nline2\tend"}')
    assert isinstance(outcome, Parsed)
    assert outcome.value == {"newContent": "line1\nline2\tend"}


def test_escalates_to_aggressive_cleanup() -> None:
    outcome = extract('{"steps": [{"a": 1}{"b": 2}]}')
    assert isinstance(outcome, Parsed)
    assert outcome.value == {"steps": [{"a": 1}, {"b": 2}]}
    assert outcome.stage is ParseStage.AGGRESSIVE


def test_escalates_to_missing_comma_heuristic() -> None:
    outcome = extract('{"a": 1 "b": 2}')
    assert isinstance(outcome, Parsed)
    assert outcome.value == {"a": 1, "b": 2}
    assert outcome.stage is ParseStage.MISSING_COMMAS


def test_reports_last_decoder_error_when_all_attempts_fail() -> None:
    outcome = extract('{"a": }')
    assert isinstance(outcome, Failed)
    assert outcome.reason.startswith("Expecting value")


def test_previews_are_capped() -> None:
    success = extract("x" * 2000 + '{"a": 1}')
    assert isinstance(success, Parsed)
    assert len(success.preview) == SUCCESS_PREVIEW_CHARS

    failure = extract("y" * 3000 + "{")
    assert isinstance(failure, Failed)
    assert failure.reason == NO_JSON_FOUND
    assert len(failure.preview) == FAILURE_PREVIEW_CHARS


def test_extract_all_returns_parseable_objects_in_order() -> None:
    text = "first {\"a\": 1} then {'b': 2,} and broken {\"c\": } end"
    assert extract_all(text) == ({"a": 1}, {"b": 2})
    assert extract_all("nothing here") == ()
    assert extract_all(42) == ()


def test_extract_all_recovers_inner_object_of_truncated_outer() -> None:
    assert extract_all('{"outer": {"inner": true}') == ({"inner": True},)


_WORDS = st.text(alphabet="abcdefghij XYZ.,:-", max_size=20)


@settings(max_examples=50, derandomize=True, deadline=None)
@given(before=_WORDS, after=_WORDS)
def test_comment_like_text_in_double_quoted_value_survives(before: str, after: str) -> None:
    note = f"{before} // not a comment {after}"
    text = "Plan follows. {\"note\": " + json.dumps(note) + ", 'n': 1,} /* trailing */"
    outcome = extract(text, ("note",))

    assert isinstance(outcome, Parsed)
    assert isinstance(outcome.value, dict)
    assert outcome.value["note"] == note


@settings(max_examples=50, derandomize=True, deadline=None)
@given(before=_WORDS, after=_WORDS)
def test_comment_like_text_in_single_quoted_value_survives(before: str, after: str) -> None:
    text = f"{{'note': '{before} /* x */ // not a comment {after}', }}"
    outcome = extract(text)

    assert isinstance(outcome, Parsed)
    assert isinstance(outcome.value, dict)
    assert "// not a comment" in outcome.value["note"]
    assert "/* x */" in outcome.value["note"]
