"""
plancast - recovery parser

File: src/plancast/parsing/recovery.py
Last updated: 2026-10-16

Purpose
- Turn free-text model output into a single parsed JSON value, or a structured
  failure explaining why it could not.

What should be included in this file
- ``extract``: locate, repair and parse one JSON region, enforcing required keys.
- ``extract_all``: every parseable top-level object region, in order.
- ``ParseOutcome`` tagged result (``Parsed`` / ``Failed``) with bounded previews.

Functional requirements
- Empty input, non-string input and input without any brace or bracket fail fast
  without running repair passes.
- Three parse attempts: strict after standard repairs, after aggressive cleanup,
  and after the missing-comma heuristic. The last decoder error is reported.
- Narration before the located start index is never parsed.

Non-functional requirements
- Previews never carry the full payload (500 characters on success, 1000 on
  failure).
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import ClassVar, TypeAlias

from plancast.parsing.extraction import (
    balanced_region,
    has_structure,
    locate_region,
    strip_wrapping,
)
from plancast.parsing.repairs import (
    aggressive_cleanup,
    insert_missing_commas,
    normalize_quotes,
    repair_json_text,
)

SUCCESS_PREVIEW_CHARS = 500
FAILURE_PREVIEW_CHARS = 1000
NO_JSON_FOUND = "no JSON object or array found"


class ParseStage(StrEnum):
    """Which attempt produced the parsed value."""

    STRICT = "strict"
    AGGRESSIVE = "aggressive"
    MISSING_COMMAS = "missing_commas"


class JSONRecoveryError(ValueError):
    """Raised by ``parse_region`` when every parse attempt fails."""


@dataclass(frozen=True, slots=True)
class Parsed:
    value: object
    preview: str
    stage: ParseStage = ParseStage.STRICT

    ok: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class Failed:
    reason: str
    preview: str

    ok: ClassVar[bool] = False


ParseOutcome: TypeAlias = Parsed | Failed


def truncate_preview(text: str, limit: int) -> str:
    return text[:limit]


def parse_region(region: str) -> tuple[object, ParseStage]:
    """Repair and parse one extracted region, escalating through the three attempts."""
    candidate = repair_json_text(region)
    last_error = "unparseable JSON"
    for stage in ParseStage:
        if stage is ParseStage.AGGRESSIVE:
            candidate = aggressive_cleanup(candidate)
        elif stage is ParseStage.MISSING_COMMAS:
            candidate = insert_missing_commas(candidate)
        try:
            return json.loads(candidate), stage
        except (ValueError, RecursionError) as exc:
            last_error = str(exc) or type(exc).__name__
    raise JSONRecoveryError(last_error)


def extract(text: object, required_keys: Sequence[str] = ()) -> ParseOutcome:
    """Extract one JSON value from ``text``; see module docstring for the pipeline."""
    if not isinstance(text, str):
        return Failed(f"input must be a string, got {type(text).__name__}", "")

    failure_preview = truncate_preview(text, FAILURE_PREVIEW_CHARS)
    cleaned = strip_wrapping(text)
    if not cleaned:
        return Failed("empty input", failure_preview)
    if not has_structure(cleaned):
        return Failed(NO_JSON_FOUND, failure_preview)

    region = locate_region(cleaned, required_keys)
    if region is None:
        region = locate_region(normalize_quotes(cleaned), required_keys)
    if region is None:
        return Failed(NO_JSON_FOUND, failure_preview)

    try:
        value, stage = parse_region(region)
    except JSONRecoveryError as exc:
        return Failed(str(exc), failure_preview)

    if required_keys:
        if not isinstance(value, dict):
            return Failed(
                f"expected a JSON object with keys: {', '.join(required_keys)}",
                failure_preview,
            )
        missing = [key for key in required_keys if key not in value]
        if missing:
            return Failed(f"missing required keys: {', '.join(missing)}", failure_preview)

    return Parsed(value, truncate_preview(text, SUCCESS_PREVIEW_CHARS), stage)


def extract_all(text: object) -> tuple[object, ...]:
    """Every balanced ``{...}`` region that parses, left to right."""
    if not isinstance(text, str):
        return ()
    values: list[object] = []
    cursor = 0
    while True:
        start = text.find("{", cursor)
        if start < 0:
            break
        region = balanced_region(text, start)
        if region is None:
            cursor = start + 1
            continue
        cursor = start + len(region)
        try:
            value, _ = parse_region(region)
        except JSONRecoveryError:
            continue
        values.append(value)
    return tuple(values)


__all__ = [
    "FAILURE_PREVIEW_CHARS",
    "NO_JSON_FOUND",
    "SUCCESS_PREVIEW_CHARS",
    "Failed",
    "JSONRecoveryError",
    "ParseOutcome",
    "ParseStage",
    "Parsed",
    "extract",
    "extract_all",
    "parse_region",
    "truncate_preview",
]
