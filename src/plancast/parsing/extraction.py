"""Locate the JSON-looking region inside free-form model output."""

from __future__ import annotations

import re
from collections.abc import Sequence

from plancast.parsing.scanner import CLOSERS, OPENERS, TokenKind, tokenize

_BYTE_ORDER_MARK = "\ufeff"
_ENCLOSING_FENCE_RE = re.compile(r"^```[\w+.-]*[^\S\n]*\n?(?P<body>.*?)\n?[^\S\n]*```$", re.DOTALL)
_LEADING_FENCE_RE = re.compile(r"^```[\w+.-]*[^\S\n]*\n?")
_TRAILING_FENCE_RE = re.compile(r"\n?[^\S\n]*```$")
_NESTED_START_RE = re.compile(r"\{\s*[\"'\[]")
_STRUCTURAL_RE = re.compile(r"[{\[]")


def strip_wrapping(text: str) -> str:
    """Drop a BOM, surrounding whitespace and markdown fence markers."""
    cleaned = text.lstrip(_BYTE_ORDER_MARK).strip()
    enclosing = _ENCLOSING_FENCE_RE.match(cleaned)
    if enclosing is not None:
        return enclosing.group("body").strip()
    cleaned = _LEADING_FENCE_RE.sub("", cleaned, count=1)
    cleaned = _TRAILING_FENCE_RE.sub("", cleaned, count=1)
    return cleaned.strip()


def has_structure(text: str) -> bool:
    return _STRUCTURAL_RE.search(text) is not None


def find_start_candidates(text: str, required_keys: Sequence[str] = ()) -> list[int]:
    """Candidate start offsets, most plausible first.

    1. ``{`` directly followed by a required key in either quote style.
    2. ``{`` followed by a quote or ``[``.
    3. The first ``{`` or ``[`` anywhere.
    """
    ordered: list[int] = []

    key_hits = [
        match.start()
        for key in required_keys
        if (match := _required_key_pattern(key).search(text)) is not None
    ]
    if key_hits:
        ordered.append(min(key_hits))

    nested = _NESTED_START_RE.search(text)
    if nested is not None:
        ordered.append(nested.start())

    first = _STRUCTURAL_RE.search(text)
    if first is not None:
        ordered.append(first.start())

    return list(dict.fromkeys(ordered))


def balanced_region(text: str, start: int) -> str | None:
    """Return ``text[start:end]`` where nesting first returns to zero, else ``None``."""
    if not 0 <= start < len(text) or text[start] not in OPENERS:
        return None
    depth = 0
    for token in tokenize(text[start:]):
        if token.kind is not TokenKind.PUNCT:
            continue
        if token.text in OPENERS:
            depth += 1
        elif token.text in CLOSERS:
            depth -= 1
            if depth == 0:
                return text[start : start + token.end]
    return None


def locate_region(text: str, required_keys: Sequence[str] = ()) -> str | None:
    """First balanced region found from the ranked start candidates."""
    for start in find_start_candidates(text, required_keys):
        region = balanced_region(text, start)
        if region is not None:
            return region
    return None


def _required_key_pattern(key: str) -> re.Pattern[str]:
    return re.compile(r"\{\s*([\"'])" + re.escape(key) + r"\1")


__all__ = [
    "balanced_region",
    "find_start_candidates",
    "has_structure",
    "locate_region",
    "strip_wrapping",
]
