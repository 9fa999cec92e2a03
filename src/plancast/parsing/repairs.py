"""
plancast - near-JSON repair passes

File: src/plancast/parsing/repairs.py
Last updated: 2026-10-16

Purpose
- Pure text-to-text passes that turn common model formatting mistakes into JSON.

What should be included in this file
- Standard passes, applied in order by ``repair_json_text``: quote normalization,
  trailing-comma removal, comment stripping, Python literal translation and
  control-character escaping.
- Escalation passes used after a failed strict parse: adjacency comma insertion and
  the missing-comma heuristic.

Functional requirements
- Every pass is idempotent: ``f(f(x)) == f(x)``.
- No pass alters characters inside an already double-quoted string, except
  control-character escaping which only rewrites raw bytes below 0x20.

Non-functional requirements
- Passes work on scanner tokens, never on raw regex substitution over the whole
  text, so string content is never mistaken for structure.
"""

from __future__ import annotations

import re

from plancast.parsing.scanner import (
    CLOSERS,
    OPENERS,
    Token,
    TokenKind,
    iter_significant_pairs,
    significant,
    tokenize,
)

_LITERAL_TRANSLATIONS = {"True": "true", "False": "false", "None": "null"}
_JSON_LITERALS = frozenset({"true", "false", "null"})
_NUMBER_RE = re.compile(r"^-?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
_CONTROL_ESCAPES = {"\n": "n", "\r": "r", "\t": "t", "\b": "b", "\f": "f"}


def normalize_quotes(text: str) -> str:
    """Rewrite single-quoted strings as double-quoted JSON strings."""
    parts: list[str] = []
    for token in tokenize(text):
        if token.quote == "'":
            parts.append(_requote_single(token))
        else:
            parts.append(token.text)
    return "".join(parts)


def remove_trailing_commas(text: str) -> str:
    """Drop commas that precede a closing brace or bracket, repeated to a fixed point."""
    current = text
    while True:
        updated = _drop_trailing_commas_once(current)
        if updated == current:
            return current
        current = updated


def strip_comments(text: str) -> str:
    """Remove ``//`` and ``/* */`` comments that sit outside strings."""
    parts: list[str] = []
    for token in tokenize(text):
        if token.kind is TokenKind.LINE_COMMENT:
            continue
        if token.kind is TokenKind.BLOCK_COMMENT:
            # neighbours must not fuse into a new comment marker
            parts.append(" ")
            continue
        parts.append(token.text)
    return "".join(parts)


def translate_literals(text: str) -> str:
    """Map bareword ``True``/``False``/``None`` to their JSON spelling."""
    return "".join(
        _LITERAL_TRANSLATIONS.get(token.text, token.text)
        if token.kind is TokenKind.WORD
        else token.text
        for token in tokenize(text)
    )


def escape_control_characters(text: str) -> str:
    """Escape raw bytes below 0x20 that appear between string delimiters."""
    return "".join(
        _escape_string_controls(token.text) if token.kind is TokenKind.STRING else token.text
        for token in tokenize(text)
    )


def insert_adjacency_commas(text: str) -> str:
    """Insert commas between ``}{``/``][``-style neighbours and between adjacent strings."""
    tokens = tokenize(text)
    positions: set[int] = set()
    for first, second in iter_significant_pairs(tokens):
        if first.is_punct(CLOSERS) and second.is_punct(OPENERS):
            positions.add(first.end)
        elif first.kind is TokenKind.STRING and second.kind is TokenKind.STRING and first.closed:
            positions.add(first.end)
    return _insert_commas(text, positions)


def insert_missing_commas(text: str) -> str:
    """Insert a comma between a value and what looks like the next ``"key":`` pair."""
    visible = significant(tokenize(text))
    positions: set[int] = set()
    for index in range(len(visible) - 2):
        value, key, colon = visible[index], visible[index + 1], visible[index + 2]
        if (
            _ends_value(value)
            and key.kind is TokenKind.STRING
            and key.closed
            and colon.is_punct(":")
        ):
            positions.add(value.end)
    return _insert_commas(text, positions)


def repair_json_text(text: str) -> str:
    """Apply the standard repair passes in their fixed order."""
    repaired = normalize_quotes(text)
    repaired = remove_trailing_commas(repaired)
    repaired = strip_comments(repaired)
    repaired = translate_literals(repaired)
    return escape_control_characters(repaired)


def aggressive_cleanup(text: str) -> str:
    """Second-chance pass: trailing commas again, then adjacency commas."""
    return insert_adjacency_commas(remove_trailing_commas(text))


def _drop_trailing_commas_once(text: str) -> str:
    tokens = tokenize(text)
    doomed = {
        first.start
        for first, second in iter_significant_pairs(tokens)
        if first.is_punct(",") and second.is_punct(CLOSERS)
    }
    if not doomed:
        return text
    return "".join(
        token.text
        for token in tokens
        if not (token.kind is TokenKind.PUNCT and token.start in doomed)
    )


def _insert_commas(text: str, positions: set[int]) -> str:
    if not positions:
        return text
    parts: list[str] = []
    cursor = 0
    for position in sorted(positions):
        parts.append(text[cursor:position])
        parts.append(",")
        cursor = position
    parts.append(text[cursor:])
    return "".join(parts)


def _ends_value(token: Token) -> bool:
    if token.kind is TokenKind.STRING:
        return token.closed
    if token.kind is TokenKind.PUNCT:
        return token.text in CLOSERS
    if token.kind is TokenKind.WORD:
        return token.text in _JSON_LITERALS or _NUMBER_RE.match(token.text) is not None
    return False


def _requote_single(token: Token) -> str:
    body = token.text[1:-1] if token.closed else token.text[1:]
    out = ['"']
    index = 0
    while index < len(body):
        char = body[index]
        if char == "\\" and index + 1 < len(body):
            escaped = body[index + 1]
            out.append("'" if escaped == "'" else "\\" + escaped)
            index += 2
            continue
        out.append('\\"' if char == '"' else char)
        index += 1
    if token.closed:
        out.append('"')
    return "".join(out)


def _control_escape_body(char: str) -> str:
    return _CONTROL_ESCAPES.get(char) or f"u{ord(char):04x}"


def _escape_string_controls(raw: str) -> str:
    out: list[str] = []
    escaped = False
    for char in raw:
        if escaped:
            # backslash already emitted; only its operand needs rewriting
            out.append(_control_escape_body(char) if ord(char) < 0x20 else char)
            escaped = False
        elif char == "\\":
            out.append(char)
            escaped = True
        elif ord(char) < 0x20:
            out.append("\\" + _control_escape_body(char))
        else:
            out.append(char)
    return "".join(out)


__all__ = [
    "aggressive_cleanup",
    "escape_control_characters",
    "insert_adjacency_commas",
    "insert_missing_commas",
    "normalize_quotes",
    "remove_trailing_commas",
    "repair_json_text",
    "strip_comments",
    "translate_literals",
]
