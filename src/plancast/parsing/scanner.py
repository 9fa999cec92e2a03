"""
plancast - near-JSON scanner

File: src/plancast/parsing/scanner.py
Last updated: 2026-10-16

Purpose
- Lossless tokenizer for model output that looks like JSON but may not be JSON.

What should be included in this file
- Token kinds for strings (either quote style), comments, structural punctuation,
  barewords and whitespace.
- Helpers to walk significant tokens (anything but whitespace and comments).

Functional requirements
- ``"".join(token.text for token in tokenize(text)) == text`` for every input.
- A string token ends only at the delimiter that opened it; a backslash always
  consumes the next character.
- Comment markers inside strings are string content, quote characters inside
  comments are comment content.

Non-functional requirements
- Single forward pass, no regex backtracking on untrusted input.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from enum import StrEnum

QUOTE_CHARS = "\"'"
OPENERS = "{["
CLOSERS = "}]"
PUNCTUATION = "{}[]:,"


class TokenKind(StrEnum):
    STRING = "string"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"
    PUNCT = "punct"
    WORD = "word"
    SPACE = "space"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    text: str
    start: int
    closed: bool = True

    @property
    def end(self) -> int:
        return self.start + len(self.text)

    @property
    def is_trivia(self) -> bool:
        return self.kind in (TokenKind.SPACE, TokenKind.LINE_COMMENT, TokenKind.BLOCK_COMMENT)

    @property
    def quote(self) -> str | None:
        if self.kind is TokenKind.STRING:
            return self.text[0]
        return None

    def is_punct(self, chars: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text in chars


def tokenize(text: str) -> list[Token]:
    tokens: list[Token] = []
    length = len(text)
    index = 0
    while index < length:
        char = text[index]
        nxt = text[index + 1] if index + 1 < length else ""
        if char in QUOTE_CHARS:
            end, closed = _scan_string(text, index)
            tokens.append(Token(TokenKind.STRING, text[index:end], index, closed))
        elif char == "/" and nxt == "/":
            newline = text.find("\n", index)
            end = length if newline < 0 else newline
            tokens.append(Token(TokenKind.LINE_COMMENT, text[index:end], index))
        elif char == "/" and nxt == "*":
            terminator = text.find("*/", index + 2)
            closed = terminator >= 0
            end = terminator + 2 if closed else length
            tokens.append(Token(TokenKind.BLOCK_COMMENT, text[index:end], index, closed))
        elif char.isspace():
            end = index + 1
            while end < length and text[end].isspace():
                end += 1
            tokens.append(Token(TokenKind.SPACE, text[index:end], index))
        elif char in PUNCTUATION:
            end = index + 1
            tokens.append(Token(TokenKind.PUNCT, char, index))
        else:
            end = _scan_word(text, index)
            tokens.append(Token(TokenKind.WORD, text[index:end], index))
        index = end
    return tokens


def significant(tokens: Sequence[Token]) -> list[Token]:
    return [token for token in tokens if not token.is_trivia]


def iter_significant_pairs(tokens: Sequence[Token]) -> Iterator[tuple[Token, Token]]:
    """Yield each significant token together with the next significant token."""
    visible = significant(tokens)
    for index in range(len(visible) - 1):
        yield visible[index], visible[index + 1]


def _scan_string(text: str, start: int) -> tuple[int, bool]:
    delimiter = text[start]
    length = len(text)
    index = start + 1
    while index < length:
        char = text[index]
        if char == "\\":
            index += 2
            continue
        if char == delimiter:
            return index + 1, True
        index += 1
    return length, False


def _scan_word(text: str, start: int) -> int:
    length = len(text)
    index = start + 1
    while index < length:
        char = text[index]
        if char.isspace() or char in PUNCTUATION or char in QUOTE_CHARS:
            break
        if char == "/" and index + 1 < length and text[index + 1] in "/*":
            break
        index += 1
    return index


__all__ = [
    "CLOSERS",
    "OPENERS",
    "PUNCTUATION",
    "QUOTE_CHARS",
    "Token",
    "TokenKind",
    "iter_significant_pairs",
    "significant",
    "tokenize",
]
