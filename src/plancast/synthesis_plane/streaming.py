"""Chunk streamed narration into reasoning messages until the JSON plan starts."""

from __future__ import annotations

import re
import time
from collections.abc import Callable

MAX_CHUNK_CHARS = 80
FLUSH_INTERVAL_SECONDS = 0.3

_SENTENCE_END_RE = re.compile(r"[.!?]\s+")
_JSON_START_RE = re.compile(r"[{\[]")
_PURE_JSON_RE = re.compile(r'^[\s{}\[\],:"]+$')
_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")


def clean_fragment(text: str) -> str:
    """Strip code-fence markers from one narration fragment."""

    cleaned = _FENCE_OPEN_RE.sub("", text.strip())
    return _FENCE_CLOSE_RE.sub("", cleaned).strip()


def is_pure_json_fragment(text: str) -> bool:
    return bool(_PURE_JSON_RE.fullmatch(text))


class ReasoningChunker:
    """Turn streamed text into short reasoning messages.

    A message is cut at a sentence end or newline, once the buffer passes
    ``max_chars``, or when ``flush_interval`` has elapsed since the last message.
    Everything from the first ``{`` or ``[`` on is plan payload and is never emitted.
    """

    def __init__(
        self,
        *,
        max_chars: int = MAX_CHUNK_CHARS,
        flush_interval: float = FLUSH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_chars <= 0:
            raise ValueError("max_chars must be > 0")
        self._max_chars = max_chars
        self._flush_interval = flush_interval
        self._clock = clock
        self._buffer = ""
        self._json_started = False
        self._last_emit = clock()

    @property
    def json_started(self) -> bool:
        return self._json_started

    def feed(self, chunk: str) -> list[str]:
        if self._json_started or not chunk:
            return []
        self._buffer += chunk

        messages: list[str] = []
        json_start = _JSON_START_RE.search(self._buffer)
        if json_start is not None:
            narration = self._buffer[: json_start.start()]
            self._buffer = ""
            self._json_started = True
            while narration:
                piece, narration = self._cut(narration, force=True)
                self._collect(piece, messages)
            return messages

        while True:
            piece, rest = self._cut(self._buffer, force=False)
            if piece is None:
                break
            self._buffer = rest
            self._collect(piece, messages)

        if (
            self._buffer.strip()
            and self._clock() - self._last_emit > self._flush_interval
        ):
            piece, self._buffer = self._buffer, ""
            self._collect(piece, messages)
        return messages

    def flush(self) -> list[str]:
        """Emit whatever narration remains once the stream ends."""

        messages: list[str] = []
        if not self._json_started and self._buffer:
            self._collect(self._buffer, messages)
        self._buffer = ""
        return messages

    def _cut(self, text: str, *, force: bool) -> tuple[str | None, str]:
        sentence = _SENTENCE_END_RE.search(text)
        newline = text.find("\n")
        cut_points = [point for point in (sentence.end() if sentence else 0, newline + 1) if point]
        if cut_points:
            point = min(cut_points)
            return text[:point], text[point:]
        if len(text) > self._max_chars:
            return text[: self._max_chars], text[self._max_chars :]
        if force:
            return text, ""
        return None, text

    def _collect(self, piece: str | None, messages: list[str]) -> None:
        if piece is None:
            return
        cleaned = clean_fragment(piece)
        if not cleaned or is_pure_json_fragment(cleaned):
            return
        messages.append(cleaned)
        self._last_emit = self._clock()


__all__ = [
    "FLUSH_INTERVAL_SECONDS",
    "MAX_CHUNK_CHARS",
    "ReasoningChunker",
    "clean_fragment",
    "is_pure_json_fragment",
]
