"""
plancast - hashing utilities

File: src/plancast/utils/hashing.py
Last updated: 2026-10-16

Purpose
- Provide deterministic SHA-256 helpers for text and canonical JSON payloads.

Functional requirements
- Canonical JSON uses sorted keys and compact separators so equal payloads hash equally.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json

__all__ = [
    "canonical_json",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def canonical_json(value: object) -> str:
    """Serialize ``value`` with sorted keys and compact separators."""

    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_json(value: object, *, length: int | None = None) -> str:
    """Return the SHA-256 of the canonical JSON form, optionally truncated to ``length``."""

    digest = sha256_text(canonical_json(value))
    if length is None:
        return digest
    if length <= 0 or length > len(digest):
        raise ValueError(f"length must be in 1..{len(digest)}")
    return digest[:length]
