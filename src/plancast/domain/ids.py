"""Sortable identifiers for agent events and generation requests.

IDs are ``<prefix>-<ulid>``: a 48-bit millisecond timestamp followed by 80 random bits,
written as 26 Crockford Base32 characters. Lexical order follows creation time, which
keeps event logs sortable without parsing timestamps.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_RANDOM_BYTES: Final[int] = 10
_RANDOM_BITS: Final[int] = _RANDOM_BYTES * 8

EVENT_ID_PREFIX: Final[str] = "evt"
REQUEST_ID_PREFIX: Final[str] = "req"

_DIGITS: Final[dict[str, int]] = {
    char: value for value, char in enumerate(CROCKFORD_BASE32_ALPHABET)
}

RandBytes = Callable[[int], bytes]


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    """Return a new ULID; ``timestamp_ms`` and ``randbytes`` are injectable for tests."""

    stamp = time.time_ns() // 1_000_000 if timestamp_ms is None else timestamp_ms
    if not 0 <= stamp <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(
            f"timestamp_ms out of range: expected 0..{ULID_MAX_TIMESTAMP_MS}, got {stamp}"
        )

    entropy = bytes((randbytes or secrets.token_bytes)(_RANDOM_BYTES))
    if len(entropy) != _RANDOM_BYTES:
        raise ValueError(f"randbytes must return exactly {_RANDOM_BYTES} bytes")

    value = (stamp << _RANDOM_BITS) | int.from_bytes(entropy, "big")
    return "".join(
        CROCKFORD_BASE32_ALPHABET[(value >> shift) & 0x1F]
        for shift in range(5 * (ULID_LENGTH - 1), -1, -5)
    )


def validate_ulid(s: str) -> None:
    """Raise ``ValueError`` naming the first problem with ``s``."""

    _decode(s)


def parse_ulid_timestamp_ms(s: str) -> int:
    return _decode(s) >> _RANDOM_BITS


def generate_prefixed_id(
    prefix: str, *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    if not prefix or "-" in prefix:
        raise ValueError(f"prefix must be non-empty and must not contain '-': {prefix!r}")
    return f"{prefix}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    head, sep, tail = id_str.partition("-")
    if head != expected_prefix or not sep:
        raise ValueError(f"expected prefix '{expected_prefix}-' in {id_str!r}")
    try:
        _decode(tail)
    except ValueError as exc:
        raise ValueError(f"invalid ULID part for prefix '{expected_prefix}': {exc}") from exc


def generate_event_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return generate_prefixed_id(EVENT_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_event_id(id_str: str) -> None:
    validate_prefixed_id(id_str, EVENT_ID_PREFIX)


def generate_request_id(
    *, timestamp_ms: int | None = None, randbytes: RandBytes | None = None
) -> str:
    return generate_prefixed_id(REQUEST_ID_PREFIX, timestamp_ms=timestamp_ms, randbytes=randbytes)


def validate_request_id(id_str: str) -> None:
    validate_prefixed_id(id_str, REQUEST_ID_PREFIX)


def short_id(id_str: str) -> str:
    """Last 8 characters, used in human-readable CLI output."""

    if len(id_str) < 8:
        raise ValueError("id must be at least 8 characters")
    return id_str[-8:]


def _decode(text: str) -> int:
    if len(text) != ULID_LENGTH:
        raise ValueError(f"ulid length must be {ULID_LENGTH}, got {len(text)}")
    value = 0
    for index, char in enumerate(text.upper()):
        digit = _DIGITS.get(char)
        if digit is None:
            raise ValueError(f"invalid ULID character {text[index]!r} at index {index}")
        value = value << 5 | digit
    # 26 characters hold 130 bits; a ULID is 128.
    if value >> 128:
        raise ValueError("ulid overflow: value exceeds maximum 128-bit ULID")
    return value


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "EVENT_ID_PREFIX",
    "REQUEST_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_event_id",
    "generate_prefixed_id",
    "generate_request_id",
    "generate_ulid",
    "parse_ulid_timestamp_ms",
    "short_id",
    "validate_event_id",
    "validate_prefixed_id",
    "validate_request_id",
    "validate_ulid",
]
