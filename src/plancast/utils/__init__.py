"""Utility exports for hashing and concurrency helpers."""

from plancast.utils.concurrency import CancellationToken, run_with_timeout
from plancast.utils.hashing import canonical_json, sha256_bytes, sha256_json, sha256_text

__all__ = [
    "CancellationToken",
    "canonical_json",
    "run_with_timeout",
    "sha256_bytes",
    "sha256_json",
    "sha256_text",
]
