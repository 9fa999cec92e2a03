"""
plancast - resilient plan generation from language models

File: src/plancast/__init__.py
Last updated: 2026-10-16

Purpose
- Package root. Turns a natural-language instruction into a validated, machine-executable
  plan by asking a cascade of model candidates, recovering near-JSON output, and
  validating the result.

What should be included in this file
- Version export and minimal public API surface (keep small).

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
