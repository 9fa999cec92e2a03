"""Plain-text rendering for plancast CLI output.

File: src/plancast/ui/render.py
Last updated: 2026-10-16

Purpose
- Provide a thin rendering layer for human-readable CLI output.
- Respect NO_COLOR environment variable and --no-color CLI flag.

What should be included in this file
- CLIRenderer class with methods for common output patterns.
- Plan and terminal-error renderers shared by the CLI commands.

Functional requirements
- Plain-text rendering must always work without external dependencies.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, TextIO

from plancast.domain.plan import FileEdit

if TYPE_CHECKING:
    from collections.abc import Sequence

    from plancast.domain.plan import Plan
    from plancast.errors import GenerationFailedError

_CONTENT_PREVIEW_LINES = 3


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    """

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stream: TextIO | None = None,
    ) -> None:
        self.verbose = verbose
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, self._stream)

    def _write(self, line: str) -> None:
        self._stream.write(line + "\n")

    def heading(self, text: str) -> None:
        self._write(f"\033[1m{text}\033[0m" if self._color else text)

    def kv(self, key: str, value: object) -> None:
        self._write(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._write(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._write(f"\n{title}")

    def warning(self, text: str) -> None:
        self._write(f"  Warning: {text}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._write(f"  {prefix}{entry}")

    def plan(self, plan: Plan) -> None:
        """Print numbered steps, with content previews in verbose mode."""

        if plan.summary:
            self.kv("Summary", plan.summary)
        self.section(f"Steps ({len(plan.steps)}):")
        for number, step in enumerate(plan.steps, start=1):
            if isinstance(step, FileEdit):
                mode = "patch" if step.old_content is not None else "write"
                self._write(f"  {number}. [{mode}] {step.path}")
                if self.verbose:
                    for line in step.new_content.splitlines()[:_CONTENT_PREVIEW_LINES]:
                        self._write(f"       | {line}")
            else:
                self._write(f"  {number}. [run] {step.command}")
            if step.description:
                self._write(f"       {step.description}")

    def failure(self, error: GenerationFailedError) -> None:
        self.heading(f"Plan generation failed ({error.code.value})")
        self.text(error.message)
        if error.attempted:
            self.section("Attempted:")
            self.items(list(error.attempted))
        if error.provider_errors:
            self.section("Provider errors:")
            self.items(list(error.provider_errors))
        if self.verbose and error.preview:
            self.section("Response preview:")
            self.text(error.preview)


def create_renderer(
    *, no_color: bool = False, verbose: bool = False, stream: TextIO | None = None
) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose, stream=stream)


__all__ = ["CLIRenderer", "create_renderer"]
