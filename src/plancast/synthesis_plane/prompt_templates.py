"""
plancast - planner prompt templates

File: src/plancast/synthesis_plane/prompt_templates.py
Last updated: 2026-10-16

Purpose
- Loads and renders the planner system prompt, the plan request, and the corrective
  notes appended on retries, from package-shipped templates with strict placeholders.

What should be included in this file
- Template rendering rules and declared-variable checks.
- Prompt versioning and hashing.
- Message builders used by the generation orchestrator.

Functional requirements
- Must render prompts deterministically for same inputs.
- Missing or unexpected variables are errors, never silent blanks.

Non-functional requirements
- Corrective notes quote model output only through bounded previews.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import StrEnum
from functools import lru_cache
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound, meta

from plancast.synthesis_plane.providers.base import ChatMessage
from plancast.utils.hashing import sha256_text

CORRECTIVE_PREVIEW_CHARS = 400

_PROMPTS_DIR = Path(__file__).resolve().with_name("prompts")
_TEMPLATE_NAME_RE = re.compile(r"^(?P<stem>[A-Za-z0-9_]+)(?:\.md)?$", re.IGNORECASE)
# Templates carry their version as a jinja comment: {# Last updated: 2026-10-16 #}
_VERSION_RE = re.compile(r"(?im)^\s*(?:\{#\s*)?Last updated:\s*(.+?)\s*(?:#\})?\s*$")


class PromptTemplateError(RuntimeError):
    """Base error for prompt template loading and rendering."""


class PromptTemplateNotFoundError(PromptTemplateError, FileNotFoundError):
    pass


class PromptTemplateVariableError(PromptTemplateError, ValueError):
    """Raised for missing or unexpected variables."""


class CorrectiveNote(StrEnum):
    """Which corrective instruction a retry prompt carries."""

    INVALID_OUTPUT = "corrective_invalid_output"
    EMPTY_RESPONSE = "corrective_empty_response"
    EMPTY_STEPS = "corrective_empty_steps"
    CODE_INSTEAD_OF_PLAN = "corrective_code_instead_of_plan"
    MISSING_MANIFEST = "corrective_missing_manifest"


@dataclass(frozen=True, slots=True)
class RenderedPrompt:
    """Rendered text plus the hashes that identify exactly what was sent."""

    prompt: str
    prompt_hash: str
    template_name: str
    template_version: str
    template_hash: str
    declared_variables: tuple[str, ...]


class PromptTemplateEngine:
    """Renders ``<NAME>.md`` templates from one directory with strict variables."""

    def __init__(self, *, template_root: Path | str | None = None) -> None:
        root = Path(template_root if template_root is not None else _PROMPTS_DIR).resolve()
        if not root.is_dir():
            raise PromptTemplateNotFoundError(f"template root is not a directory: {root}")
        self._template_root = root
        self._environment = Environment(
            loader=FileSystemLoader(root, encoding="utf-8"),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    @property
    def template_root(self) -> Path:
        return self._template_root

    def render(self, name: str, variables: Mapping[str, object] | None = None) -> RenderedPrompt:
        """Render one template; every declared variable must be supplied, and nothing else."""

        match = _TEMPLATE_NAME_RE.fullmatch(name.strip())
        if match is None:
            raise ValueError(f"invalid template name: {name!r}")
        filename = f"{match['stem'].upper()}.md"

        try:
            raw, _, _ = self._environment.loader.get_source(  # type: ignore[union-attr]
                self._environment, filename
            )
        except TemplateNotFound as exc:
            raise PromptTemplateNotFoundError(
                f"template not found: {filename!r} under {self._template_root}"
            ) from exc
        source = _unix_newlines(raw)

        declared = tuple(sorted(meta.find_undeclared_variables(self._environment.parse(source))))
        supplied = {key.strip(): value for key, value in (variables or {}).items()}
        if unexpected := sorted(supplied.keys() - set(declared)):
            raise PromptTemplateVariableError(
                "unexpected variables were provided: " + ", ".join(unexpected)
            )
        if missing := sorted(set(declared) - supplied.keys()):
            raise PromptTemplateVariableError(
                "missing required template variables: " + ", ".join(missing)
            )

        context = {key: _unix_newlines(_as_prompt_text(value)) for key, value in supplied.items()}
        text = _unix_newlines(self._environment.from_string(source).render(context)).strip()
        version = _VERSION_RE.search(source)
        return RenderedPrompt(
            prompt=text,
            prompt_hash=sha256_text(text),
            template_name=filename,
            template_version=version.group(1).strip() if version else "unversioned",
            template_hash=sha256_text(source),
            declared_variables=declared,
        )


@lru_cache(maxsize=4)
def default_engine() -> PromptTemplateEngine:
    return PromptTemplateEngine()


def build_plan_messages(
    instruction: str,
    *,
    workspace_context: str = "",
    corrective_notes: Sequence[str] = (),
    engine: PromptTemplateEngine | None = None,
) -> list[ChatMessage]:
    """System prompt plus one user turn; corrective notes are appended to the user turn."""

    active = engine or default_engine()
    request = active.render(
        "plan_request",
        {"instruction": instruction, "workspace_context": workspace_context},
    )
    return [
        ChatMessage(role="system", content=active.render("planner").prompt),
        ChatMessage(role="user", content="\n\n".join([request.prompt, *corrective_notes])),
    ]


def render_corrective_note(
    note: CorrectiveNote,
    *,
    engine: PromptTemplateEngine | None = None,
    **variables: object,
) -> str:
    """Render one corrective note; ``preview`` values are cut to a bounded length."""

    preview = variables.get("preview")
    if isinstance(preview, str):
        variables["preview"] = preview[:CORRECTIVE_PREVIEW_CHARS]
    return (engine or default_engine()).render(note.value, variables).prompt


def _as_prompt_text(value: object) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list | tuple) and all(isinstance(item, str) for item in value):
        return ", ".join(value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True, default=str)


def _unix_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "CORRECTIVE_PREVIEW_CHARS",
    "CorrectiveNote",
    "PromptTemplateEngine",
    "PromptTemplateError",
    "PromptTemplateNotFoundError",
    "PromptTemplateVariableError",
    "RenderedPrompt",
    "build_plan_messages",
    "default_engine",
    "render_corrective_note",
]
