"""
plancast - manifest script gap detection and repair

File: src/plancast/planning/manifest_repair.py
Last updated: 2026-10-16

Purpose
- Find ``command`` steps that run a package script nobody declares, and build the
  manifest edit that declares it.

What should be included in this file
- Script reference extraction for ``npm run``, ``pnpm run``, ``yarn run`` and bare
  ``yarn <script>``.
- Declared-script lookup across plan manifest steps and existing workspace
  manifests.
- ``synthesize_manifest_repair``: patch the plan's manifest, patch a copy of the
  workspace manifest, or create a minimal one.

Functional requirements
- Gaps are advisory; nothing here rejects a plan.
- The new or patched manifest step lands before the first command that needs it.
- Placeholder scripts print a notice and exit 0.

Non-functional requirements
- Deterministic output: gap order follows first reference, JSON is re-serialized
  with a fixed indent.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import PurePosixPath

from plancast.domain.plan import Command, FileEdit, Plan, Step
from plancast.parsing.recovery import Parsed, extract

MANIFEST_FILENAME = "package.json"

_YARN_BUILTINS = frozenset(
    {"add", "install", "remove", "init", "upgrade", "global", "why", "info", "dlx", "create"}
)
_SCRIPT_NAME = r"([A-Za-z0-9][\w:.\-]*)"
_RUN_SCRIPT_RE = re.compile(r"\b(npm|pnpm|yarn)\s+run(?:-script)?\s+" + _SCRIPT_NAME)
_YARN_BARE_RE = re.compile(r"\byarn\s+" + _SCRIPT_NAME)


@dataclass(frozen=True, slots=True)
class ScriptReference:
    name: str
    manager: str
    step_index: int


@dataclass(frozen=True, slots=True)
class ManifestGap:
    """A script that commands run but no manifest declares."""

    script: str
    step_indices: tuple[int, ...]

    @property
    def first_reference(self) -> int:
        return self.step_indices[0]


def placeholder_script(name: str) -> str:
    return f"echo \"script '{name}' is a placeholder added during plan repair\" && exit 0"


def is_manifest_path(path: str) -> bool:
    return PurePosixPath(path.strip()).name == MANIFEST_FILENAME


def find_script_references(plan: Plan) -> tuple[ScriptReference, ...]:
    references: list[ScriptReference] = []
    for index, step in enumerate(plan.steps):
        if isinstance(step, Command):
            references.extend(_references_in_command(step.command, index))
    return tuple(references)


def declared_scripts(
    plan: Plan,
    workspace_manifests: Mapping[str, str] | None = None,
) -> frozenset[str]:
    """Scripts declared by plan manifest edits plus untouched workspace manifests."""
    names: set[str] = set()
    edited_paths: set[str] = set()
    for step in plan.file_edits:
        if is_manifest_path(step.path):
            edited_paths.add(step.path)
            names.update(_scripts_in(step.new_content))
    for path, content in (workspace_manifests or {}).items():
        if is_manifest_path(path) and path not in edited_paths:
            names.update(_scripts_in(content))
    return frozenset(names)


def find_manifest_gaps(
    plan: Plan,
    workspace_manifests: Mapping[str, str] | None = None,
) -> tuple[ManifestGap, ...]:
    declared = declared_scripts(plan, workspace_manifests)
    by_name: dict[str, list[int]] = {}
    for reference in find_script_references(plan):
        if reference.name in declared:
            continue
        indices = by_name.setdefault(reference.name, [])
        if reference.step_index not in indices:
            indices.append(reference.step_index)
    return tuple(ManifestGap(name, tuple(indices)) for name, indices in by_name.items())


def synthesize_manifest_repair(
    plan: Plan,
    gaps: tuple[ManifestGap, ...] | list[ManifestGap],
    workspace_manifests: Mapping[str, str] | None = None,
) -> Plan:
    """Return ``plan`` with a manifest step that declares every gap script."""
    if not gaps:
        return plan

    missing = [gap.script for gap in gaps]
    insert_at = min(gap.first_reference for gap in gaps)
    steps: list[Step] = list(plan.steps)

    for index, step in enumerate(steps):
        if not (isinstance(step, FileEdit) and is_manifest_path(step.path)):
            continue
        base = _manifest_object(step.new_content) or _minimal_manifest()
        patched = FileEdit(
            path=step.path,
            new_content=_render_manifest(_with_scripts(base, missing)),
            old_content=step.old_content,
            description=step.description,
        )
        del steps[index]
        steps.insert(min(index, insert_at), patched)
        return plan.with_steps(steps)

    workspace_path, workspace_base = _pick_workspace_manifest(workspace_manifests)
    if workspace_path is not None and workspace_base is not None:
        original = (workspace_manifests or {})[workspace_path]
        new_step = FileEdit(
            path=workspace_path,
            new_content=_render_manifest(_with_scripts(workspace_base, missing)),
            old_content=original,
            description=_repair_description(missing),
        )
    else:
        new_step = FileEdit(
            path=MANIFEST_FILENAME,
            new_content=_render_manifest(_with_scripts(_minimal_manifest(), missing)),
            description=_repair_description(missing),
        )
    steps.insert(insert_at, new_step)
    return plan.with_steps(steps)


def _references_in_command(command: str, step_index: int) -> list[ScriptReference]:
    found: list[tuple[int, ScriptReference]] = []
    run_spans: list[tuple[int, int]] = []
    for match in _RUN_SCRIPT_RE.finditer(command):
        run_spans.append(match.span())
        found.append((match.start(), ScriptReference(match.group(2), match.group(1), step_index)))
    for match in _YARN_BARE_RE.finditer(command):
        name = match.group(1)
        if name == "run" or name in _YARN_BUILTINS:
            continue
        if any(start <= match.start() < end for start, end in run_spans):
            continue
        found.append((match.start(), ScriptReference(name, "yarn", step_index)))
    return [reference for _, reference in sorted(found, key=lambda item: item[0])]


def _manifest_object(content: str) -> dict[str, object] | None:
    outcome = extract(content)
    if isinstance(outcome, Parsed) and isinstance(outcome.value, dict):
        return dict(outcome.value)
    return None


def _scripts_in(content: str) -> set[str]:
    manifest = _manifest_object(content)
    if manifest is None:
        return set()
    scripts = manifest.get("scripts")
    if not isinstance(scripts, dict):
        return set()
    return {name for name, body in scripts.items() if isinstance(body, str) and body.strip()}


def _with_scripts(manifest: dict[str, object], names: list[str]) -> dict[str, object]:
    patched = dict(manifest)
    scripts_raw = patched.get("scripts")
    scripts: dict[str, object] = dict(scripts_raw) if isinstance(scripts_raw, dict) else {}
    for name in names:
        current = scripts.get(name)
        if not (isinstance(current, str) and current.strip()):
            scripts[name] = placeholder_script(name)
    patched["scripts"] = scripts
    return patched


def _pick_workspace_manifest(
    workspace_manifests: Mapping[str, str] | None,
) -> tuple[str | None, dict[str, object] | None]:
    if not workspace_manifests:
        return None, None
    candidates = sorted(
        (path for path in workspace_manifests if is_manifest_path(path)),
        key=lambda path: (path.count("/"), path),
    )
    for path in candidates:
        parsed = _manifest_object(workspace_manifests[path])
        if parsed is not None:
            return path, parsed
    return None, None


def _minimal_manifest() -> dict[str, object]:
    return {"name": "workspace", "private": True, "scripts": {}}


def _render_manifest(manifest: Mapping[str, object]) -> str:
    return json.dumps(manifest, indent=2, ensure_ascii=False) + "\n"


def _repair_description(names: list[str]) -> str:
    return "Declare scripts referenced by plan commands: " + ", ".join(names)


__all__ = [
    "MANIFEST_FILENAME",
    "ManifestGap",
    "ScriptReference",
    "declared_scripts",
    "find_manifest_gaps",
    "find_script_references",
    "is_manifest_path",
    "placeholder_script",
    "synthesize_manifest_repair",
]
