"""
plancast - unit tests for planner prompt templates

File: tests/unit/synthesis_plane/test_prompt_templates.py
Last updated: 2026-10-16

Purpose
- Validate strict template rendering and the planner message builders.

What this test file should cover
- Shipped templates render with exactly their declared variables.
- Missing or unexpected variables raise; unsafe names and paths are rejected.
- Version extraction and stable hashes.
- Corrective notes append to the user turn and bound their previews.

Functional requirements
- Offline and deterministic.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from plancast.synthesis_plane.prompt_templates import (
    CORRECTIVE_PREVIEW_CHARS,
    CorrectiveNote,
    PromptTemplateEngine,
    PromptTemplateError,
    PromptTemplateNotFoundError,
    PromptTemplateVariableError,
    build_plan_messages,
    default_engine,
    render_corrective_note,
)

if TYPE_CHECKING:
    from pathlib import Path


def test_planner_prompt_is_versioned_and_hash_is_stable() -> None:
    first = default_engine().render("planner")
    second = PromptTemplateEngine().render("PLANNER.md")

    assert first.template_name == "PLANNER.md"
    assert first.template_version == "2026-10-16"
    assert first.declared_variables == ()
    assert first.prompt_hash == second.prompt_hash
    assert "Last updated" not in first.prompt
    assert '"steps"' in first.prompt


def test_plan_request_requires_exact_variables() -> None:
    engine = default_engine()

    with pytest.raises(PromptTemplateVariableError, match="missing"):
        engine.render("plan_request", {"instruction": "x"})
    with pytest.raises(PromptTemplateVariableError, match="unexpected"):
        engine.render(
            "plan_request", {"instruction": "x", "workspace_context": "", "extra": 1}
        )


def test_workspace_context_section_is_optional() -> None:
    engine = default_engine()

    bare = engine.render("plan_request", {"instruction": "add login", "workspace_context": ""})
    with_context = engine.render(
        "plan_request", {"instruction": "add login", "workspace_context": "Next.js app"}
    )

    assert "Workspace context" not in bare.prompt
    assert "Workspace context:\nNext.js app" in with_context.prompt


def test_template_names_and_paths_are_validated(tmp_path: Path) -> None:
    engine = PromptTemplateEngine(template_root=tmp_path)

    with pytest.raises(ValueError):
        engine.render("../secrets")
    with pytest.raises(PromptTemplateNotFoundError):
        engine.render("missing")
    with pytest.raises(PromptTemplateError):
        PromptTemplateEngine(template_root=tmp_path / "nope")


def test_custom_root_renders_unversioned_templates(tmp_path: Path) -> None:
    (tmp_path / "GREETING.md").write_text("Hello {{ names }}\r\n", encoding="utf-8")
    engine = PromptTemplateEngine(template_root=tmp_path)

    rendered = engine.render("greeting", {"names": ["a", "b"]})

    assert rendered.prompt == "Hello a, b"
    assert rendered.template_version == "unversioned"


def test_build_plan_messages_appends_notes_to_user_turn() -> None:
    note = render_corrective_note(CorrectiveNote.EMPTY_RESPONSE)

    messages = build_plan_messages(
        "add a login page", workspace_context="", corrective_notes=(note,)
    )

    assert [message.role for message in messages] == ["system", "user"]
    assert messages[1].content.startswith("Instruction:\nadd a login page")
    assert messages[1].content.endswith(note)


def test_corrective_preview_is_bounded() -> None:
    preview = "x" * (CORRECTIVE_PREVIEW_CHARS * 3)

    note = render_corrective_note(
        CorrectiveNote.INVALID_OUTPUT, error="no JSON found", preview=preview
    )

    assert "x" * CORRECTIVE_PREVIEW_CHARS in note
    assert "x" * (CORRECTIVE_PREVIEW_CHARS + 1) not in note
    assert "no JSON found" in note


def test_missing_manifest_note_lists_scripts() -> None:
    note = render_corrective_note(
        CorrectiveNote.MISSING_MANIFEST,
        manifest_path="web/package.json",
        scripts=["build", "lint"],
    )

    assert "not declared in web/package.json: build, lint." in note


@pytest.mark.parametrize("note", list(CorrectiveNote))
def test_every_corrective_note_has_a_template(note: CorrectiveNote) -> None:
    engine = default_engine()
    declared = engine.render(note.value, _variables_for(note)).declared_variables

    assert set(declared) == set(_variables_for(note))


def _variables_for(note: CorrectiveNote) -> dict[str, object]:
    if note is CorrectiveNote.INVALID_OUTPUT:
        return {"error": "e", "preview": "p"}
    if note is CorrectiveNote.CODE_INSTEAD_OF_PLAN:
        return {"preview": "p"}
    if note is CorrectiveNote.MISSING_MANIFEST:
        return {"manifest_path": "package.json", "scripts": ["build"]}
    return {}
