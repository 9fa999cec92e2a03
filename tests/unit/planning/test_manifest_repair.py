"""Unit tests for manifest script gap detection and synthesized repairs."""

from __future__ import annotations

import json

from plancast.domain.plan import Command, FileEdit, Plan
from plancast.planning.manifest_repair import (
    ManifestGap,
    declared_scripts,
    find_manifest_gaps,
    find_script_references,
    placeholder_script,
    synthesize_manifest_repair,
)


def test_script_references_cover_npm_pnpm_and_yarn() -> None:
    plan = Plan(
        steps=(
            Command("npm install && npm run build"),
            Command("yarn lint"),
            Command("yarn add react"),
            Command("pnpm run test:unit"),
            Command("yarn run dev"),
        )
    )

    refs = find_script_references(plan)

    assert [(ref.name, ref.manager, ref.step_index) for ref in refs] == [
        ("build", "npm", 0),
        ("lint", "yarn", 1),
        ("test:unit", "pnpm", 3),
        ("dev", "yarn", 4),
    ]


def test_gaps_ignore_scripts_declared_in_plan_or_workspace() -> None:
    plan = Plan(
        steps=(
            FileEdit("package.json", '{"scripts": {"build": "tsc"}}'),
            Command("npm run build"),
            Command("npm run test"),
            Command("npm run lint"),
        )
    )
    workspace = {"web/package.json": '{"scripts": {"lint": "eslint ."}}'}

    assert declared_scripts(plan, workspace) == frozenset({"build", "lint"})
    assert find_manifest_gaps(plan, workspace) == (ManifestGap("test", (2,)),)


def test_plan_manifest_overrides_workspace_copy_at_same_path() -> None:
    plan = Plan(steps=(FileEdit("package.json", '{"scripts": {}}'), Command("npm run build")))
    workspace = {"package.json": '{"scripts": {"build": "tsc"}}'}

    assert find_manifest_gaps(plan, workspace) == (ManifestGap("build", (1,)),)


def test_synthesizes_minimal_manifest_before_first_reference() -> None:
    plan = Plan(steps=(FileEdit("src/a.ts", "x"), Command("npm run build")))
    gaps = find_manifest_gaps(plan)

    repaired = synthesize_manifest_repair(plan, gaps)

    assert [type(step).__name__ for step in repaired.steps] == ["FileEdit", "FileEdit", "Command"]
    manifest = repaired.steps[1]
    assert isinstance(manifest, FileEdit)
    assert manifest.path == "package.json"
    assert json.loads(manifest.new_content) == {
        "name": "workspace",
        "private": True,
        "scripts": {"build": placeholder_script("build")},
    }
    assert placeholder_script("build").endswith("exit 0")
    assert find_manifest_gaps(repaired) == ()


def test_patches_plan_manifest_and_moves_it_before_command() -> None:
    plan = Plan(
        steps=(
            Command("npm run build"),
            FileEdit("package.json", '{"name": "app", "scripts": {"start": "node ."}}'),
        )
    )

    repaired = synthesize_manifest_repair(plan, find_manifest_gaps(plan))

    manifest = repaired.steps[0]
    assert isinstance(manifest, FileEdit)
    scripts = json.loads(manifest.new_content)["scripts"]
    assert scripts["start"] == "node ."
    assert scripts["build"] == placeholder_script("build")
    assert repaired.steps[1] == Command("npm run build")
    assert len(repaired.steps) == 2


def test_patches_copy_of_workspace_manifest() -> None:
    original = '{"name": "app", "scripts": {"dev": "vite"}}'
    plan = Plan(steps=(Command("echo start"), Command("yarn build")), summary="s")

    repaired = synthesize_manifest_repair(
        plan, find_manifest_gaps(plan, {"package.json": original}), {"package.json": original}
    )

    manifest = repaired.steps[1]
    assert isinstance(manifest, FileEdit)
    assert manifest.old_content == original
    assert manifest.description == "Declare scripts referenced by plan commands: build"
    assert json.loads(manifest.new_content)["scripts"] == {
        "dev": "vite",
        "build": placeholder_script("build"),
    }
    assert repaired.summary == "s"


def test_no_gaps_returns_same_plan() -> None:
    plan = Plan(steps=(Command("ls"),))
    assert synthesize_manifest_repair(plan, ()) is plan
