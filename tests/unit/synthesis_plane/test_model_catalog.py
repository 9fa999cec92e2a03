"""Unit tests for the bundled model capability catalog."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from plancast.synthesis_plane.model_catalog import (
    ModelCatalog,
    PlanningStrength,
    load_model_catalog,
)

if TYPE_CHECKING:
    from pathlib import Path


def _catalog(*models: dict[str, object]) -> ModelCatalog:
    return ModelCatalog.from_mapping(
        {"version": "t", "last_updated": "2026-10-16", "models": list(models)}
    )


def test_bundled_catalog_loads_and_is_cached() -> None:
    catalog = load_model_catalog()

    assert catalog is load_model_catalog()
    assert catalog.get("gpt-4o-mini", provider="openai") is not None
    r1 = catalog.require("deepseek/deepseek-r1-0528:free", provider="openrouter")
    assert r1.streaming is False
    assert r1.rate_limited is True
    assert r1.planning_preferred is True


def test_weak_planning_values_parse() -> None:
    catalog = _catalog(
        {"provider": "p", "model": "strong"},
        {"provider": "p", "model": "weak", "planning": "weak"},
        {"provider": "p", "model": "none", "planning": False},
    )

    assert catalog.require("strong").planning is PlanningStrength.STRONG
    weak = catalog.require("weak")
    assert weak.planning is PlanningStrength.WEAK
    assert weak.meets_planning(allow_weak=False) is False
    assert weak.meets_planning(allow_weak=True) is True
    assert catalog.require("none").meets_planning(allow_weak=True) is False


def test_lookup_is_case_insensitive_and_falls_back_to_unique_slug() -> None:
    catalog = _catalog(
        {"provider": "OpenRouter", "model": "Vendor/Model-A"},
        {"provider": "openai", "model": "shared"},
        {"provider": "openrouter", "model": "shared"},
    )

    entry = catalog.get("vendor/model-a", provider="openrouter")
    assert entry is not None
    assert entry.provider == "openrouter"
    assert catalog.get("vendor/model-a", provider="unknown") is entry
    assert catalog.get("shared") is None
    assert catalog.get("shared", provider="openai") is not None


def test_require_raises_for_unknown_model() -> None:
    with pytest.raises(KeyError, match="unknown model"):
        _catalog().require("missing", provider="openai")


def test_duplicate_entries_are_rejected() -> None:
    with pytest.raises(ValueError, match="duplicate"):
        _catalog({"provider": "p", "model": "m"}, {"provider": "P", "model": "M"})


def test_invalid_fields_are_rejected() -> None:
    with pytest.raises(ValueError):
        ModelCatalog.from_mapping({"last_updated": "x", "models": []})
    with pytest.raises(TypeError):
        _catalog({"provider": "p", "model": "m", "max_context_tokens": "big"})


def test_from_file_reports_bad_json(tmp_path: Path) -> None:
    broken = tmp_path / "catalog.json"
    broken.write_text("{not json", encoding="utf-8")
    good = tmp_path / "good.json"
    good.write_text(
        json.dumps({"version": "1", "last_updated": "x", "models": []}), encoding="utf-8"
    )

    with pytest.raises(ValueError, match="invalid model catalog JSON"):
        ModelCatalog.from_file(broken)
    assert ModelCatalog.from_file(good).models == ()
