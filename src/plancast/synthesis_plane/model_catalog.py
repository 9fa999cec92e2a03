"""
plancast - bundled model capability catalog.

File: src/plancast/synthesis_plane/model_catalog.py
Last updated: 2026-10-16

Purpose
- Load and expose the package-shipped capability registry used by cascade ordering.

What should be included in this file
- File-backed loader for per-model streaming/planning/rate-limit metadata.
- Deterministic lookup by provider/model with an unscoped slug fallback.

Functional requirements
- Capability decisions stay data-driven via catalog entries.
- Unknown models are reported as ``None`` so callers can stay permissive.

Non-functional requirements
- Deterministic, offline-safe, and auditable.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Any

_BUNDLED_CATALOG = Path(__file__).resolve().with_name("model_catalog.json")


class PlanningStrength(StrEnum):
    """How well a model produces structured change plans."""

    STRONG = "strong"
    WEAK = "weak"
    NONE = "none"

    @classmethod
    def parse(cls, value: object, field_name: str) -> PlanningStrength:
        """Catalog JSON writes ``true``/``false`` for strong/none and ``"weak"`` for weak."""

        if value is True:
            return cls.STRONG
        if value is False or value is None:
            return cls.NONE
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"{field_name} must be true, false, or 'weak'") from None


@dataclass(frozen=True, slots=True)
class ModelCapabilities:
    """Capability record for one provider model."""

    provider: str
    model: str
    label: str | None = None
    streaming: bool = True
    planning: PlanningStrength = PlanningStrength.STRONG
    planning_preferred: bool = False
    rate_limited: bool = False
    max_context_tokens: int | None = None

    def __post_init__(self) -> None:
        if not self.provider.strip() or not self.model.strip():
            raise ValueError("ModelCapabilities.provider and .model must be non-empty")
        object.__setattr__(self, "provider", self.provider.strip().lower())
        object.__setattr__(self, "model", self.model.strip())
        if not isinstance(self.planning, PlanningStrength):
            raise TypeError("ModelCapabilities.planning must be PlanningStrength")
        limit = self.max_context_tokens
        if limit is not None:
            if isinstance(limit, bool) or not isinstance(limit, int):
                raise TypeError("ModelCapabilities.max_context_tokens must be an integer")
            if limit <= 0:
                raise ValueError("ModelCapabilities.max_context_tokens must be > 0")

    @property
    def key(self) -> tuple[str, str]:
        return self.provider, self.model.lower()

    def meets_planning(self, *, allow_weak: bool) -> bool:
        if self.planning is PlanningStrength.STRONG:
            return True
        return allow_weak and self.planning is PlanningStrength.WEAK

    @classmethod
    def from_entry(cls, entry: Mapping[str, Any], where: str) -> ModelCapabilities:
        label = entry.get("label")
        return cls(
            provider=str(entry.get("provider") or ""),
            model=str(entry.get("model") or ""),
            label=str(label) if label else None,
            streaming=bool(entry.get("streaming", True)),
            planning=PlanningStrength.parse(entry.get("planning", True), f"{where}.planning"),
            planning_preferred=bool(entry.get("planning_preferred", False)),
            rate_limited=bool(entry.get("rate_limited", False)),
            max_context_tokens=entry.get("max_context_tokens"),
        )


@dataclass(frozen=True, slots=True)
class ModelCatalog:
    """Capability records keyed by ``(provider, model)``, both case-insensitive."""

    version: str
    last_updated: str
    models: tuple[ModelCapabilities, ...]
    _index: dict[tuple[str, str], ModelCapabilities] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        index: dict[tuple[str, str], ModelCapabilities] = {}
        for entry in self.models:
            if entry.key in index:
                raise ValueError(
                    f"duplicate model catalog key for provider={entry.provider!r}, "
                    f"model={entry.model!r}"
                )
            index[entry.key] = entry
        object.__setattr__(self, "_index", index)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, object]) -> ModelCatalog:
        missing = [name for name in ("version", "last_updated") if not payload.get(name)]
        if missing:
            raise ValueError(f"model catalog is missing {', '.join(missing)}")
        entries = payload.get("models")
        if not isinstance(entries, list):
            raise TypeError("models must be an array")
        models = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, Mapping):
                raise TypeError(f"models[{index}] must be an object")
            models.append(ModelCapabilities.from_entry(entry, f"models[{index}]"))
        return cls(
            version=str(payload["version"]),
            last_updated=str(payload["last_updated"]),
            models=tuple(models),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> ModelCatalog:
        source = Path(path).expanduser().resolve()
        try:
            payload = json.loads(source.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid model catalog JSON in {source}: {exc}") from exc
        except OSError as exc:
            raise ValueError(f"unable to read model catalog file {source}: {exc}") from exc
        if not isinstance(payload, Mapping):
            raise TypeError(f"model catalog root must be an object: {source}")
        return cls.from_mapping(payload)

    def get(self, model: str, *, provider: str | None = None) -> ModelCapabilities | None:
        """Look up ``model``; a provider miss falls back to a unique unscoped slug match."""

        slug = model.strip().lower()
        if provider is not None:
            found = self._index.get((provider.strip().lower(), slug))
            if found is not None:
                return found
        matches = [entry for (_, entry_slug), entry in self._index.items() if entry_slug == slug]
        return matches[0] if len(matches) == 1 else None

    def require(self, model: str, *, provider: str | None = None) -> ModelCapabilities:
        found = self.get(model, provider=provider)
        if found is None:
            scope = f" for provider {provider!r}" if provider is not None else ""
            raise KeyError(f"unknown model {model!r}{scope}")
        return found


@lru_cache(maxsize=8)
def load_model_catalog(path: str | Path | None = None) -> ModelCatalog:
    """Load and cache a catalog; ``None`` loads the one bundled with the package."""

    return ModelCatalog.from_file(_BUNDLED_CATALOG if path is None else path)


__all__ = [
    "ModelCapabilities",
    "ModelCatalog",
    "PlanningStrength",
    "load_model_catalog",
]
