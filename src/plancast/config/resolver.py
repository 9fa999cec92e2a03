"""Resolve configured candidates into credentialed entries ready for cascade ordering."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog


@dataclass(frozen=True, slots=True)
class ResolvedCandidateConfig:
    """One configured candidate after provider lookup and credential resolution."""

    provider: str
    model: str
    credential: str | None = field(default=None, repr=False)
    label: str | None = None
    base_url: str | None = None
    capabilities: tuple[str, ...] | None = None
    rate_limited: bool | None = None

    def __post_init__(self) -> None:
        for name in ("provider", "model"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"ResolvedCandidateConfig.{name} must be a non-empty string")
            object.__setattr__(self, name, value.strip())
        if self.capabilities is not None:
            object.__setattr__(self, "capabilities", tuple(self.capabilities))


def resolve_candidates(
    config: Mapping[str, Any],
    *,
    environ: Mapping[str, str] | None = None,
    logger: Any | None = None,
) -> tuple[ResolvedCandidateConfig, ...]:
    """Attach credentials and endpoints to each configured candidate, in config order.

    Candidates whose provider names an ``api_key_env`` that is unset or blank are
    skipped and logged. Providers without ``api_key_env`` resolve with no credential.
    """

    log = logger if logger is not None else structlog.get_logger(__name__)
    env_map = os.environ if environ is None else environ
    providers = config.get("providers")
    provider_map: Mapping[str, Any] = providers if isinstance(providers, Mapping) else {}
    entries = config.get("candidates")
    if not isinstance(entries, list):
        return ()

    resolved: list[ResolvedCandidateConfig] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            continue
        provider = str(entry.get("provider", ""))
        model = str(entry.get("model", ""))
        settings = provider_map.get(provider)
        if not isinstance(settings, Mapping):
            log.warning(
                "candidate_skipped_unknown_provider", index=index, provider=provider, model=model
            )
            continue

        credential: str | None = None
        env_name = settings.get("api_key_env")
        if isinstance(env_name, str):
            credential = (env_map.get(env_name) or "").strip() or None
            if credential is None:
                log.info(
                    "candidate_skipped_missing_credential",
                    index=index,
                    provider=provider,
                    model=model,
                    api_key_env=env_name,
                )
                continue

        capabilities = entry.get("capabilities")
        rate_limited = entry.get("rate_limited")
        resolved.append(
            ResolvedCandidateConfig(
                provider=provider,
                model=model,
                credential=credential,
                label=entry.get("label"),
                base_url=settings.get("base_url"),
                capabilities=tuple(capabilities) if isinstance(capabilities, list) else None,
                rate_limited=rate_limited if isinstance(rate_limited, bool) else None,
            )
        )
    return tuple(resolved)


__all__ = ["ResolvedCandidateConfig", "resolve_candidates"]
