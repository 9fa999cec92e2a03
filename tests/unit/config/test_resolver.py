"""Unit tests for candidate credential resolution."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from plancast.config.resolver import ResolvedCandidateConfig, resolve_candidates
from plancast.config.schema import default_config, merge_config


@dataclass(slots=True)
class _RecordingLogger:
    records: list[tuple[str, str, dict[str, object]]] = field(default_factory=list)

    def info(self, event: str, **kwargs: object) -> None:
        self.records.append(("info", event, kwargs))

    def warning(self, event: str, **kwargs: object) -> None:
        self.records.append(("warning", event, kwargs))


def _config(candidates: list[dict[str, object]]) -> dict[str, object]:
    return merge_config(
        default_config(),
        {
            "providers": {"local": {"base_url": "http://localhost:11434/v1"}},
            "candidates": candidates,
        },
    )


def test_candidates_resolve_in_config_order_with_credentials() -> None:
    config = _config(
        [
            {"provider": "openrouter", "model": "qwen/qwen3-coder:free", "rate_limited": True},
            {"provider": "openai", "model": "gpt-4o", "label": "GPT-4o"},
        ]
    )

    resolved = resolve_candidates(
        config, environ={"OPENAI_API_KEY": "sk-a", "OPENROUTER_API_KEY": " sk-b "}
    )

    assert [item.model for item in resolved] == ["qwen/qwen3-coder:free", "gpt-4o"]
    assert resolved[0].credential == "sk-b"
    assert resolved[0].base_url == "https://openrouter.ai/api/v1"
    assert resolved[0].rate_limited is True
    assert resolved[1].label == "GPT-4o"
    assert resolved[1].base_url is None


def test_missing_or_blank_credentials_skip_the_candidate() -> None:
    logger = _RecordingLogger()
    config = _config(
        [
            {"provider": "openai", "model": "gpt-4o-mini"},
            {"provider": "openrouter", "model": "openai/gpt-4o"},
        ]
    )

    resolved = resolve_candidates(config, environ={"OPENROUTER_API_KEY": "  "}, logger=logger)

    assert resolved == ()
    assert [event for _, event, _ in logger.records] == [
        "candidate_skipped_missing_credential",
        "candidate_skipped_missing_credential",
    ]
    assert logger.records[0][2]["api_key_env"] == "OPENAI_API_KEY"


def test_provider_without_key_env_resolves_without_credential() -> None:
    config = _config(
        [{"provider": "local", "model": "llama3", "capabilities": ["streaming", "planning"]}]
    )

    (resolved,) = resolve_candidates(config, environ={})

    assert resolved.credential is None
    assert resolved.base_url == "http://localhost:11434/v1"
    assert resolved.capabilities == ("streaming", "planning")


def test_unknown_provider_is_skipped_with_warning() -> None:
    logger = _RecordingLogger()
    config = {"providers": {}, "candidates": [{"provider": "ghost", "model": "m"}]}

    assert resolve_candidates(config, environ={}, logger=logger) == ()
    assert logger.records[0][:2] == ("warning", "candidate_skipped_unknown_provider")


def test_credentials_are_hidden_from_repr() -> None:
    resolved = ResolvedCandidateConfig(provider=" openai ", model="gpt-4o", credential="sk-x")

    assert resolved.provider == "openai"
    assert "sk-x" not in repr(resolved)
    with pytest.raises(ValueError):
        ResolvedCandidateConfig(provider="", model="gpt-4o")


def test_non_list_candidates_resolve_to_nothing() -> None:
    assert resolve_candidates({"candidates": "gpt-4o"}, environ={}) == ()
