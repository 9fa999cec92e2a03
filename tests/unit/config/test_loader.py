"""
plancast - unit tests for config loader

File: tests/unit/config/test_loader.py
Last updated: 2026-10-16

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.

Functional requirements
- Works without provider keys or network.

Non-functional requirements
- Deterministic output across repeated loads.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from plancast.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_name_for_path,
    load_config,
)
from plancast.config.schema import ConfigValidationError

if TYPE_CHECKING:
    from pathlib import Path


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_load_when_no_file_exists(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    config = load_config(environ={})

    assert config["generation"]["temperature"] == 0.2
    assert config["candidates"] == [{"provider": "openai", "model": "gpt-4o-mini"}]
    assert config["observability"]["log_dir"] == (tmp_path.resolve() / "logs").as_posix()


def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "plancast.toml", "[generation\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(path, environ={})


def test_file_values_fail_schema_validation(tmp_path: Path) -> None:
    path = _write(tmp_path / "plancast.toml", '[providers.openai]\napi_key = "sk-live"\n')

    with pytest.raises(ConfigValidationError):
        load_config(path, environ={})


def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    path = _write(tmp_path / "plancast.toml", "[generation]\ntemperature = 0.5\n")
    env = {env_name_for_path(("generation", "temperature")): "0.7"}

    from_file = load_config(path, environ={})
    from_env = load_config(path, environ=env)
    from_cli = load_config(path, environ=env, cli_overrides={"generation.temperature": 0.9})

    assert from_file["generation"]["temperature"] == 0.5
    assert from_env["generation"]["temperature"] == 0.7
    assert from_cli["generation"]["temperature"] == 0.9


def test_env_values_are_coerced_by_field_type(tmp_path: Path) -> None:
    path = _write(tmp_path / "plancast.toml", "")

    config = load_config(
        path,
        environ={
            "PLANCAST_GENERATION_STREAMING_ENABLED": "off",
            "PLANCAST_RETRIES_INVALID_OUTPUT": "3",
            "PLANCAST_GENERATION_MAX_OUTPUT_TOKENS": "2048",
            "PLANCAST_OBSERVABILITY_LOG_LEVEL": " DEBUG ",
        },
    )

    assert config["generation"]["streaming_enabled"] is False
    assert config["retries"]["invalid_output"] == 3
    assert config["generation"]["max_output_tokens"] == 2048
    assert config["observability"]["log_level"] == "DEBUG"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("PLANCAST_GENERATION_STREAMING_ENABLED", "maybe", "must be a boolean"),
        ("PLANCAST_BUDGET_MAX_TOKENS", "lots", "must be an integer"),
        ("PLANCAST_GENERATION_TEMPERATURE", "warm", "must be a number"),
    ],
)
def test_bad_env_values_are_rejected(
    tmp_path: Path, name: str, value: str, message: str
) -> None:
    path = _write(tmp_path / "plancast.toml", "")

    with pytest.raises(ConfigLoadError, match=message):
        load_config(path, environ={name: value})


def test_cli_overrides_accept_nested_mappings(tmp_path: Path) -> None:
    path = _write(tmp_path / "plancast.toml", "")

    config = load_config(
        path,
        environ={},
        cli_overrides={"cascade": {"allow_weak_models": True}, "retries.empty_steps": 0},
    )

    assert config["cascade"]["allow_weak_models"] is True
    assert config["cascade"]["require_planning"] is True
    assert config["retries"]["empty_steps"] == 0


def test_log_dir_is_normalized_relative_to_config_file(tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    path = _write(project / "plancast.toml", '[observability]\nlog_dir = "../shared/logs"\n')

    config = load_config(path, environ={})

    assert config["observability"]["log_dir"] == (tmp_path.resolve() / "shared" / "logs").as_posix()


def test_candidates_in_file_replace_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "plancast.toml",
        '[[candidates]]\nprovider = "openrouter"\nmodel = "qwen/qwen3-coder:free"\n'
        'rate_limited = true\n',
    )

    config = load_config(path, environ={})

    assert config["candidates"] == [
        {"provider": "openrouter", "model": "qwen/qwen3-coder:free", "rate_limited": True}
    ]


def test_effective_config_dump_is_redacted_and_stable(tmp_path: Path) -> None:
    path = _write(tmp_path / "plancast.toml", "")

    first = dump_effective_config(load_config(path, environ={}))
    second = dump_effective_config(load_config(path, environ={}))

    assert first == second
    assert "OPENAI_API_KEY" not in first
    assert json.loads(first)["providers"]["openai"]["api_key_env"] == "<redacted>"


def test_env_name_for_path_is_deterministic() -> None:
    assert env_name_for_path(("budget", "max_tokens")) == "PLANCAST_BUDGET_MAX_TOKENS"
    assert env_name_for_path(("a-b", "c")) == "PLANCAST_A_B_C"
