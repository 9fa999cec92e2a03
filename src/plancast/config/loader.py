"""
plancast - runtime config loader.

File: src/plancast/config/loader.py
Last updated: 2026-10-16

Purpose
- Build the effective runtime config by layering overlays over the defaults.

What should be included in this file
- Layer order, lowest first: defaults, TOML file, PLANCAST_* env vars, CLI overrides.
- Env vars are derived from the scalar fields of the file-merged config, so
  every scalar setting has exactly one env name.
- Relative paths resolve against the directory holding the config file.
- Redacted, key-sorted JSON dump of the effective config.

Functional requirements
- Every layer is schema-validated before the next one is applied.
- A missing default config file is not an error; a missing explicit one is.

Non-functional requirements
- Same inputs give byte-identical output.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from plancast.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "plancast.toml"
ENV_PREFIX: Final[str] = "PLANCAST_"

# Fields absent from the defaults (value None) that still accept an env override.
_OPTIONAL_ENV_FIELDS: Final[dict[tuple[str, ...], type]] = {
    ("generation", "max_output_tokens"): int,
}

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the validated effective config: CLI > env > file > defaults."""

    if config_path is None:
        source = Path.cwd() / DEFAULT_CONFIG_FILE
        file_layer = _read_toml(source.resolve()) if source.exists() else {}
    else:
        source = Path(config_path).expanduser()
        if not source.exists():
            raise ConfigLoadError(f"config file not found: {source.resolve()}")
        file_layer = _read_toml(source.resolve())

    config = assert_valid_config(merge_config(default_config(), file_layer))

    env = os.environ if environ is None else environ
    for overlay in (_env_layer(config, env), _cli_layer(cli_overrides or {})):
        if overlay:
            config = assert_valid_config(merge_config(config, overlay))

    return assert_valid_config(normalize_paths(config, base_dir=source.resolve().parent))


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load config from a specific TOML file path."""

    return load_config(path)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Return a copy of ``config`` with path fields made absolute against ``base_dir``."""

    result = merge_config({}, config)
    for field_path in PATH_FIELDS:
        *parents, leaf = field_path
        section = _descend(result, parents)
        if section is None or not isinstance(section.get(leaf), str):
            continue
        raw = Path(os.path.expandvars(section[leaf])).expanduser()
        absolute = raw if raw.is_absolute() else base_dir / raw
        section[leaf] = Path(os.path.normpath(absolute)).as_posix()
    return result


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Redacted view of ``config`` for logs and the ``config`` command."""

    return dump_redacted(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_name_for_path(path: tuple[str, ...]) -> str:
    """Environment variable that overrides the config field at ``path``."""

    return ENV_PREFIX + "_".join(part.upper().replace("-", "_") for part in path)


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        payload = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc
    return payload


def _scalar_fields(
    payload: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], type]]:
    for key in sorted(payload):
        value = payload[key]
        path = (*prefix, key)
        if isinstance(value, Mapping):
            yield from _scalar_fields(value, path)
        elif isinstance(value, bool | int | float | str):
            yield path, type(value)


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    fields = dict(_OPTIONAL_ENV_FIELDS)
    fields.update(_scalar_fields(config))

    overlay: dict[str, Any] = {}
    for path, kind in sorted(fields.items()):
        name = env_name_for_path(path)
        raw = environ.get(name)
        if raw is None:
            continue
        coerce = _COERCERS[kind]
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(path)} {exc}") from None
        _assign(overlay, path, value)
    return overlay


def _to_bool(text: str) -> bool:
    lowered = text.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _to_int(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        raise ValueError("must be an integer") from None


def _to_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        raise ValueError("must be a number") from None


_COERCERS: Final[dict[type, Callable[[str], object]]] = {
    bool: _to_bool,
    int: _to_int,
    float: _to_float,
    str: str,
}


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    """Expand dotted keys; mapping values deep-merge like file sections do."""

    overlay: dict[str, Any] = {}
    for key in sorted(overrides):
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {key!r}")
        value = overrides[key]
        if isinstance(value, Mapping):
            existing = _descend(overlay, path) or {}
            value = merge_config(existing, value)
        _assign(overlay, path, value)
    return overlay


def _descend(payload: dict[str, Any], path: list[str] | tuple[str, ...]) -> dict[str, Any] | None:
    node: object = payload
    for part in path:
        if not isinstance(node, dict):
            return None
        node = node.get(part)
    return node if isinstance(node, dict) else None


def _assign(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    node = target
    for part in path[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[path[-1]] = value


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "effective_config",
    "env_name_for_path",
    "load_config",
    "load_config_file",
    "normalize_paths",
]
