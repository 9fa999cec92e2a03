"""
plancast - configuration schema and validation.

File: src/plancast/config/schema.py
Last updated: 2026-10-16

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helper.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject embedded secrets; credentials are only referenced through ``*_env`` keys.
- Every configured candidate must name a configured provider.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Collection, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from plancast.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CALL_TIMEOUT_SECONDS,
    DEFAULT_FIRST_CHUNK_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_RESERVE_OUTPUT_TOKENS,
    KNOWN_PROVIDER_BASE_URLS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
CAPABILITY_NAMES: Final[tuple[str, ...]] = (
    "streaming",
    "planning",
    "weak_planning",
    "planning_preferred",
)
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

_ENV_NAME_PATTERN = re.compile(r"^[A-Z_][A-Z0-9_]*$")
_PROVIDER_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)


class MetaConfig(TypedDict):
    schema_version: int


class GenerationConfig(TypedDict):
    streaming_enabled: bool
    temperature: float
    call_timeout_seconds: float
    first_chunk_timeout_seconds: float
    request_timeout_seconds: float
    deterministic: bool
    max_output_tokens: NotRequired[int]


class RetriesConfig(TypedDict):
    empty_response: int
    invalid_output: int
    empty_steps: int
    manifest_repair: int


class CascadeConfig(TypedDict):
    require_planning: bool
    allow_weak_models: bool
    exclude_rate_limited: bool


class BudgetConfig(TypedDict):
    enabled: bool
    max_tokens: int
    reserve_output_tokens: int


class ProviderSettings(TypedDict, total=False):
    api_key_env: str
    base_url: str


class CandidateSettings(TypedDict):
    provider: str
    model: str
    label: NotRequired[str]
    capabilities: NotRequired[list[str]]
    rate_limited: NotRequired[bool]


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_file: bool
    log_to_stderr: bool
    redact_secrets: bool


class PlancastConfig(TypedDict):
    meta: MetaConfig
    generation: GenerationConfig
    retries: RetriesConfig
    cascade: CascadeConfig
    budget: BudgetConfig
    providers: dict[str, ProviderSettings]
    candidates: list[CandidateSettings]
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[PlancastConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "generation": {
        "streaming_enabled": True,
        "temperature": 0.2,
        "call_timeout_seconds": DEFAULT_CALL_TIMEOUT_SECONDS,
        "first_chunk_timeout_seconds": DEFAULT_FIRST_CHUNK_TIMEOUT_SECONDS,
        "request_timeout_seconds": DEFAULT_REQUEST_TIMEOUT_SECONDS,
        "deterministic": False,
    },
    "retries": {
        "empty_response": 1,
        "invalid_output": 1,
        "empty_steps": 1,
        "manifest_repair": 1,
    },
    "cascade": {
        "require_planning": True,
        "allow_weak_models": False,
        "exclude_rate_limited": False,
    },
    "budget": {
        "enabled": True,
        "max_tokens": 1_000_000,
        "reserve_output_tokens": DEFAULT_RESERVE_OUTPUT_TOKENS,
    },
    "providers": {
        "openai": {"api_key_env": "OPENAI_API_KEY"},
        "openrouter": {
            "api_key_env": "OPENROUTER_API_KEY",
            "base_url": KNOWN_PROVIDER_BASE_URLS["openrouter"],
        },
    },
    "candidates": [
        {"provider": "openai", "model": "gpt-4o-mini"},
    ],
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs/",
        "log_to_file": False,
        "log_to_stderr": True,
        "redact_secrets": True,
    },
}



_SENSITIVE_KEY = re.compile(
    r"(^|_)(secret|token|password|passwd|api|key|apikey|private|credentials?|auth)(_|$)"
)
_SECRET_MESSAGE: Final[str] = (
    "embedded secret values are forbidden; use an *_env key with an env var name"
)

FieldKind = Literal["bool", "int", "float", "str", "env", "url", "path", "level", "capabilities"]


@dataclass(frozen=True, slots=True)
class _Field:
    kind: FieldKind
    required: bool = True
    minimum: int | float | None = None
    maximum: int | float | None = None
    positive: bool = False


_RETRY = _Field("int", minimum=0, maximum=5)
_TIMEOUT = _Field("float", positive=True)

_SECTION_FIELDS: Final[dict[str, dict[str, _Field]]] = {
    "meta": {"schema_version": _Field("int", minimum=1)},
    "generation": {
        "streaming_enabled": _Field("bool"),
        "temperature": _Field("float", minimum=0.0, maximum=2.0),
        "call_timeout_seconds": _TIMEOUT,
        "first_chunk_timeout_seconds": _TIMEOUT,
        "request_timeout_seconds": _TIMEOUT,
        "deterministic": _Field("bool"),
        "max_output_tokens": _Field("int", required=False, minimum=1),
    },
    "retries": {
        "empty_response": _RETRY,
        "invalid_output": _RETRY,
        "empty_steps": _RETRY,
        "manifest_repair": _RETRY,
    },
    "cascade": {
        "require_planning": _Field("bool"),
        "allow_weak_models": _Field("bool"),
        "exclude_rate_limited": _Field("bool"),
    },
    "budget": {
        "enabled": _Field("bool"),
        "max_tokens": _Field("int", minimum=1),
        "reserve_output_tokens": _Field("int", minimum=0),
    },
    "observability": {
        "log_level": _Field("level"),
        "log_dir": _Field("path"),
        "log_to_file": _Field("bool"),
        "log_to_stderr": _Field("bool"),
        "redact_secrets": _Field("bool"),
    },
}
_PROVIDER_FIELDS: Final[dict[str, _Field]] = {
    "api_key_env": _Field("env", required=False),
    "base_url": _Field("url", required=False),
}
_CANDIDATE_FIELDS: Final[dict[str, _Field]] = {
    "provider": _Field("str"),
    "model": _Field("str"),
    "label": _Field("str", required=False),
    "capabilities": _Field("capabilities", required=False),
    "rate_limited": _Field("bool", required=False),
}
_ROOT_KEYS: Final[tuple[str, ...]] = (*_SECTION_FIELDS, "providers", "candidates")


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        lines = [f"- {item.path}: {item.message}" for item in self.issues]
        super().__init__("invalid config:\n" + ("\n".join(lines) or "unknown validation failure"))


Issues = list[ConfigValidationIssue]


def default_config() -> PlancastConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Explain how to resolve a ``meta.schema_version`` mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade plancast.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the plancast runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``. Lists are replaced whole."""

    merged: dict[str, Any] = _plain(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = _plain(value)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate ``config``; issues carry dotted paths such as ``candidates[0].model``."""

    issues: Issues = []
    root = _as_object(config, "<root>", issues)
    normalized = _validate_root(root, issues) if root is not None else None
    if issues or normalized is None:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Copy of ``config`` with credential references and secret-like keys masked."""

    if not isinstance(config, Mapping):
        return {}
    return {
        key: "<redacted>" if _masked(key) else _redact_value(config[key])
        for key in sorted(config)
    }


dump_redacted = redact_config


def _validate_root(payload: dict[str, object], issues: Issues) -> dict[str, Any]:
    _report_unknown(payload, _ROOT_KEYS, "", issues)

    out: dict[str, Any] = {}
    for name in _ROOT_KEYS:
        if name not in payload:
            issues.append(ConfigValidationIssue(name, "missing required field"))
            continue
        raw = payload[name]
        if name == "candidates":
            out[name] = _validate_candidates(raw, issues)
            continue
        section = _as_object(raw, name, issues)
        if section is None:
            continue
        if name == "providers":
            out[name] = _validate_providers(section, issues)
        else:
            out[name] = _check_fields(section, _SECTION_FIELDS[name], name, issues)

    version = out.get("meta", {}).get("schema_version")
    if version is not None and version != ConfigSchemaVersion:
        issues.append(ConfigValidationIssue("meta.schema_version", migration_guidance(version)))

    for index, entry in enumerate(out.get("candidates", ())):
        provider = entry.get("provider")
        if "providers" in out and provider is not None and provider not in out["providers"]:
            issues.append(
                ConfigValidationIssue(
                    f"candidates[{index}].provider",
                    f"provider {provider!r} has no [providers.{provider}] section",
                )
            )
    return out


def _validate_providers(payload: dict[str, object], issues: Issues) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        path = f"providers.{name}"
        if _PROVIDER_NAME_PATTERN.fullmatch(name) is None:
            message = (
                _SECRET_MESSAGE
                if _looks_sensitive(name)
                else "provider names must match [a-z][a-z0-9_-]*"
            )
            issues.append(ConfigValidationIssue(path, message))
            continue
        settings = _as_object(payload[name], path, issues)
        if settings is not None:
            out[name] = _check_fields(settings, _PROVIDER_FIELDS, path, issues)
    return out


def _validate_candidates(value: object, issues: Issues) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        issues.append(ConfigValidationIssue("candidates", _type_error("array", value)))
        return []
    out: list[dict[str, Any]] = []
    for index, raw in enumerate(value):
        path = f"candidates[{index}]"
        entry = _as_object(raw, path, issues)
        if entry is not None:
            out.append(_check_fields(entry, _CANDIDATE_FIELDS, path, issues))
    return out


def _check_fields(
    payload: dict[str, object], fields: Mapping[str, _Field], path: str, issues: Issues
) -> dict[str, Any]:
    _report_unknown(payload, fields, path, issues)
    out: dict[str, Any] = {}
    for key, rule in fields.items():
        field_path = f"{path}.{key}"
        if key not in payload:
            if rule.required:
                issues.append(ConfigValidationIssue(field_path, "missing required field"))
            continue
        parsed = _PARSERS[rule.kind](payload[key], field_path, issues)
        if parsed is not None and _in_range(parsed, rule, field_path, issues):
            out[key] = parsed
    return out


def _report_unknown(
    payload: Mapping[str, object], known: Collection[str], path: str, issues: Issues
) -> None:
    for key in sorted(payload):
        if key not in known:
            message = _SECRET_MESSAGE if _looks_sensitive(key) else "unknown field"
            issues.append(ConfigValidationIssue(f"{path}.{key}" if path else key, message))


def _in_range(value: object, rule: _Field, path: str, issues: Issues) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return True
    if rule.positive and value <= 0:
        message = "must be > 0"
    elif rule.minimum is not None and value < rule.minimum:
        message = f"must be >= {rule.minimum}"
    elif rule.maximum is not None and value > rule.maximum:
        message = f"must be <= {rule.maximum}"
    else:
        return True
    issues.append(ConfigValidationIssue(path, message))
    return False


def _type_error(expected: str, value: object) -> str:
    return f"expected {expected}, got {type(value).__name__}"


def _as_object(value: object, path: str, issues: Issues) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.append(ConfigValidationIssue(path, _type_error("object", value)))
        return None
    bad_keys = [key for key in value if not isinstance(key, str)]
    for key in bad_keys:
        issues.append(
            ConfigValidationIssue(path, f"object key must be string, got {type(key).__name__}")
        )
    return {key: item for key, item in value.items() if isinstance(key, str)}


def _parse_bool(value: object, path: str, issues: Issues) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.append(ConfigValidationIssue(path, _type_error("boolean", value)))
    return None


def _parse_int(value: object, path: str, issues: Issues) -> int | None:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    issues.append(ConfigValidationIssue(path, _type_error("integer", value)))
    return None


def _parse_float(value: object, path: str, issues: Issues) -> float | None:
    if isinstance(value, bool) or not isinstance(value, int | float):
        issues.append(ConfigValidationIssue(path, _type_error("number", value)))
        return None
    if not math.isfinite(value):
        issues.append(ConfigValidationIssue(path, "must be finite"))
        return None
    return float(value)


def _parse_str(value: object, path: str, issues: Issues) -> str | None:
    if not isinstance(value, str):
        issues.append(ConfigValidationIssue(path, _type_error("string", value)))
        return None
    if not value.strip():
        issues.append(ConfigValidationIssue(path, "must not be empty"))
        return None
    return value.strip()


def _checked_str(
    check: Callable[[str], bool], message: str
) -> Callable[[object, str, Issues], str | None]:
    def parse(value: object, path: str, issues: Issues) -> str | None:
        text = _parse_str(value, path, issues)
        if text is None:
            return None
        if not check(text):
            issues.append(ConfigValidationIssue(path, message.format(value=text)))
            return None
        return text

    return parse


def _parse_capabilities(value: object, path: str, issues: Issues) -> list[str] | None:
    if not isinstance(value, list):
        issues.append(ConfigValidationIssue(path, _type_error("array", value)))
        return None
    parsed: list[str] = []
    for index, item in enumerate(value):
        name = _parse_capability(item, f"{path}[{index}]", issues)
        if name is not None and name not in parsed:
            parsed.append(name)
    return parsed


_parse_capability = _checked_str(
    lambda text: text in CAPABILITY_NAMES,
    "invalid value {value!r}; expected one of: " + ", ".join(sorted(CAPABILITY_NAMES)),
)

_PARSERS: Final[dict[str, Callable[[object, str, Issues], Any]]] = {
    "bool": _parse_bool,
    "int": _parse_int,
    "float": _parse_float,
    "str": _parse_str,
    "env": _checked_str(
        lambda text: _ENV_NAME_PATTERN.fullmatch(text) is not None,
        "must be an env var name (example: OPENAI_API_KEY)",
    ),
    "url": _checked_str(
        lambda text: text.startswith(("http://", "https://")), "must be an http(s) URL"
    ),
    "path": _checked_str(lambda text: "\x00" not in text, "must not contain NUL bytes"),
    "level": _checked_str(
        lambda text: text in LOG_LEVELS,
        "invalid value {value!r}; expected one of: " + ", ".join(sorted(LOG_LEVELS)),
    ),
    "capabilities": _parse_capabilities,
}


def _normalize_key(key: str) -> str:
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", key.strip())
    return re.sub(r"[^a-z0-9]+", "_", spaced.lower()).strip("_")


def _looks_sensitive(key: str) -> bool:
    normalized = _normalize_key(key)
    return not normalized.endswith("_env") and _SENSITIVE_KEY.search(normalized) is not None


def _masked(key: str) -> bool:
    # *_env values name credentials, so they are masked in dumps as well.
    return _normalize_key(key).endswith("_env") or _looks_sensitive(key)


def _redact_value(value: object) -> object:
    if isinstance(value, Mapping):
        return redact_config(value)
    if isinstance(value, list | tuple):
        return [_redact_value(item) for item in value]
    return value


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, list | tuple):
        return [_plain(item) for item in value]
    return value


__all__ = [
    "CAPABILITY_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "PlancastConfig",
    "assert_valid_config",
    "default_config",
    "dump_redacted",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
