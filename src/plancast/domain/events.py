"""Agent progress events: the line-serializable envelope streamed to observers."""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum

from plancast.domain import ids
from plancast.domain.plan import JSONValue

_REDACTED = "***REDACTED***"
_MAX_META_DEPTH = 16
_WIRE_FIELDS = frozenset({"id", "type", "message", "meta", "createdAt"})
_REQUIRED_WIRE_FIELDS = _WIRE_FIELDS - {"meta"}

# "tokens" (a usage count) is not a secret; "token" and "*_token" are.
_SENSITIVE_META_KEY = re.compile(
    r"^token$|secret|api_?key|password|credential|(access|refresh|auth)_?token|bearer",
    re.IGNORECASE,
)


class AgentEventType(StrEnum):
    """Notification kinds streamed to an external observer."""

    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    STATUS = "status"
    PLAN = "plan"
    ERROR = "error"


@dataclass(slots=True)
class AgentEvent:
    """Flat, line-serializable event envelope.

    ``meta`` must be plain JSON and ``created_at`` timezone-aware; both are checked on
    construction so that ``to_line`` can never fail later.
    """

    event_id: str
    event_type: AgentEventType
    message: str
    meta: dict[str, JSONValue]
    created_at: datetime

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        try:
            self.event_type = AgentEventType(self.event_type)
        except ValueError:
            allowed = ", ".join(AgentEventType)
            raise ValueError(
                f"AgentEvent.event_type: unsupported {self.event_type!r}; allowed: {allowed}"
            ) from None
        if not isinstance(self.message, str):
            raise ValueError(
                f"AgentEvent.message: expected string, got {type(self.message).__name__}"
            )
        meta = _json_value(self.meta, "AgentEvent.meta", 0)
        if not isinstance(meta, dict):
            raise ValueError("AgentEvent.meta: expected object")
        self.meta = meta
        self.created_at = _utc(self.created_at)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.event_id,
            "type": self.event_type.value,
            "message": self.message,
            "meta": self.meta,
            "createdAt": self.created_at.isoformat(timespec="milliseconds").replace(
                "+00:00", "Z"
            ),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    def to_line(self) -> str:
        """One newline-terminated record for NDJSON transports."""

        return self.to_json() + "\n"

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> AgentEvent:
        unknown = sorted(set(data) - _WIRE_FIELDS)
        if unknown:
            raise ValueError(f"AgentEvent: unexpected fields: {unknown}")
        missing = sorted(_REQUIRED_WIRE_FIELDS - set(data))
        if missing:
            raise ValueError(f"AgentEvent: missing required fields: {missing}")

        created_at = data["createdAt"]
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError as exc:
                raise ValueError(f"AgentEvent.createdAt: invalid ISO-8601 datetime: {exc}") from exc
        return cls(
            event_id=str(data["id"]),
            event_type=data["type"],  # type: ignore[arg-type]
            message=data["message"],  # type: ignore[arg-type]
            meta=data.get("meta", {}),  # type: ignore[arg-type]
            created_at=created_at,  # type: ignore[arg-type]
        )

    @classmethod
    def from_json(cls, raw: str) -> AgentEvent:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"AgentEvent: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("AgentEvent: JSON root must be an object")
        return cls.from_dict(parsed)


def redact_sensitive(event: AgentEvent) -> AgentEvent:
    """Copy of ``event`` whose meta has secret-looking keys masked at any depth."""

    meta = _redact(event.meta)
    assert isinstance(meta, dict)
    return replace(event, meta=meta)


def _utc(value: object) -> datetime:
    if not isinstance(value, datetime):
        raise ValueError(f"AgentEvent.created_at: expected datetime, got {type(value).__name__}")
    if value.utcoffset() is None:
        raise ValueError("AgentEvent.created_at: datetime must be timezone-aware UTC")
    return value.astimezone(UTC)


def _json_value(value: object, path: str, depth: int) -> JSONValue:
    if depth > _MAX_META_DEPTH:
        raise ValueError(f"{path}: JSON nesting too deep")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"{path}: float value must be finite")
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, list | tuple):
        return [_json_value(item, f"{path}[{i}]", depth + 1) for i, item in enumerate(value)]
    if isinstance(value, dict):
        if not all(isinstance(key, str) for key in value):
            raise ValueError(f"{path}: object keys must be strings")
        return {key: _json_value(item, f"{path}.{key}", depth + 1) for key, item in value.items()}
    raise ValueError(f"{path}: value is not JSON-serializable ({type(value).__name__})")


def _redact(value: JSONValue) -> JSONValue:
    if isinstance(value, list):
        return [_redact(item) for item in value]
    if isinstance(value, dict):
        return {
            key: _REDACTED if _SENSITIVE_META_KEY.search(key) else _redact(item)
            for key, item in value.items()
        }
    return value


__all__ = ["AgentEvent", "AgentEventType", "redact_sensitive"]
