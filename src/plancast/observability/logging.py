"""Queue-backed JSON-lines logging with secret redaction.

Records are handed to a ``QueueListener`` thread so that model calls never wait on
disk or terminal I/O. ``configure_structlog`` routes ``structlog`` decision logs
through the same stdlib logger tree, so cascade and retry decisions end up in the
same ``plancast.jsonl`` file as everything else.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import structlog

from plancast.domain.plan import JSONValue

LogRedactor = Callable[[JSONValue], JSONValue]

REDACTED: Final[str] = "***REDACTED***"
DEFAULT_LOG_FILENAME: Final[str] = "plancast.jsonl"

# Promoted from record extras to top-level keys of each JSON line.
_CORRELATION_KEYS: Final[frozenset[str]] = frozenset({"request_id", "candidate", "event_id"})

_RESERVED_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName", "correlation"}

_SENSITIVE_KEY: Final[re.Pattern[str]] = re.compile(
    r"secret|passw(or)?d|passphrase|api_?key|authorization|credential|cookie"
    r"|private_key|access_token|refresh_token"
    # model transcripts
    r"|prompt_messages|raw_response",
    re.IGNORECASE,
)

_TEXT_SECRETS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*"), f"Bearer {REDACTED}"),
    (
        re.compile(
            r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b"
            r"\s*([:=])\s*([^\s,;]+)"
        ),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"\bsk-[A-Za-z0-9_-]{12,}\b"), REDACTED),
    (re.compile(r"\bAIza[0-9A-Za-z_-]{20,}\b"), REDACTED),
    (re.compile(r"\bpplx-[A-Za-z0-9]{12,}\b"), REDACTED),
)

_correlation: contextvars.ContextVar[Mapping[str, str]] = contextvars.ContextVar(
    "plancast_log_correlation", default={}
)
_active_lock = threading.Lock()
_active: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Sinks and limits for :func:`setup_structured_logging`."""

    level: int | str = "INFO"
    log_dir: Path | str | None = None
    log_to_file: bool = False
    log_to_stderr: bool = True
    logger_name: str = "plancast"
    queue_size: int = 4096
    log_filename: str = DEFAULT_LOG_FILENAME
    redactor: LogRedactor | None = None

    @classmethod
    def from_config(cls, observability: Mapping[str, object]) -> LoggingConfig:
        """Build from the ``[observability]`` table of ``plancast.toml``."""

        level = observability.get("log_level", "INFO")
        log_dir = observability.get("log_dir")
        return cls(
            level=level if isinstance(level, int | str) else "INFO",
            log_dir=log_dir if isinstance(log_dir, Path | str) else None,
            log_to_file=bool(observability.get("log_to_file", False)),
            log_to_stderr=bool(observability.get("log_to_stderr", True)),
            redactor=None if observability.get("redact_secrets", True) else _keep,
        )


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """Never blocks the caller; a full queue drops the record and counts it."""

    dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # The listener thread cannot see this context, so carry it on the record.
        scope = _correlation.get()
        if scope:
            record.correlation = dict(scope)
        prepared: logging.LogRecord = super().prepare(record)
        return prepared

    def enqueue(self, record: logging.LogRecord) -> None:
        # Handler.handle holds self.lock around emit, so the counter is safe.
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            self.dropped += 1


class JsonLineFormatter(logging.Formatter):
    """One sorted-key JSON object per record."""

    def __init__(self, *, redactor: LogRedactor | None = None) -> None:
        super().__init__()
        self._redact = redactor or default_log_redactor

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, JSONValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": _as_text(self._redact(record.getMessage())),
        }

        scope = getattr(record, "correlation", None)
        if isinstance(scope, Mapping):
            line.update((str(key), str(value)) for key, value in scope.items())

        extras: dict[str, JSONValue] = {}
        for key, value in vars(record).items():
            if key in _RESERVED_RECORD_ATTRS or key.startswith("_"):
                continue
            if key in _CORRELATION_KEYS and isinstance(value, str) and value.strip():
                line[key] = value.strip()
            else:
                extras[key] = _jsonable(value)
        if extras:
            line["fields"] = self._redact(extras)

        if record.exc_info:
            line["exception"] = _as_text(self._redact(self.formatException(record.exc_info)))

        return json.dumps(line, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@dataclass(slots=True, eq=False)
class LoggingHandle:
    """An active logging setup; :meth:`shutdown` drains the queue and closes sinks."""

    logger: logging.Logger
    log_path: Path | None
    queue_handler: _DroppingQueueHandler
    listener: logging.handlers.QueueListener
    sinks: tuple[logging.Handler, ...]
    is_shutdown: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def dropped_records(self) -> int:
        return self.queue_handler.dropped

    def flush(self, *, timeout_seconds: float = 2.0) -> None:
        pending = self.queue_handler.queue
        deadline = time.monotonic() + max(timeout_seconds, 0.0)
        while getattr(pending, "unfinished_tasks", 0) and time.monotonic() < deadline:
            time.sleep(0.01)
        for sink in self.sinks:
            sink.flush()

    def shutdown(self, *, timeout_seconds: float = 2.0) -> None:
        with self._lock:
            if self.is_shutdown:
                return
            self.flush(timeout_seconds=timeout_seconds)
            self.listener.stop()
            self.logger.removeHandler(self.queue_handler)
            self.queue_handler.close()
            for sink in self.sinks:
                sink.close()
            self.is_shutdown = True


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Install queue-backed JSON logging on ``config.logger_name``.

    Replaces any handle installed by an earlier call.
    """

    global _active

    if isinstance(config.queue_size, bool) or not isinstance(config.queue_size, int):
        raise ValueError(f"queue_size must be an integer, got {type(config.queue_size).__name__}")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    filename = config.log_filename.strip()
    if not filename or Path(filename).name != filename:
        raise ValueError("log_filename must be a bare file name without path separators")
    level = _level_number(config.level)

    shutdown_logging()

    formatter = JsonLineFormatter(redactor=config.redactor)
    sinks: list[logging.Handler] = []
    log_path: Path | None = None
    if config.log_to_file:
        directory = Path(config.log_dir if config.log_dir is not None else "logs")
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / filename
        sinks.append(logging.FileHandler(log_path, encoding="utf-8"))
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler(sys.stderr))
    for sink in sinks:
        sink.setLevel(level)
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    for stale in list(logger.handlers):
        logger.removeHandler(stale)
        stale.close()
    logger.setLevel(level)
    logger.propagate = False

    queue_handler = _DroppingQueueHandler(queue.Queue(maxsize=config.queue_size))
    queue_handler.setLevel(level)
    listener = logging.handlers.QueueListener(
        queue_handler.queue, *sinks, respect_handler_level=True
    )
    listener.start()
    logger.addHandler(queue_handler)

    handle = LoggingHandle(
        logger=logger,
        log_path=log_path,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    with _active_lock:
        _active = handle
    return handle


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    log_dir: Path | str | None = None,
) -> LoggingHandle:
    """Configure sinks from an ``[observability]`` mapping and route structlog into them.

    Parameters
    ----------
    observability_config:
        Mapping compatible with ``[observability]`` settings in ``plancast.toml``.
    log_dir:
        Optional override for the log directory.
    """

    settings = dict(observability_config or {})
    if log_dir is not None:
        settings["log_dir"] = log_dir
    handle = setup_structured_logging(LoggingConfig.from_config(settings))
    configure_structlog()
    return handle


def configure_structlog() -> None:
    """Route ``structlog`` decision logs through stdlib ``logging``.

    Event names become the record message and keyword fields become record extras,
    so decision logs land in the same JSON-lines sinks.
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging(
    handle: LoggingHandle | None = None,
    *,
    timeout_seconds: float = 2.0,
) -> None:
    """Shut down ``handle``, or the active handle when none is given."""

    global _active

    with _active_lock:
        target = handle or _active
        if target is _active:
            _active = None
    if target is not None:
        target.shutdown(timeout_seconds=timeout_seconds)


atexit.register(shutdown_logging)


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Attach correlation keys to every record logged inside the block.

    A ``None`` value removes a key bound by an outer scope.
    """

    merged = dict(_correlation.get())
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        elif not value.strip():
            raise ValueError(f"correlation value for {key!r} must be a non-empty string")
        else:
            merged[key] = value.strip()
    token = _correlation.set(merged)
    try:
        yield
    finally:
        _correlation.reset(token)


def redact_text(text: str) -> str:
    """Mask API keys, bearer tokens and ``key=value`` secrets inside free text."""

    for pattern, replacement in _TEXT_SECRETS:
        text = pattern.sub(replacement, text)
    return text


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask secret-looking keys and model transcripts; scrub secrets inside strings."""

    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, list):
        return [default_log_redactor(item) for item in value]
    if isinstance(value, dict):
        return {
            key: REDACTED
            if key.lower() == "token" or _SENSITIVE_KEY.search(key)
            else default_log_redactor(item)
            for key, item in value.items()
        }
    return value


def _keep(value: JSONValue) -> JSONValue:
    return value


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    number = logging.getLevelNamesMapping().get(level.strip().upper())
    if number is None:
        raise ValueError(f"unsupported logging level {level!r}")
    return number


def _as_text(value: JSONValue) -> str:
    if isinstance(value, str):
        return value
    return "" if value is None else json.dumps(value, sort_keys=True, ensure_ascii=False)


def _jsonable(value: object) -> JSONValue:
    if isinstance(value, float) and not math.isfinite(value):
        return repr(value)
    if value is None or isinstance(value, bool | int | float | str):
        return value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(item) for item in value]
    if isinstance(value, set | frozenset):
        return sorted((_jsonable(item) for item in value), key=repr)
    if isinstance(value, datetime):
        aware = value if value.tzinfo else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat().replace("+00:00", "Z")
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


__all__ = [
    "DEFAULT_LOG_FILENAME",
    "JsonLineFormatter",
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "REDACTED",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "redact_text",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
