"""Public observability primitives: structured logging and agent-event streaming."""

from plancast.observability.events import (
    DispatchError,
    EventEmitter,
    EventSink,
    NDJSONSink,
    format_sse,
)
from plancast.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    LogRedactor,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    redact_text,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventEmitter",
    "EventSink",
    "LogRedactor",
    "LoggingConfig",
    "LoggingHandle",
    "NDJSONSink",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "format_sse",
    "redact_text",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
