"""
plancast - unit tests for JSON-lines logging

File: tests/unit/observability/test_logging.py
Last updated: 2026-10-16

Purpose
- Pin down what reaches ``plancast.jsonl``: one JSON object per record, secrets masked,
  correlation keys promoted, structlog decisions included.

Functional requirements
- Offline operation; every test writes under ``tmp_path``.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from plancast.observability.logging import (
    LoggingConfig,
    LoggingHandle,
    correlation_scope,
    default_log_redactor,
    redact_text,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path

    FileLogging = Callable[..., tuple[LoggingHandle, logging.Logger]]


@pytest.fixture(autouse=True)
def _reset() -> Iterator[None]:
    yield
    shutdown_logging()
    structlog.reset_defaults()


@pytest.fixture
def file_logging(tmp_path: Path) -> FileLogging:
    """Start file-only logging on a throwaway logger name."""

    def start(**overrides: object) -> tuple[LoggingHandle, logging.Logger]:
        name = f"plancast.test.{uuid4().hex[:12]}"
        settings: dict[str, object] = {
            "log_dir": tmp_path,
            "log_to_file": True,
            "log_to_stderr": False,
            "logger_name": name,
        }
        settings.update(overrides)
        handle = setup_structured_logging(LoggingConfig(**settings))  # type: ignore[arg-type]
        return handle, logging.getLogger(name)

    return start


def _records(handle: LoggingHandle) -> list[dict[str, object]]:
    shutdown_logging(handle)
    assert handle.log_path is not None
    with handle.log_path.open(encoding="utf-8") as stream:
        return [json.loads(raw) for raw in stream]


def test_record_carries_scope_keys_and_masks_secrets(file_logging: FileLogging) -> None:
    handle, log = file_logging()

    with correlation_scope(request_id="req-7", candidate="openrouter:llama-3.1-70b"):
        log.warning(
            "retrying with api_key=sk-live000000000000000 after 429",
            extra={"attempt": 2, "headers": {"Authorization": "Bearer xyz", "accept": "json"}},
        )
    log.info("outside scope")

    scoped, unscoped = _records(handle)
    assert scoped["level"] == "WARNING"
    assert scoped["request_id"] == "req-7"
    assert scoped["candidate"] == "openrouter:llama-3.1-70b"
    assert "sk-live" not in str(scoped["message"])
    assert scoped["fields"] == {
        "attempt": 2,
        "headers": {"Authorization": "***REDACTED***", "accept": "json"},
    }
    assert "request_id" not in unscoped
    assert str(scoped["timestamp"]).endswith("Z")


def test_nested_scope_can_unbind_a_key(file_logging: FileLogging) -> None:
    handle, log = file_logging()

    with correlation_scope(request_id="req-1", candidate="a:b"):
        with correlation_scope(candidate=None):
            log.info("inner")

    (record,) = _records(handle)
    assert record["request_id"] == "req-1"
    assert "candidate" not in record

    with pytest.raises(ValueError, match="non-empty"):
        with correlation_scope(request_id="  "):
            pass


def test_structlog_decisions_land_in_default_log_file(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "INFO", "log_to_file": True, "log_to_stderr": False},
        log_dir=tmp_path,
    )
    decisions = structlog.get_logger("plancast.synthesis_plane.orchestrator")

    decisions.info("candidate_skipped", candidate="gemini:flash", raw_response="leaked body")
    decisions.debug("below_threshold")

    assert handle.log_path == tmp_path / "plancast.jsonl"
    (record,) = _records(handle)
    assert record["message"] == "candidate_skipped"
    assert record["candidate"] == "gemini:flash"
    assert record["fields"] == {"raw_response": "***REDACTED***"}


def test_redact_secrets_false_keeps_values(tmp_path: Path) -> None:
    handle = setup_logging(
        {
            "log_dir": str(tmp_path),
            "log_to_file": True,
            "log_to_stderr": False,
            "redact_secrets": False,
        }
    )

    logging.getLogger("plancast.config").info("loaded", extra={"password": "in-the-clear"})

    (record,) = _records(handle)
    assert record["fields"] == {"password": "in-the-clear"}


def test_concurrent_writers_produce_whole_lines(file_logging: FileLogging) -> None:
    handle, log = file_logging(queue_size=2048)

    def burst(worker: int) -> None:
        for n in range(50):
            log.info("worker %d step %d token=t-%d-%d", worker, n, worker, n)

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(burst, range(6)))

    records = _records(handle)
    assert len(records) == 300
    assert handle.dropped_records == 0
    assert all(str(record["message"]).endswith("token=***REDACTED***") for record in records)


def test_logger_uses_queue_handler_and_shutdown_is_idempotent(file_logging: FileLogging) -> None:
    handle, log = file_logging()

    assert any(isinstance(h, logging.handlers.QueueHandler) for h in log.handlers)
    for n in range(120):
        log.info("tick %d", n)

    assert len(_records(handle)) == 120
    assert handle.is_shutdown
    handle.shutdown()
    assert log.handlers == []


def test_full_queue_drops_instead_of_blocking(file_logging: FileLogging) -> None:
    handle, log = file_logging(queue_size=1)
    handle.listener.stop()

    for n in range(5):
        log.info("burst %d", n)

    assert handle.dropped_records == 4
    handle.shutdown(timeout_seconds=0)


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"queue_size": 0}, "queue_size must be > 0"),
        ({"queue_size": True}, "queue_size must be an integer"),
        ({"log_filename": "../escape.jsonl"}, "path separators"),
        ({"level": "LOUD"}, "unsupported logging level"),
    ],
)
def test_bad_settings_are_rejected(
    file_logging: FileLogging, overrides: dict[str, object], message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        file_logging(**overrides)


def test_free_text_and_key_redaction() -> None:
    text = (
        "Authorization: Bearer eyJhbGciOi.abc sk-proj-abcdefghijklmnop "
        "AIzaSyD-0123456789abcdefghijk pplx-0123456789abcd secret=s3cr3t"
    )

    masked = redact_text(text)

    for leaked in ("eyJhbGciOi", "sk-proj", "AIzaSyD", "pplx-0123", "s3cr3t"):
        assert leaked not in masked
    assert default_log_redactor({"token": "x", "tokens": 12, "items": [{"cookie": "c"}]}) == {
        "token": "***REDACTED***",
        "tokens": 12,
        "items": [{"cookie": "***REDACTED***"}],
    }
