"""Ordered agent-event emitter with isolated sinks and replayable history."""

from __future__ import annotations

import inspect
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final, TextIO, cast

from plancast.domain.events import AgentEvent, AgentEventType, redact_sensitive
from plancast.domain.ids import generate_event_id
from plancast.domain.plan import JSONValue

EventSink = Callable[[AgentEvent], object]

_DEFAULT_HISTORY_SIZE: Final[int] = 1024
_DEFAULT_ERROR_BUFFER: Final[int] = 256


@dataclass(frozen=True, slots=True)
class DispatchError:
    """Sink failure captured without interrupting the emitter."""

    event_id: str
    target: str
    error_type: str
    message: str


class EventEmitter:
    """Build events in emission order and fan them out to sync or async sinks.

    A failing sink never interrupts generation; the failure is recorded as a
    ``DispatchError`` and the remaining sinks still receive the event.
    """

    def __init__(
        self,
        *sinks: EventSink,
        history_size: int = _DEFAULT_HISTORY_SIZE,
        redact: bool = True,
    ) -> None:
        if not isinstance(history_size, int) or isinstance(history_size, bool):
            raise ValueError(f"history_size must be an integer, got {type(history_size).__name__}")
        if history_size <= 0:
            raise ValueError("history_size must be > 0")
        for sink in sinks:
            if not callable(sink):
                raise ValueError("sinks must be callable")
        self._sinks: list[EventSink] = list(sinks)
        self._history = deque[AgentEvent](maxlen=history_size)
        self._dispatch_errors = deque[DispatchError](maxlen=_DEFAULT_ERROR_BUFFER)
        self._redact = redact

    def add_sink(self, sink: EventSink) -> None:
        if not callable(sink):
            raise ValueError("sink must be callable")
        self._sinks.append(sink)

    async def emit(
        self,
        event_type: AgentEventType | str,
        message: str,
        meta: Mapping[str, object] | None = None,
    ) -> AgentEvent:
        """Create, record and dispatch one event; returns the event as dispatched."""

        event = AgentEvent(
            event_id=generate_event_id(),
            event_type=AgentEventType(event_type),
            message=message,
            meta=cast("dict[str, JSONValue]", dict(meta or {})),
            created_at=datetime.now(tz=UTC),
        )
        if self._redact:
            event = redact_sensitive(event)
        self._history.append(event)

        for sink in tuple(self._sinks):
            try:
                result = sink(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                self._dispatch_errors.append(
                    DispatchError(
                        event_id=event.event_id,
                        target=_callback_name(sink),
                        error_type=type(exc).__name__,
                        message=str(exc) or type(exc).__name__,
                    )
                )
        return event

    def history(
        self,
        *,
        event_type: AgentEventType | str | None = None,
        limit: int | None = None,
    ) -> tuple[AgentEvent, ...]:
        """Recorded events in emission order."""

        events = list(self._history)
        if event_type is not None:
            wanted = AgentEventType(event_type)
            events = [event for event in events if event.event_type is wanted]
        if limit is not None:
            if limit <= 0:
                return ()
            events = events[-limit:]
        return tuple(events)

    def dispatch_errors(self) -> tuple[DispatchError, ...]:
        return tuple(self._dispatch_errors)


class NDJSONSink:
    """Write each event as one JSON line to a text stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream

    def __call__(self, event: AgentEvent) -> None:
        self._stream.write(event.to_line())
        self._stream.flush()


def format_sse(event: AgentEvent) -> str:
    """Server-sent-event framing: ``data: <json>`` followed by a blank line."""

    return f"data: {event.to_json()}\n\n"


def _callback_name(callback: object) -> str:
    qualname = getattr(callback, "__qualname__", None)
    module = getattr(callback, "__module__", None)
    if isinstance(qualname, str):
        return f"{module}.{qualname}" if isinstance(module, str) else qualname
    return type(callback).__name__


__all__ = [
    "DispatchError",
    "EventEmitter",
    "EventSink",
    "NDJSONSink",
    "format_sse",
]
