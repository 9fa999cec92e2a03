"""Cooperative cancellation and per-call deadlines for model requests."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable

T = TypeVar("T")

_CANCELLED = "operation cancelled"


class CancellationToken:
    """A one-shot stop signal shared by everything serving one generation request.

    Callers cancel it when their client disconnects; ``cancel_after`` arms a wall-clock
    ceiling. Only the first reason is kept.
    """

    def __init__(self) -> None:
        self._fired = asyncio.Event()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._fired.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = _CANCELLED) -> None:
        if not self._fired.is_set():
            self._reason = reason.strip() or _CANCELLED
            self._fired.set()

    def cancel_after(
        self, seconds: float, *, reason: str = "deadline exceeded"
    ) -> asyncio.TimerHandle:
        if seconds <= 0:
            raise ValueError("seconds must be > 0")
        return asyncio.get_running_loop().call_later(seconds, self.cancel, reason)

    def raise_if_cancelled(self) -> None:
        if self._fired.is_set():
            raise asyncio.CancelledError(self._reason or _CANCELLED)

    async def wait(self) -> None:
        await self._fired.wait()


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``coroutine`` unless ``timeout_seconds`` elapse or ``cancel_token`` fires.

    Raises ``TimeoutError`` on the deadline and ``asyncio.CancelledError`` (carrying the
    token's reason) on cancellation. The work is cancelled and awaited in both cases.
    """

    if timeout_seconds <= 0:
        _discard(coroutine)
        raise ValueError("timeout_seconds must be > 0")
    if cancel_token is not None and cancel_token.is_cancelled:
        _discard(coroutine)
        cancel_token.raise_if_cancelled()

    work: asyncio.Future[T] = asyncio.ensure_future(coroutine)
    watchers: list[asyncio.Future[object]] = [work]  # type: ignore[list-item]
    if cancel_token is not None:
        watchers.append(asyncio.ensure_future(cancel_token.wait()))

    try:
        await asyncio.wait(watchers, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED)
        if work.done():
            return work.result()
    finally:
        for task in watchers:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")


def _discard(awaitable: Awaitable[object]) -> None:
    # Closing an unscheduled coroutine avoids the "never awaited" warning at GC time.
    if inspect.iscoroutine(awaitable):
        awaitable.close()


__all__ = ["CancellationToken", "run_with_timeout"]
