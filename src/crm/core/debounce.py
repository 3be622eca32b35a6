"""Asyncio debouncer for bursty triggers such as sales-team reloads.

Only the last trigger inside the delay window runs. Each trigger restarts
the timer with the newest arguments.

Usage:
    debouncer = Debouncer(0.3, run_search)
    debouncer.trigger("acme")
    debouncer.trigger("acme co")   # only this one runs, 300ms later
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class Debouncer:
    """Coalesce bursts of calls into a single trailing invocation.

    Args:
        delay_seconds: Quiet period required before the call fires.
        fn: Sync or async callable invoked with the latest arguments.
        name: Label used in log events.
    """

    def __init__(
        self,
        delay_seconds: float,
        fn: Callable[..., Any | Awaitable[Any]],
        *,
        name: str = "debouncer",
    ) -> None:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self._delay = delay_seconds
        self._fn = fn
        self._name = name
        self._task: asyncio.Task | None = None
        self._pending: tuple[tuple[Any, ...], dict[str, Any]] | None = None

    @property
    def pending(self) -> bool:
        """True while a call is scheduled and has not yet run."""
        return self._task is not None and not self._task.done()

    def trigger(self, *args: Any, **kwargs: Any) -> None:
        """Schedule a call, replacing any call still waiting. Needs a running loop."""
        self._cancel_task()
        self._pending = (args, kwargs)
        self._task = asyncio.get_running_loop().create_task(self._run_later())

    async def flush(self) -> Any:
        """Run the pending call immediately. Returns its result, or None."""
        if self._pending is None:
            return None
        self._cancel_task()
        return await self._invoke()

    def cancel(self) -> None:
        """Drop the pending call without running it."""
        self._cancel_task()
        self._pending = None

    def _cancel_task(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run_later(self) -> None:
        await asyncio.sleep(self._delay)
        # Detach so a trigger() issued from inside fn schedules a fresh call.
        self._task = None
        try:
            await self._invoke()
        except Exception:
            logger.exception("debounced_call_failed", debouncer=self._name)

    async def _invoke(self) -> Any:
        if self._pending is None:
            return None
        args, kwargs = self._pending
        self._pending = None
        result = self._fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
