"""
Debouncer - Coalesce bursts of writes into one.

Each call (re)schedules the wrapped coroutine function ``delay`` seconds in
the future with the latest arguments. Calls arriving before the timer fires
replace the pending arguments, so a burst of N calls results in exactly one
invocation reflecting the final value.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Per-owner coalescing timer.

    Example:
        save = Debouncer(persistence_call, delay=1.0, name="ctx_123")
        save.call(context_id="ctx_123", context=payload)  # scheduled
        save.call(context_id="ctx_123", context=newer)    # rescheduled
        await save.flush()                                # runs now, once
    """

    def __init__(
        self,
        func: Callable[..., Awaitable[Any]],
        delay: float,
        name: str = "",
    ):
        self.func = func
        self.delay = delay
        self.name = name
        self._handle: asyncio.TimerHandle | None = None
        self._pending: tuple[tuple[Any, ...], dict[str, Any]] | None = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def call(self, *args: Any, **kwargs: Any) -> None:
        """Schedule (or reschedule) an invocation with these arguments."""
        self._pending = (args, kwargs)
        if self._handle is not None:
            self._handle.cancel()
        self._handle = asyncio.get_running_loop().call_later(self.delay, self._fire)

    def cancel(self) -> None:
        """Drop the pending invocation, if any."""
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._pending = None

    async def flush(self) -> None:
        """Run the pending invocation now and wait for in-flight ones."""
        if self._pending is not None:
            args, kwargs = self._pending
            self.cancel()
            await self._run(args, kwargs)
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        if self._pending is None:
            return
        args, kwargs = self._pending
        self._pending = None
        task = asyncio.ensure_future(self._run(args, kwargs))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        try:
            await self.func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Debounced call {self.name or self.func!r} failed: {e}")
