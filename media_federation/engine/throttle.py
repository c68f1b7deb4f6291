"""Rate limiting for background maintenance coroutines."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


def defer_to_loop(callback: Callable[[], Any]) -> None:
    """Schedule *callback* on the next tick of the running loop.

    This only moves the work past the current coroutine; it does not wait
    for the loop to be idle.  Must be called from inside a running loop.
    """
    asyncio.get_running_loop().call_soon(callback)


class TrailingThrottle:
    """Run a coroutine function at most once per *cooldown* seconds.

    Trailing edge only: the first call opens a cooldown window, calls made
    during the window just replace the pending arguments, and the function
    runs once with the most recent arguments when the window closes.
    Failures are logged and swallowed; the wrapped work must be optional.
    """

    def __init__(
        self,
        func: Callable[..., Awaitable[Any]],
        cooldown: float,
    ) -> None:
        self._func = func
        self._cooldown = cooldown
        self._handle: asyncio.TimerHandle | None = None
        self._pending: tuple[tuple, dict] | None = None
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        self._pending = (args, kwargs)
        if self._handle is None:
            loop = asyncio.get_running_loop()
            self._handle = loop.call_later(self._cooldown, self._fire)

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = None
        for task in self._tasks:
            task.cancel()

    def _fire(self) -> None:
        self._handle = None
        if self._pending is None:
            return
        args, kwargs = self._pending
        self._pending = None
        task = asyncio.create_task(self._run(*args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, *args: Any, **kwargs: Any) -> None:
        try:
            await self._func(*args, **kwargs)
        except Exception as exc:
            logger.error("Throttled task %s failed: %s", self._func.__name__, exc)
