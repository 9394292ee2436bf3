"""
Cancellable debounce primitive for coroutine callbacks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

LOG = logging.getLogger(__name__)

AsyncCallback = Callable[[], Awaitable[None]]


class Debouncer:
    """
    Coalesce bursts of triggers into a single delayed invocation.

    Every :meth:`trigger` re-arms the timer, :meth:`flush` runs the callback
    right away and :meth:`cancel` disposes of anything still pending.  Once
    cancelled the instance ignores further triggers.
    """

    def __init__(
        self,
        delay: float,
        callback: AsyncCallback,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        if delay < 0:
            raise ValueError("delay must be non-negative")
        self._delay = float(delay)
        self._callback = callback
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self._cancelled = False

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def trigger(self) -> None:
        if self._cancelled:
            return
        self._clear_timer()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self._delay, self._fire)

    async def flush(self) -> None:
        if self._cancelled:
            return
        self._clear_timer()
        await self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        self._clear_timer()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    # ------------------------------------------------------------------ helpers

    def _clear_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        task = asyncio.ensure_future(self._callback())
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("Debounced callback failed.", exc_info=exc)
