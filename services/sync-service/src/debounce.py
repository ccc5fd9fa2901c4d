from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class Debouncer:
    """Runs `action` once `delay_seconds` have passed without another trigger."""

    def __init__(self, delay_seconds: float, action: Callable[[], Awaitable[None]]) -> None:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self._delay = delay_seconds
        self._action = action
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: Set[asyncio.Task] = set()
        self._disposed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def trigger(self) -> None:
        if self._disposed:
            return
        loop = asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(self._delay, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def dispose(self) -> None:
        self.cancel()
        self._disposed = True

    async def wait_idle(self) -> None:
        """Wait for actions already started by the timer."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        self._handle = None
        task = asyncio.get_running_loop().create_task(self._action())
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error({"event": "debounced_action_failed", "error": repr(exc)})
