"""Keystroke debounce for CI autocomplete."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional

logger = logging.getLogger(__name__)

CommitCallback = Callable[[str], Awaitable[None]]


class QueryDebouncer:
    """Emits the latest pushed value once input has been quiet for ``delay_ms``.

    Each ``push`` cancels the pending emission and restarts the window, so a
    burst of keystrokes produces a single committed query for the final value.
    An emission that has already started is not cancelled by later pushes.
    """

    def __init__(self, *, delay_ms: int = 250, callback: CommitCallback) -> None:
        self.delay_ms = delay_ms
        self.callback = callback
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def push(self, value: str) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._settle(value), name="query-debounce")

    def cancel(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def aclose(self) -> None:
        task = self._task
        self.cancel()
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _settle(self, value: str) -> None:
        await asyncio.sleep(self.delay_ms / 1000)
        # detached: later pushes no longer cancel this emission
        self._task = None
        try:
            await self.callback(value)
        except Exception:
            logger.exception("Debounced query callback failed")


__all__ = ["QueryDebouncer", "CommitCallback"]
