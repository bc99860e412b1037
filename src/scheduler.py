"""Periodic refresh scheduling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Invokes an async callback every `interval` seconds.

    Calling `start` again cancels the previous loop, so the interval can be
    changed at any time.
    """

    def __init__(self) -> None:
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float, action: Callable[[], Awaitable[None]]) -> None:
        """
        (Re)start the loop. An interval of zero or less only stops the previous loop.
        """
        self.stop()
        if interval <= 0:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(interval, action))
        logger.debug(f"Refresh scheduler started with a {interval:.0f}s interval")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, interval: float, action: Callable[[], Awaitable[None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await action()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # One failed cycle must not end the schedule
                logger.error(f"Scheduled refresh failed: {e}", exc_info=True)
