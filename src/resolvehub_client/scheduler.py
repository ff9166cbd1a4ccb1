"""Periodic re-fetch loop owned by the expert desk."""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, Optional, Union

from resolvehub_client.errors import ResolveHubError
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

Tick = Callable[[], Union[Awaitable[None], None]]


class AutoRefreshScheduler:
    """Runs ``tick`` every ``period`` seconds on a single owned task.

    ``start`` always stops the previous loop first, so calling it twice never
    doubles the polling rate. The optional ``guard`` is evaluated before every
    tick; when it returns False (no valid token) the loop ends by itself.
    """

    def __init__(self, guard: Optional[Callable[[], bool]] = None) -> None:
        self._guard = guard
        self._task: Optional[asyncio.Task] = None
        self.period: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, tick: Tick, period: float) -> None:
        self.stop()
        if self._guard is not None and not self._guard():
            logger.debug("Auto refresh not started: no active session")
            return
        self.period = period
        self._task = asyncio.get_running_loop().create_task(self._run(tick, period))
        logger.debug("Auto refresh started (every %ss)", period)

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Auto refresh stopped")

    async def _run(self, tick: Tick, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            if self._guard is not None and not self._guard():
                logger.debug("Auto refresh ending: session is gone")
                return
            try:
                result = tick()
                if inspect.isawaitable(result):
                    await result
            except ResolveHubError as exc:
                logger.warning("Auto refresh tick failed: %s", exc)
