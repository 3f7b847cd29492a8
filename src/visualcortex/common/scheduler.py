"""Periodic task scheduling on the asyncio event loop."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from visualcortex.common.logging import get_logger


class PeriodicTask:
    """Fires an async callback on a fixed interval.

    Every firing runs the callback as its own task, so a slow callback never
    delays the timer. Stopping cancels the timer only; callbacks already
    running are left to finish and can be awaited with ``wait_idle()``.
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[None]],
        interval: float,
        immediate: bool = True,
        name: str = "periodic",
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._callback = callback
        self.interval = interval
        self.immediate = immediate
        self.name = name
        self._timer: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self.fire_count = 0
        self.logger = get_logger("scheduler", task=name)

    @property
    def running(self) -> bool:
        """Whether the timer is scheduled."""
        return self._timer is not None and not self._timer.done()

    @property
    def inflight(self) -> int:
        """Number of callbacks still running."""
        return len(self._inflight)

    def start(self) -> None:
        """Start the timer. No-op if already running."""
        if self.running:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run(), name=f"{self.name}-timer")
        self.logger.debug("periodic_task_started", interval=self.interval)

    def stop(self) -> None:
        """Cancel the timer, including a firing already scheduled."""
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        self.logger.debug("periodic_task_stopped", inflight=len(self._inflight))

    cancel = stop

    async def wait_idle(self) -> None:
        """Wait for callbacks still in flight."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run(self) -> None:
        if not self.immediate:
            await asyncio.sleep(self.interval)
        while True:
            self._fire()
            await asyncio.sleep(self.interval)

    def _fire(self) -> None:
        self.fire_count += 1
        task = asyncio.get_running_loop().create_task(self._callback(), name=f"{self.name}-tick")
        self._inflight.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("periodic_callback_failed", error=str(exc), exc_info=exc)
