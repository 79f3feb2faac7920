"""Fixed-cadence poll loop with an overlap guard.

The loop fires ``tick`` immediately and then every ``interval`` seconds.
Each tick runs as its own task; a tick that fires while the previous one
is still running is skipped. Exceptions raised by ``tick`` are logged
and never stop the timer.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class PollLoop:
    def __init__(
        self,
        name: str,
        interval: float,
        tick: Callable[[], Awaitable[None]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._tick = tick
        self._timer: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self.busy = False
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run(), name=f"poll:{self.name}")
        logger.debug("Poll loop %s started (every %.1fs)", self.name, self.interval)

    async def _run(self) -> None:
        while True:
            self.fire()
            await asyncio.sleep(self.interval)

    def fire(self) -> asyncio.Task | None:
        """Start one tick now unless the previous one is still running."""
        if self.busy:
            self.skipped_ticks += 1
            return None
        self.busy = True
        self._inflight = asyncio.create_task(self._guarded())
        return self._inflight

    async def _guarded(self) -> None:
        try:
            await self._tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Poll loop %s tick failed", self.name)
        finally:
            self.busy = False

    def stop(self) -> None:
        """Stop scheduling ticks. An in-flight tick is left to finish."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.debug("Poll loop %s stopped", self.name)

    async def aclose(self) -> None:
        """Stop the timer and cancel any in-flight tick."""
        timer, self._timer = self._timer, None
        inflight, self._inflight = self._inflight, None
        for task in (timer, inflight):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
