"""Async event bus bridging runtime callbacks to UI consumers.

The runtime fires events via callback from its background tasks. The
EventBus queues them for a consumer loop.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from dronehub.adapters.events import RuntimeEvent, dict_to_event

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging runtime callbacks to event consumers."""

    def __init__(self, maxsize: int = 5000, put_timeout: float = 30.0) -> None:
        self._queue: asyncio.Queue[RuntimeEvent] = asyncio.Queue(maxsize=maxsize)
        self._put_timeout = put_timeout
        self._closed = False

    async def _callback(self, data: dict[str, Any]) -> None:
        """Callback to pass as ChatRuntime(event_callback=...)."""
        await self.emit(dict_to_event(data))

    def make_callback(self):
        return self._callback

    async def emit(self, event: RuntimeEvent) -> None:
        if self._closed:
            return
        try:
            # Block with a timeout for backpressure instead of dropping
            await asyncio.wait_for(self._queue.put(event), timeout=self._put_timeout)
        except asyncio.TimeoutError:
            logger.error(
                "EventBus queue blocked for %.0fs, dropping: %s (queue size: %d)",
                self._put_timeout,
                event.event_type,
                self._queue.qsize(),
            )

    async def consume(self) -> AsyncIterator[RuntimeEvent]:
        """Yield events as they arrive. Stops on close()."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield event

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True
