"""Background delivery of locally queued prompts.

For every key with queued prompts whose drone accepts prompts again, one
drain task sends the queue head, removes it on success and moves on.
Ordering is strict: a head that is not exactly ``queued`` (mid-send or
failed) stops the drain, so a failed prompt blocks everything behind it
until it is removed or retried.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from dronehub.adapters.hub_client import HubClient

from .errors import HubError
from .keys import parse_conversation_key
from .models import DroneSummary, QueuedPromptState
from .queue_store import QueuedDeliveryStore

logger = logging.getLogger(__name__)

# (key, prompt_id, prompt_text) for each delivered queue entry
DeliveredCallback = Callable[[str, str, str], None]


class QueueFlushLoop:
    def __init__(
        self,
        client: HubClient,
        store: QueuedDeliveryStore,
        drone_lookup: Callable[[str], DroneSummary | None],
        on_delivered: DeliveredCallback | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._drone_lookup = drone_lookup
        self._on_delivered = on_delivered
        self._tasks: dict[asyncio.Task, str] = {}
        self._closed = False

    def _drone_ready(self, drone_id: str) -> bool:
        drone = self._drone_lookup(drone_id)
        return drone is not None and drone.accepts_prompts

    def kick(self) -> list[str]:
        """Start a drain for each ready key not already draining.

        Returns the keys for which a drain was started.
        """
        if self._closed:
            return []
        started: list[str] = []
        for key in self._store.keys():
            ref = parse_conversation_key(key)
            if ref is None or not self._drone_ready(ref.drone_id):
                continue
            if not self._store.try_begin_flush(key):
                continue
            task = asyncio.create_task(self._drain(key), name=f"flush:{key}")
            self._tasks[task] = key
            task.add_done_callback(self._on_drain_done)
            started.append(key)
        return started

    def _on_drain_done(self, task: asyncio.Task) -> None:
        # Runs even when the task was cancelled before its first step.
        key = self._tasks.pop(task, None)
        if key is not None:
            self._store.end_flush(key)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Flush of %s crashed", key, exc_info=task.exception())

    async def _drain(self, key: str) -> None:
        ref = parse_conversation_key(key)
        while True:
            head = self._store.head(key)
            if head is None:
                return
            if head.state != QueuedPromptState.QUEUED:
                logger.debug(
                    "Flush of %s halted at %s (state=%s)",
                    key, head.id, head.state.value,
                )
                return

            self._store.patch(key, head.id, state=QueuedPromptState.SENDING, error=None)
            try:
                prompt_id = await self._client.send_prompt(
                    ref.drone_id, ref.chat_name, head.prompt,
                )
            except asyncio.CancelledError:
                self._store.patch(key, head.id, state=QueuedPromptState.QUEUED)
                raise
            except HubError as exc:
                logger.warning("Queued prompt %s for %s failed: %s", head.id, key, exc)
                self._store.patch(
                    key, head.id, state=QueuedPromptState.FAILED, error=str(exc),
                )
                return

            self._store.remove(key, head.id)
            logger.info(
                "Delivered queued prompt %s for %s (id=%s)",
                head.id, key, prompt_id[:8] or "-",
            )
            if self._on_delivered is not None:
                self._on_delivered(key, prompt_id, head.prompt)

    async def wait_idle(self) -> None:
        """Wait until no drain task is running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
