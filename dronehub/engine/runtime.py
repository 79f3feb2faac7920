"""Chat runtime: wires the delivery and sync components together.

ChatRuntime owns one instance of each component for a hub connection
and exposes the state a UI renders: the merged pending list, transcript,
session buffer, per-key queues, busy flag and prompt error. Only the
active selection is polled; switching selection advances the epoch so
late responses for the previous selection are discarded.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import Any

from dronehub.adapters.hub_client import HubClient

from .config import EventCallback, SyncConfig, fire_event
from .dispatcher import PromptDispatcher
from .errors import HubError
from .flush_loop import QueueFlushLoop
from .keys import conversation_key
from .models import (
    AddressingMode,
    ChatAgent,
    ChatSendPayload,
    DisplayMode,
    DroneSummary,
    PendingPrompt,
    PendingPromptState,
    QueuedPrompt,
    QueuedPromptState,
    StartupSeed,
    TranscriptItem,
    TranscriptStatus,
    display_mode_for_agent,
)
from .pending import PendingPromptReconciler, startup_pending_prompt, with_startup_and_queue
from .polling import PollLoop
from .queue_store import QueuedDeliveryStore
from .selection import SelectionTracker
from .session_sync import SessionOutputSyncLoop
from .transcript_sync import TranscriptSyncLoop
from .typing_pulse import TypingPulse

logger = logging.getLogger(__name__)


def chat_display_mode(
    agent: ChatAgent | None,
    drone: DroneSummary | None = None,
    seed: StartupSeed | None = None,
) -> DisplayMode:
    """Display mode for a chat, falling back to the seed agent while provisioning."""
    if agent is None and drone is not None and drone.is_provisioning and seed is not None:
        agent = seed.agent
    return display_mode_for_agent(agent)


class ChatRuntime:
    def __init__(
        self,
        client: HubClient,
        config: SyncConfig | None = None,
        *,
        store: QueuedDeliveryStore | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self.config = config or SyncConfig()
        self._client = client
        self._event_callback = event_callback
        self._event_tasks: set[asyncio.Task] = set()
        self._drones: dict[str, DroneSummary] = {}
        self._startup_seeds: dict[str, StartupSeed] = {}
        self._queue_keys: set[str] = set()
        self._started = False
        self.unsticking: set[str] = set()
        self.unstick_errors: dict[str, str] = {}

        self.selection = SelectionTracker()
        self.store = store or QueuedDeliveryStore()
        self.store.add_listener(self._on_queue_changed)
        self.pending = PendingPromptReconciler(self.config.pending_cap)
        self.typing = TypingPulse(
            self.config.typing_pulse_seconds,
            on_change=lambda active: self._emit({"event": "typing_changed", "active": active}),
        )
        self.dispatcher = PromptDispatcher(
            client, self.store, self.selection, self.pending, self.typing,
            self.drone, on_change=self._on_prompt_state,
        )
        self.flush_loop = QueueFlushLoop(
            client, self.store, self.drone, on_delivered=self.dispatcher.record_accepted,
        )
        self.transcript_loop = TranscriptSyncLoop(
            client, self.selection, self.drone, self.config,
            on_change=self._on_transcript,
        )
        self.session_loop = SessionOutputSyncLoop(
            client, self.selection, self.drone, self.typing, self.config,
            on_change=self._on_session,
        )
        self._pending_poll: PollLoop | None = None
        self._pending_polling: set[str] = set()

    # ── Events ───────────────────────────────────────────────

    def _emit(self, event: dict[str, Any]) -> None:
        if self._event_callback is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, dropping event %s", event.get("event"))
            return
        task = loop.create_task(fire_event(self._event_callback, event))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    def _on_prompt_state(self) -> None:
        self._emit({
            "event": "prompt_state_changed",
            "sending": self.dispatcher.sending,
            "error": self.dispatcher.prompt_error,
        })
        self._emit_pending()

    def _emit_pending(self) -> None:
        self._emit({
            "event": "pending_changed",
            "pending": [p.id for p in self.visible_pending_prompts],
        })

    def _on_transcript(self) -> None:
        items = self.transcript_loop.transcripts
        self._emit({
            "event": "transcript_updated",
            "count": len(items) if items is not None else None,
            "error": self.transcript_loop.error,
        })

    def _on_session(self) -> None:
        self._emit({
            "event": "session_text_updated",
            "length": len(self.session_loop.text),
            "error": self.session_loop.error,
        })

    def _on_queue_changed(self, key: str) -> None:
        self._emit({"event": "queue_changed", "key": key, "count": len(self.store.list_for(key))})
        if self.selection.is_active_key(key):
            self._emit_pending()
        keys = set(self.store.keys())
        if keys != self._queue_keys:
            self._queue_keys = keys
            if self._started:
                self.flush_loop.kick()

    # ── Collaborator inputs ──────────────────────────────────

    def drone(self, drone_id: str) -> DroneSummary | None:
        return self._drones.get(drone_id)

    @property
    def drones(self) -> list[DroneSummary]:
        return list(self._drones.values())

    def update_drones(self, drones: Iterable[DroneSummary]) -> None:
        """Replace the registry snapshot and react to lifecycle changes."""
        previous = self._drones
        self._drones = {d.id: d for d in drones}

        became_ready = [
            d.id for d in self._drones.values()
            if d.accepts_prompts
            and (d.id not in previous or not previous[d.id].accepts_prompts)
        ]
        if became_ready:
            logger.info("Drones ready for delivery: %s", ", ".join(became_ready))
            if self._started:
                self.flush_loop.kick()

        sel = self.selection.current
        if sel is None or not self._started:
            return
        old = previous.get(sel.drone_id)
        new = self._drones.get(sel.drone_id)
        old_state = (old is not None, old.hub_phase if old else None)
        new_state = (new is not None, new.hub_phase if new else None)
        if old_state != new_state:
            self.transcript_loop.restart()
            self._restart_pending_poll()

    def set_startup_seed(self, drone_id: str, seed: StartupSeed | None) -> None:
        if seed is None:
            self._startup_seeds.pop(drone_id, None)
        else:
            self._startup_seeds[drone_id] = seed
        if self.selection.current is not None and self.selection.current.drone_id == drone_id:
            self._emit_pending()

    def forget_drone(self, drone_id: str) -> None:
        """Drop local state for a deleted drone."""
        self._startup_seeds.pop(drone_id, None)
        self.store.clear_for_drone(drone_id)

    def select(
        self,
        drone_id: str | None,
        chat_name: str | None = None,
        *,
        identity: str | None = None,
        display_mode: DisplayMode = DisplayMode.STRUCTURED,
        addressing_mode: AddressingMode = AddressingMode.SCREEN,
    ) -> bool:
        """Change the active conversation. Returns True if state was reset."""
        changed = self.selection.select(
            drone_id, chat_name,
            identity=identity,
            display_mode=display_mode,
            addressing_mode=addressing_mode,
        )
        if not changed:
            return False

        self.pending.reset()
        self.unsticking.clear()
        self.unstick_errors.clear()
        self.transcript_loop.reset()
        self.session_loop.reset()
        sel = self.selection.current
        self.session_loop.loading = sel is not None and sel.display_mode == DisplayMode.RAW_LOG
        self._emit({
            "event": "selection_changed",
            "drone_id": sel.drone_id if sel else None,
            "chat_name": sel.chat_name if sel else None,
            "epoch": self.selection.epoch,
        })
        if self._started:
            self._restart_loops()
        return True

    # ── Lifecycle ────────────────────────────────────────────

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._queue_keys = set(self.store.keys())
        self._restart_loops()
        self.flush_loop.kick()

    def _restart_loops(self) -> None:
        self.transcript_loop.restart()
        self.session_loop.restart()
        self._restart_pending_poll()

    def _restart_pending_poll(self) -> None:
        if self._pending_poll is not None:
            self._pending_poll.stop()
            self._pending_poll = None
        sel = self.selection.current
        if sel is None or sel.display_mode != DisplayMode.STRUCTURED:
            return
        self._pending_poll = PollLoop(
            f"pending:{sel.key}", self.config.pending_poll_seconds, self.poll_pending_once,
        )
        self._pending_poll.start()

    async def aclose(self) -> None:
        """Stop every timer and background task."""
        self._started = False
        self.typing.cancel()
        pending_poll, self._pending_poll = self._pending_poll, None
        if pending_poll is not None:
            await pending_poll.aclose()
        await self.transcript_loop.aclose()
        await self.session_loop.aclose()
        await self.flush_loop.aclose()
        tasks = list(self._event_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Operations ───────────────────────────────────────────

    async def send(self, payload: ChatSendPayload) -> bool:
        """Send to the active conversation."""
        sel = self.selection.current
        if sel is None:
            self.dispatcher.set_error("No drone selected.")
            return False
        return await self.dispatcher.send(sel.key, payload)

    async def send_to(self, drone_id: str, chat_name: str, payload: ChatSendPayload) -> bool:
        try:
            key = conversation_key(drone_id, chat_name)
        except ValueError:
            self.dispatcher.set_error("No drone selected.")
            return False
        return await self.dispatcher.send(key, payload)

    def retry_queued(self, key: str, item_id: str) -> bool:
        """Put a failed queue entry back to ``queued`` and resume draining."""
        head = self.store.head(key)
        if head is None or head.id != item_id or head.state != QueuedPromptState.FAILED:
            return False
        self.store.patch(key, item_id, state=QueuedPromptState.QUEUED, error=None)
        if self._started:
            self.flush_loop.kick()
        return True

    def dismiss_queued(self, key: str, item_id: str) -> bool:
        """Remove a queue entry, unblocking the ones behind it."""
        removed = self.store.remove(key, item_id)
        if removed and self._started:
            self.flush_loop.kick()
        return removed

    async def unstick(self, prompt_id: str) -> None:
        """Ask the hub to resolve a stuck pending prompt."""
        prompt_id = str(prompt_id or "").strip()
        sel = self.selection.current
        if not prompt_id or sel is None:
            return
        if prompt_id in self.unsticking:
            return
        self.unsticking.add(prompt_id)
        self.unstick_errors.pop(prompt_id, None)
        epoch = self.selection.epoch
        try:
            await self._client.unstick_pending(sel.drone_id, sel.chat_name, prompt_id)
            if self.selection.is_current(epoch):
                self.pending.mark_sent(prompt_id)
                logger.info("Unstuck pending prompt %s", prompt_id[:8])
        except HubError as exc:
            if self.selection.is_current(epoch):
                self.unstick_errors[prompt_id] = str(exc)
            logger.warning("Unstick of %s failed: %s", prompt_id[:8], exc)
        finally:
            self.unsticking.discard(prompt_id)
            self._emit_pending()

    async def poll_pending_once(self) -> None:
        sel = self.selection.current
        if sel is None or sel.display_mode != DisplayMode.STRUCTURED:
            return
        drone = self.drone(sel.drone_id)
        if drone is None or drone.is_provisioning:
            if self.pending.server:
                self.pending.set_server([])
                self._emit_pending()
            return
        key = sel.key
        if key in self._pending_polling:
            logger.debug("Pending poll for %s still running, skipping", key)
            return
        self._pending_polling.add(key)
        epoch = self.selection.epoch
        try:
            items = await self._client.list_pending(sel.drone_id, sel.chat_name)
        except HubError as exc:
            logger.debug("Pending poll for %s failed: %s", key, exc)
            return
        finally:
            self._pending_polling.discard(key)
        if not self.selection.is_current(epoch):
            return
        self.pending.set_server(items)
        self._emit_pending()

    # ── Derived state ────────────────────────────────────────

    @property
    def prompt_error(self) -> str | None:
        return self.dispatcher.prompt_error

    @property
    def sending(self) -> bool:
        return self.dispatcher.sending

    @property
    def transcripts(self) -> list[TranscriptItem] | None:
        return self.transcript_loop.transcripts

    @property
    def transcript_error(self) -> str | None:
        return self.transcript_loop.error

    @property
    def transcript_status(self) -> TranscriptStatus:
        return self.transcript_loop.status

    @property
    def session_text(self) -> str:
        return self.session_loop.text

    @property
    def session_error(self) -> str | None:
        return self.session_loop.error

    @property
    def pending_prompts(self) -> list[PendingPrompt]:
        return self.pending.merged()

    @property
    def visible_pending_prompts(self) -> list[PendingPrompt]:
        sel = self.selection.current
        if sel is None or sel.display_mode != DisplayMode.STRUCTURED:
            return []
        visible = self.pending.visible(self.transcripts)
        seed = self._startup_seeds.get(sel.drone_id)
        startup = None
        if seed is not None and seed.chat_name == sel.chat_name:
            startup = startup_pending_prompt(self.drone(sel.drone_id), seed)
        return with_startup_and_queue(visible, startup, self.store.list_for(sel.key))

    @property
    def is_responding(self) -> bool:
        sel = self.selection.current
        if sel is not None:
            if self.sending:
                return True
            if sel.display_mode == DisplayMode.RAW_LOG and self.typing.active:
                return True
        return any(
            p.state != PendingPromptState.FAILED for p in self.visible_pending_prompts
        )

    def queued_for(self, key: str) -> list[QueuedPrompt]:
        return self.store.list_for(key)

    def queue_counts(self) -> dict[str, int]:
        """Per-key queue depth, for badges."""
        return {key: len(items) for key, items in self.store.snapshot().items()}
