"""Prompt dispatcher: decides whether a prompt is sent now or queued.

A prompt for a drone that is still provisioning goes into the local
QueuedDeliveryStore and the flush loop delivers it later. Everything else
becomes exactly one POST. A successful POST for the visible structured
conversation registers an optimistic pending entry so the prompt shows up
before the next pending poll confirms it.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from dronehub.adapters.hub_client import HubClient

from .errors import (
    DroneNotFoundError,
    DroneProvisioningError,
    HubError,
    InvalidConversationError,
    PromptRejectedError,
    PromptValidationError,
)
from .keys import parse_conversation_key
from .models import ChatSendPayload, DisplayMode, DroneSummary
from .pending import PendingPromptReconciler
from .queue_store import QueuedDeliveryStore
from .selection import SelectionTracker
from .typing_pulse import TypingPulse

logger = logging.getLogger(__name__)


class PromptDispatcher:
    """Turns a send request into one queue entry or one hub request."""

    def __init__(
        self,
        client: HubClient,
        store: QueuedDeliveryStore,
        selection: SelectionTracker,
        pending: PendingPromptReconciler,
        typing: TypingPulse,
        drone_lookup: Callable[[str], DroneSummary | None],
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._client = client
        self._store = store
        self._selection = selection
        self._pending = pending
        self._typing = typing
        self._drone_lookup = drone_lookup
        self._on_change = on_change
        self.in_flight = 0
        self.prompt_error: str | None = None

    @property
    def sending(self) -> bool:
        return self.in_flight > 0

    def set_error(self, error: str | None) -> None:
        if error != self.prompt_error:
            self.prompt_error = error
            if self._on_change is not None:
                self._on_change()

    def _resolve_drone(self, key: str, payload: ChatSendPayload) -> DroneSummary:
        if not payload.prompt.strip() and not payload.attachments:
            raise PromptValidationError()
        ref = parse_conversation_key(key)
        if ref is None:
            raise InvalidConversationError(key)
        drone = self._drone_lookup(ref.drone_id)
        if drone is None:
            raise DroneNotFoundError(ref.drone_id)
        if drone.is_provisioning and payload.attachments:
            raise DroneProvisioningError(drone.label)
        return drone

    async def send(self, key: str, payload: ChatSendPayload) -> bool:
        """Queue or send. True when the prompt was accepted locally or remotely."""
        try:
            drone = self._resolve_drone(key, payload)
        except PromptRejectedError as exc:
            self.set_error(str(exc))
            return False

        prompt = payload.prompt.strip()
        if drone.is_provisioning:
            self._store.enqueue(key, prompt)
            self.set_error(None)
            return True

        ref = parse_conversation_key(key)
        epoch = self._selection.epoch
        self.in_flight += 1
        self.set_error(None)
        try:
            prompt_id = await self._client.send_prompt(
                ref.drone_id, ref.chat_name, prompt, payload.attachments,
            )
            logger.info(
                "Prompt sent to %s/%s (id=%s)",
                ref.drone_id, ref.chat_name, prompt_id[:8] or "-",
            )
            self.record_accepted(key, prompt_id, payload.optimistic_text(), epoch)
            return True
        except HubError as exc:
            logger.warning("Prompt send to %s failed: %s", key, exc)
            self.set_error(str(exc))
            return False
        finally:
            self.in_flight = max(0, self.in_flight - 1)
            if self._on_change is not None:
                self._on_change()

    def record_accepted(
        self,
        key: str,
        prompt_id: str,
        prompt: str,
        epoch: int | None = None,
    ) -> None:
        """Reflect an accepted prompt in the visible conversation, if it still is."""
        if not self._selection.is_active_key(key):
            return
        if epoch is not None and not self._selection.is_current(epoch):
            logger.debug("Dropping stale accept for %s (epoch %d)", key, epoch)
            return
        mode = self._selection.current.display_mode
        if mode == DisplayMode.RAW_LOG:
            self._typing.bump()
        elif mode == DisplayMode.STRUCTURED:
            if self._pending.add_optimistic(prompt_id, prompt) and self._on_change:
                self._on_change()
        else:
            raise ValueError(f"unknown display mode: {mode!r}")
