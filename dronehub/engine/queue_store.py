"""Local FIFO of prompts waiting for their drone to become ready.

One ordered list per conversation key. The store performs no I/O; the
dispatcher appends and the flush loop drains. Both share the per-key
flush guard kept here so at most one drain runs per key.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from .keys import parse_conversation_key
from .models import QueuedPrompt, utc_now_iso

logger = logging.getLogger(__name__)

# Called with the key whose list changed.
QueueListener = Callable[[str], None]


class QueuedDeliveryStore:
    """Per-key ordered lists of QueuedPrompt, oldest first."""

    def __init__(self) -> None:
        self._items: dict[str, list[QueuedPrompt]] = {}
        self._flushing: set[str] = set()
        self._listeners: list[QueueListener] = []

    def add_listener(self, listener: QueueListener) -> None:
        self._listeners.append(listener)

    def _notify(self, key: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(key)
            except Exception:
                logger.exception("Queue listener failed for key %s", key)

    def enqueue(self, key: str, prompt: str) -> QueuedPrompt:
        """Append a prompt to the end of the key's queue."""
        text = str(prompt or "").strip()
        if not text:
            raise ValueError("cannot queue an empty prompt")
        item = QueuedPrompt(prompt=text)
        self._items.setdefault(key, []).append(item)
        logger.info(
            "Queued prompt %s for %s (depth=%d)",
            item.id, key, len(self._items[key]),
        )
        self._notify(key)
        return replace(item)

    def patch(self, key: str, item_id: str, **changes: Any) -> QueuedPrompt | None:
        """Replace fields on one entry. Returns the new entry, or None."""
        items = self._items.get(key)
        if not items:
            return None
        for idx, item in enumerate(items):
            if item.id == item_id:
                updated = replace(item, **changes, updated_at=utc_now_iso())
                items[idx] = updated
                self._notify(key)
                return replace(updated)
        return None

    def remove(self, key: str, item_id: str) -> bool:
        """Drop one entry, keeping the relative order of the rest."""
        items = self._items.get(key)
        if not items:
            return False
        remaining = [item for item in items if item.id != item_id]
        if len(remaining) == len(items):
            return False
        if remaining:
            self._items[key] = remaining
        else:
            del self._items[key]
        self._notify(key)
        return True

    def list_for(self, key: str) -> list[QueuedPrompt]:
        """Copies of the key's entries in enqueue order."""
        return [replace(item) for item in self._items.get(key, [])]

    def head(self, key: str) -> QueuedPrompt | None:
        items = self._items.get(key)
        return replace(items[0]) if items else None

    def keys(self) -> list[str]:
        """Keys that currently hold at least one entry."""
        return list(self._items)

    def snapshot(self) -> dict[str, list[QueuedPrompt]]:
        return {key: self.list_for(key) for key in self._items}

    def clear_for_drone(self, drone_id: str) -> int:
        """Drop every queue belonging to one drone. Returns entries dropped."""
        target = str(drone_id or "").strip()
        dropped = 0
        for key in list(self._items):
            ref = parse_conversation_key(key)
            if ref is not None and ref.drone_id == target:
                dropped += len(self._items.pop(key))
                self._notify(key)
        if dropped:
            logger.info("Dropped %d queued prompt(s) for drone %s", dropped, target)
        return dropped

    # ── Flush guard ──────────────────────────────────────────

    def try_begin_flush(self, key: str) -> bool:
        """Claim the key for draining. False if a drain already owns it."""
        if key in self._flushing:
            return False
        self._flushing.add(key)
        return True

    def end_flush(self, key: str) -> None:
        self._flushing.discard(key)

    def is_flushing(self, key: str) -> bool:
        return key in self._flushing
