"""Active conversation selection and its epoch counter.

Every effective selection change advances the epoch. Async work captures
the epoch when it starts and drops its result if the epoch moved on.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .keys import conversation_key
from .models import AddressingMode, DisplayMode, normalize_chat_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    drone_id: str
    chat_name: str
    # Stable per-drone token; survives renames that change drone_id.
    identity: str
    display_mode: DisplayMode = DisplayMode.STRUCTURED
    addressing_mode: AddressingMode = AddressingMode.SCREEN

    @property
    def key(self) -> str:
        return conversation_key(self.drone_id, self.chat_name)

    @property
    def reset_key(self) -> tuple[str, str, DisplayMode, AddressingMode]:
        """Fields whose change invalidates all per-selection state."""
        return (self.identity, self.chat_name, self.display_mode, self.addressing_mode)


class SelectionTracker:
    """Holds the current Selection and a monotonically increasing epoch."""

    def __init__(self) -> None:
        self.current: Selection | None = None
        self.epoch = 0

    def select(
        self,
        drone_id: str | None,
        chat_name: str | None = None,
        *,
        identity: str | None = None,
        display_mode: DisplayMode = DisplayMode.STRUCTURED,
        addressing_mode: AddressingMode = AddressingMode.SCREEN,
    ) -> bool:
        """Apply a selection. Returns True when the epoch advanced."""
        drone = str(drone_id or "").strip()
        if not drone:
            changed = self.current is not None
            self.current = None
        else:
            nxt = Selection(
                drone_id=drone,
                chat_name=normalize_chat_name(chat_name),
                identity=str(identity or "").strip() or drone,
                display_mode=display_mode,
                addressing_mode=addressing_mode,
            )
            prev = self.current
            changed = prev is None or prev.reset_key != nxt.reset_key
            self.current = nxt
        if changed:
            self.epoch += 1
            logger.debug("Selection epoch -> %d (%s)", self.epoch, self.current)
        return changed

    def is_current(self, epoch: int) -> bool:
        return epoch == self.epoch

    def is_active_key(self, key: str) -> bool:
        return self.current is not None and self.current.key == key
