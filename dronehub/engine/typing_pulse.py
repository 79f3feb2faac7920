"""Short-lived "agent is typing" indicator for raw-log conversations."""
from __future__ import annotations

import asyncio
from collections.abc import Callable


class TypingPulse:
    """``active`` turns on at bump() and off ``duration`` seconds after the last bump."""

    def __init__(
        self,
        duration: float = 1.4,
        on_change: Callable[[bool], None] | None = None,
    ) -> None:
        self.duration = duration
        self.active = False
        self._on_change = on_change
        self._handle: asyncio.TimerHandle | None = None

    def bump(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.duration, self._expire)
        self._set(True)

    def _expire(self) -> None:
        self._handle = None
        self._set(False)

    def _set(self, value: bool) -> None:
        if value == self.active:
            return
        self.active = value
        if self._on_change is not None:
            self._on_change(value)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._set(False)
