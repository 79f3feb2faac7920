"""Session output sync: poll the raw terminal log of the active chat.

Used for agents that do not produce transcripts. Two addressing modes:

* screen: fetch the last N lines on every poll and replace the buffer.
* log:    seed from a short tail, then fetch only bytes after the last
          reported offset and append them. The buffer is capped and
          trimmed from the front.

Terminal control sequences are stripped before text reaches the buffer.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable

from dronehub.adapters.hub_client import HubClient

from .config import SyncConfig
from .errors import HubError
from .models import AddressingMode, DisplayMode, DroneSummary
from .polling import PollLoop
from .selection import Selection, SelectionTracker
from .typing_pulse import TypingPulse

logger = logging.getLogger(__name__)

_ANSI_RE = re.compile(
    r"\x1b\[[0-9;?]*[A-Za-z]"          # CSI
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC
    r"|\x1b[()][A-Z0-9]"                # charset select
    r"|\x1b[A-Z@-_]"                    # two-byte escapes
    r"|\r"
)


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def cap_buffer(text: str, max_chars: int) -> str:
    """Keep the last ``max_chars`` characters."""
    return text[-max_chars:] if len(text) > max_chars else text


class SessionOutputSyncLoop:
    def __init__(
        self,
        client: HubClient,
        selection: SelectionTracker,
        drone_lookup: Callable[[str], DroneSummary | None],
        typing: TypingPulse,
        config: SyncConfig | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._client = client
        self._selection = selection
        self._drone_lookup = drone_lookup
        self._typing = typing
        self._config = config or SyncConfig()
        self._on_change = on_change
        self._poll: PollLoop | None = None
        self._polling: set[str] = set()
        self.text = ""
        self.error: str | None = None
        self.loading = False
        self.offset: int | None = None
        self.screen_loaded = False

    @property
    def running(self) -> bool:
        return self._poll is not None and self._poll.running

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def reset(self) -> None:
        dirty = bool(self.text or self.error or self.loading)
        self.offset = None
        self.screen_loaded = False
        self.text = ""
        self.error = None
        self.loading = False
        if dirty:
            self._changed()

    def restart(self) -> None:
        self.stop()
        sel = self._selection.current
        if sel is None or sel.display_mode != DisplayMode.RAW_LOG:
            return
        self._poll = PollLoop(
            f"session:{sel.key}", self._config.session_poll_seconds, self.poll_once,
        )
        self._poll.start()

    def stop(self) -> None:
        if self._poll is not None:
            self._poll.stop()
            self._poll = None

    async def aclose(self) -> None:
        poll, self._poll = self._poll, None
        if poll is not None:
            await poll.aclose()

    async def poll_once(self) -> None:
        sel = self._selection.current
        if sel is None or sel.display_mode != DisplayMode.RAW_LOG:
            return
        drone = self._drone_lookup(sel.drone_id)
        if drone is None or drone.is_provisioning or sel.chat_name not in drone.chats:
            self.reset()
            return
        key = sel.key
        if key in self._polling:
            logger.debug("Session poll for %s still running, skipping", key)
            return
        self._polling.add(key)
        try:
            await self._fetch(sel)
        finally:
            self._polling.discard(key)

    async def _fetch(self, sel: Selection) -> None:
        epoch = self._selection.epoch
        mode = sel.addressing_mode
        if mode == AddressingMode.SCREEN:
            initial = not self.screen_loaded
        elif mode == AddressingMode.LOG:
            initial = self.offset is None
        else:
            raise ValueError(f"unknown addressing mode: {mode!r}")

        if initial and not self.loading:
            self.loading = True
            self._changed()
        try:
            if mode == AddressingMode.SCREEN:
                await self._poll_screen(sel, epoch)
            else:
                await self._poll_log(sel, epoch, initial)
        except HubError as exc:
            if not self._selection.is_current(epoch):
                return
            logger.warning("Session poll for %s failed: %s", sel.key, exc)
            self.error = str(exc)
        if self._selection.is_current(epoch):
            self.loading = False
            self._changed()

    async def _poll_screen(self, sel: Selection, epoch: int) -> None:
        raw = await self._client.get_output_screen(
            sel.drone_id, sel.chat_name, self._config.screen_tail_lines,
        )
        if not self._selection.is_current(epoch):
            return
        plain = strip_ansi(raw)
        if self.text and plain != self.text:
            self._typing.bump()
        self.text = plain
        self.screen_loaded = True
        self.offset = None
        self.error = None

    async def _poll_log(self, sel: Selection, epoch: int, initial: bool) -> None:
        if initial:
            offset, chunk = await self._client.get_output_log(
                sel.drone_id, sel.chat_name,
                tail=self._config.log_initial_tail_lines,
            )
        else:
            offset, chunk = await self._client.get_output_log(
                sel.drone_id, sel.chat_name,
                since=self.offset,
                max_bytes=self._config.log_max_bytes,
            )
        if not self._selection.is_current(epoch):
            return
        plain = strip_ansi(chunk) if chunk else ""
        self.offset = offset if offset is not None else (self.offset or 0)
        self.error = None
        max_chars = self._config.session_buffer_max_chars
        if initial:
            self.text = cap_buffer(plain, max_chars)
        elif plain:
            self._typing.bump()
            self.text = cap_buffer(self.text + plain, max_chars)
