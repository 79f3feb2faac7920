"""Transcript sync: poll the structured history of the active chat.

Each successful poll replaces the local transcript wholesale. A 404 means
the chat has no transcript yet and yields an empty list without an
error. Other failures are recorded while the last good transcript stays
visible. Results are dropped if the selection changed while the request
was in flight.
"""
from __future__ import annotations

import logging
from collections.abc import Callable

from dronehub.adapters.hub_client import HubClient

from .config import SyncConfig
from .errors import HubError, HubRequestError
from .models import DisplayMode, DroneSummary, TranscriptItem, TranscriptStatus
from .polling import PollLoop
from .selection import Selection, SelectionTracker

logger = logging.getLogger(__name__)


class TranscriptSyncLoop:
    def __init__(
        self,
        client: HubClient,
        selection: SelectionTracker,
        drone_lookup: Callable[[str], DroneSummary | None],
        config: SyncConfig | None = None,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._client = client
        self._selection = selection
        self._drone_lookup = drone_lookup
        self._config = config or SyncConfig()
        self._on_change = on_change
        self._poll: PollLoop | None = None
        self._polling: set[str] = set()
        self.transcripts: list[TranscriptItem] | None = None
        self.error: str | None = None
        self.loading = False

    @property
    def status(self) -> TranscriptStatus:
        if self.loading:
            return TranscriptStatus.LOADING
        if self.error:
            return TranscriptStatus.ERROR
        return TranscriptStatus.IDLE

    @property
    def running(self) -> bool:
        return self._poll is not None and self._poll.running

    def _changed(self) -> None:
        if self._on_change is not None:
            self._on_change()

    def reset(self) -> None:
        """Forget the previous selection's transcript."""
        sel = self._selection.current
        self.transcripts = None
        self.error = None
        self.loading = sel is not None and sel.display_mode == DisplayMode.STRUCTURED
        self._changed()

    def restart(self) -> None:
        """(Re)start polling for the current selection if it wants transcripts."""
        self.stop()
        sel = self._selection.current
        if sel is None or sel.display_mode != DisplayMode.STRUCTURED:
            return
        if self._drone_lookup(sel.drone_id) is None:
            return
        self._poll = PollLoop(
            f"transcript:{sel.key}", self._config.transcript_poll_seconds, self.poll_once,
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
        if sel is None:
            return
        drone = self._drone_lookup(sel.drone_id)
        if drone is None or drone.is_provisioning:
            return
        # Keyed on the component so the guard survives restart().
        key = sel.key
        if key in self._polling:
            logger.debug("Transcript poll for %s still running, skipping", key)
            return
        self._polling.add(key)
        try:
            await self._fetch(sel)
        finally:
            self._polling.discard(key)

    async def _fetch(self, sel: Selection) -> None:
        epoch = self._selection.epoch
        if self.transcripts is None and not self.error and not self.loading:
            self.loading = True
            self._changed()
        try:
            items = await self._client.get_transcript(sel.drone_id, sel.chat_name)
        except HubRequestError as exc:
            if not self._selection.is_current(epoch):
                return
            if exc.is_not_found:
                self.transcripts = []
                self.error = None
            else:
                logger.warning("Transcript poll for %s failed: %s", sel.key, exc)
                self.error = str(exc)
        except HubError as exc:
            if not self._selection.is_current(epoch):
                return
            logger.warning("Transcript poll for %s failed: %s", sel.key, exc)
            self.error = str(exc)
        else:
            if not self._selection.is_current(epoch):
                logger.debug("Dropping stale transcript for %s", sel.key)
                return
            self.transcripts = items
            self.error = None
        self.loading = False
        self._changed()
