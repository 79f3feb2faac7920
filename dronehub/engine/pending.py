"""Merge hub-reported pending prompts with local optimistic entries.

Two sources describe prompts the agent has not answered yet: the hub's
``/pending`` list (authoritative) and optimistic entries registered right
after a successful send. Hub entries win on id collision. The merged list
is capped to the most recent entries.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import replace

from .models import (
    DroneSummary,
    PendingPrompt,
    PendingPromptState,
    QueuedPrompt,
    StartupSeed,
    TranscriptItem,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

DEFAULT_PENDING_CAP = 60


def merge_pending(
    server: Iterable[PendingPrompt],
    optimistic: Iterable[PendingPrompt],
    cap: int = DEFAULT_PENDING_CAP,
) -> list[PendingPrompt]:
    """Hub entries first, then optimistic ones with unseen ids; keep last ``cap``."""
    by_id: dict[str, PendingPrompt] = {}
    for prompt in server:
        if prompt.id:
            by_id[prompt.id] = prompt
    for prompt in optimistic:
        if prompt.id and prompt.id not in by_id:
            by_id[prompt.id] = prompt
    merged = list(by_id.values())
    return merged[-cap:] if cap > 0 else []


def visible_pending(
    pending: Iterable[PendingPrompt],
    transcripts: Sequence[TranscriptItem] | None,
) -> list[PendingPrompt]:
    """Drop entries already answered in the transcript. Failed ones stay."""
    answered = {t.id for t in transcripts or () if t.id}
    return [
        p for p in pending
        if p.state == PendingPromptState.FAILED or p.id not in answered
    ]


def startup_pending_prompt(
    drone: DroneSummary | None,
    seed: StartupSeed | None,
) -> PendingPrompt | None:
    """Synthetic entry for the seed prompt of a drone still provisioning."""
    if drone is None or seed is None or not drone.is_provisioning:
        return None
    prompt = seed.prompt.strip()
    if not prompt:
        return None
    return PendingPrompt(
        id=f"seed-{drone.id}-{seed.chat_name}",
        at=seed.at or utc_now_iso(),
        prompt=prompt,
        state=PendingPromptState.SENDING,
        updated_at=seed.at or None,
    )


def with_startup_and_queue(
    visible: list[PendingPrompt],
    startup: PendingPrompt | None,
    queued: Iterable[QueuedPrompt] = (),
) -> list[PendingPrompt]:
    """Prepend the startup entry and append locally queued prompts.

    The startup entry is skipped when an entry with the same id or the
    same trimmed prompt text is already visible. Text equality can merge
    two unrelated prompts that happen to share wording; that is accepted.
    """
    base = visible
    if startup is not None:
        startup_text = startup.prompt.strip()
        duplicate = any(
            p.id == startup.id
            or (startup_text and p.prompt.strip() == startup_text)
            for p in visible
        )
        if not duplicate:
            base = [startup, *visible]

    ids = {p.id for p in base}
    extra = [q.as_pending() for q in queued if q.id not in ids]
    return [*base, *extra] if extra else base


class PendingPromptReconciler:
    """Holds the latest hub poll result and local optimistic entries."""

    def __init__(self, cap: int = DEFAULT_PENDING_CAP) -> None:
        self.cap = cap
        self._server: list[PendingPrompt] = []
        self._optimistic: list[PendingPrompt] = []

    @property
    def server(self) -> list[PendingPrompt]:
        return list(self._server)

    @property
    def optimistic(self) -> list[PendingPrompt]:
        return list(self._optimistic)

    def set_server(self, pending: Sequence[PendingPrompt]) -> None:
        """Replace the hub-reported list wholesale."""
        self._server = list(pending)

    def add_optimistic(self, prompt_id: str, prompt: str) -> bool:
        """Register a just-accepted prompt. No-op for empty or known ids."""
        prompt_id = str(prompt_id or "").strip()
        if not prompt_id or any(p.id == prompt_id for p in self._optimistic):
            return False
        self._optimistic.append(PendingPrompt(
            id=prompt_id,
            at=utc_now_iso(),
            prompt=prompt,
            state=PendingPromptState.SENDING,
        ))
        logger.debug("Optimistic pending prompt %s registered", prompt_id[:8])
        return True

    def mark_sent(self, prompt_id: str) -> bool:
        """Flip an optimistic entry to ``sent`` after a successful unstick."""
        for idx, prompt in enumerate(self._optimistic):
            if prompt.id == prompt_id:
                self._optimistic[idx] = replace(
                    prompt,
                    state=PendingPromptState.SENT,
                    error=None,
                    updated_at=utc_now_iso(),
                )
                return True
        return False

    def reset(self) -> None:
        """Forget both sources (selection changed)."""
        self._server = []
        self._optimistic = []

    def merged(self) -> list[PendingPrompt]:
        return merge_pending(self._server, self._optimistic, self.cap)

    def visible(self, transcripts: Sequence[TranscriptItem] | None) -> list[PendingPrompt]:
        return visible_pending(self.merged(), transcripts)
