"""Core data models for the chat sync engine.

All dataclasses, enums, and small parsing helpers. Single source of
truth to avoid circular imports.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

DEFAULT_CHAT_NAME = "default"

# Hub lifecycle phases during which a drone cannot accept prompts yet.
PROVISIONING_PHASES = frozenset({"creating", "starting", "seeding"})


class DisplayMode(str, Enum):
    """How a conversation is rendered: discrete turns or raw terminal output."""
    STRUCTURED = "transcript"
    RAW_LOG = "cli"


class AddressingMode(str, Enum):
    """How raw session output is fetched."""
    SCREEN = "screen"
    LOG = "log"


class QueuedPromptState(str, Enum):
    """Client-side queue states. See flush_loop.py for transitions."""
    QUEUED = "queued"
    SENDING = "sending"
    FAILED = "failed"


class PendingPromptState(str, Enum):
    """States of a prompt accepted by the hub but not yet answered."""
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


class TranscriptStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


def make_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_drone_starting_or_seeding(hub_phase: str | None) -> bool:
    return hub_phase in PROVISIONING_PHASES


def normalize_chat_name(chat_name: str | None) -> str:
    return str(chat_name or "").strip() or DEFAULT_CHAT_NAME


@dataclass
class QueuedPrompt:
    """A prompt held locally because its drone cannot accept sends yet.

    Owned by QueuedDeliveryStore; other components receive copies.
    """
    prompt: str
    id: str = field(default_factory=lambda: f"queued-{make_id()}")
    at: str = field(default_factory=utc_now_iso)
    state: QueuedPromptState = QueuedPromptState.QUEUED
    error: str | None = None
    updated_at: str | None = None

    def as_pending(self) -> PendingPrompt:
        """Project into the pending-prompt shape for display lists."""
        state = (
            PendingPromptState.FAILED
            if self.state == QueuedPromptState.FAILED
            else PendingPromptState.SENDING
        )
        return PendingPrompt(
            id=self.id,
            at=self.at,
            prompt=self.prompt,
            state=state,
            updated_at=self.updated_at,
            error=self.error,
            queued=True,
        )


@dataclass
class PendingPrompt:
    """A prompt accepted by the hub but not yet reflected as a transcript turn."""
    id: str
    at: str
    prompt: str
    state: PendingPromptState = PendingPromptState.SENDING
    updated_at: str | None = None
    error: str | None = None
    # True when this entry mirrors a local queue item rather than hub state.
    queued: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingPrompt:
        raw_state = str(data.get("state") or "sending")
        try:
            state = PendingPromptState(raw_state)
        except ValueError:
            state = PendingPromptState.SENDING
        return cls(
            id=str(data.get("id") or ""),
            at=str(data.get("at") or ""),
            prompt=str(data.get("prompt") or ""),
            state=state,
            updated_at=data.get("updatedAt"),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class TranscriptItem:
    """One completed turn. Snapshot data, never patched in place."""
    turn: int
    at: str
    prompt: str = ""
    output: str = ""
    ok: bool = True
    id: str | None = None
    error: str | None = None
    prompt_at: str | None = None
    completed_at: str | None = None
    session: str = ""
    log_path: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TranscriptItem:
        try:
            turn = int(data.get("turn") or 0)
        except (TypeError, ValueError):
            turn = 0
        item_id = data.get("id")
        return cls(
            turn=turn,
            at=str(data.get("at") or ""),
            prompt=str(data.get("prompt") or ""),
            output=str(data.get("output") or ""),
            ok=bool(data.get("ok", True)),
            id=str(item_id) if item_id else None,
            error=data.get("error"),
            prompt_at=data.get("promptAt"),
            completed_at=data.get("completedAt"),
            session=str(data.get("session") or ""),
            log_path=str(data.get("logPath") or ""),
        )


@dataclass(frozen=True)
class ChatAgent:
    """Agent configured for a chat: a builtin CLI or a custom command."""
    kind: str  # "builtin" or "custom"
    id: str
    label: str = ""
    command: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ChatAgent | None:
        if not isinstance(data, dict) or not data.get("kind"):
            return None
        return cls(
            kind=str(data["kind"]),
            id=str(data.get("id") or ""),
            label=str(data.get("label") or ""),
            command=str(data.get("command") or ""),
        )


def display_mode_for_agent(agent: ChatAgent | None) -> DisplayMode:
    """Builtin agents produce transcripts; custom commands only a raw log."""
    if agent is None or agent.kind == "builtin":
        return DisplayMode.STRUCTURED
    return DisplayMode.RAW_LOG


@dataclass
class DroneSummary:
    """Hub-side view of one drone, as listed by ``GET /api/drones``."""
    id: str
    name: str = ""
    hub_phase: str | None = None
    hub_message: str | None = None
    chats: list[str] = field(default_factory=list)
    group: str | None = None
    status_ok: bool = False
    busy: bool = False

    @property
    def label(self) -> str:
        return self.name or self.id

    @property
    def is_provisioning(self) -> bool:
        return is_drone_starting_or_seeding(self.hub_phase)

    @property
    def accepts_prompts(self) -> bool:
        return not self.is_provisioning and self.hub_phase != "error"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DroneSummary:
        name = str(data.get("name") or "")
        phase = data.get("hubPhase")
        return cls(
            id=str(data.get("id") or name),
            name=name,
            hub_phase=str(phase) if phase else None,
            hub_message=data.get("hubMessage"),
            chats=[str(c) for c in data.get("chats") or []],
            group=data.get("group"),
            status_ok=bool(data.get("statusOk", False)),
            busy=bool(data.get("busy", False)),
        )


@dataclass
class StartupSeed:
    """Initial prompt used to provision a drone that is not ready yet."""
    chat_name: str
    prompt: str
    at: str = ""
    agent: ChatAgent | None = None


@dataclass
class ChatSendPayload:
    prompt: str = ""
    attachments: list[dict[str, Any]] = field(default_factory=list)

    def optimistic_text(self) -> str:
        """Text shown for the optimistic pending entry."""
        prompt = self.prompt.strip()
        if prompt:
            return prompt
        count = len(self.attachments)
        if count == 1:
            return "[image attachment]"
        return f"[{count} image attachments]"


@dataclass(frozen=True)
class RuntimeStatus:
    """Per-conversation activity, supplied externally to the status sort."""
    waiting_for_agent: bool = False
    waiting_since_ms: float | None = None
    last_response_at_ms: float | None = None
