"""Event types emitted by the chat runtime.

Each event corresponds to a runtime callback dict, parsed into a typed
dataclass for safe consumption by a UI.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class RuntimeEvent:
    """Base event from the chat runtime."""
    event_type: str = ""


@dataclass
class SelectionChanged(RuntimeEvent):
    event_type: str = "selection_changed"
    drone_id: str | None = None
    chat_name: str | None = None
    epoch: int = 0


@dataclass
class QueueChanged(RuntimeEvent):
    event_type: str = "queue_changed"
    key: str = ""
    count: int = 0


@dataclass
class PendingChanged(RuntimeEvent):
    event_type: str = "pending_changed"
    pending: list[str] = field(default_factory=list)


@dataclass
class TranscriptUpdated(RuntimeEvent):
    event_type: str = "transcript_updated"
    count: int | None = None
    error: str | None = None


@dataclass
class SessionTextUpdated(RuntimeEvent):
    event_type: str = "session_text_updated"
    length: int = 0
    error: str | None = None


@dataclass
class PromptStateChanged(RuntimeEvent):
    event_type: str = "prompt_state_changed"
    sending: bool = False
    error: str | None = None


@dataclass
class TypingChanged(RuntimeEvent):
    event_type: str = "typing_changed"
    active: bool = False


_EVENT_MAP: dict[str, type[RuntimeEvent]] = {
    "selection_changed": SelectionChanged,
    "queue_changed": QueueChanged,
    "pending_changed": PendingChanged,
    "transcript_updated": TranscriptUpdated,
    "session_text_updated": SessionTextUpdated,
    "prompt_state_changed": PromptStateChanged,
    "typing_changed": TypingChanged,
}


def dict_to_event(data: dict[str, Any]) -> RuntimeEvent:
    """Convert a runtime callback dict to a typed event dataclass."""
    event_type = data.get("event", "")
    cls = _EVENT_MAP.get(event_type, RuntimeEvent)
    # Keep only keys the dataclass accepts
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    if "event" in data and "event_type" not in filtered:
        filtered["event_type"] = data["event"]
    return cls(**filtered)
