"""Drone Hub chat engine: prompt delivery and conversation sync."""
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
    RuntimeStatus,
    StartupSeed,
    TranscriptItem,
    TranscriptStatus,
)
from .config import SyncConfig
from .errors import (
    DroneNotFoundError,
    DroneProvisioningError,
    HubConnectionError,
    HubError,
    HubRequestError,
    InvalidConversationError,
    PromptRejectedError,
    PromptValidationError,
)
from .keys import conversation_key, parse_conversation_key

__all__ = [
    # Runtime (lazy import to avoid circular deps with adapters)
    "ChatRuntime",
    "PromptDispatcher",
    "QueueFlushLoop",
    "TranscriptSyncLoop",
    "SessionOutputSyncLoop",
    # Models
    "AddressingMode",
    "ChatAgent",
    "ChatSendPayload",
    "DisplayMode",
    "DroneSummary",
    "PendingPrompt",
    "PendingPromptState",
    "QueuedPrompt",
    "QueuedPromptState",
    "RuntimeStatus",
    "StartupSeed",
    "TranscriptItem",
    "TranscriptStatus",
    # Keys
    "conversation_key",
    "parse_conversation_key",
    # Config
    "SyncConfig",
    "load_yaml_config",
    # Pure helpers (lazy import)
    "QueuedDeliveryStore",
    "PendingPromptReconciler",
    "ResponseCache",
    "sort_by_status",
    # Errors
    "DroneNotFoundError",
    "DroneProvisioningError",
    "HubConnectionError",
    "HubError",
    "HubRequestError",
    "InvalidConversationError",
    "PromptRejectedError",
    "PromptValidationError",
]


def __getattr__(name: str):
    if name == "ChatRuntime":
        from .runtime import ChatRuntime
        return ChatRuntime
    if name == "PromptDispatcher":
        from .dispatcher import PromptDispatcher
        return PromptDispatcher
    if name == "QueueFlushLoop":
        from .flush_loop import QueueFlushLoop
        return QueueFlushLoop
    if name == "TranscriptSyncLoop":
        from .transcript_sync import TranscriptSyncLoop
        return TranscriptSyncLoop
    if name == "SessionOutputSyncLoop":
        from .session_sync import SessionOutputSyncLoop
        return SessionOutputSyncLoop
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    if name == "QueuedDeliveryStore":
        from .queue_store import QueuedDeliveryStore
        return QueuedDeliveryStore
    if name == "PendingPromptReconciler":
        from .pending import PendingPromptReconciler
        return PendingPromptReconciler
    if name == "ResponseCache":
        from .cache import ResponseCache
        return ResponseCache
    if name == "sort_by_status":
        from .status_sort import sort_by_status
        return sort_by_status
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
