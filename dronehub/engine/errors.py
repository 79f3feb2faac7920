"""Exception hierarchy for the chat sync engine.

Validation errors are raised before any I/O; HubError subclasses come
from the HTTP client. Loops catch HubError and record it as state.
"""
from __future__ import annotations


class HubError(Exception):
    """Base exception for all hub communication errors."""


class HubRequestError(HubError):
    """The hub answered with a non-2xx status."""
    def __init__(self, status: int, reason: str, url: str = ""):
        self.status = status
        self.reason = reason
        self.url = url
        super().__init__(reason)

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class HubConnectionError(HubError):
    """The request never produced an HTTP response."""
    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Cannot reach hub at {url}: {reason}")


class PromptRejectedError(Exception):
    """Base for prompts rejected locally before any request is made."""


class PromptValidationError(PromptRejectedError):
    """Prompt has neither text nor attachments."""
    def __init__(self) -> None:
        super().__init__("Prompt is empty.")


class DroneProvisioningError(PromptRejectedError):
    """Attachments cannot be queued while the drone is provisioning."""
    def __init__(self, drone_label: str):
        self.drone_label = drone_label
        super().__init__(
            f'"{drone_label}" is still provisioning. Image attachments '
            f"can be sent once it is ready."
        )


class DroneNotFoundError(PromptRejectedError):
    """Target drone is not in the current registry snapshot."""
    def __init__(self, drone_id: str):
        self.drone_id = drone_id
        super().__init__(f"Unknown drone: {drone_id}")


class InvalidConversationError(PromptRejectedError):
    """Conversation key does not name a drone/chat pair."""
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Invalid conversation: {key!r}")
