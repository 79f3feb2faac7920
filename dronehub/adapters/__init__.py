"""Adapters package - bridge between the sync engine and the outside.

Contains the hub HTTP client and the event bus that feeds runtime
events to UI consumers.
"""
from __future__ import annotations

__all__ = [
    "EventBus",
    "HubClient",
]

from dronehub.adapters.event_bus import EventBus
from dronehub.adapters.hub_client import HubClient
