"""Drone Hub client-side delivery and synchronization engine."""

__version__ = "0.3.0"
