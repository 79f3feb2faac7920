"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via DRONEHUB_* env vars.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


# Optional async callback for runtime state observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging and dropping errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Event callback failed for %s", event.get("event"), exc_info=True)


@dataclass
class SyncConfig:
    """Chat sync engine configuration."""

    # Hub HTTP endpoint
    base_url: str = "http://127.0.0.1:5174"
    request_timeout_seconds: float = 30.0

    # Poll cadences
    transcript_poll_seconds: float = 2.0
    session_poll_seconds: float = 1.0
    pending_poll_seconds: float = 1.0

    # Pending prompt merge cap (most recent entries kept)
    pending_cap: int = 60

    # Raw session output
    session_buffer_max_chars: int = 800_000
    screen_tail_lines: int = 2000
    log_initial_tail_lines: int = 200
    log_max_bytes: int = 200_000
    typing_pulse_seconds: float = 1.4

    # GET response cache for slow-changing resources. 0 disables.
    cache_ttl_seconds: float = 0.0

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from DRONEHUB_* environment variables."""
        hub_vars = {
            k: v for k, v in os.environ.items() if k.startswith("DRONEHUB_")
        }
        if hub_vars:
            logger.info(
                "SyncConfig.from_env: DRONEHUB_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(hub_vars.items())),
            )
        else:
            logger.debug("SyncConfig.from_env: no DRONEHUB_* env vars set, using defaults")

        config = cls(
            base_url=os.getenv("DRONEHUB_URL", cls.base_url),
            request_timeout_seconds=float(os.getenv(
                "DRONEHUB_TIMEOUT", str(cls.request_timeout_seconds)
            )),
            transcript_poll_seconds=float(os.getenv(
                "DRONEHUB_TRANSCRIPT_POLL", str(cls.transcript_poll_seconds)
            )),
            session_poll_seconds=float(os.getenv(
                "DRONEHUB_SESSION_POLL", str(cls.session_poll_seconds)
            )),
            pending_poll_seconds=float(os.getenv(
                "DRONEHUB_PENDING_POLL", str(cls.pending_poll_seconds)
            )),
            pending_cap=int(os.getenv(
                "DRONEHUB_PENDING_CAP", str(cls.pending_cap)
            )),
            session_buffer_max_chars=int(os.getenv(
                "DRONEHUB_SESSION_MAX_CHARS", str(cls.session_buffer_max_chars)
            )),
            cache_ttl_seconds=float(os.getenv(
                "DRONEHUB_CACHE_TTL", str(cls.cache_ttl_seconds)
            )),
            log_level=os.getenv("DRONEHUB_LOG_LEVEL", cls.log_level),
        )
        logger.info(
            "SyncConfig.from_env: base_url=%s log_level=%s",
            config.base_url, config.log_level,
        )
        return config
