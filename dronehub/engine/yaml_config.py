"""YAML configuration loader for the chat sync engine.

Parses a ``hub.yaml`` file into a SyncConfig. Example::

    hub:
      base_url: http://127.0.0.1:5174
      timeout_seconds: 30
    sync:
      transcript_poll_seconds: 2
      session_poll_seconds: 1
      pending_cap: 60
      session_buffer_max_chars: 800000
      cache_ttl_seconds: 5
    log_level: DEBUG

Unknown keys are ignored. Values not present keep their defaults.
"""
from __future__ import annotations

import logging
from dataclasses import fields
from pathlib import Path

import yaml

from .config import SyncConfig

logger = logging.getLogger(__name__)

# sync: section keys accepted verbatim as SyncConfig fields
_SYNC_KEYS = {
    f.name for f in fields(SyncConfig)
    if f.name not in ("base_url", "request_timeout_seconds", "log_level")
}


def default_config_path() -> Path:
    """Return the per-user config path (~/.dronehub/hub.yaml)."""
    return Path.home() / ".dronehub" / "hub.yaml"


def load_yaml_config(path: str | Path) -> SyncConfig:
    """Load and parse a YAML config file into a SyncConfig."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise

    if not isinstance(raw, dict):
        logger.warning(
            "load_yaml_config: %s does not contain a mapping, using defaults",
            path,
        )
        raw = {}

    config = SyncConfig()

    hub_raw = raw.get("hub", {}) or {}
    if "base_url" in hub_raw:
        config.base_url = str(hub_raw["base_url"]).rstrip("/")
    if "timeout_seconds" in hub_raw:
        config.request_timeout_seconds = float(hub_raw["timeout_seconds"])

    sync_raw = raw.get("sync", {}) or {}
    for key, value in sync_raw.items():
        if key not in _SYNC_KEYS:
            logger.warning("load_yaml_config: ignoring unknown sync key %r", key)
            continue
        current = getattr(config, key)
        setattr(config, key, type(current)(value))

    if raw.get("log_level"):
        config.log_level = str(raw["log_level"]).upper()

    logger.info(
        "Config loaded from %s: base_url=%s transcript_poll=%.1fs "
        "session_poll=%.1fs pending_cap=%d",
        path.name,
        config.base_url,
        config.transcript_poll_seconds,
        config.session_poll_seconds,
        config.pending_cap,
    )
    return config
