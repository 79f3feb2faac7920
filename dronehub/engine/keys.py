"""Conversation keys: opaque strings naming one (drone, chat) pair.

Both halves are percent-encoded before joining, so the ``::`` separator
can never occur inside a half and every key parses back to exactly the
pair it was built from.
"""
from __future__ import annotations

from typing import NamedTuple
from urllib.parse import quote, unquote

from .models import normalize_chat_name

_SEPARATOR = "::"


class ConversationRef(NamedTuple):
    drone_id: str
    chat_name: str


def conversation_key(drone_id: str, chat_name: str | None = None) -> str:
    """Build the key for a drone/chat pair. Empty chat means ``default``."""
    drone = str(drone_id or "").strip()
    if not drone:
        raise ValueError("drone_id is required for a conversation key")
    chat = normalize_chat_name(chat_name)
    return f"{quote(drone, safe='')}{_SEPARATOR}{quote(chat, safe='')}"


def parse_conversation_key(key: str) -> ConversationRef | None:
    """Reverse conversation_key(). Returns None for malformed keys."""
    raw = str(key or "")
    head, sep, tail = raw.partition(_SEPARATOR)
    if not sep:
        return None
    drone = unquote(head).strip()
    if not drone:
        return None
    return ConversationRef(drone, normalize_chat_name(unquote(tail)))
