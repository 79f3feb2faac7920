"""Order conversations by whether they are waiting on the agent.

Conversations not waiting come first, oldest response first; waiting
conversations trail, longest wait last. Missing timestamps sort first
within their group and ties keep input order.
"""
from __future__ import annotations

import math
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any, TypeVar

from .models import RuntimeStatus

T = TypeVar("T")


def normalize_ms(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_iso_ms(value: Any) -> float | None:
    """Epoch milliseconds for an ISO-8601 string, or None."""
    raw = str(value or "").strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw).timestamp() * 1000.0
    except ValueError:
        return None


def _nullable_key(value: float | None) -> tuple[int, float]:
    return (0, 0.0) if value is None else (1, value)


def sort_by_status(
    conversations: Sequence[T],
    runtime_by_key: Mapping[str, RuntimeStatus | None],
    enabled: bool,
    key: Callable[[T], str] = lambda c: getattr(c, "id"),
) -> Sequence[T]:
    """Return ``conversations`` in status order; unchanged if disabled."""
    if not enabled or len(conversations) < 2:
        return conversations

    def sort_key(indexed: tuple[int, T]) -> tuple:
        index, item = indexed
        status = runtime_by_key.get(key(item))
        waiting = bool(status and status.waiting_for_agent)
        if waiting:
            stamp = normalize_ms(status.waiting_since_ms)
        else:
            stamp = normalize_ms(status.last_response_at_ms if status else None)
        return (1 if waiting else 0, *_nullable_key(stamp), index)

    return [item for _, item in sorted(enumerate(conversations), key=sort_key)]
