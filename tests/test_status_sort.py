"""Tests for ordering conversations by agent activity."""
from __future__ import annotations

from dataclasses import dataclass

from dronehub.engine.models import RuntimeStatus
from dronehub.engine.status_sort import normalize_ms, parse_iso_ms, sort_by_status


@dataclass
class _Conv:
    id: str


A, B, C, D = _Conv("a"), _Conv("b"), _Conv("c"), _Conv("d")

RUNTIME = {
    "a": RuntimeStatus(waiting_for_agent=False, last_response_at_ms=100),
    "b": RuntimeStatus(waiting_for_agent=True, waiting_since_ms=300, last_response_at_ms=20),
    "c": RuntimeStatus(waiting_for_agent=False, last_response_at_ms=200),
    "d": RuntimeStatus(waiting_for_agent=True, waiting_since_ms=150, last_response_at_ms=10),
}


def test_idle_first_then_waiting():
    result = sort_by_status([A, B, C, D], RUNTIME, enabled=True)
    assert [c.id for c in result] == ["a", "c", "d", "b"]


def test_disabled_returns_input_unchanged():
    convs = [A, B, C]
    assert sort_by_status(convs, RUNTIME, enabled=False) is convs


def test_missing_status_sorts_first_and_ties_keep_order():
    e, f = _Conv("e"), _Conv("f")
    result = sort_by_status([A, e, C, f], RUNTIME, enabled=True)
    assert [c.id for c in result] == ["e", "f", "a", "c"]


def test_custom_key_function():
    convs = [("x", "c"), ("y", "a")]
    result = sort_by_status(convs, RUNTIME, enabled=True, key=lambda c: c[1])
    assert result == [("y", "a"), ("x", "c")]


def test_normalize_ms_rejects_non_numbers():
    assert normalize_ms(None) is None
    assert normalize_ms(True) is None
    assert normalize_ms("nan") is None
    assert normalize_ms("12") == 12.0


def test_parse_iso_ms_accepts_zulu_suffix():
    assert parse_iso_ms("1970-01-01T00:00:01Z") == 1000.0
    assert parse_iso_ms("not a date") is None
    assert parse_iso_ms("") is None
