"""Tests for conversation key encoding."""
from __future__ import annotations

import pytest

from dronehub.engine.keys import ConversationRef, conversation_key, parse_conversation_key


def test_key_round_trips_plain_names():
    key = conversation_key("alpha", "research")
    assert parse_conversation_key(key) == ConversationRef("alpha", "research")


def test_empty_chat_defaults_to_default():
    assert conversation_key("alpha", "") == conversation_key("alpha", "default")
    assert conversation_key("alpha", None) == conversation_key("alpha", "default")
    assert parse_conversation_key(conversation_key("alpha", "  ")).chat_name == "default"


def test_separator_inside_names_does_not_collide():
    a = conversation_key("a::b", "c")
    b = conversation_key("a", "b::c")
    assert a != b
    assert parse_conversation_key(a) == ConversationRef("a::b", "c")
    assert parse_conversation_key(b) == ConversationRef("a", "b::c")


def test_percent_signs_survive_round_trip():
    key = conversation_key("drone%3A1", "chat/with spaces")
    assert parse_conversation_key(key) == ConversationRef("drone%3A1", "chat/with spaces")


def test_empty_drone_id_rejected():
    with pytest.raises(ValueError):
        conversation_key("  ", "default")


@pytest.mark.parametrize("raw", ["", "no-separator", "::chat"])
def test_malformed_keys_parse_to_none(raw):
    assert parse_conversation_key(raw) is None
