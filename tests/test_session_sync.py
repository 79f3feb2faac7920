"""Tests for SessionOutputSyncLoop screen and log addressing."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from dronehub.engine.config import SyncConfig
from dronehub.engine.errors import HubConnectionError
from dronehub.engine.models import AddressingMode, DisplayMode, DroneSummary
from dronehub.engine.selection import SelectionTracker
from dronehub.engine.session_sync import SessionOutputSyncLoop, cap_buffer, strip_ansi


def _make(mode=AddressingMode.LOG, config=None, chats=("default",)):
    drones = {"alpha": DroneSummary(id="alpha", hub_phase="running", chats=list(chats))}
    client = MagicMock()
    client.get_output_log = AsyncMock()
    client.get_output_screen = AsyncMock()
    selection = SelectionTracker()
    selection.select(
        "alpha", "default",
        display_mode=DisplayMode.RAW_LOG, addressing_mode=mode,
    )
    typing = MagicMock()
    loop = SessionOutputSyncLoop(client, selection, drones.get, typing, config=config)
    return loop, client, typing, selection


@pytest.mark.asyncio
async def test_log_mode_resumes_from_returned_offset():
    loop, client, typing, _ = _make()
    client.get_output_log.side_effect = [
        (100, "hello "),
        (160, "world"),
        (None, ""),
        (200, "!"),
    ]
    for _ in range(4):
        await loop.poll_once()

    calls = client.get_output_log.await_args_list
    assert calls[0].kwargs == {"tail": 200}
    assert calls[1].kwargs == {"since": 100, "max_bytes": 200000}
    assert calls[2].kwargs["since"] == 160
    assert calls[3].kwargs["since"] == 160
    assert loop.offset == 200
    assert loop.text == "hello world!"
    assert typing.bump.call_count == 2


@pytest.mark.asyncio
async def test_log_buffer_trimmed_from_front():
    loop, client, _, _ = _make(config=SyncConfig(session_buffer_max_chars=10))
    client.get_output_log.side_effect = [(5, "abcdefgh"), (10, "ijklm")]
    await loop.poll_once()
    await loop.poll_once()
    assert loop.text == "defghijklm"


@pytest.mark.asyncio
async def test_screen_mode_replaces_buffer_and_pulses_on_change():
    loop, client, typing, _ = _make(mode=AddressingMode.SCREEN)
    client.get_output_screen.side_effect = ["\x1b[32m$ ls\x1b[0m\r\n", "$ ls\nfile\n", "$ ls\nfile\n"]

    await loop.poll_once()
    assert loop.text == "$ ls\n"
    typing.bump.assert_not_called()

    await loop.poll_once()
    assert loop.text == "$ ls\nfile\n"
    assert typing.bump.call_count == 1

    await loop.poll_once()
    assert typing.bump.call_count == 1
    client.get_output_screen.assert_awaited_with("alpha", "default", 2000)


@pytest.mark.asyncio
async def test_missing_chat_resets_state():
    loop, client, _, _ = _make(chats=("other",))
    loop.text = "stale"
    await loop.poll_once()
    assert loop.text == ""
    client.get_output_log.assert_not_awaited()


@pytest.mark.asyncio
async def test_error_is_recorded_and_text_kept():
    loop, client, _, _ = _make()
    client.get_output_log.side_effect = [(10, "abc"), HubConnectionError("http://hub", "refused")]
    await loop.poll_once()
    await loop.poll_once()
    assert loop.text == "abc"
    assert "refused" in loop.error
    assert loop.offset == 10


def test_strip_ansi_removes_control_sequences():
    raw = "\x1b[1;31mred\x1b[0m \x1b]0;title\x07ok\x1b(B\r\n"
    assert strip_ansi(raw) == "red ok\n"


def test_cap_buffer_keeps_tail():
    assert cap_buffer("abcdef", 4) == "cdef"
    assert cap_buffer("ab", 4) == "ab"


@pytest.mark.asyncio
async def test_stale_log_chunk_is_dropped():
    loop, client, typing, selection = _make()
    gate = asyncio.Event()

    async def _slow(*args, **kwargs):
        await gate.wait()
        return (50, "old output")

    client.get_output_log.side_effect = _slow
    task = asyncio.create_task(loop.poll_once())
    await asyncio.sleep(0)
    selection.select(
        "alpha", "default",
        display_mode=DisplayMode.RAW_LOG, addressing_mode=AddressingMode.SCREEN,
    )
    loop.reset()
    gate.set()
    await task

    assert loop.text == ""
    assert loop.offset is None
    typing.bump.assert_not_called()


@pytest.mark.asyncio
async def test_overlapping_polls_for_same_key_are_skipped():
    loop, client, _, _ = _make()
    gate = asyncio.Event()

    async def _slow(*args, **kwargs):
        await gate.wait()
        return (5, "abc")

    client.get_output_log.side_effect = _slow
    first = asyncio.create_task(loop.poll_once())
    await asyncio.sleep(0)
    await loop.poll_once()
    gate.set()
    await first

    assert client.get_output_log.await_count == 1
    assert loop.text == "abc"
