"""End-to-end tests for ChatRuntime wiring with a fake hub client."""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from dronehub.engine.config import SyncConfig
from dronehub.engine.errors import HubConnectionError, HubRequestError
from dronehub.engine.keys import conversation_key
from dronehub.engine.models import (
    AddressingMode,
    ChatAgent,
    ChatSendPayload,
    DisplayMode,
    DroneSummary,
    PendingPrompt,
    PendingPromptState,
    QueuedPromptState,
    StartupSeed,
)
from dronehub.engine.runtime import ChatRuntime, chat_display_mode

KEY = conversation_key("alpha", "default")
SLOW = SyncConfig(transcript_poll_seconds=60, session_poll_seconds=60, pending_poll_seconds=60)


def _client():
    client = MagicMock()
    client.send_prompt = AsyncMock(return_value="p-1")
    client.list_pending = AsyncMock(return_value=[])
    client.get_transcript = AsyncMock(return_value=[])
    client.unstick_pending = AsyncMock(return_value=None)
    client.get_output_screen = AsyncMock(return_value="")
    client.get_output_log = AsyncMock(return_value=(0, ""))
    return client


def _drone(phase="running"):
    return DroneSummary(id="alpha", name="Alpha", hub_phase=phase, chats=["default"])


@pytest.mark.asyncio
async def test_prompt_queued_while_starting_is_delivered_when_ready():
    client = _client()
    runtime = ChatRuntime(client, SLOW)
    runtime.update_drones([_drone("starting")])
    runtime.select("alpha", "default")

    assert await runtime.send(ChatSendPayload(prompt="hello")) is True
    client.send_prompt.assert_not_awaited()
    queued = runtime.visible_pending_prompts
    assert [(p.prompt, p.queued) for p in queued] == [("hello", True)]

    await runtime.start()
    runtime.update_drones([_drone("running")])
    await runtime.flush_loop.wait_idle()

    client.send_prompt.assert_awaited_once_with("alpha", "default", "hello")
    assert runtime.queued_for(KEY) == []
    assert [p.id for p in runtime.pending.optimistic] == ["p-1"]
    await runtime.aclose()


@pytest.mark.asyncio
async def test_send_without_selection_sets_error():
    runtime = ChatRuntime(_client(), SLOW)
    assert await runtime.send(ChatSendPayload(prompt="hi")) is False
    assert runtime.prompt_error == "No drone selected."


@pytest.mark.asyncio
async def test_retry_failed_head_redelivers():
    client = _client()
    client.send_prompt.side_effect = [HubConnectionError("http://hub", "refused"), "p-2"]
    runtime = ChatRuntime(client, SLOW)
    runtime.update_drones([_drone()])
    item = runtime.store.enqueue(KEY, "again")

    await runtime.start()
    await runtime.flush_loop.wait_idle()
    assert runtime.store.head(KEY).state == QueuedPromptState.FAILED

    assert runtime.retry_queued(KEY, item.id)
    await runtime.flush_loop.wait_idle()
    assert runtime.queued_for(KEY) == []
    assert client.send_prompt.await_count == 2
    await runtime.aclose()


@pytest.mark.asyncio
async def test_dismiss_unblocks_queue():
    client = _client()
    runtime = ChatRuntime(client, SLOW)
    runtime.update_drones([_drone("starting")])
    first = runtime.store.enqueue(KEY, "one")
    runtime.store.enqueue(KEY, "two")
    runtime.store.patch(KEY, first.id, state=QueuedPromptState.FAILED, error="x")

    assert not runtime.retry_queued(KEY, "not-the-head")
    assert runtime.dismiss_queued(KEY, first.id)
    assert [p.prompt for p in runtime.queued_for(KEY)] == ["two"]
    assert runtime.queue_counts() == {KEY: 1}


@pytest.mark.asyncio
async def test_unstick_marks_sent_or_records_error():
    client = _client()
    runtime = ChatRuntime(client, SLOW)
    runtime.update_drones([_drone()])
    runtime.select("alpha", "default")
    runtime.pending.add_optimistic("p-1", "hi")
    runtime.pending.add_optimistic("p-2", "there")

    await runtime.unstick("p-1")
    client.unstick_pending.assert_awaited_once_with("alpha", "default", "p-1")
    assert runtime.pending.optimistic[0].state == PendingPromptState.SENT

    client.unstick_pending.side_effect = HubRequestError(409, "not stuck", "http://hub")
    await runtime.unstick("p-2")
    assert runtime.unstick_errors == {"p-2": "not stuck"}
    assert runtime.unsticking == set()


@pytest.mark.asyncio
async def test_pending_poll_keeps_previous_list_on_error():
    client = _client()
    server = [PendingPrompt(id="s-1", at="t", prompt="hi")]
    client.list_pending.return_value = server
    runtime = ChatRuntime(client, SLOW)
    runtime.update_drones([_drone()])
    runtime.select("alpha", "default")

    await runtime.poll_pending_once()
    assert [p.id for p in runtime.pending_prompts] == ["s-1"]

    client.list_pending.side_effect = HubConnectionError("http://hub", "refused")
    await runtime.poll_pending_once()
    assert [p.id for p in runtime.pending_prompts] == ["s-1"]
    assert runtime.is_responding


@pytest.mark.asyncio
async def test_selection_change_resets_state():
    runtime = ChatRuntime(_client(), SLOW)
    runtime.update_drones([_drone()])
    runtime.select("alpha", "default")
    runtime.pending.add_optimistic("p-1", "hi")
    runtime.unstick_errors["p-1"] = "boom"

    assert not runtime.select("alpha", "default")
    assert runtime.pending.optimistic

    assert runtime.select("alpha", "other")
    assert runtime.pending.optimistic == []
    assert runtime.unstick_errors == {}
    assert runtime.transcripts is None


@pytest.mark.asyncio
async def test_startup_seed_only_shown_for_its_chat():
    runtime = ChatRuntime(_client(), SLOW)
    runtime.update_drones([_drone("seeding")])
    runtime.set_startup_seed("alpha", StartupSeed(chat_name="default", prompt="bootstrap"))

    runtime.select("alpha", "default")
    assert [p.id for p in runtime.visible_pending_prompts] == ["seed-alpha-default"]

    runtime.select("alpha", "other")
    assert runtime.visible_pending_prompts == []


@pytest.mark.asyncio
async def test_events_reach_callback():
    seen: list[str] = []

    async def _callback(event):
        seen.append(event["event"])

    runtime = ChatRuntime(_client(), SLOW, event_callback=_callback)
    runtime.update_drones([_drone("starting")])
    runtime.select("alpha", "default")
    await runtime.send(ChatSendPayload(prompt="hello"))
    await runtime.aclose()

    assert "selection_changed" in seen
    assert "queue_changed" in seen
    assert "pending_changed" in seen


def test_display_mode_follows_agent_kind():
    custom = ChatAgent(kind="custom", id="x", command="./run.sh")
    builtin = ChatAgent(kind="builtin", id="codex")
    seed = StartupSeed(chat_name="default", prompt="go", agent=custom)

    assert chat_display_mode(builtin) == DisplayMode.STRUCTURED
    assert chat_display_mode(custom) == DisplayMode.RAW_LOG
    assert chat_display_mode(None) == DisplayMode.STRUCTURED
    assert chat_display_mode(None, _drone("starting"), seed) == DisplayMode.RAW_LOG
    assert chat_display_mode(None, _drone("running"), seed) == DisplayMode.STRUCTURED


@pytest.mark.asyncio
async def test_phase_change_restart_does_not_overlap_polls():
    client = _client()
    gate = asyncio.Event()
    active = {"transcript": 0, "pending": 0}
    peak = {"transcript": 0, "pending": 0}

    def _gated(name):
        async def _call(*args):
            active[name] += 1
            peak[name] = max(peak[name], active[name])
            try:
                await gate.wait()
            finally:
                active[name] -= 1
            return []
        return _call

    client.get_transcript.side_effect = _gated("transcript")
    client.list_pending.side_effect = _gated("pending")
    runtime = ChatRuntime(client, SLOW)
    runtime.update_drones([_drone("running")])
    runtime.select("alpha", "default")
    await runtime.start()
    await asyncio.sleep(0.01)
    assert active == {"transcript": 1, "pending": 1}

    # Phase change rebuilds both poll loops while the first requests hang.
    runtime.update_drones([_drone("ready")])
    await asyncio.sleep(0.01)
    assert peak == {"transcript": 1, "pending": 1}

    gate.set()
    await asyncio.sleep(0.01)
    await runtime.aclose()
    assert client.get_transcript.await_count == 1
    assert client.list_pending.await_count == 1


@pytest.mark.asyncio
async def test_session_buffer_survives_rename_but_not_addressing_switch():
    client = _client()
    client.get_output_log.return_value = (10, "abc")
    runtime = ChatRuntime(client, SLOW)
    runtime.update_drones([
        _drone(),
        DroneSummary(id="alpha-renamed", hub_phase="running", chats=["default"]),
    ])
    raw_log = {"display_mode": DisplayMode.RAW_LOG, "identity": "tok"}

    runtime.select("alpha", "default", addressing_mode=AddressingMode.LOG, **raw_log)
    await runtime.session_loop.poll_once()
    assert runtime.session_text == "abc"
    assert runtime.session_loop.offset == 10

    assert not runtime.select(
        "alpha-renamed", "default", addressing_mode=AddressingMode.LOG, **raw_log,
    )
    assert runtime.selection.current.drone_id == "alpha-renamed"
    assert runtime.session_text == "abc"
    assert runtime.session_loop.offset == 10

    assert runtime.select(
        "alpha-renamed", "default", addressing_mode=AddressingMode.SCREEN, **raw_log,
    )
    assert runtime.session_text == ""
    assert runtime.session_loop.offset is None
    assert not runtime.session_loop.screen_loaded


@pytest.mark.asyncio
async def test_send_to_blank_drone_sets_error():
    client = _client()
    runtime = ChatRuntime(client, SLOW)
    assert await runtime.send_to("  ", "default", ChatSendPayload(prompt="hi")) is False
    assert runtime.prompt_error == "No drone selected."
    client.send_prompt.assert_not_awaited()
