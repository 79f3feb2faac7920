"""Tests for PollLoop cadence and overlap guard."""
from __future__ import annotations

import asyncio

import pytest

from dronehub.engine.polling import PollLoop


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped():
    gate = asyncio.Event()
    calls = 0

    async def _tick():
        nonlocal calls
        calls += 1
        await gate.wait()

    loop = PollLoop("test", 10.0, _tick)
    first = loop.fire()
    await asyncio.sleep(0)
    assert loop.busy
    assert loop.fire() is None
    assert loop.skipped_ticks == 1

    gate.set()
    await first
    assert not loop.busy
    assert calls == 1


@pytest.mark.asyncio
async def test_tick_errors_do_not_stop_the_loop():
    calls = 0

    async def _tick():
        nonlocal calls
        calls += 1
        raise RuntimeError("flaky")

    loop = PollLoop("test", 0.01, _tick)
    loop.start()
    await asyncio.sleep(0.05)
    await loop.aclose()
    assert calls >= 2
    assert not loop.running


@pytest.mark.asyncio
async def test_fires_immediately_on_start():
    fired = asyncio.Event()

    async def _tick():
        fired.set()

    loop = PollLoop("test", 60.0, _tick)
    loop.start()
    await asyncio.wait_for(fired.wait(), timeout=1.0)
    loop.stop()
    assert not loop.running
    await loop.aclose()
