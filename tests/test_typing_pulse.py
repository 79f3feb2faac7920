"""Tests for the typing indicator pulse."""
from __future__ import annotations

import asyncio

import pytest

from dronehub.engine.typing_pulse import TypingPulse


@pytest.mark.asyncio
async def test_pulse_expires_after_last_bump():
    changes: list[bool] = []
    pulse = TypingPulse(duration=0.2, on_change=changes.append)

    pulse.bump()
    await asyncio.sleep(0.1)
    pulse.bump()
    await asyncio.sleep(0.15)
    assert pulse.active

    await asyncio.sleep(0.2)
    assert not pulse.active
    assert changes == [True, False]


@pytest.mark.asyncio
async def test_cancel_turns_pulse_off():
    pulse = TypingPulse(duration=10)
    pulse.bump()
    pulse.cancel()
    assert not pulse.active
