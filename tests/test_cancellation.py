# tests/test_cancellation.py
"""
Tests for CancelToken.
"""

import asyncio

import pytest

from medcompanion.agent.cancellation import CancelToken, TurnCancelled


@pytest.mark.asyncio
async def test_race_returns_value():
    token = CancelToken()

    async def work():
        await asyncio.sleep(0)
        return 42

    assert await token.race(work()) == 42


@pytest.mark.asyncio
async def test_race_propagates_errors():
    token = CancelToken()

    async def boom():
        raise ValueError("bad")

    with pytest.raises(ValueError):
        await token.race(boom())


@pytest.mark.asyncio
async def test_cancel_interrupts_pending_work():
    token = CancelToken()
    started = asyncio.Event()
    interrupted = False

    async def slow():
        nonlocal interrupted
        started.set()
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            interrupted = True
            raise

    async def stop():
        await started.wait()
        token.cancel()

    stopper = asyncio.create_task(stop())
    with pytest.raises(TurnCancelled):
        await token.race(slow())
    await stopper

    assert interrupted
    assert token.cancelled


@pytest.mark.asyncio
async def test_already_cancelled_token_does_not_run_work():
    token = CancelToken()
    token.cancel()
    ran = False

    async def work():
        nonlocal ran
        ran = True

    with pytest.raises(TurnCancelled):
        await token.race(work())
    assert not ran
