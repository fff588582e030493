"""Tests for the per-key asyncio lock."""
import asyncio

import pytest

from services.keyed_lock import KeyedLock


@pytest.mark.asyncio
async def test_same_key_serialized():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold(("P", "Q")):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_independent():
    locks = KeyedLock()

    async with locks.hold("one"):
        assert locks.is_locked("one")
        assert not locks.is_locked("two")
        async with locks.hold("two"):
            assert len(locks) == 2

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_released_on_error():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("k"):
            raise RuntimeError("boom")

    assert not locks.is_locked("k")
    assert len(locks) == 0
