import asyncio

import pytest

from uptimewatch.utils.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized_and_entries_cleaned_up():
    locks = KeyedLock()
    order = []

    async def worker(name):
        async with locks.hold(1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = KeyedLock()
    entered = asyncio.Event()

    async def holder():
        async with locks.hold(1):
            await entered.wait()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    assert locks.is_held(1)

    async with locks.hold(2):
        entered.set()

    await task
    assert not locks.is_held(1)
