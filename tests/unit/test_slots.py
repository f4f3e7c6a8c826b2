import asyncio

import pytest

from browserflow.core.slots import SlotManager


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        SlotManager(0)


@pytest.mark.asyncio
async def test_never_exceeds_capacity():
    slots = SlotManager(2)
    inside = 0
    high = 0

    async def worker():
        nonlocal inside, high
        async with slots.slot():
            inside += 1
            high = max(high, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(worker() for _ in range(7)))
    assert high == 2
    assert slots.peak == 2
    assert slots.current == 0


@pytest.mark.asyncio
async def test_waiter_admitted_only_after_release():
    slots = SlotManager(1)
    await slots.acquire()

    waiter = asyncio.create_task(slots.acquire())
    await asyncio.sleep(0.01)
    assert not waiter.done()

    await slots.release()
    await asyncio.wait_for(waiter, timeout=1)
    assert slots.current == 1
    await slots.release()
    assert slots.current == 0


@pytest.mark.asyncio
async def test_unmatched_release_does_not_go_negative():
    slots = SlotManager(1)
    await slots.release()
    assert slots.current == 0
    await slots.acquire()
    assert slots.current == 1


@pytest.mark.asyncio
async def test_slot_released_when_body_raises():
    slots = SlotManager(1)
    with pytest.raises(RuntimeError):
        async with slots.slot():
            raise RuntimeError("boom")
    assert slots.current == 0
