import asyncio

import pytest

from wa_checkpoints.services import locks


async def test_phone_lock_serializes_holders():
    order = []

    async def worker(name):
        async with locks.phone_lock("551188887777"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.1)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    assert await locks.get_lock_owner("551188887777") is None


async def test_different_phones_do_not_block_each_other():
    async with locks.phone_lock("551188887777"):
        async with locks.phone_lock("552112345678", wait_seconds=0):
            assert await locks.get_lock_owner("552112345678") is not None


async def test_phone_lock_times_out():
    async with locks.phone_lock("551188887777"):
        with pytest.raises(locks.PhoneLockTimeout):
            async with locks.phone_lock("551188887777", wait_seconds=0.1):
                pass


async def test_release_requires_the_owner_token():
    assert await locks.acquire_lock("551188887777", "owner-1")
    assert not await locks.acquire_lock("551188887777", "owner-2")
    assert not await locks.release_lock("551188887777", "owner-2")
    assert await locks.release_lock("551188887777", "owner-1")
    assert await locks.get_lock_owner("551188887777") is None


async def test_lock_is_released_when_the_body_raises():
    with pytest.raises(RuntimeError):
        async with locks.phone_lock("551188887777"):
            raise RuntimeError("boom")
    assert await locks.get_lock_owner("551188887777") is None
