import asyncio

import pytest

from ctrlsys.utils.lock_manager import ReadWriteLock


@pytest.mark.asyncio
async def test_readers_share():
    lock = ReadWriteLock()
    async with lock.read():
        async with lock.read():
            assert lock.readers == 2
    assert lock.readers == 0


@pytest.mark.asyncio
async def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    order = []

    async def first_reader():
        async with lock.read():
            order.append("r1")
            await asyncio.sleep(0.05)
        order.append("r1-done")

    async def writer():
        await asyncio.sleep(0.01)
        async with lock.write():
            order.append("w")
            assert lock.locked_for_write

    async def late_reader():
        await asyncio.sleep(0.02)
        async with lock.read():
            order.append("r2")

    await asyncio.gather(first_reader(), writer(), late_reader())
    assert order == ["r1", "r1-done", "w", "r2"]


@pytest.mark.asyncio
async def test_cancelled_writer_releases_readers():
    lock = ReadWriteLock()
    async with lock.read():
        waiting = asyncio.create_task(_hold_write(lock))
        await asyncio.sleep(0.01)
        waiting.cancel()
        await asyncio.gather(waiting, return_exceptions=True)

    # a new reader is not stuck behind the abandoned writer
    await asyncio.wait_for(_read_once(lock), timeout=0.5)


async def _hold_write(lock):
    async with lock.write():
        pass


async def _read_once(lock):
    async with lock.read():
        return True
