import asyncio

from authservice.storage.common import RWLock


async def test_readers_share_the_lock():
    lock = RWLock()
    inside = asyncio.Event()
    release = asyncio.Event()
    peak = 0

    async def reader():
        nonlocal peak
        async with lock.read():
            peak = max(peak, lock.readers)
            if lock.readers == 3:
                inside.set()
            await release.wait()

    tasks = [asyncio.create_task(reader()) for _ in range(3)]
    await asyncio.wait_for(inside.wait(), 1)
    release.set()
    await asyncio.gather(*tasks)
    assert peak == 3
    assert lock.readers == 0


async def test_writer_excludes_readers_and_writers():
    lock = RWLock()
    order = []

    async def writer(name):
        async with lock.write():
            assert lock.readers == 0
            order.append(f"{name}-start")
            await asyncio.sleep(0.01)
            order.append(f"{name}-end")

    async def reader():
        async with lock.read():
            assert not lock.write_locked
            order.append("read")

    await asyncio.gather(writer("w1"), reader(), writer("w2"))
    for name in ("w1", "w2"):
        start = order.index(f"{name}-start")
        assert order[start + 1] == f"{name}-end"


async def test_waiting_writer_blocks_new_readers():
    lock = RWLock()
    order = []
    first_reader_in = asyncio.Event()
    release_first = asyncio.Event()

    async def first_reader():
        async with lock.read():
            first_reader_in.set()
            await release_first.wait()
            order.append("r1")

    async def writer():
        async with lock.write():
            order.append("w")

    async def late_reader():
        async with lock.read():
            order.append("r2")

    t1 = asyncio.create_task(first_reader())
    await first_reader_in.wait()
    tw = asyncio.create_task(writer())
    await asyncio.sleep(0)
    t2 = asyncio.create_task(late_reader())
    await asyncio.sleep(0)
    release_first.set()
    await asyncio.gather(t1, tw, t2)
    assert order == ["r1", "w", "r2"]
