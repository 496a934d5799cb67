import asyncio

import pytest

from app.cache import OrderCache, ReadWriteLock


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_readers_share_the_lock():
    lock = ReadWriteLock()
    await lock.acquire_read()
    await asyncio.wait_for(lock.acquire_read(), timeout=0.5)
    await lock.release_read()
    await lock.release_read()


@pytest.mark.asyncio
async def test_writer_excludes_readers():
    lock = ReadWriteLock()
    seen = []

    async def reader():
        async with lock.reading():
            seen.append("read")

    await lock.acquire_write()
    task = asyncio.create_task(reader())
    await settle()
    assert seen == []

    await lock.release_write()
    await task
    assert seen == ["read"]


@pytest.mark.asyncio
async def test_waiting_writer_blocks_new_readers():
    lock = ReadWriteLock()
    seen = []

    async def writer():
        async with lock.writing():
            seen.append("write")

    async def reader():
        async with lock.reading():
            seen.append("read")

    await lock.acquire_read()
    write_task = asyncio.create_task(writer())
    await settle()
    read_task = asyncio.create_task(reader())
    await settle()
    assert seen == []

    await lock.release_read()
    await asyncio.gather(write_task, read_task)
    assert seen == ["write", "read"]


@pytest.mark.asyncio
async def test_cancelled_writer_releases_waiting_readers():
    lock = ReadWriteLock()
    await lock.acquire_read()

    write_task = asyncio.create_task(lock.acquire_write())
    await settle()
    write_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await write_task

    await asyncio.wait_for(lock.acquire_read(), timeout=0.5)
    await lock.release_read()
    await lock.release_read()
    await asyncio.wait_for(lock.acquire_write(), timeout=0.5)


@pytest.mark.asyncio
async def test_cache_get_put(order):
    cache = OrderCache()
    assert await cache.get("b563") is None

    await cache.put("b563", order)
    assert await cache.get("b563") == order
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_cache_rejects_mismatched_key(order):
    cache = OrderCache()
    with pytest.raises(ValueError):
        await cache.put("other", order)
    assert await cache.get("other") is None


@pytest.mark.asyncio
async def test_fill_does_not_overwrite_newer_entry(order):
    cache = OrderCache()
    newer = order.model_copy(update={"locale": "ru"})
    await cache.put("b563", newer)

    await cache.fill("b563", order)
    assert (await cache.get("b563")).locale == "ru"


@pytest.mark.asyncio
async def test_put_many_keys_by_order_uid(order):
    cache = OrderCache()
    other = order.model_copy(update={"order_uid": "c777"})
    await cache.put_many([order, other])

    assert await cache.get("b563") == order
    assert await cache.get("c777") == other


@pytest.mark.asyncio
async def test_exclusive_view_holds_writer_lock(order):
    cache = OrderCache()
    got = []

    async def read():
        got.append(await cache.get("b563"))

    async with cache.exclusive() as entries:
        task = asyncio.create_task(read())
        await settle()
        assert got == []
        entries.put("b563", order)

    await task
    assert got == [order]
