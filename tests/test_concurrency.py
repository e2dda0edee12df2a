"""Tests for the reader/writer lock and the background watcher loop."""

from __future__ import annotations

import asyncio

import pytest

from kubexdb.core.db.rwlock import AsyncRWLock
from kubexdb.core.resources.watcher import BackgroundWatcher


async def test_readers_share_the_lock() -> None:
    lock = AsyncRWLock()
    peak = 0

    async def _reader() -> None:
        nonlocal peak
        async with lock.read():
            peak = max(peak, lock.readers)
            await asyncio.sleep(0.01)

    await asyncio.gather(*(_reader() for _ in range(5)))

    assert peak == 5
    assert lock.readers == 0


async def test_writer_waits_for_readers_and_blocks_new_ones() -> None:
    lock = AsyncRWLock()
    events: list[str] = []
    release = asyncio.Event()

    async def _first_reader() -> None:
        async with lock.read():
            events.append("r1-in")
            await release.wait()
            events.append("r1-out")

    async def _writer() -> None:
        async with lock.write():
            events.append("w")

    async def _late_reader() -> None:
        async with lock.read():
            events.append("r2")

    r1 = asyncio.create_task(_first_reader())
    await asyncio.sleep(0)
    w = asyncio.create_task(_writer())
    await asyncio.sleep(0)
    r2 = asyncio.create_task(_late_reader())
    await asyncio.sleep(0)

    assert events == ["r1-in"]
    release.set()
    await asyncio.gather(r1, w, r2)

    assert events == ["r1-in", "r1-out", "w", "r2"]
    assert not lock.writing


async def test_cancelled_writer_releases_waiting_readers() -> None:
    lock = AsyncRWLock()
    release = asyncio.Event()
    entered: list[str] = []

    async def _holder() -> None:
        async with lock.read():
            await release.wait()

    async def _writer() -> None:
        async with lock.write():
            entered.append("w")

    async def _reader() -> None:
        async with lock.read():
            entered.append("r")

    holder = asyncio.create_task(_holder())
    await asyncio.sleep(0)
    writer = asyncio.create_task(_writer())
    await asyncio.sleep(0)
    reader = asyncio.create_task(_reader())
    await asyncio.sleep(0)

    writer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await writer
    await asyncio.wait_for(reader, timeout=1)

    assert entered == ["r"]
    release.set()
    await holder


class _CountingWatcher(BackgroundWatcher):
    def __init__(self, *, fail_first: bool = False) -> None:
        super().__init__(name="counting", min_interval=0.1, max_interval=0.4, jitter=0)
        self.ticks = 0
        self.fail_first = fail_first

    async def tick(self) -> None:
        self.ticks += 1
        if self.fail_first and self.ticks == 1:
            raise RuntimeError("first tick fails")


async def test_watcher_start_stop_is_idempotent() -> None:
    watcher = _CountingWatcher()

    await watcher.start()
    await watcher.start()
    assert watcher.running
    await asyncio.sleep(0.05)

    await watcher.stop()
    await watcher.stop()

    assert not watcher.running
    assert watcher.ticks == 1


async def test_watcher_survives_failing_tick() -> None:
    watcher = _CountingWatcher(fail_first=True)

    await watcher.start()
    await asyncio.sleep(0.35)
    await watcher.stop()

    assert watcher.ticks >= 2


async def test_watcher_wait_returns_after_stop() -> None:
    watcher = _CountingWatcher()
    await watcher.start()

    waiter = asyncio.create_task(watcher.wait())
    await asyncio.sleep(0)
    assert not waiter.done()

    await watcher.stop()
    await asyncio.wait_for(waiter, timeout=1)
