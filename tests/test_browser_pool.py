"""
Tests for browser_pool.py — lease/return discipline and recovery.
"""

import asyncio

import pytest

from autocrawl.browser_pool import BrowserPoolManager

from fakes import FakeLauncher


def pool(size=2):
    return BrowserPoolManager(size, FakeLauncher(), poll_interval=0.01)


class TestLeasing:

    def test_size_must_be_positive(self):
        with pytest.raises(ValueError):
            BrowserPoolManager(0, FakeLauncher())

    def test_acquire_release_preserves_totals(self):
        async def run():
            p = pool(2)
            await p.initialize()
            a = await p.acquire()
            b = await p.acquire()
            mid = p.stats()
            p.release(a)
            p.release(b)
            return a, b, mid, p.stats()

        a, b, mid, end = asyncio.run(run())
        assert a.id != b.id
        assert mid == {"total": 2, "available": 0, "busy": 2}
        assert end == {"total": 2, "available": 2, "busy": 0}

    def test_acquire_waits_for_release(self):
        async def run():
            p = pool(1)
            await p.initialize()
            held = await p.acquire()

            async def give_back():
                await asyncio.sleep(0.05)
                p.release(held)

            asyncio.create_task(give_back())
            again = await asyncio.wait_for(p.acquire(), timeout=2)
            return held, again

        held, again = asyncio.run(run())
        assert again is held

    def test_acquire_returns_none_when_stopped(self):
        async def run():
            p = pool(1)
            await p.initialize()
            await p.acquire()
            stop = asyncio.Event()
            waiter = asyncio.create_task(p.acquire(stop))
            await asyncio.sleep(0.03)
            stop.set()
            return await asyncio.wait_for(waiter, timeout=2)

        assert asyncio.run(run()) is None

    def test_double_release_is_ignored(self):
        async def run():
            p = pool(1)
            await p.initialize()
            h = await p.acquire()
            p.release(h)
            p.release(h)
            return p.stats()

        assert asyncio.run(run()) == {"total": 1, "available": 1, "busy": 0}


class TestRecovery:

    def test_reset_clears_session(self):
        async def run():
            p = pool(1)
            await p.initialize()
            h = await p.acquire()
            same = await p.reset(h)
            return h, same

        h, same = asyncio.run(run())
        assert same is h
        assert h.context.cleared == 1
        assert ("evaluate",) in h.page.actions

    def test_failed_reset_replaces_slot_and_keeps_lease(self):
        async def run():
            p = pool(2)
            await p.initialize()
            h = await p.acquire()
            h.context.fail_clear = True
            fresh = await p.reset(h)
            busy = p.busy_count
            p.release(fresh)
            return p, h, fresh, busy

        p, old, fresh, busy = asyncio.run(run())
        assert fresh is not old
        assert fresh.slot == old.slot
        assert old.browser.closed
        assert busy == 1
        assert p.stats() == {"total": 2, "available": 2, "busy": 0}

    def test_close_all_tolerates_failures(self):
        async def run():
            launcher = FakeLauncher()
            p = BrowserPoolManager(3, launcher)
            await p.initialize()
            launcher.handles[1].browser.fail_close = True
            await p.close_all()
            return launcher, p

        launcher, p = asyncio.run(run())
        assert launcher.handles[0].browser.closed
        assert launcher.handles[2].browser.closed
        assert launcher.stopped == 1
        assert p.stats() == {"total": 0, "available": 0, "busy": 0}
