"""
Tests for session.py (budget, state claims, run controls) and monitor.py.
"""

import asyncio

from autocrawl.models import RunPhase
from autocrawl.monitor import CrawlMetrics, CrawlMonitor
from autocrawl.session import CrawlSession, percentage


class TestSessionBudget:

    def test_reserve_respects_budget_and_visited(self):
        async def run():
            session = CrawlSession("r", max_pages=2)
            results = [
                await session.try_reserve_page("https://a.test/"),
                await session.try_reserve_page("https://a.test/"),
                await session.try_reserve_page("https://a.test/b"),
                await session.try_reserve_page("https://a.test/c"),
            ]
            return session, results

        session, results = asyncio.run(run())
        assert results == [True, False, True, False]
        assert session.pages_discovered == 2
        assert session.budget_exhausted
        assert session.coverage() == 100.0

    def test_resume_counts_existing_pages(self):
        session = CrawlSession("r", max_pages=5, visited=["https://a.test/", "https://a.test/x"])
        assert session.pages_discovered == 2
        assert session.is_visited("https://a.test/x")

    def test_claim_state_once(self):
        async def run():
            session = CrawlSession("r", max_pages=1)
            return [await session.claim_state("h1"), await session.claim_state("h1"),
                    await session.claim_state("h2")]

        assert asyncio.run(run()) == [True, False, True]

    def test_virtual_index_increments(self):
        async def run():
            session = CrawlSession("r", max_pages=1)
            return [await session.next_virtual_index() for _ in range(3)]

        assert asyncio.run(run()) == [1, 2, 3]


class TestSessionControls:

    def test_pause_then_resume(self):
        async def run():
            session = CrawlSession("r", max_pages=1)
            session.pause()
            waiter = asyncio.create_task(session.wait_if_paused())
            await asyncio.sleep(0)
            assert not waiter.done()
            session.resume()
            return await waiter

        assert asyncio.run(run()) is True

    def test_stop_releases_paused_workers(self):
        async def run():
            session = CrawlSession("r", max_pages=1)
            session.pause()
            waiter = asyncio.create_task(session.wait_if_paused())
            await asyncio.sleep(0)
            session.stop()
            return session, await waiter

        session, proceed = asyncio.run(run())
        assert proceed is False
        assert session.snapshot()["stopped"] is True

    def test_percentage(self):
        assert percentage(5, 50) == 10
        assert percentage(80, 50) == 100
        assert percentage(3, 0) == 0


class TestMonitor:

    def test_emit_reaches_sync_and_async_callbacks(self):
        seen = []

        async def async_cb(event):
            seen.append(("async", event.percentage))

        def broken_cb(event):
            raise RuntimeError("listener down")

        async def run():
            monitor = CrawlMonitor("r", max_pages=4, report_interval=0)
            monitor.add_callback(lambda ev: seen.append(("sync", ev.pages_discovered)))
            monitor.add_callback(broken_cb)
            monitor.add_callback(async_cb)
            return await monitor.emit(RunPhase.CRAWLING, pages_discovered=1, current_url="https://a.test/")

        event = asyncio.run(run())
        assert seen == [("sync", 1), ("async", 25)]
        assert event.max_pages == 4

    def test_snapshot_counts(self):
        async def run():
            monitor = CrawlMonitor("r", max_pages=10, report_interval=0)
            await monitor.start()
            for ms in (100.0, 200.0, 300.0):
                await monitor.record_page(ms)
            await monitor.record_failure()
            await monitor.record_scenario(True)
            await monitor.record_scenario(False)
            await monitor.worker_started()
            await monitor.worker_finished()
            await monitor.worker_finished()
            await monitor.stop("max_pages")
            return await monitor.snapshot()

        m = asyncio.run(run())
        assert (m.pages_crawled, m.pages_failed) == (3, 1)
        assert (m.scenarios_executed, m.scenarios_succeeded) == (2, 1)
        assert m.active_workers == 0
        assert m.avg_page_ms == 200.0
        assert m.p95_page_ms == 300.0
        assert m.stop_reason == "max_pages"

    def test_reporter_task_is_cancelled_on_stop(self):
        async def run():
            monitor = CrawlMonitor("r", max_pages=1, report_interval=60)
            await monitor.start()
            task = monitor._reporter_task
            await monitor.stop()
            return task

        assert asyncio.run(run()).cancelled()

    def test_format_summary(self):
        text = CrawlMonitor.format_summary(CrawlMetrics(pages_crawled=7, stop_reason="completed"))
        assert "CRAWL SUMMARY" in text
        assert "Pages crawled:       7" in text
