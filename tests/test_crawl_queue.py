"""
Tests for crawl_queue.py — dedup, depth bound, ordering, transitions.
"""

import asyncio

from autocrawl.crawl_queue import CrawlQueue
from autocrawl.models import Priority, QueueStatus
from autocrawl.path_navigator import click_step, goto_step
from autocrawl.repository import CrawlRepository

from fakes import memory_db

RUN = "run-queue-1"
BASE = "https://app.test"


async def make_queue(max_depth=3, visited=()):
    db = await memory_db()
    await CrawlRepository(db, RUN).create_run(f"{BASE}/", max_depth, 50)
    seen = set(visited)
    return db, CrawlQueue(db, RUN, max_depth, is_visited=seen.__contains__)


class TestEnqueue:

    def test_duplicate_url_is_ignored(self):
        async def run():
            db, q = await make_queue()
            first = await q.enqueue(f"{BASE}/a", 1)
            second = await q.enqueue(f"{BASE}/a", 2, priority=Priority.HIGH)
            items = await q.list_items()
            await db.close()
            return first, second, items

        first, second, items = asyncio.run(run())
        assert first is True
        assert second is False
        assert [i.url for i in items] == [f"{BASE}/a"]
        assert items[0].depth == 1

    def test_depth_beyond_max_is_rejected(self):
        async def run():
            db, q = await make_queue(max_depth=2)
            ok = await q.enqueue(f"{BASE}/deep", 3)
            edge = await q.enqueue(f"{BASE}/edge", 2)
            await db.close()
            return ok, edge

        assert asyncio.run(run()) == (False, True)

    def test_visited_url_is_rejected(self):
        async def run():
            db, q = await make_queue(visited={f"{BASE}/seen"})
            ok = await q.enqueue(f"{BASE}/seen", 1)
            await db.close()
            return ok

        assert asyncio.run(run()) is False

    def test_step_log_persisted(self):
        steps = [goto_step(f"{BASE}/"), click_step("#next", "Next")]

        async def run():
            db, q = await make_queue()
            await q.enqueue(f"{BASE}/next", 1, origin_page_id=7, scenario_id=3, steps=steps)
            item = (await q.fetch_ready(1))[0]
            await db.close()
            return item

        item = asyncio.run(run())
        assert item.required_steps == steps
        assert item.origin_page_id == 7
        assert item.scenario_id == 3


class TestFetchAndTransitions:

    def test_priority_then_insertion_order(self):
        async def run():
            db, q = await make_queue()
            await q.enqueue(f"{BASE}/low", 1, priority=Priority.LOW)
            await q.enqueue(f"{BASE}/med1", 1)
            await q.enqueue(f"{BASE}/high", 1, priority=Priority.HIGH)
            await q.enqueue(f"{BASE}/med2", 1)
            await q.enqueue(f"{BASE}/other-depth", 2, priority=Priority.HIGH)
            urls = [i.url for i in await q.fetch_ready(1)]
            await db.close()
            return urls

        assert asyncio.run(run()) == [
            f"{BASE}/high", f"{BASE}/med1", f"{BASE}/med2", f"{BASE}/low",
        ]

    def test_lifecycle_and_counts(self):
        async def run():
            db, q = await make_queue()
            for name in ("a", "b", "c"):
                await q.enqueue(f"{BASE}/{name}", 1)
            a, b, c = await q.fetch_ready(1)
            await q.mark_processing(a)
            await q.mark_completed(a, page_id=11)
            await q.mark_processing(b)
            await q.mark_failed(b, "Step 1 (goto) failed: timeout")
            counts = await q.count_by_status()
            ready = [i.url for i in await q.fetch_ready(1)]
            items = {i.url: i for i in await q.list_items()}
            await db.close()
            return counts, ready, items

        counts, ready, items = asyncio.run(run())
        assert counts == {"queued": 1, "processing": 0, "completed": 1, "failed": 1}
        assert ready == [f"{BASE}/c"]
        assert items[f"{BASE}/a"].discovered_page_id == 11
        assert items[f"{BASE}/b"].status == QueueStatus.FAILED
        assert items[f"{BASE}/b"].error_message.startswith("Step 1 (goto)")
        a = items[f"{BASE}/a"]
        assert a.queued_at <= a.started_at <= a.completed_at
        assert items[f"{BASE}/c"].started_at is None

    def test_requeue_interrupted_and_return_to_queue(self):
        async def run():
            db, q = await make_queue()
            await q.enqueue(f"{BASE}/a", 0)
            await q.enqueue(f"{BASE}/b", 1)
            a = (await q.fetch_ready(0))[0]
            b = (await q.fetch_ready(1))[0]
            await q.mark_processing(a)
            await q.mark_processing(b)
            await q.return_to_queue(b)
            moved = await q.requeue_interrupted()
            counts = await q.count_by_status()
            lowest = await q.min_queued_depth()
            await db.close()
            return moved, counts, lowest

        moved, counts, lowest = asyncio.run(run())
        assert moved == 1
        assert counts["queued"] == 2
        assert counts["processing"] == 0
        assert lowest == 0
