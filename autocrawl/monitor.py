"""
Crawl Monitor
=============
Progress stream and run metrics for the orchestrator.

Tracks:
- Pages crawled / failed, virtual pages materialized
- Links and scenario targets enqueued
- Scenarios executed / succeeded, self-healed clicks, logins
- Active workers and current depth
- Per-page timing (average + p95)

Progress events (``ProgressEvent``) are pushed to every registered callback;
callbacks may be plain functions or coroutines. A periodic reporter logs a
one-line ``[MONITOR]`` status every ``report_interval`` seconds.

Async-safe: all counters are guarded by an asyncio.Lock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional

from .models import ProgressEvent, RunPhase
from .session import percentage

logger = logging.getLogger(__name__)


@dataclass
class CrawlMetrics:
    """Snapshot of run metrics at a point in time."""
    pages_crawled: int = 0
    pages_failed: int = 0
    virtual_pages: int = 0
    links_enqueued: int = 0
    scenarios_executed: int = 0
    scenarios_succeeded: int = 0
    self_healed_clicks: int = 0
    logins_succeeded: int = 0
    active_workers: int = 0
    current_depth: int = 0
    avg_page_ms: float = 0.0
    p95_page_ms: float = 0.0
    elapsed_sec: float = 0.0
    stop_reason: str = ""


class CrawlMonitor:
    """
    Async-safe progress/metrics hub for one run.

    Usage::

        monitor = CrawlMonitor(run_id, max_pages=50)
        monitor.add_callback(lambda ev: print(ev.percentage))
        await monitor.start()
        await monitor.emit(RunPhase.CRAWLING, pages_discovered=1, current_url=url)
        await monitor.record_page(1234.0)
        await monitor.stop("completed")
    """

    def __init__(self, run_id: str, max_pages: int, report_interval: float = 10.0):
        self.run_id = run_id
        self.max_pages = max_pages
        self.report_interval = report_interval
        self._lock = asyncio.Lock()
        self._start_time = 0.0
        self._callbacks: List[Callable] = []
        self._page_times: deque = deque(maxlen=1000)
        self._m = CrawlMetrics()
        self._reporter_task: Optional[asyncio.Task] = None
        self._running = False
        self.events: deque = deque(maxlen=500)

    def add_callback(self, callback: Callable) -> None:
        """Register ``callback(event: ProgressEvent)`` (sync or async)."""
        self._callbacks.append(callback)

    async def start(self) -> None:
        self._start_time = time.monotonic()
        self._running = True
        if self.report_interval > 0:
            self._reporter_task = asyncio.create_task(self._reporter_loop())

    async def stop(self, reason: str = "completed") -> None:
        self._running = False
        self._m.stop_reason = reason
        if self._reporter_task:
            self._reporter_task.cancel()
            try:
                await self._reporter_task
            except asyncio.CancelledError:
                pass
            self._reporter_task = None

    # ── Progress stream ───────────────────────────────────────────

    async def emit(
        self,
        phase: RunPhase,
        pages_discovered: int = 0,
        current_url: str = "",
        depth: int = 0,
        message: str = "",
        pct: Optional[int] = None,
    ) -> ProgressEvent:
        event = ProgressEvent(
            run_id=self.run_id,
            phase=phase,
            percentage=percentage(pages_discovered, self.max_pages) if pct is None else pct,
            pages_discovered=pages_discovered,
            max_pages=self.max_pages,
            current_url=current_url,
            depth=depth,
            message=message,
        )
        self.events.append(event)
        for callback in list(self._callbacks):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"[MONITOR] Progress callback failed: {e}")
        return event

    # ── Counters ──────────────────────────────────────────────────

    async def record_page(self, elapsed_ms: float) -> None:
        async with self._lock:
            self._m.pages_crawled += 1
            self._page_times.append(elapsed_ms)

    async def record_failure(self) -> None:
        async with self._lock:
            self._m.pages_failed += 1

    async def record_virtual_page(self) -> None:
        async with self._lock:
            self._m.virtual_pages += 1

    async def record_enqueue(self, count: int = 1) -> None:
        async with self._lock:
            self._m.links_enqueued += count

    async def record_scenario(self, success: bool) -> None:
        async with self._lock:
            self._m.scenarios_executed += 1
            if success:
                self._m.scenarios_succeeded += 1

    async def record_heal(self) -> None:
        async with self._lock:
            self._m.self_healed_clicks += 1

    async def record_login(self) -> None:
        async with self._lock:
            self._m.logins_succeeded += 1

    async def set_depth(self, depth: int) -> None:
        async with self._lock:
            self._m.current_depth = depth

    async def worker_started(self) -> None:
        async with self._lock:
            self._m.active_workers += 1

    async def worker_finished(self) -> None:
        async with self._lock:
            self._m.active_workers = max(0, self._m.active_workers - 1)

    async def snapshot(self) -> CrawlMetrics:
        async with self._lock:
            times = sorted(self._page_times)
            avg = sum(times) / len(times) if times else 0.0
            p95 = times[min(int(len(times) * 0.95), len(times) - 1)] if times else 0.0
            elapsed = time.monotonic() - self._start_time if self._start_time else 0.0
            m = self._m
            return CrawlMetrics(
                pages_crawled=m.pages_crawled,
                pages_failed=m.pages_failed,
                virtual_pages=m.virtual_pages,
                links_enqueued=m.links_enqueued,
                scenarios_executed=m.scenarios_executed,
                scenarios_succeeded=m.scenarios_succeeded,
                self_healed_clicks=m.self_healed_clicks,
                logins_succeeded=m.logins_succeeded,
                active_workers=m.active_workers,
                current_depth=m.current_depth,
                avg_page_ms=round(avg, 1),
                p95_page_ms=round(p95, 1),
                elapsed_sec=round(elapsed, 2),
                stop_reason=m.stop_reason,
            )

    async def _reporter_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.report_interval)
            if not self._running:
                break
            m = await self.snapshot()
            logger.info(
                f"[MONITOR] "
                f"pages={m.pages_crawled}/{self.max_pages} "
                f"fail={m.pages_failed} "
                f"virtual={m.virtual_pages} "
                f"depth={m.current_depth} "
                f"workers={m.active_workers} "
                f"scenarios={m.scenarios_succeeded}/{m.scenarios_executed} "
                f"avg={m.avg_page_ms:.0f}ms "
                f"elapsed={m.elapsed_sec:.0f}s"
            )

    @staticmethod
    def format_summary(metrics: CrawlMetrics) -> str:
        lines = [
            "=" * 65,
            "  CRAWL SUMMARY",
            "=" * 65,
            f"  Pages crawled:       {metrics.pages_crawled}",
            f"  Pages failed:        {metrics.pages_failed}",
            f"  Virtual pages:       {metrics.virtual_pages}",
            f"  Targets enqueued:    {metrics.links_enqueued}",
            "-" * 65,
            f"  Scenarios run:       {metrics.scenarios_executed}",
            f"  Scenarios passed:    {metrics.scenarios_succeeded}",
            f"  Self-healed clicks:  {metrics.self_healed_clicks}",
            f"  Logins:              {metrics.logins_succeeded}",
            "-" * 65,
            f"  Avg page time:       {metrics.avg_page_ms:.0f} ms",
            f"  P95 page time:       {metrics.p95_page_ms:.0f} ms",
            f"  Elapsed time:        {metrics.elapsed_sec:.1f} s",
            f"  Stop reason:         {metrics.stop_reason}",
            "=" * 65,
        ]
        return "\n".join(lines)
