"""
Crawl Session
=============
The mutable state of one run, passed explicitly to every worker.

    - visited URLs and the page budget (``try_reserve_page``)
    - cooperative stop (``stop_event``) and pause gate (``wait_if_paused``)
    - virtual-page counter and the set of materialized state hashes

Workers check stop/pause only between discrete steps; an in-flight item
always runs to completion.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Set

logger = logging.getLogger(__name__)


class CrawlSession:
    def __init__(self, run_id: str, max_pages: int, visited: Iterable[str] = ()):
        self.run_id = run_id
        self.max_pages = max_pages
        self.visited_urls: Set[str] = set(visited)
        self.pages_discovered = len(self.visited_urls)
        self.virtual_pages = 0
        self.current_depth = 0
        self.seen_state_hashes: Set[str] = set()
        self.stop_event = asyncio.Event()
        self._resume_gate = asyncio.Event()
        self._resume_gate.set()
        self._lock = asyncio.Lock()
        self._virtual_counter = 0

    # ── Budget / visited ──────────────────────────────────────────

    def is_visited(self, url: str) -> bool:
        return url in self.visited_urls

    @property
    def budget_exhausted(self) -> bool:
        return self.pages_discovered >= self.max_pages

    async def try_reserve_page(self, url: str) -> bool:
        """Count ``url`` as discovered if it is new and the budget allows."""
        async with self._lock:
            if url in self.visited_urls or self.pages_discovered >= self.max_pages:
                return False
            self.visited_urls.add(url)
            self.pages_discovered += 1
            return True

    async def next_virtual_index(self) -> int:
        async with self._lock:
            self._virtual_counter += 1
            return self._virtual_counter

    async def claim_state(self, state_hash: str) -> bool:
        """True the first time a state hash is seen in this run."""
        async with self._lock:
            if state_hash in self.seen_state_hashes:
                return False
            self.seen_state_hashes.add(state_hash)
            return True

    # ── Run controls ──────────────────────────────────────────────

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    @property
    def paused(self) -> bool:
        return not self._resume_gate.is_set()

    def stop(self) -> None:
        self.stop_event.set()
        self._resume_gate.set()

    def pause(self) -> None:
        self._resume_gate.clear()

    def resume(self) -> None:
        self._resume_gate.set()

    async def wait_if_paused(self) -> bool:
        """Block while paused. Returns False if the run was stopped."""
        if self.paused:
            logger.info("[SESSION] Paused — waiting for resume")
        await self._resume_gate.wait()
        return not self.stopped

    def coverage(self) -> float:
        if self.max_pages <= 0:
            return 0.0
        return min(100.0, self.pages_discovered * 100.0 / self.max_pages)

    def snapshot(self) -> dict:
        return {
            "run_id": self.run_id,
            "pages_discovered": self.pages_discovered,
            "virtual_pages": self.virtual_pages,
            "max_pages": self.max_pages,
            "current_depth": self.current_depth,
            "stopped": self.stopped,
            "paused": self.paused,
        }


def percentage(pages: int, max_pages: int) -> int:
    if max_pages <= 0:
        return 0
    return int(min(100, pages * 100 / max_pages))
