"""
Browser Pool Manager
====================
Fixed-size set of independent browser sessions with lease/return discipline.

Each handle owns its own browser + context + page, so cookies and storage of
one discovered branch never leak into another. The orchestrator creates one
pool per depth level and closes it before advancing.

Lifecycle::

    pool = BrowserPoolManager(size=3, launcher=PlaywrightLauncher())
    await pool.initialize()
    handle = await pool.acquire(stop_event)   # None once stop is set
    ...
    await pool.reset(handle)                  # clear cookies + storage
    pool.release(handle)
    await pool.close_all()

Invariant: ``len(available) + len(busy) == size`` between calls.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)

_LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--disable-blink-features=AutomationControlled',
    '--disable-background-networking',
    '--disable-default-apps',
    '--disable-extensions',
    '--disable-sync',
    '--disable-translate',
    '--no-first-run',
]

_STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
window.chrome = window.chrome || { runtime: {} };
"""

_CLEAR_STORAGE_JS = """
() => {
    try { window.localStorage.clear(); } catch (e) {}
    try { window.sessionStorage.clear(); } catch (e) {}
}
"""


@dataclass
class BrowserHandle:
    """One leased browser session."""
    slot: int
    browser: Any
    context: Any
    page: Any
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


# ---------------------------------------------------------------------------
# Launchers
# ---------------------------------------------------------------------------

class BrowserLauncher(ABC):
    """Creates browser sessions for the pool."""

    async def start(self) -> None:
        ...

    @abstractmethod
    async def launch(self, slot: int) -> BrowserHandle:
        ...

    async def stop(self) -> None:
        ...


class PlaywrightLauncher(BrowserLauncher):
    """Chromium sessions with stealth launch args and an init script."""

    def __init__(
        self,
        headless: bool = True,
        user_agent: str = _DEFAULT_USER_AGENT,
        viewport_width: int = 1920,
        viewport_height: int = 1080,
    ):
        self.headless = headless
        self.user_agent = user_agent
        self.viewport = {"width": viewport_width, "height": viewport_height}
        self._playwright: Optional[Playwright] = None

    async def start(self) -> None:
        if self._playwright is None:
            self._playwright = await async_playwright().start()

    async def launch(self, slot: int) -> BrowserHandle:
        await self.start()
        browser: Browser = await self._playwright.chromium.launch(
            headless=self.headless, args=_LAUNCH_ARGS,
        )
        context: BrowserContext = await browser.new_context(
            user_agent=self.user_agent,
            viewport=self.viewport,
            locale='en-US',
            timezone_id='America/New_York',
            ignore_https_errors=True,
        )
        await context.add_init_script(_STEALTH_SCRIPT)
        page: Page = await context.new_page()
        return BrowserHandle(slot=slot, browser=browser, context=context, page=page)

    async def stop(self) -> None:
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.debug(f"[POOL] Playwright stop error: {e}")
            self._playwright = None


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------

class BrowserPoolManager:
    """Lease/return pool of independent browser sessions."""

    def __init__(self, size: int, launcher: BrowserLauncher, poll_interval: float = 1.0):
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self.size = size
        self.launcher = launcher
        self.poll_interval = poll_interval
        self._handles: List[BrowserHandle] = []
        self._available: List[BrowserHandle] = []
        self._busy: Set[str] = set()
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Launch ``size`` sessions one after another."""
        logger.info(f"[POOL] Launching {self.size} browser(s)...")
        for slot in range(self.size):
            handle = await self.launcher.launch(slot)
            self._handles.append(handle)
            self._available.append(handle)
            logger.debug(f"[POOL] Browser {slot + 1}/{self.size} ready ({handle.id[:8]})")
        logger.info(f"[POOL] Pool ready ({self.size} browser(s))")

    async def acquire(self, stop_event: Optional[asyncio.Event] = None) -> Optional[BrowserHandle]:
        """Wait for a free session and lease it. Returns None once stopped."""
        waited = False
        while True:
            if stop_event is not None and stop_event.is_set():
                return None
            async with self._lock:
                if self._available:
                    handle = self._available.pop(0)
                    self._busy.add(handle.id)
                    logger.debug(f"[POOL] Acquired {handle.id[:8]} (slot {handle.slot})")
                    return handle
            if not waited:
                logger.debug("[POOL] Waiting for an available browser...")
                waited = True
            await asyncio.sleep(self.poll_interval)

    def release(self, handle: BrowserHandle) -> None:
        if handle.id not in self._busy:
            logger.warning(f"[POOL] Release of non-busy handle {handle.id[:8]} ignored")
            return
        self._busy.discard(handle.id)
        self._available.append(handle)
        logger.debug(f"[POOL] Released {handle.id[:8]}")

    async def reset(self, handle: BrowserHandle) -> BrowserHandle:
        """Clear cookies and storage; replace the session in place on failure.

        Returns the handle now occupying the slot (the same object unless it
        had to be replaced). Lease state is preserved.
        """
        try:
            await handle.context.clear_cookies()
            await handle.page.evaluate(_CLEAR_STORAGE_JS)
            return handle
        except Exception as e:
            logger.warning(f"[POOL] Reset of {handle.id[:8]} failed ({e}) — replacing session")

        await self._close_handle(handle)
        fresh = await self.launcher.launch(handle.slot)
        async with self._lock:
            self._handles[self._handles.index(handle)] = fresh
            if handle.id in self._busy:
                self._busy.discard(handle.id)
                self._busy.add(fresh.id)
            elif handle in self._available:
                self._available[self._available.index(handle)] = fresh
        logger.info(f"[POOL] Slot {handle.slot} replaced with {fresh.id[:8]}")
        return fresh

    async def close_all(self) -> None:
        """Close every session; individual failures are logged, not raised."""
        logger.info(f"[POOL] Closing {len(self._handles)} browser(s)...")
        for handle in self._handles:
            await self._close_handle(handle)
        self._handles = []
        self._available = []
        self._busy = set()
        await self.launcher.stop()

    async def _close_handle(self, handle: BrowserHandle) -> None:
        try:
            await handle.browser.close()
        except Exception as e:
            logger.error(f"[POOL] Error closing browser {handle.id[:8]}: {e}")

    def stats(self) -> Dict[str, int]:
        return {
            "total": len(self._handles),
            "available": len(self._available),
            "busy": len(self._busy),
        }

    @property
    def available_count(self) -> int:
        return len(self._available)

    @property
    def busy_count(self) -> int:
        return len(self._busy)
