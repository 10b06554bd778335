"""
Path Navigator
==============
Deterministic replay of a recorded step log against a fresh browser page.

Every discovered node stores the complete list of primitive actions that
reaches it from the seed. A worker holding a cold browser replays that log
to stand on the node before crawling it.

Supported actions::

    goto(url)                   clearBrowserData
    click(selector)             wait(duration_ms)
    fill(selector, value)       waitForSelector(selector, timeout_ms)
    type(selector, value)       check(selector) / uncheck(selector)
    select(selector, value)

Rules:
    - Steps run strictly in order; the first failure aborts the rest and
      raises ``NavigationError`` with the 1-based index of the failing step.
    - ``goto`` is retried once after a fixed delay.
    - ``fill``/``type`` resolve ``{auth_username}``/``{auth_password}`` at
      execution time, so a recorded path replays under any credentials.
    - Step logs are never mutated: ``append_step`` returns a new list.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from playwright.async_api import Page

from .auth.credentials import Credentials, resolve_placeholder
from .errors import NavigationError
from .models import Step

logger = logging.getLogger(__name__)

_CLEAR_STORAGE_JS = """
() => {
    try { window.localStorage.clear(); } catch (e) {}
    try { window.sessionStorage.clear(); } catch (e) {}
}
"""


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

@dataclass
class StepDelays:
    """Timeouts and post-action settle delays, in milliseconds."""
    navigation_timeout_ms: int = 45000
    goto_settle_ms: int = 2000
    goto_retry_delay_ms: int = 2000
    goto_attempts: int = 2
    click_timeout_ms: int = 10000
    click_settle_ms: int = 1500
    input_timeout_ms: int = 10000
    input_settle_ms: int = 500
    default_wait_ms: int = 1000
    default_selector_timeout_ms: int = 10000

    @classmethod
    def none(cls) -> "StepDelays":
        """No settle delays; timeouts unchanged."""
        return cls(goto_settle_ms=0, goto_retry_delay_ms=0, click_settle_ms=0,
                   input_settle_ms=0, default_wait_ms=0)


# ---------------------------------------------------------------------------
# Step builders
# ---------------------------------------------------------------------------

def goto_step(url: str) -> Step:
    return Step(action="goto", url=url)


def click_step(selector: str, element_text: Optional[str] = None) -> Step:
    return Step(action="click", selector=selector, element_text=element_text)


def fill_step(selector: str, value: str) -> Step:
    return Step(action="fill", selector=selector, value=value)


def wait_step(duration_ms: int) -> Step:
    return Step(action="wait", duration_ms=duration_ms)


def clear_browser_data_step() -> Step:
    return Step(action="clearBrowserData")


def append_step(parent: Sequence[Step], step: Step) -> List[Step]:
    """Child log = parent log + one step; the parent is left untouched."""
    return list(parent) + [step]


# ---------------------------------------------------------------------------
# Navigator
# ---------------------------------------------------------------------------

class PathNavigator:
    """Replays step logs on one page."""

    def __init__(
        self,
        page: Page,
        credentials: Optional[Credentials] = None,
        delays: Optional[StepDelays] = None,
    ):
        self.page = page
        self.credentials = credentials
        self.delays = delays or StepDelays()

    async def execute(self, steps: Sequence[Step]) -> None:
        """Run ``steps`` in order.

        Raises:
            NavigationError: on the first failing step (1-based ``step_index``).
        """
        total = len(steps)
        for index, step in enumerate(steps, start=1):
            logger.debug(f"[NAV] Step {index}/{total}: {step.describe()}")
            try:
                await self.execute_step(step)
            except NavigationError:
                raise
            except Exception as e:
                logger.warning(f"[NAV] Step {index}/{total} {step.describe()} failed: {e}")
                raise NavigationError(index, step.action, str(e), url=step.url) from e

    async def execute_step(self, step: Step) -> None:
        page, d = self.page, self.delays
        action = step.action

        if action == "goto":
            await self._goto(step.url)

        elif action == "click":
            await page.click(step.selector, timeout=d.click_timeout_ms)
            await self._sleep(d.click_settle_ms)

        elif action == "fill":
            value = resolve_placeholder(step.value, self.credentials) or ""
            await page.fill(step.selector, value, timeout=d.input_timeout_ms)
            await self._sleep(d.input_settle_ms)

        elif action == "type":
            value = resolve_placeholder(step.value, self.credentials) or ""
            await page.type(step.selector, value, timeout=d.input_timeout_ms)
            await self._sleep(d.input_settle_ms)

        elif action == "select":
            await page.select_option(step.selector, step.value, timeout=d.input_timeout_ms)
            await self._sleep(d.input_settle_ms)

        elif action == "check":
            await page.check(step.selector, timeout=d.input_timeout_ms)
            await self._sleep(d.input_settle_ms)

        elif action == "uncheck":
            await page.uncheck(step.selector, timeout=d.input_timeout_ms)
            await self._sleep(d.input_settle_ms)

        elif action == "wait":
            await self._sleep(step.duration_ms if step.duration_ms is not None else d.default_wait_ms)

        elif action == "waitForSelector":
            await page.wait_for_selector(
                step.selector,
                timeout=step.timeout_ms or d.default_selector_timeout_ms,
            )

        elif action == "clearBrowserData":
            await self.clear_browser_data()

        else:
            logger.warning(f"[NAV] Unknown action {action!r} — skipped")

    async def clear_browser_data(self) -> None:
        await self.page.context.clear_cookies()
        await self.page.evaluate(_CLEAR_STORAGE_JS)
        logger.debug("[NAV] Cookies and web storage cleared")

    async def _goto(self, url: Optional[str]) -> None:
        if not url:
            raise ValueError("goto step without url")
        d = self.delays
        attempts = max(1, d.goto_attempts)
        for attempt in range(1, attempts + 1):
            try:
                await self.page.goto(url, wait_until="domcontentloaded", timeout=d.navigation_timeout_ms)
                await self._sleep(d.goto_settle_ms)
                return
            except Exception as e:
                if attempt >= attempts:
                    raise
                logger.info(f"[RETRY] goto {url[:80]} — attempt {attempt + 1}/{attempts} after: {e}")
                await self._sleep(d.goto_retry_delay_ms)

    @staticmethod
    async def _sleep(ms: Optional[int]) -> None:
        if ms:
            await asyncio.sleep(ms / 1000)
