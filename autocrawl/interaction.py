"""
Element Interaction
===================
Robust click / fill / select helpers, self-healing selectors, and
cookie-banner dismissal.

Self-healing (``click_element_with_healing``):
    1. The recorded selector is used when it matches exactly one visible node.
    2. Otherwise ranked alternatives are tried — exact text, aria-label,
       data-testid, name, role+text, type+text, truncated text — and the
       first one with exactly one visible match wins.
    3. The winning selector is written back onto the element with
       ``self_healed=True`` and handed to an optional persistence callback.

Only visible nodes ever count as matches; hidden duplicates (collapsed
menus, off-screen templates) are the usual reason a recorded selector
stops being unique.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .errors import ElementNotFoundError
from .models import InteractiveElement

logger = logging.getLogger(__name__)

PASSWORD_SELECTOR = 'input[type="password"]'

# Cookie consent buttons only; other modals are left for element identification
_COOKIE_SELECTORS: List[str] = [
    'button:has-text("Accept All")',
    'button:has-text("Accept Cookies")',
    'button:has-text("Accept")',
    'button:has-text("Allow All")',
    'button:has-text("I Accept")',
    'button:has-text("Got it")',
    '#onetrust-accept-btn-handler',
    '#truste-consent-button',
    '#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll',
    '#CybotCookiebotDialogBodyButtonAccept',
    '[class*="cookie"] button:has-text("Accept")',
    '[id*="cookie-accept"]',
    '.cookie-accept',
    '.cc-accept',
    '[data-testid="cookie-accept"]',
]

_IN_LOGIN_MODAL_JS = """
el => {
    const modal = el.closest('[role="dialog"], [aria-modal="true"], .modal, [class*="modal"]');
    return !!(modal && modal.querySelector('input[type="password"]'));
}
"""


# ---------------------------------------------------------------------------
# Visibility helpers
# ---------------------------------------------------------------------------

async def visible_matches(page: Page, selector: str) -> List[Locator]:
    """Locators for every currently visible node matching ``selector``."""
    if not selector:
        return []
    try:
        loc = page.locator(selector)
        total = await loc.count()
    except Exception as e:
        # Malformed selectors raise from the selector engine
        logger.debug(f"[HEAL] Selector rejected {selector!r}: {e}")
        return []
    matches = []
    for i in range(total):
        node = loc.nth(i)
        try:
            if await node.is_visible():
                matches.append(node)
        except Exception:
            continue
    return matches


async def count_visible(page: Page, selector: str) -> int:
    return len(await visible_matches(page, selector))


async def first_visible(page: Page, selectors: List[str]) -> Optional[Locator]:
    """First visible node across a selector bank (tried in order)."""
    for selector in selectors:
        matches = await visible_matches(page, selector)
        if matches:
            return matches[0]
    return None


# ---------------------------------------------------------------------------
# Smart interactions
# ---------------------------------------------------------------------------

async def smart_click(node: Locator, timeout_ms: int = 5000) -> None:
    """Click with escalating fallbacks: normal → force → DOM ``click()``."""
    try:
        await node.wait_for(state="visible", timeout=8000)
        await node.scroll_into_view_if_needed(timeout=3000)
        await node.click(timeout=timeout_ms)
        return
    except PlaywrightTimeout as e:
        logger.debug(f"[CLICK] Normal click timed out: {e}")
    try:
        await node.click(force=True, timeout=3000)
        return
    except PlaywrightTimeout as e:
        logger.debug(f"[CLICK] Force click timed out: {e}")
    await node.evaluate("el => el.click()")


async def smart_fill(page: Page, selector: str, value: str) -> None:
    """Fill a visible field; falls back to click + clear + type for masked inputs."""
    matches = await visible_matches(page, selector)
    if not matches:
        raise ElementNotFoundError(selector)
    node = matches[0]
    await node.click(timeout=5000)
    try:
        await node.fill(value, timeout=5000)
    except PlaywrightTimeout:
        logger.debug(f"[FILL] fill() timed out on {selector}, typing instead")
        await node.fill("", timeout=3000)
        await node.type(value, delay=30)


async def smart_select(page: Page, selector: str, value: Optional[str]) -> None:
    """Select an option in a native ``<select>`` or a custom dropdown."""
    matches = await visible_matches(page, selector)
    if not matches:
        raise ElementNotFoundError(selector)
    node = matches[0]
    if await node.evaluate("el => el.tagName.toLowerCase()") == "select":
        if value:
            await node.select_option(value, timeout=3000)
        else:
            await node.select_option(index=1, timeout=3000)
        return

    # Custom component: open it, then pick a role=option
    await node.click(timeout=2000)
    options = page.locator('[role="option"], li[class*="option"], li[class*="item"]')
    if await options.count() == 0:
        raise ElementNotFoundError(f"{selector} >> option")
    if value:
        wanted = options.filter(has_text=value)
        if await wanted.count() > 0:
            await wanted.first.click(timeout=2000)
            return
    await options.first.click(timeout=2000)


# ---------------------------------------------------------------------------
# Self-healing
# ---------------------------------------------------------------------------

def _quote(text: str) -> str:
    return text.replace('"', '\\"')


def alternative_selectors(element: InteractiveElement) -> List[str]:
    """Ranked fallback selectors for an element whose selector broke."""
    text = (element.text_content or "").strip()
    etype = element.element_type or "*"
    candidates: List[Optional[str]] = [
        f'text="{_quote(text)}"' if text else None,
        f'[aria-label="{_quote(element.attr("aria-label"))}"]' if element.attr("aria-label") else None,
        f'[data-testid="{_quote(element.attr("data-testid"))}"]' if element.attr("data-testid") else None,
        f'[name="{_quote(element.attr("name"))}"]' if element.attr("name") else None,
        f'[role="{element.attr("role")}"] >> text="{_quote(text)}"' if element.attr("role") and text else None,
        f'{etype}[type="{element.attr("type")}"] >> text="{_quote(text)}"' if element.attr("type") and text else None,
        f'{etype}:has-text("{_quote(text[:30])}")' if len(text) > 3 else None,
    ]
    return [c for c in candidates if c and c != element.selector]


async def find_alternative_selector(page: Page, element: InteractiveElement) -> Optional[str]:
    for candidate in alternative_selectors(element):
        n = await count_visible(page, candidate)
        if n == 1:
            logger.info(f"[HEAL] Alternative found: {candidate}")
            return candidate
        if n > 1:
            logger.debug(f"[HEAL] {n} visible matches for {candidate}")
    return None


async def click_element_with_healing(
    page: Page,
    element: InteractiveElement,
    on_healed: Optional[Callable[[InteractiveElement], Awaitable[None]]] = None,
) -> str:
    """Click ``element`` and return the selector that actually worked.

    Raises:
        ElementNotFoundError: neither the recorded selector nor any
            alternative resolves to exactly one visible node.
    """
    matches = await visible_matches(page, element.selector)
    if len(matches) == 1:
        await smart_click(matches[0])
        return element.selector

    logger.warning(
        f"[HEAL] {element.selector!r} has {len(matches)} visible matches — trying alternatives"
    )
    healed = await find_alternative_selector(page, element)
    if not healed:
        raise ElementNotFoundError(element.selector, len(matches))

    await smart_click((await visible_matches(page, healed))[0])
    element.selector = healed
    element.self_healed = True
    if on_healed is not None:
        await on_healed(element)
    logger.info(f"[HEAL] Self-healed selector → {healed}")
    return healed


# ---------------------------------------------------------------------------
# Cookie banners
# ---------------------------------------------------------------------------

async def accept_cookies(page: Page, settle_s: float = 1.0) -> bool:
    """Dismiss a cookie-consent banner. Returns True if one was clicked.

    Never acts while a login form is visible, and skips consent buttons that
    live inside a dialog containing a password field.
    """
    if await count_visible(page, PASSWORD_SELECTOR):
        logger.debug("[COOKIE] Login form visible — leaving consent banner alone")
        return False

    for selector in _COOKIE_SELECTORS:
        for node in await visible_matches(page, selector):
            try:
                if await node.evaluate(_IN_LOGIN_MODAL_JS):
                    continue
                await node.click(timeout=2000)
            except Exception as e:
                logger.debug(f"[COOKIE] {selector} not clickable: {e}")
                continue
            logger.info(f"[COOKIE] Dismissed via: {selector}")
            if settle_s:
                await asyncio.sleep(settle_s)
            return True
    return False


# ---------------------------------------------------------------------------
# Test data
# ---------------------------------------------------------------------------

_TEST_DATA = [
    (("email", "e-mail"), "test@example.com"),
    (("password", "pwd", "pass"), "TestPassword123!"),
    (("firstname", "first_name", "fname"), "John"),
    (("lastname", "last_name", "lname"), "Doe"),
    (("fullname", "full_name", "name"), "John Doe"),
    (("phone", "mobile", "tel"), "+1-555-0123"),
    (("address", "street"), "123 Main Street"),
    (("city",), "New York"),
    (("zip", "postal"), "10001"),
    (("country",), "United States"),
    (("date", "dob", "birthday"), "1990-01-15"),
    (("age", "quantity", "amount", "number"), "25"),
    (("url", "website"), "https://example.com"),
    (("search", "query"), "test"),
    (("message", "comment", "description"), "This is a test message."),
]


def generate_test_data(selector: str, text: str = "", element_type: str = "") -> str:
    """Plausible input for a field, inferred from its selector and label."""
    combined = f"{selector or ''} {text or ''}".lower()
    for keywords, value in _TEST_DATA:
        if any(k in combined for k in keywords):
            return value
    if (element_type or "").lower() == "textarea":
        return "This is a test message."
    return "Test input"
