"""
Login Detection & Handling
==========================
Recognises login pages and fills them with the configured credentials.

Detection requires a *visible* password field (hidden duplicate forms in the
HTML must not trigger) AND either:
    - the page type / screen name reads like a login page, or
    - a visible username/email field and a visible submit control.

Handling:
    1. Restrict candidate elements to those currently visible
    2. Locate username / password / submit by name/id/type heuristics,
       falling back to the selector banks below
    3. Fill username, settle, fill password, settle
    4. Click submit, or press Enter in the password field
    5. Success ⇔ the password field is no longer visible

Failure is never fatal — the crawl continues unauthenticated.

Security:
    - Credentials are never logged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from playwright.async_api import Locator, Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

from ..interaction import PASSWORD_SELECTOR, count_visible, visible_matches
from ..models import InteractiveElement
from .credentials import Credentials

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Selector banks (fallbacks when identified elements don't cover the form)
# ---------------------------------------------------------------------------

_USERNAME_SELECTORS: List[str] = [
    '#username', '#userName', '#user', '#email', '#Email', 'input#login',
    'input[name="username"]', 'input[name="email"]', 'input[name="login"]',
    'input[name="user"]', 'input[name="userid"]', 'input[name="loginfmt"]',
    'input[type="email"]',
    'input[autocomplete="username"]',
    'input[autocomplete="email"]',
]

_PASSWORD_SELECTORS: List[str] = [
    '#password', '#Password', '#pwd',
    'input[name="password"]', 'input[name="pwd"]', 'input[name="passwd"]',
    PASSWORD_SELECTOR,
]

_SUBMIT_SELECTORS: List[str] = [
    'button[type="submit"]',
    'input[type="submit"]',
    '#login_button', '#loginButton', '#btn-login', '#btnLogin',
    'button:has-text("Sign in")',
    'button:has-text("Sign In")',
    'button:has-text("Log in")',
    'button:has-text("Login")',
    'button:has-text("Continue")',
]

_LOGIN_KEYWORDS = ("login", "log in", "auth", "signin", "sign-in", "sign in")
_SUBMIT_TEXT = ("sign in", "log in", "login", "submit", "continue")
_INPUT_TYPES = ("input", "text", "email", "textbox", "field")


@dataclass
class LoginOutcome:
    """Result of a login attempt; truthy when the login succeeded."""
    success: bool
    username_selector: Optional[str] = None
    password_selector: Optional[str] = None
    submit_selector: Optional[str] = None
    reason: str = ""

    def __bool__(self) -> bool:
        return self.success


def _ident(el: InteractiveElement) -> str:
    return f"{el.attr('name')} {el.attr('id')}".lower()


def _is_password(el: InteractiveElement) -> bool:
    return el.attr("type").lower() == "password" or "pass" in _ident(el)


def _is_username(el: InteractiveElement) -> bool:
    if _is_password(el):
        return False
    etype = el.element_type.lower()
    itype = el.attr("type").lower()
    if etype not in _INPUT_TYPES and itype not in ("text", "email", ""):
        return False
    return itype == "email" or any(k in _ident(el) for k in ("user", "email", "login"))


def _is_submit(el: InteractiveElement) -> bool:
    if el.attr("type").lower() == "submit":
        return True
    text = (el.text_content or "").strip().lower()
    return el.element_type.lower() in ("button", "submit") and any(t in text for t in _SUBMIT_TEXT)


def matches_login_semantics(page_type: Optional[str], screen_name: Optional[str]) -> bool:
    haystack = f"{page_type or ''} {screen_name or ''}".lower()
    return any(k in haystack for k in _LOGIN_KEYWORDS)


class LoginHandler:
    """Detects and submits login forms with the run's credentials."""

    def __init__(
        self,
        credentials: Optional[Credentials],
        field_settle_s: float = 0.8,
        submit_wait_s: float = 3.0,
    ):
        self.credentials = credentials
        self.field_settle_s = field_settle_s
        self.submit_wait_s = submit_wait_s

    # ── Detection ─────────────────────────────────────────────────

    async def detect_login_page(
        self,
        page: Page,
        page_type: Optional[str] = None,
        screen_name: Optional[str] = None,
        elements: Sequence[InteractiveElement] = (),
    ) -> bool:
        if not await count_visible(page, PASSWORD_SELECTOR):
            return False
        if matches_login_semantics(page_type, screen_name):
            logger.info("[LOGIN] Login page detected (page type / screen name)")
            return True

        visible = await self._visible_elements(page, elements)
        user = await self._locate(page, visible, _is_username, _USERNAME_SELECTORS)
        submit = await self._locate(page, visible, _is_submit, _SUBMIT_SELECTORS)
        if user and submit:
            logger.info("[LOGIN] Login page detected (username + password + submit visible)")
            return True
        return False

    # ── Handling ──────────────────────────────────────────────────

    async def handle_login_form(
        self,
        page: Page,
        elements: Sequence[InteractiveElement] = (),
    ) -> LoginOutcome:
        if not self.credentials or not self.credentials.is_complete:
            logger.info("[LOGIN] No credentials configured — continuing unauthenticated")
            return LoginOutcome(False, reason="no credentials")

        visible = await self._visible_elements(page, elements)
        user = await self._locate(page, visible, _is_username, _USERNAME_SELECTORS)
        pwd = await self._locate(page, visible, _is_password, _PASSWORD_SELECTORS)
        submit = await self._locate(page, visible, _is_submit, _SUBMIT_SELECTORS)

        if not pwd:
            return LoginOutcome(False, reason="password field not visible")

        try:
            if user:
                await user[1].fill(self.credentials.username, timeout=5000)
                logger.info(f"[LOGIN] Username filled ({user[0]})")
                await self._settle(self.field_settle_s)

            await pwd[1].fill(self.credentials.password, timeout=5000)
            logger.info(f"[LOGIN] Password filled ({pwd[0]})")
            await self._settle(self.field_settle_s)

            if submit:
                await submit[1].click(timeout=5000)
                logger.info(f"[LOGIN] Submitted via {submit[0]}")
            else:
                await pwd[1].press("Enter")
                logger.info("[LOGIN] No submit control — pressed Enter")
        except Exception as e:
            logger.warning(f"[LOGIN] Form interaction failed: {e}")
            return LoginOutcome(False, reason=str(e))

        await self._settle(self.submit_wait_s)
        try:
            await page.wait_for_load_state("networkidle", timeout=5000)
        except PlaywrightTimeout:
            pass

        success = not await count_visible(page, PASSWORD_SELECTOR)
        if success:
            logger.info("[LOGIN] ✓ Login succeeded (password field gone)")
        else:
            logger.warning("[LOGIN] ✗ Password field still visible — login likely failed")
        return LoginOutcome(
            success,
            username_selector=user[0] if user else None,
            password_selector=pwd[0],
            submit_selector=submit[0] if submit else None,
            reason="" if success else "password field still visible",
        )

    # ── Internals ─────────────────────────────────────────────────

    @staticmethod
    async def _visible_elements(
        page: Page, elements: Sequence[InteractiveElement]
    ) -> List[InteractiveElement]:
        visible = []
        for el in elements:
            if await count_visible(page, el.selector):
                visible.append(el)
        return visible

    @staticmethod
    async def _locate(page, visible, predicate, bank) -> Optional[Tuple[str, Locator]]:
        for el in visible:
            if predicate(el):
                matches = await visible_matches(page, el.selector)
                if matches:
                    return el.selector, matches[0]
        for selector in bank:
            matches = await visible_matches(page, selector)
            if matches:
                return selector, matches[0]
        return None

    @staticmethod
    async def _settle(seconds: float) -> None:
        if seconds:
            await asyncio.sleep(seconds)
