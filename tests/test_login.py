"""
Tests for auth/ — credential resolution and login form handling.
"""

import asyncio

import pytest

from autocrawl.auth import (
    Credentials, LoginHandler, PlainCredentialStore, resolve_credentials, resolve_placeholder,
)
from autocrawl.errors import MissingCredentialsError

from fakes import FakeNode, FakePage, FakeSite, SitePage, element

LOGIN = "https://portal.test/login"
HOME = "https://portal.test/home"

PASSWORD = 'input[type="password"]'


def login_page(submit=True, password_visible=True, succeeds=True, title="Welcome"):
    target = HOME if succeeds else None
    nodes = {
        "#email": [FakeNode(tag="input")],
        "#pwd": [FakeNode(tag="input", visible=password_visible, navigates_to=None if submit else target)],
        PASSWORD: [FakeNode(tag="input", visible=password_visible)],
    }
    elements = [
        element("#email", "input", "", type="email", name="email", id="email"),
        element("#pwd", "input", "", type="password", name="pwd", id="pwd"),
    ]
    if submit:
        nodes["#go"] = [FakeNode(navigates_to=target, text="Log in")]
        elements.append(element("#go", "button", "Log in", id="go"))
    return FakeSite({LOGIN: SitePage(title=title, nodes=nodes, elements=elements),
                     HOME: SitePage(title="Home")})


async def open_page(site):
    page = FakePage(site)
    await page.goto(LOGIN)
    return page


def handler(creds=Credentials("ann@example.com", "pa55")):
    return LoginHandler(creds, field_settle_s=0, submit_wait_s=0)


class TestCredentials:

    def test_placeholder_resolution(self):
        creds = Credentials("ann", "pw")
        assert resolve_placeholder("{auth_username}", creds) == "ann"
        assert resolve_placeholder("plain", None) == "plain"
        assert resolve_placeholder(None, None) is None

    def test_placeholder_without_credentials_raises(self):
        with pytest.raises(MissingCredentialsError) as exc:
            resolve_placeholder("{auth_password}", None)
        assert exc.value.placeholder == "{auth_password}"

    def test_env_fallback(self, monkeypatch):
        monkeypatch.delenv("AUTOCRAWL_USERNAME", raising=False)
        monkeypatch.delenv("AUTOCRAWL_PASSWORD", raising=False)
        monkeypatch.delenv("CRAWLER_USERNAME", raising=False)
        monkeypatch.setenv("CRAWLER_EMAIL", "env@example.com")
        monkeypatch.setenv("CRAWLER_PASSWORD", "envpw")
        creds = resolve_credentials()
        assert creds.username == "env@example.com"
        assert resolve_credentials("cli", "clipw").username == "cli"

    def test_repr_masks_password(self):
        assert "pa55" not in repr(Credentials("ann", "pa55"))

    def test_plain_store(self):
        creds = PlainCredentialStore().decrypt('{"username": "u", "password": "p"}')
        assert creds.is_complete


class TestDetection:

    def test_hidden_password_never_detects(self):
        site = login_page(password_visible=False)

        async def run():
            page = await open_page(site)
            return await handler().detect_login_page(page, "login", "Login")

        assert asyncio.run(run()) is False

    def test_semantic_match(self):
        site = login_page(submit=False)

        async def run():
            page = await open_page(site)
            return await handler().detect_login_page(page, "auth", "Sign-in")

        assert asyncio.run(run()) is True

    def test_structural_match(self):
        site = login_page()

        async def run():
            page = await open_page(site)
            return await handler().detect_login_page(
                page, "content", "Welcome", site.pages[LOGIN].elements,
            )

        assert asyncio.run(run()) is True


class TestHandling:

    def test_fill_and_submit(self):
        site = login_page()

        async def run():
            page = await open_page(site)
            outcome = await handler().handle_login_form(page, site.pages[LOGIN].elements)
            return page, outcome

        page, outcome = asyncio.run(run())
        assert outcome
        assert (outcome.username_selector, outcome.password_selector, outcome.submit_selector) == (
            "#email", "#pwd", "#go",
        )
        assert page.actions[1:] == [
            ("fill", "#email", "ann@example.com"),
            ("fill", "#pwd", "pa55"),
            ("click", "#go"),
        ]
        assert page.url == HOME

    def test_enter_when_no_submit(self):
        site = login_page(submit=False)

        async def run():
            page = await open_page(site)
            outcome = await handler().handle_login_form(page, site.pages[LOGIN].elements)
            return page, outcome

        page, outcome = asyncio.run(run())
        assert outcome.success
        assert outcome.submit_selector is None
        assert ("press", "#pwd", "Enter") in page.actions

    def test_password_still_visible_is_failure(self):
        site = login_page(succeeds=False)

        async def run():
            page = await open_page(site)
            return await handler().handle_login_form(page, site.pages[LOGIN].elements)

        outcome = asyncio.run(run())
        assert not outcome
        assert outcome.reason == "password field still visible"

    def test_no_credentials_skips_form(self):
        site = login_page()

        async def run():
            page = await open_page(site)
            outcome = await handler(None).handle_login_form(page, site.pages[LOGIN].elements)
            return page, outcome

        page, outcome = asyncio.run(run())
        assert not outcome
        assert page.actions == [("goto", LOGIN)]

    def test_falls_back_to_selector_bank(self):
        site = login_page(submit=False)

        async def run():
            page = await open_page(site)
            # No identified elements: selector banks locate the fields
            return await handler().handle_login_form(page, [])

        outcome = asyncio.run(run())
        assert outcome.username_selector == "#email"
        assert outcome.password_selector == "#pwd"
