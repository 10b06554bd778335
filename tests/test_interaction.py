"""
Tests for interaction.py — self-healing clicks, cookie banners, test data.
"""

import asyncio

import pytest

from autocrawl.errors import ElementNotFoundError
from autocrawl.interaction import (
    accept_cookies, alternative_selectors, click_element_with_healing,
    count_visible, generate_test_data, smart_select,
)

from fakes import FakeNode, FakePage, FakeSite, SitePage, element

URL = "https://app.test/editor"


async def page_with(nodes, modal_nodes=None, modal_open=False):
    page = FakePage(FakeSite({URL: SitePage(title="Editor", nodes=nodes, modal_nodes=modal_nodes)}))
    await page.goto(URL)
    page.modal_open = modal_open
    return page


# ====================================================================
# Self-healing click
# ====================================================================

class TestHealing:

    def test_unique_selector_clicked_directly(self):
        async def run():
            page = await page_with({".save": [FakeNode()]})
            used = await click_element_with_healing(page, element(".save", "button", "Save"))
            return page, used

        page, used = asyncio.run(run())
        assert used == ".save"
        assert ("click", ".save") in page.actions

    def test_ambiguous_selector_heals_to_text(self):
        healed = []

        async def on_healed(el):
            healed.append(el)

        async def run():
            page = await page_with({
                ".btn": [FakeNode(), FakeNode()],
                'text="Save"': [FakeNode()],
            })
            el = element(".btn", "button", "Save")
            used = await click_element_with_healing(page, el, on_healed=on_healed)
            return page, el, used

        page, el, used = asyncio.run(run())
        assert used == 'text="Save"'
        assert el.selector == 'text="Save"'
        assert el.self_healed is True
        assert healed == [el]
        assert ("click", 'text="Save"') in page.actions

    def test_hidden_duplicates_do_not_count(self):
        async def run():
            page = await page_with({".menu": [FakeNode(visible=False), FakeNode()]})
            el = element(".menu", "button", "Menu")
            return await click_element_with_healing(page, el), el

        used, el = asyncio.run(run())
        assert used == ".menu"
        assert el.self_healed is False

    def test_alternative_must_be_unique(self):
        async def run():
            page = await page_with({
                "#gone": [],
                'text="Delete"': [FakeNode(), FakeNode()],
                '[aria-label="Delete row"]': [FakeNode()],
            })
            el = element("#gone", "button", "Delete", aria_label="Delete row")
            return await click_element_with_healing(page, el)

        assert asyncio.run(run()) == '[aria-label="Delete row"]'

    def test_no_alternative_raises(self):
        async def run():
            page = await page_with({})
            await click_element_with_healing(page, element("#nothing", "button", "Nope"))

        with pytest.raises(ElementNotFoundError) as exc:
            asyncio.run(run())
        assert exc.value.matches == 0

    def test_malformed_selector_counts_as_no_match(self):
        async def run():
            page = await page_with({})
            return await count_visible(page, "!!broken[")

        assert asyncio.run(run()) == 0

    def test_alternative_order(self):
        el = element("#x", "button", "Continue shopping", aria_label="Continue",
                     data_testid="cont", name="cont", role="button", type="button")
        assert alternative_selectors(el) == [
            'text="Continue shopping"',
            '[aria-label="Continue"]',
            '[data-testid="cont"]',
            '[name="cont"]',
            '[role="button"] >> text="Continue shopping"',
            'button[type="button"] >> text="Continue shopping"',
            'button:has-text("Continue shopping")',
        ]


# ====================================================================
# Cookie banners and selects
# ====================================================================

class TestCookies:

    def test_accepts_banner(self):
        async def run():
            page = await page_with({'button:has-text("Accept All")': [FakeNode()]})
            return page, await accept_cookies(page, settle_s=0)

        page, clicked = asyncio.run(run())
        assert clicked is True
        assert ("click", 'button:has-text("Accept All")') in page.actions

    def test_leaves_banner_while_login_form_visible(self):
        async def run():
            page = await page_with({
                'button:has-text("Accept")': [FakeNode()],
                'input[type="password"]': [FakeNode(tag="input")],
            })
            return page, await accept_cookies(page, settle_s=0)

        page, clicked = asyncio.run(run())
        assert clicked is False
        assert page.actions == [("goto", URL)]

    def test_no_banner(self):
        async def run():
            return await accept_cookies(await page_with({}), settle_s=0)

        assert asyncio.run(run()) is False


class TestSelect:

    def test_native_select(self):
        async def run():
            page = await page_with({"#country": [FakeNode(tag="select")]})
            await smart_select(page, "#country", "DE")
            return page

        assert ("select", "#country", "DE") in asyncio.run(run()).actions

    def test_custom_dropdown(self):
        async def run():
            page = await page_with({
                "#size": [FakeNode(tag="div")],
                '[role="option"], li[class*="option"], li[class*="item"]': [FakeNode(tag="li")],
            })
            await smart_select(page, "#size", None)
            return page

        actions = asyncio.run(run()).actions
        assert ("click", "#size") in actions
        assert ("click", '[role="option"], li[class*="option"], li[class*="item"]') in actions


class TestTestData:

    @pytest.mark.parametrize("selector,text,expected", [
        ('input[name="email"]', "", "test@example.com"),
        ("#phone", "", "+1-555-0123"),
        ("#field-7", "ZIP code", "10001"),
        ("#unknown", "", "Test input"),
    ])
    def test_inferred_values(self, selector, text, expected):
        assert generate_test_data(selector, text) == expected

    def test_textarea_default(self):
        assert generate_test_data("#x", "", "textarea") == "This is a test message."
