"""
Tests for spa_state.py — snapshot hashing and change classification.
"""

import asyncio
import copy

from autocrawl.spa_state import SPAStateDetector, StateSnapshot

from fakes import FakeNode, FakePage, FakeSite, SitePage


def raw(**overrides):
    base = {
        "url": "https://app.test/projects",
        "pathname": "/projects",
        "hash": "",
        "title": "Projects",
        "main": {"tag": "MAIN", "classes": ["content"], "text": "Projects list", "children": 4},
        "modals": [],
        "counts": {"buttons": 2, "links": 5, "inputs": 1, "textareas": 0,
                   "selects": 0, "forms": 1, "passwords": 0, "emails": 0},
        "fields": [{"name": "q", "type": "search", "id": "q", "placeholder": "Search"}],
    }
    data = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key].update(value)
        else:
            data[key] = value
    return data


def compare(before, after):
    return SPAStateDetector.compare(
        StateSnapshot.from_raw("before", before), StateSnapshot.from_raw("after", after)
    )


MODAL = {"tag": "DIV", "classes": ["modal"], "text": "Create project", "children": 3}


class TestSnapshot:

    def test_hash_is_stable_and_ignores_href(self):
        a = StateSnapshot.from_raw("a", raw())
        b = StateSnapshot.from_raw("b", raw(url="https://app.test/projects?utm_source=x"))
        assert a.state_hash == b.state_hash
        assert len(a.state_hash) == 32

    def test_malformed_payload_is_tolerated(self):
        snap = StateSnapshot.from_raw("x", {"counts": None, "modals": [None], "fields": [None]})
        assert snap.counts["buttons"] == 0
        assert snap.modal_count == 1
        assert snap.field_count == 1

    def test_field_signatures_capped(self):
        fields = [{"name": f"f{i}", "type": "text"} for i in range(30)]
        assert StateSnapshot.from_raw("x", raw(fields=fields)).field_count == 20


class TestClassification:

    def test_identical_states(self):
        change = compare(raw(), raw())
        assert not change.has_changes
        assert not change.significant

    def test_modal_opened_wins_over_route_change(self):
        change = compare(raw(), raw(modals=[MODAL], pathname="/projects/new"))
        assert change.change_type == "modal_opened"
        assert change.details["has_password_field"] is False

    def test_modal_with_password_field(self):
        change = compare(raw(), raw(modals=[dict(MODAL, password=True)]))
        assert change.change_type == "modal_opened"
        assert change.details["has_password_field"] is True

    def test_modal_closed(self):
        assert compare(raw(modals=[MODAL]), raw()).change_type == "modal_closed"

    def test_route_change(self):
        change = compare(raw(), raw(pathname="/settings"))
        assert change.change_type == "route_change"
        assert change.details["to_route"] == "/settings"

    def test_hash_change(self):
        assert compare(raw(), raw(hash="#/board")).change_type == "hash_change"

    def test_dynamic_fields_lists_new_fields(self):
        fields = raw()["fields"] + [
            {"name": "company", "type": "text"}, {"name": "vat", "type": "text"},
        ]
        change = compare(raw(), raw(fields=fields))
        assert change.change_type == "dynamic_fields"
        assert change.new_fields == ["company", "vat"]

    def test_single_new_field_is_not_dynamic(self):
        fields = raw()["fields"] + [{"name": "password", "type": "password"}]
        change = compare(raw(), raw(fields=fields, counts={"passwords": 1, "inputs": 2}))
        assert change.change_type == "login_form_appeared"

    def test_content_change_needs_child_delta(self):
        change = compare(raw(), raw(main={"text": "Project detail", "children": 7}))
        assert change.change_type == "content_change"
        assert change.details["child_delta"] == 3

        small = compare(raw(), raw(main={"text": "Project detail", "children": 5}))
        assert small.has_changes and not small.significant

    def test_ui_change_threshold(self):
        change = compare(raw(), raw(counts={"buttons": 4, "selects": 1}))
        assert change.change_type == "ui_change"
        assert change.details["ui_delta"] == 3

    def test_below_every_threshold_is_minor(self):
        change = compare(raw(), raw(counts={"buttons": 3, "links": 9}))
        assert change.has_changes
        assert not change.significant
        assert change.change_type is None
        assert change.description == "Minor change"


class TestDetector:

    def _site(self):
        url = "https://app.test/"
        return FakeSite({url: SitePage(title="Home", nodes={"#new": [FakeNode(opens_modal=True)]})}), url

    def test_detect_state_change_builds_virtual_candidate(self):
        site, url = self._site()

        async def run():
            page = FakePage(site)
            await page.goto(url)
            detector = SPAStateDetector()
            before = await detector.capture(page, "before")
            await page.click("#new")
            change = await detector.detect_state_change(page, "before", "after", "click New")
            return before, change

        before, change = asyncio.run(run())
        vp = change.virtual_page
        assert change.change_type == "modal_opened"
        assert vp.base_url == "https://app.test/"
        assert vp.before_hash == before.state_hash
        assert vp.state_identifier == f"modal_opened_{vp.state_hash[:8]}"
        assert vp.triggered_by == "click New"

    def test_missing_before_snapshot_reports_no_change(self):
        site, url = self._site()

        async def run():
            page = FakePage(site)
            await page.goto(url)
            return await SPAStateDetector().detect_state_change(page, "nope", "after", "x")

        change = asyncio.run(run())
        assert not change.has_changes
        assert change.virtual_page is None

    def test_capture_failure_returns_none(self):
        page = FakePage(FakeSite(), fail_evaluate=True)
        assert asyncio.run(SPAStateDetector().capture(page, "x")) is None
