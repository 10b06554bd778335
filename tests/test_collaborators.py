"""
Tests for collaborators.py and analysis coercion in models.py.
"""

import asyncio

from autocrawl.collaborators import (
    FormScenarioPlanner, HtmlElementIdentifier, NullFailureAdapter, PlanningContext, build_selector,
)
from autocrawl.models import InteractiveElement, PageAnalysis, ScenarioStep, coerce_analysis

from fakes import element

SIGNUP_HTML = """
<html><head><title>Create account</title></head>
<body>
  <nav><a href="/pricing">Pricing</a><a href="#">Top</a></nav>
  <form id="signup">
    <input id="email" type="email" name="email" placeholder="Email">
    <input type="password" name="password">
    <input type="hidden" name="csrf" value="x">
    <select name="plan"><option>Free</option></select>
    <button type="submit">Create account</button>
  </form>
  <div role="tab" data-testid="tab-billing">Billing</div>
  <button style="display: none">Ghost</button>
  <button disabled>Disabled</button>
</body></html>
"""


class TestHtmlIdentifier:

    def _identify(self, html=SIGNUP_HTML):
        return asyncio.run(HtmlElementIdentifier().identify("", html, "https://app.test/signup"))

    def test_finds_visible_enabled_elements(self):
        analysis = self._identify()
        selectors = [e.selector for e in analysis.interactive_elements]
        assert 'a[href="/pricing"]' in selectors
        assert "#email" in selectors
        assert 'input[name="password"]' in selectors
        assert 'select[name="plan"]' in selectors
        assert '[data-testid="tab-billing"]' in selectors
        assert not any("csrf" in s for s in selectors)
        assert not any("Ghost" in s or "Disabled" in s for s in selectors)

    def test_page_type_and_title(self):
        analysis = self._identify()
        assert analysis.page_type == "login"
        assert analysis.screen_name == "Create account"

    def test_element_types(self):
        types = {e.selector: e.element_type for e in self._identify().interactive_elements}
        assert types['[data-testid="tab-billing"]'] == "tab"
        assert types['button:has-text("Create account")'] == "button"

    def test_empty_document(self):
        analysis = self._identify("")
        assert analysis.interactive_elements == []
        assert analysis.page_type == "content"

    def test_build_selector_escapes_text(self):
        assert build_selector("button", {}, 'Say "hi"') == 'button:has-text("Say \\"hi\\"")'
        assert build_selector("input", {"id": "user.name"}, "") == '[id="user.name"]'


class TestFormPlanner:

    def _context(self, elements):
        return PlanningContext(run_id="r", page_id=1, url="https://app.test/signup",
                               screen_name="Sign up", elements=elements)

    def test_fill_and_submit_scenario_uses_placeholders(self):
        elements = [
            element("#user", "input", "", name="username"),
            element("#pass", "input", "", name="password", type="password"),
            element("#go", "button", "Sign in", type="submit"),
            element("#help", "button", "Help"),
        ]
        scenarios = asyncio.run(FormScenarioPlanner().generate_scenarios(self._context(elements)))
        form = scenarios[0]
        assert [(s.action, s.selector, s.value) for s in form.steps] == [
            ("fill", "#user", "{auth_username}"),
            ("fill", "#pass", "{auth_password}"),
            ("click", "#go", None),
        ]
        assert scenarios[1].steps[0].selector == "#help"
        assert len(scenarios) == 2

    def test_no_elements_no_scenarios(self):
        assert asyncio.run(FormScenarioPlanner().generate_scenarios(self._context([]))) == []

    def test_mark_executed_records_outcome(self):
        planner = FormScenarioPlanner()
        asyncio.run(planner.mark_executed(4, True, "ok"))
        assert planner.executed == {4: True}


class TestFailureAdapter:

    def test_null_adapter_never_recovers(self):
        adapter = NullFailureAdapter()
        step = ScenarioStep(action="click", selector="#x")
        analysis = asyncio.run(adapter.analyze_failure(step, "boom", "", "", "open menu"))
        assert analysis.can_achieve_intent is False
        assert asyncio.run(adapter.verify_intent_achieved("open menu", "")).achieved is False


class TestCoerceAnalysis:

    def test_camel_case_and_malformed_entries(self):
        raw = {
            "screenName": "Dashboard",
            "pageType": "dashboard",
            "interactiveElements": [
                {"type": "button", "selector": "#ok", "text": "OK"},
                {"type": "button"},
                "junk",
            ],
        }
        analysis = coerce_analysis(raw)
        assert analysis.screen_name == "Dashboard"
        assert [e.selector for e in analysis.interactive_elements] == ["#ok"]
        assert analysis.interactive_elements[0].text_content == "OK"

    def test_non_list_elements(self):
        assert coerce_analysis({"interactive_elements": "oops"}).interactive_elements == []

    def test_garbage(self):
        assert coerce_analysis(None) == PageAnalysis()

    def test_passthrough(self):
        el = InteractiveElement(element_type="link", selector="a")
        assert coerce_analysis(PageAnalysis(interactive_elements=[el])).interactive_elements == [el]
