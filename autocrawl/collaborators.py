"""
External Collaborators
======================
Contracts for the analysis services the crawl core consumes, plus default
implementations that need no model access.

Contracts:
    - ``ElementIdentifier``  — screenshot + HTML → screen name, page type, elements
    - ``ScenarioPlanner``    — page context → multi-step interaction scenarios
    - ``FailureAdapter``     — failed step → alternative steps; intent verification
    - ``FlowGenerator``      — post-crawl flow/test generation hook

Defaults:
    - ``HtmlElementIdentifier`` — BeautifulSoup/lxml heuristics over the DOM
    - ``FormScenarioPlanner``   — fill-and-submit forms, open in-page buttons
    - ``NullFailureAdapter``    — never proposes alternatives

The orchestrator treats every collaborator as unreliable: exceptions and
malformed results degrade to empty results.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup

from .auth.credentials import PASSWORD_PLACEHOLDER, USERNAME_PLACEHOLDER
from .interaction import generate_test_data
from .models import (
    FailureAnalysis, InteractiveElement, IntentVerification, PageAnalysis,
    Scenario, ScenarioStep,
)

logger = logging.getLogger(__name__)


@dataclass
class PlanningContext:
    """What the scenario planner gets to see about a page."""
    run_id: str
    page_id: int
    url: str
    screen_name: str = ""
    page_type: Optional[str] = None
    depth: int = 0
    elements: List[InteractiveElement] = field(default_factory=list)
    is_virtual: bool = False
    state_change: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class ElementIdentifier(ABC):
    @abstractmethod
    async def identify(self, screenshot_b64: str, html: str, url: str) -> PageAnalysis:
        """Return screen name, page type and interactive elements."""
        ...


class ScenarioPlanner(ABC):
    @abstractmethod
    async def generate_scenarios(self, context: PlanningContext) -> List[Scenario]:
        ...

    async def mark_executed(
        self,
        scenario_id: Optional[int],
        success: bool,
        result: str = "",
        error: Optional[str] = None,
    ) -> None:
        """Outcome feedback; optional for planners that don't learn."""


class FailureAdapter(ABC):
    @abstractmethod
    async def analyze_failure(
        self,
        step: ScenarioStep,
        error: str,
        screenshot_b64: str,
        html: str,
        intent: str,
    ) -> FailureAnalysis:
        ...

    @abstractmethod
    async def verify_intent_achieved(self, intent: str, screenshot_b64: str) -> IntentVerification:
        ...


class FlowGenerator(ABC):
    @abstractmethod
    async def generate_flows(self, run_id: str) -> None:
        ...


# ---------------------------------------------------------------------------
# Default: HTML heuristic element identifier
# ---------------------------------------------------------------------------

_CANDIDATE_TAGS = ["a", "button", "input", "select", "textarea", "summary"]
_CANDIDATE_ROLES = ["button", "link", "tab", "menuitem", "checkbox", "switch", "option"]
_KEPT_ATTRS = ("id", "name", "type", "href", "class", "role", "aria-label",
               "placeholder", "data-testid", "value", "autocomplete")
_MAX_ELEMENTS = 150


def _element_type(tag) -> Optional[str]:
    role = (tag.get("role") or "").lower()
    if role == "tab":
        return "tab"
    if role == "menuitem":
        return "menu-item"
    name = tag.name
    if name == "a":
        return "link" if tag.get("href") or role == "link" else "button" if role == "button" else None
    if name == "button" or role == "button":
        return "button"
    if name == "input":
        itype = (tag.get("type") or "text").lower()
        if itype == "hidden":
            return None
        if itype in ("submit", "button", "reset", "image"):
            return "button"
        if itype in ("checkbox", "radio"):
            return itype
        return "input"
    if name in ("select", "textarea"):
        return name
    if name == "summary":
        return "button"
    if role in ("link",):
        return "link"
    if role in ("checkbox", "switch"):
        return "checkbox"
    return None


def _is_hidden(tag) -> bool:
    for node in [tag] + list(tag.parents):
        if getattr(node, "attrs", None) is None:
            continue
        if node.has_attr("hidden") or (node.get("aria-hidden") == "true"):
            return True
        style = (node.get("style") or "").replace(" ", "").lower()
        if "display:none" in style or "visibility:hidden" in style:
            return True
    return False


def build_selector(element_type: str, attrs: Dict[str, str], text: str) -> str:
    """CSS/Playwright selector from attributes, most specific first."""
    tag = {"link": "a", "menu-item": "*", "tab": "*"}.get(element_type, element_type)
    if attrs.get("id"):
        return f"#{attrs['id']}" if attrs["id"].replace("-", "").replace("_", "").isalnum() else f'[id="{attrs["id"]}"]'
    data_attr = next((k for k in attrs if k.startswith("data-")), None)
    if data_attr:
        return f'[{data_attr}="{attrs[data_attr]}"]'
    if attrs.get("name") and element_type in ("input", "select", "textarea", "checkbox", "radio"):
        base = "input" if element_type in ("checkbox", "radio") else element_type
        return f'{base}[name="{attrs["name"]}"]'
    if attrs.get("aria-label"):
        return f'[aria-label="{attrs["aria-label"]}"]'
    if element_type == "link" and attrs.get("href"):
        return f'a[href="{attrs["href"]}"]'
    if attrs.get("type") and element_type == "input":
        return f'input[type="{attrs["type"]}"]'
    if text:
        quoted = text[:30].replace('"', '\\"')
        return f'{tag if tag != "*" else "[role]"}:has-text("{quoted}")'
    if attrs.get("class"):
        return f".{attrs['class'].split()[0]}"
    return tag


class HtmlElementIdentifier(ElementIdentifier):
    """DOM-only element identifier (BeautifulSoup + lxml)."""

    async def identify(self, screenshot_b64: str, html: str, url: str) -> PageAnalysis:
        soup = BeautifulSoup(html or "", "lxml")
        title = soup.title.get_text(strip=True) if soup.title else ""

        seen = set()
        elements: List[InteractiveElement] = []
        candidates = soup.find_all(_CANDIDATE_TAGS) + soup.find_all(attrs={"role": _CANDIDATE_ROLES})
        for tag in candidates:
            if id(tag) in seen or len(elements) >= _MAX_ELEMENTS:
                continue
            seen.add(id(tag))
            etype = _element_type(tag)
            if not etype or _is_hidden(tag) or tag.has_attr("disabled"):
                continue
            attrs = {}
            for k in _KEPT_ATTRS + tuple(a for a in tag.attrs if a.startswith("data-")):
                v = tag.get(k)
                if v:
                    attrs[k] = " ".join(v) if isinstance(v, list) else str(v)
            text = " ".join(tag.get_text(" ", strip=True).split())[:100]
            if not text and etype == "button":
                text = attrs.get("value", "") or attrs.get("aria-label", "")
            elements.append(InteractiveElement(
                element_type=etype,
                selector=build_selector(etype, attrs, text),
                text_content=text,
                attributes=attrs,
                interaction_priority="high" if etype in ("input", "button", "select") else "medium",
                identified_by="html_heuristic",
            ))

        has_password = bool(soup.select('input[type="password"]'))
        page_type = "login" if has_password and len(soup.select("input")) <= 6 else (
            "form" if soup.find("form") else "content"
        )
        logger.debug(f"[IDENTIFY] {len(elements)} element(s) on {url}")
        return PageAnalysis(screen_name=title or None, page_type=page_type, interactive_elements=elements)


# ---------------------------------------------------------------------------
# Default: form scenario planner
# ---------------------------------------------------------------------------

_SUBMIT_WORDS = ("submit", "save", "send", "sign in", "log in", "login", "continue", "next", "search", "create")
_NAV_TYPES = ("link", "tab", "menu-item")


class FormScenarioPlanner(ScenarioPlanner):
    """Deterministic planner: one fill-and-submit scenario per form plus
    single-click scenarios for in-page buttons (dialogs, accordions)."""

    def __init__(self, max_scenarios: int = 3):
        self.max_scenarios = max_scenarios
        self.executed: Dict[int, bool] = {}

    async def generate_scenarios(self, context: PlanningContext) -> List[Scenario]:
        inputs = [e for e in context.elements if e.element_type in ("input", "textarea", "select")]
        buttons = [e for e in context.elements if e.element_type == "button"]
        scenarios: List[Scenario] = []

        if inputs:
            steps = [self._fill_step(e) for e in inputs[:10]]
            submit = next((b for b in buttons if b.attr("type") == "submit" or
                           any(w in b.text_content.lower() for w in _SUBMIT_WORDS)), None)
            if submit:
                steps.append(ScenarioStep(
                    action="click", selector=submit.selector, element_type=submit.element_type,
                    text_content=submit.text_content, expected_outcome="form submitted",
                ))
            scenarios.append(Scenario(
                name=f"Fill form on {context.screen_name or context.url}",
                description="Fill every visible field with plausible data and submit",
                steps=steps,
                priority="high",
            ))

        for btn in buttons:
            if len(scenarios) >= self.max_scenarios:
                break
            text = btn.text_content.lower()
            if btn.attr("type") == "submit" or any(w in text for w in _SUBMIT_WORDS) or not text:
                continue
            scenarios.append(Scenario(
                name=f"Click '{btn.text_content[:40]}'",
                description="Open in-page UI behind a button",
                steps=[ScenarioStep(
                    action="click", selector=btn.selector, element_type="button",
                    text_content=btn.text_content, expected_outcome="UI state changes",
                )],
                priority="medium",
            ))
        return scenarios[: self.max_scenarios]

    async def mark_executed(self, scenario_id, success, result="", error=None) -> None:
        if scenario_id is not None:
            self.executed[scenario_id] = success

    @staticmethod
    def _fill_step(el: InteractiveElement) -> ScenarioStep:
        ident = f"{el.attr('name')} {el.attr('id')} {el.attr('type')}".lower()
        if el.element_type == "select":
            return ScenarioStep(action="select", selector=el.selector, element_type="select",
                                text_content=el.text_content)
        if "pass" in ident:
            value = PASSWORD_PLACEHOLDER
        elif any(k in ident for k in ("user", "login")):
            value = USERNAME_PLACEHOLDER
        else:
            value = generate_test_data(el.selector, el.text_content or el.attr("placeholder"), el.element_type)
        return ScenarioStep(action="fill", selector=el.selector, element_type=el.element_type,
                            text_content=el.text_content, value=value)


# ---------------------------------------------------------------------------
# Default: failure adapter
# ---------------------------------------------------------------------------

class NullFailureAdapter(FailureAdapter):
    async def analyze_failure(self, step, error, screenshot_b64, html, intent) -> FailureAnalysis:
        return FailureAnalysis(can_achieve_intent=False, diagnosis=f"No adapter configured: {error}")

    async def verify_intent_achieved(self, intent, screenshot_b64) -> IntentVerification:
        return IntentVerification(achieved=False)
