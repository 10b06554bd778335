"""
Crawl Data Model
================
Plain dataclasses shared by every crawl subsystem.

    - ``Step``               — one primitive replay action (goto, click, fill ...)
    - ``QueueItem``          — one discovery candidate in the crawl queue
    - ``InteractiveElement`` — an element identified on a page
    - ``PageAnalysis``       — what the element identifier returns
    - ``Scenario``           — a planned multi-step interaction
    - ``ProgressEvent``      — one entry of the run's progress stream

Persistence rows live in ``autocrawl.database``; these objects are what the
orchestrator passes around between browser work and the repository.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class QueueStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class RunPhase(str, Enum):
    IDLE = "idle"
    CRAWLING = "crawling"
    PAUSED = "paused"
    GENERATING = "generating"
    READY = "ready"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Replay steps
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Step:
    """One primitive browser action of a replay log.

    Steps are immutable so that several child logs can safely share the
    same parent prefix.
    """
    action: str
    url: Optional[str] = None
    selector: Optional[str] = None
    value: Optional[str] = None
    duration_ms: Optional[int] = None
    timeout_ms: Optional[int] = None
    element_text: Optional[str] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        return cls(
            action=data["action"],
            url=data.get("url"),
            selector=data.get("selector"),
            value=data.get("value"),
            duration_ms=data.get("duration_ms", data.get("duration")),
            timeout_ms=data.get("timeout_ms", data.get("timeout")),
            element_text=data.get("element_text"),
        )

    def describe(self) -> str:
        target = self.url or self.selector or ""
        return f"{self.action}({target})" if target else self.action


def steps_to_json(steps: List[Step]) -> List[dict]:
    return [s.to_dict() for s in steps]


def steps_from_json(data: Optional[List[dict]]) -> List[Step]:
    return [Step.from_dict(d) for d in (data or [])]


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

@dataclass
class QueueItem:
    """A discovery candidate: a URL plus the replay log that reaches it."""
    id: int
    run_id: str
    url: str
    depth: int
    priority: Priority = Priority.MEDIUM
    status: QueueStatus = QueueStatus.QUEUED
    required_steps: List[Step] = field(default_factory=list)
    origin_page_id: Optional[int] = None
    scenario_id: Optional[int] = None
    discovered_page_id: Optional[int] = None
    error_message: Optional[str] = None
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Page analysis
# ---------------------------------------------------------------------------

@dataclass
class InteractiveElement:
    """An element on a page that can be clicked, filled or selected."""
    element_type: str
    selector: str
    text_content: str = ""
    attributes: Dict[str, Any] = field(default_factory=dict)
    interaction_priority: str = "medium"
    identified_by: str = "unknown"
    self_healed: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InteractiveElement":
        attrs = data.get("attributes") or {}
        return cls(
            element_type=str(data.get("element_type") or data.get("type") or "element"),
            selector=str(data.get("selector") or ""),
            text_content=str(data.get("text_content") or data.get("text") or ""),
            attributes=attrs if isinstance(attrs, dict) else {},
            interaction_priority=str(data.get("interaction_priority") or data.get("priority") or "medium"),
            identified_by=str(data.get("identified_by") or "unknown"),
        )

    def attr(self, name: str) -> str:
        value = self.attributes.get(name)
        return str(value) if value is not None else ""


@dataclass
class PageAnalysis:
    """Result of element identification for one page."""
    screen_name: Optional[str] = None
    page_type: Optional[str] = None
    interactive_elements: List[InteractiveElement] = field(default_factory=list)


def coerce_analysis(raw: Any) -> PageAnalysis:
    """Normalise whatever the element identifier returned.

    A missing, non-list or partially malformed element list becomes a list of
    only the well-formed entries (possibly empty). Never raises.
    """
    if isinstance(raw, PageAnalysis):
        elements = raw.interactive_elements
        screen_name, page_type = raw.screen_name, raw.page_type
    elif isinstance(raw, dict):
        elements = raw.get("interactive_elements", raw.get("interactiveElements"))
        screen_name = raw.get("screen_name", raw.get("screenName"))
        page_type = raw.get("page_type", raw.get("pageType"))
    else:
        return PageAnalysis()

    if not isinstance(elements, list):
        if elements is not None:
            logger.warning(f"[IDENTIFY] interactive_elements is {type(elements).__name__}, expected list")
        elements = []

    coerced: List[InteractiveElement] = []
    for entry in elements:
        if isinstance(entry, InteractiveElement):
            coerced.append(entry)
        elif isinstance(entry, dict) and entry.get("selector"):
            coerced.append(InteractiveElement.from_dict(entry))

    return PageAnalysis(
        screen_name=screen_name if isinstance(screen_name, str) else None,
        page_type=page_type if isinstance(page_type, str) else None,
        interactive_elements=coerced,
    )


# ---------------------------------------------------------------------------
# Scenarios and failure adaptation
# ---------------------------------------------------------------------------

@dataclass
class ScenarioStep:
    action: str
    selector: str = ""
    element_type: str = ""
    text_content: str = ""
    value: Optional[str] = None
    expected_outcome: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScenarioStep":
        return cls(
            action=str(data.get("action") or "click"),
            selector=str(data.get("selector") or ""),
            element_type=str(data.get("element_type") or ""),
            text_content=str(data.get("text_content") or data.get("text") or ""),
            value=data.get("value"),
            expected_outcome=str(data.get("expected_outcome") or ""),
        )

    def as_element(self) -> InteractiveElement:
        return InteractiveElement(
            element_type=self.element_type or "element",
            selector=self.selector,
            text_content=self.text_content,
        )


@dataclass
class Scenario:
    name: str
    steps: List[ScenarioStep] = field(default_factory=list)
    description: str = ""
    priority: str = "medium"
    id: Optional[int] = None


@dataclass
class FailureAnalysis:
    can_achieve_intent: bool = False
    alternative_steps: List[ScenarioStep] = field(default_factory=list)
    diagnosis: str = ""


@dataclass
class IntentVerification:
    achieved: bool = False
    evidence: str = ""


# ---------------------------------------------------------------------------
# Progress stream
# ---------------------------------------------------------------------------

@dataclass
class ProgressEvent:
    run_id: str
    phase: RunPhase
    percentage: int = 0
    pages_discovered: int = 0
    max_pages: int = 0
    current_url: str = ""
    depth: int = 0
    message: str = ""
