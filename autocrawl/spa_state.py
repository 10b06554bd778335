"""
SPA State Detector
==================
Structural snapshots of a page and classification of the delta between two
of them. Turns UI changes that never touch the URL (modals, revealed form
steps, swapped content panes) into graph nodes — "virtual pages".

Snapshot (visible elements only):
    - pathname + fragment, title
    - main-content signature (tag, first 5 classes, leading 200 chars, child count)
    - visible modal signatures
    - visible control counts: buttons, links, inputs, textareas, selects,
      forms, password fields, email fields
    - up to 20 visible form-field signatures (name / type / id / placeholder)
    - md5 over the canonical JSON of the above

Classification (ordered, first match wins):
    1. modal_opened         5. dynamic_fields       (field delta ≥ 2)
    2. modal_closed         6. login_form_appeared  (passwords 0 → >0)
    3. route_change         7. content_change       (main sig differs, child delta ≥ 2)
    4. hash_change          8. ui_change            (Σ|Δ controls| ≥ 3)
Below every threshold: ``has_changes=True, significant=False`` ("minor").
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeout

logger = logging.getLogger(__name__)

MAX_FIELD_SIGNATURES = 20
MAX_SIGNATURE_CLASSES = 5
MAX_SIGNATURE_TEXT = 200

FIELD_DELTA_THRESHOLD = 2
CHILD_DELTA_THRESHOLD = 2
UI_DELTA_THRESHOLD = 3

_UI_COUNT_KEYS = ("buttons", "inputs", "textareas", "selects", "forms")
_COUNT_KEYS = ("buttons", "links", "inputs", "textareas", "selects", "forms", "passwords", "emails")

# Runs in the page. Visibility: non-zero box, display/visibility, opacity > 0.1.
_CAPTURE_SCRIPT = """
() => {
    const isVisible = (el) => {
        if (!el) return false;
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) return false;
        const style = window.getComputedStyle(el);
        if (style.display === 'none' || style.visibility === 'hidden') return false;
        return parseFloat(style.opacity || '1') > 0.1;
    };
    const visible = (sel) => Array.from(document.querySelectorAll(sel)).filter(isVisible);
    const signature = (el) => el ? {
        tag: el.tagName,
        classes: Array.from(el.classList).slice(0, 5),
        text: (el.textContent || '').trim().substring(0, 200),
        children: el.children.length,
    } : null;

    const main = document.querySelector(
        'main, [role="main"], #main, .main, #content, .content, #app, #root, .app'
    ) || document.body;

    const modals = visible('[role="dialog"], [aria-modal="true"], .modal, .popup, [class*="modal"], [class*="dialog"]')
        .map(el => Object.assign(signature(el), {
            password: !!el.querySelector('input[type="password"]'),
        }));

    const fields = visible('input:not([type="hidden"]):not([disabled]), textarea, select')
        .slice(0, 20)
        .map(el => ({
            name: el.getAttribute('name') || '',
            type: (el.getAttribute('type') || el.tagName).toLowerCase(),
            id: el.id || '',
            placeholder: el.getAttribute('placeholder') || '',
        }));

    return {
        url: window.location.href,
        pathname: window.location.pathname,
        hash: window.location.hash,
        title: document.title,
        main: signature(main),
        modals: modals,
        counts: {
            buttons: visible('button:not([disabled]), [role="button"], input[type="submit"]').length,
            links: visible('a[href]').length,
            inputs: visible('input:not([type="hidden"]):not([disabled])').length,
            textareas: visible('textarea').length,
            selects: visible('select').length,
            forms: visible('form').length,
            passwords: visible('input[type="password"]').length,
            emails: visible('input[type="email"]').length,
        },
        fields: fields,
    };
}
"""


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

def _norm_signature(sig: Any) -> Dict[str, Any]:
    sig = sig if isinstance(sig, dict) else {}
    return {
        "tag": str(sig.get("tag") or ""),
        "classes": [str(c) for c in (sig.get("classes") or [])][:MAX_SIGNATURE_CLASSES],
        "text": str(sig.get("text") or "")[:MAX_SIGNATURE_TEXT],
        "children": int(sig.get("children") or 0),
    }


def _field_key(f: Dict[str, str]) -> str:
    return f.get("name") or f.get("id") or f.get("placeholder") or f.get("type") or "field"


@dataclass
class StateSnapshot:
    """Structural fingerprint of a page at one instant."""
    identifier: str
    url: str
    pathname: str
    hash: str
    title: str
    main: Dict[str, Any]
    modals: List[Dict[str, Any]]
    counts: Dict[str, int]
    fields: List[Dict[str, str]]
    state_hash: str = ""

    @classmethod
    def from_raw(cls, identifier: str, raw: Dict[str, Any]) -> "StateSnapshot":
        counts_raw = raw.get("counts") or {}
        modals = []
        for m in raw.get("modals") or []:
            sig = _norm_signature(m)
            sig["password"] = bool(isinstance(m, dict) and m.get("password"))
            modals.append(sig)
        fields = [
            {k: str((f or {}).get(k) or "") for k in ("name", "type", "id", "placeholder")}
            for f in (raw.get("fields") or [])[:MAX_FIELD_SIGNATURES]
        ]
        snap = cls(
            identifier=identifier,
            url=str(raw.get("url") or ""),
            pathname=str(raw.get("pathname") or ""),
            hash=str(raw.get("hash") or ""),
            title=str(raw.get("title") or ""),
            main=_norm_signature(raw.get("main")),
            modals=modals,
            counts={k: int(counts_raw.get(k) or 0) for k in _COUNT_KEYS},
            fields=fields,
        )
        snap.state_hash = snap.compute_hash()
        return snap

    def compute_hash(self) -> str:
        canonical = json.dumps(
            {
                "pathname": self.pathname,
                "hash": self.hash,
                "title": self.title,
                "main": self.main,
                "modals": self.modals,
                "counts": self.counts,
                "fields": self.fields,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.md5(canonical.encode("utf-8")).hexdigest()

    @property
    def modal_count(self) -> int:
        return len(self.modals)

    @property
    def field_count(self) -> int:
        return len(self.fields)


@dataclass
class VirtualPageCandidate:
    base_url: str
    state_identifier: str
    state_hash: str
    change_type: str
    triggered_by: str
    before_hash: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StateChange:
    has_changes: bool = False
    significant: bool = False
    change_type: Optional[str] = None
    description: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    virtual_page: Optional[VirtualPageCandidate] = None

    @property
    def new_fields(self) -> List[str]:
        return list(self.details.get("new_fields", []))


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class SPAStateDetector:
    """Captures and compares page snapshots. One instance per worker page."""

    def __init__(self):
        self._snapshots: Dict[str, StateSnapshot] = {}

    async def capture(self, page: Page, identifier: str) -> Optional[StateSnapshot]:
        """Snapshot the page; None if the page can't be evaluated."""
        try:
            raw = await page.evaluate(_CAPTURE_SCRIPT)
        except Exception as e:
            logger.warning(f"[SPA] Snapshot {identifier!r} failed: {e}")
            return None
        if not isinstance(raw, dict):
            return None
        snap = StateSnapshot.from_raw(identifier, raw)
        self._snapshots[identifier] = snap
        return snap

    def get(self, identifier: str) -> Optional[StateSnapshot]:
        return self._snapshots.get(identifier)

    def clear(self) -> None:
        self._snapshots.clear()

    @staticmethod
    def compare(before: StateSnapshot, after: StateSnapshot) -> StateChange:
        change = StateChange()
        if before.state_hash == after.state_hash:
            return change
        change.has_changes = True

        def significant(kind: str, description: str, **details) -> StateChange:
            change.significant = True
            change.change_type = kind
            change.description = description
            change.details.update(details)
            return change

        if not before.modals and after.modals:
            return significant(
                "modal_opened",
                f"Modal/dialog appeared ({after.modal_count} modal(s))",
                modal_count=after.modal_count,
                has_password_field=any(m.get("password") for m in after.modals)
                or after.counts["passwords"] > before.counts["passwords"],
            )
        if before.modals and not after.modals:
            return significant("modal_closed", "Modal/dialog closed")
        if before.pathname != after.pathname:
            return significant(
                "route_change",
                f"Route changed: {before.pathname} → {after.pathname}",
                from_route=before.pathname, to_route=after.pathname,
            )
        if before.hash != after.hash and after.hash:
            return significant(
                "hash_change",
                f"Hash changed: {before.hash} → {after.hash}",
                from_hash=before.hash, to_hash=after.hash,
            )

        field_delta = after.field_count - before.field_count
        if abs(field_delta) >= FIELD_DELTA_THRESHOLD:
            before_keys = {_field_key(f) for f in before.fields}
            new_fields = [_field_key(f) for f in after.fields if _field_key(f) not in before_keys]
            return significant(
                "dynamic_fields",
                f"Form fields changed: {before.field_count} → {after.field_count}",
                field_delta=field_delta, new_fields=new_fields,
            )

        if before.counts["passwords"] == 0 and after.counts["passwords"] > 0:
            return significant(
                "login_form_appeared",
                "Password field appeared",
                password_fields=after.counts["passwords"],
            )

        child_delta = after.main["children"] - before.main["children"]
        if before.main != after.main and abs(child_delta) >= CHILD_DELTA_THRESHOLD:
            return significant(
                "content_change",
                f"Main content changed ({child_delta:+d} children)",
                child_delta=child_delta,
            )

        ui_delta = sum(abs(after.counts[k] - before.counts[k]) for k in _UI_COUNT_KEYS)
        if ui_delta >= UI_DELTA_THRESHOLD:
            return significant(
                "ui_change",
                f"Interactive controls changed (Σ|Δ| = {ui_delta})",
                ui_delta=ui_delta,
            )

        change.description = "Minor change"
        return change

    async def detect_state_change(
        self,
        page: Page,
        before_identifier: str,
        after_identifier: str,
        action_description: str,
    ) -> StateChange:
        """Capture ``after`` and compare it to the stored ``before`` snapshot."""
        before = self._snapshots.get(before_identifier)
        after = await self.capture(page, after_identifier)
        if before is None or after is None:
            logger.debug("[SPA] Cannot compare — missing snapshot")
            return StateChange()

        change = self.compare(before, after)
        if change.significant:
            logger.info(f"[SPA] Significant change: {change.change_type} — {change.description}")
            change.virtual_page = VirtualPageCandidate(
                base_url=before.url,
                state_identifier=f"{change.change_type}_{after.state_hash[:8]}",
                state_hash=after.state_hash,
                change_type=change.change_type,
                triggered_by=action_description,
                before_hash=before.state_hash,
                details=dict(change.details),
            )
        return change

    @staticmethod
    async def wait_for_settlement(page: Page, timeout_ms: int = 3000, extra_ms: int = 500) -> None:
        """Network-idle or ``timeout_ms`` (whichever first), then ``extra_ms``."""
        if timeout_ms:
            try:
                await page.wait_for_load_state("networkidle", timeout=timeout_ms)
            except PlaywrightTimeout:
                pass
        if extra_ms:
            await asyncio.sleep(extra_ms / 1000)
