"""
Role/label based element location.

Builds the JavaScript used to find an affordance on the page by its visible
text, aria-label or placeholder (never by position), plus small helpers that
act on an element previously tagged by a locate call.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from .affordances import Affordance

HANDLE_ATTR = "data-nbd-handle"

# Shared prelude: open shadow-root traversal, visibility and label helpers.
_PRELUDE = r"""
const collectRoots = (start) => {
    const roots = [start];
    const queue = [start];
    while (queue.length && roots.length < 60) {
        const root = queue.shift();
        if (!root || !root.querySelectorAll) continue;
        for (const el of root.querySelectorAll('*')) {
            if (el.shadowRoot && !roots.includes(el.shadowRoot)) {
                roots.push(el.shadowRoot);
                queue.push(el.shadowRoot);
            }
        }
    }
    return roots;
};
const queryAll = (selectors, scope) => {
    const out = [];
    const starts = [];
    if (scope) {
        for (const root of collectRoots(document)) {
            for (const s of root.querySelectorAll(scope)) starts.push(s);
        }
    } else {
        starts.push(document);
    }
    for (const start of starts) {
        for (const root of collectRoots(start)) {
            for (const sel of selectors) {
                let found = [];
                try { found = root.querySelectorAll(sel); } catch (e) { found = []; }
                for (const el of found) if (!out.includes(el)) out.push(el);
            }
        }
    }
    return out;
};
const isVisible = (el) => {
    if (!el || !el.getBoundingClientRect) return false;
    const r = el.getBoundingClientRect();
    if (r.width <= 0 || r.height <= 0) return false;
    const st = window.getComputedStyle(el);
    return st.visibility !== 'hidden' && st.display !== 'none' && st.opacity !== '0';
};
const norm = (s) => String(s || '').replace(/\s+/g, ' ').trim().toLowerCase();
const labelMatches = (el, labels, mode, ariaContains) => {
    if (!labels.length && !ariaContains.length) return '';
    const text = norm(el.innerText || el.textContent);
    const aria = norm(el.getAttribute && el.getAttribute('aria-label'));
    const placeholder = norm(el.getAttribute && el.getAttribute('placeholder'));
    for (const raw of labels) {
        const want = norm(raw);
        if (mode === 'exact') {
            if (text === want || aria === want || placeholder === want) return raw;
        } else if (text.includes(want) || aria.includes(want) || placeholder.includes(want)) {
            return raw;
        }
    }
    for (const raw of ariaContains) {
        if (aria.includes(norm(raw))) return raw;
    }
    return null;
};
"""


@dataclass(frozen=True)
class ElementHandle:
    """A located element, tagged in the DOM with a unique handle id."""

    handle: str
    affordance: str
    label: str = ""
    bounds: dict[str, float] = field(default_factory=dict)

    @property
    def selector(self) -> str:
        return f'[{HANDLE_ATTR}="{self.handle}"]'

    def center(self) -> tuple[float, float]:
        x = float(self.bounds.get("x", 0.0)) + float(self.bounds.get("width", 0.0)) / 2
        y = float(self.bounds.get("y", 0.0)) + float(self.bounds.get("height", 0.0)) / 2
        return x, y


def _affordance_args(affordance: Affordance) -> str:
    return (
        f"const selectors = {json.dumps(list(affordance.selectors))};\n"
        f"const scope = {json.dumps(affordance.scope)};\n"
        f"const labels = {json.dumps(list(affordance.labels))};\n"
        f"const mode = {json.dumps(affordance.match)};\n"
        f"const ariaContains = {json.dumps(list(affordance.aria_contains))};\n"
    )


def build_locate_js(
    affordance: Affordance, handle: str, *, last: bool = False, index: int | None = None
) -> str:
    """
    Find the first (or last) visible element matching the affordance and tag it.

    With `index`, tag the element at that position of the unfiltered candidate
    list instead, the same list build_count_js() counts. Such an element may
    still be empty or zero-size.
    """
    return f"""
(() => {{
{_PRELUDE}
{_affordance_args(affordance)}
    const pickIndex = {json.dumps(index)};
    if (pickIndex !== null) {{
        const all = queryAll(selectors, scope);
        const el = all[pickIndex];
        if (!el) return {{found: false, candidates: all.length}};
        el.setAttribute({json.dumps(HANDLE_ATTR)}, {json.dumps(handle)});
        const r = el.getBoundingClientRect();
        return {{found: true, label: "", bounds: {{x: r.x, y: r.y, width: r.width, height: r.height}}}};
    }}
    const pickLast = {json.dumps(bool(last))};
    const candidates = queryAll(selectors, scope).filter(isVisible);
    const ordered = pickLast ? candidates.slice().reverse() : candidates;
    for (const el of ordered) {{
        const matched = labelMatches(el, labels, mode, ariaContains);
        if (matched === null) continue;
        try {{ el.scrollIntoView({{block: 'center', inline: 'center'}}); }} catch (e) {{}}
        el.setAttribute({json.dumps(HANDLE_ATTR)}, {json.dumps(handle)});
        const r = el.getBoundingClientRect();
        return {{found: true, label: matched, bounds: {{x: r.x, y: r.y, width: r.width, height: r.height}}}};
    }}
    return {{found: false, candidates: candidates.length}};
}})()
"""


def build_count_js(affordance: Affordance) -> str:
    """Count matching elements (visible or not) for the affordance."""
    return f"""
(() => {{
{_PRELUDE}
{_affordance_args(affordance)}
    return queryAll(selectors, scope).length;
}})()
"""


def build_present_js(affordance: Affordance) -> str:
    """True when at least one visible, label-matching element exists."""
    return f"""
(() => {{
{_PRELUDE}
{_affordance_args(affordance)}
    return queryAll(selectors, scope).filter(isVisible)
        .some((el) => labelMatches(el, labels, mode, ariaContains) !== null);
}})()
"""


def build_text_js(handle: ElementHandle) -> str:
    return f"""
(() => {{
    const el = document.querySelector({json.dumps(handle.selector)});
    if (!el) return null;
    return String(el.innerText || el.textContent || '').trim();
}})()
"""


def build_focus_js(handle: ElementHandle) -> str:
    """Focus an editable element and select its current content."""
    return f"""
(() => {{
    const el = document.querySelector({json.dumps(handle.selector)});
    if (!el) return false;
    el.focus();
    if (typeof el.select === 'function') el.select();
    return document.activeElement === el;
}})()
"""


def parse_locate_result(result: Any, affordance: Affordance, handle: str) -> ElementHandle | None:
    if not isinstance(result, dict) or not result.get("found"):
        return None
    bounds = result.get("bounds")
    return ElementHandle(
        handle=handle,
        affordance=affordance.name,
        label=str(result.get("label") or ""),
        bounds=bounds if isinstance(bounds, dict) else {},
    )


__all__ = [
    "HANDLE_ATTR",
    "ElementHandle",
    "build_count_js",
    "build_focus_js",
    "build_locate_js",
    "build_present_js",
    "build_text_js",
    "parse_locate_result",
]
