from __future__ import annotations

import itertools
import json
import logging
from dataclasses import replace
from typing import Any

from .affordances import Affordance
from .clock import Clock
from .errors import CdpError
from .locators import (
    ElementHandle,
    build_count_js,
    build_focus_js,
    build_locate_js,
    build_present_js,
    build_text_js,
    parse_locate_result,
)
from .session_cdp import CdpConnection

logger = logging.getLogger("mcp.notebook.session")

_handle_ids = itertools.count(1)


class BrowserSession:
    """
    High-level page session for one tab.

    Wraps CdpConnection with the handful of page operations the driver needs.
    Element waits poll through the injected clock.
    """

    POLL = 0.25

    def __init__(self, connection: CdpConnection, tab_id: str, clock: Clock | None = None) -> None:
        self.conn = connection
        self.tab_id = tab_id
        self.clock = clock or Clock()
        self._page_enabled = False
        self._runtime_enabled = False
        self._network_enabled = False

    async def enable_domains(self, *, page: bool = False, runtime: bool = False, network: bool = False) -> None:
        """Enable CDP domains once per session."""
        if page and not self._page_enabled:
            await self.conn.send("Page.enable")
            self._page_enabled = True
        if runtime and not self._runtime_enabled:
            await self.conn.send("Runtime.enable")
            self._runtime_enabled = True
        if network and not self._network_enabled:
            await self.conn.send("Network.enable")
            self._network_enabled = True

    async def close(self) -> None:
        await self.conn.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def navigate(self, url: str, timeout: float = 30.0) -> bool:
        """Navigate and wait for DOMContentLoaded. Returns False if the event never fired."""
        logger.debug("navigate tab=%s url=%s", self.tab_id, url)
        await self.enable_domains(page=True)
        self.conn.clear_events("Page.domContentEventFired")
        result = await self.conn.send("Page.navigate", {"url": url})
        error_text = result.get("errorText") if isinstance(result, dict) else None
        if error_text:
            raise CdpError(f"Navigation to {url} failed: {error_text}")
        event = await self.conn.wait_for_event("Page.domContentEventFired", timeout=timeout)
        return event is not None

    async def current_url(self) -> str:
        return await self.eval_js("window.location.href") or ""

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript
    # ─────────────────────────────────────────────────────────────────────────

    async def eval_js(self, expression: str) -> Any:
        """Evaluate JavaScript and return its value (undefined/null map to None)."""
        await self.enable_domains(runtime=True)
        result = await self.conn.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        details = result.get("exceptionDetails")
        if isinstance(details, dict):
            exc = details.get("exception") or {}
            raise CdpError(f"JavaScript error: {exc.get('description') or details.get('text') or 'unknown'}")
        value = result.get("result")
        if not isinstance(value, dict):
            return None
        if value.get("type") == "undefined":
            return None
        if value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value")

    # ─────────────────────────────────────────────────────────────────────────
    # Affordances
    # ─────────────────────────────────────────────────────────────────────────

    async def locate(
        self, affordance: Affordance, *, last: bool = False, index: int | None = None
    ) -> ElementHandle | None:
        handle = f"h{next(_handle_ids)}"
        result = await self.eval_js(build_locate_js(affordance, handle, last=last, index=index))
        return parse_locate_result(result, affordance, handle)

    async def is_present(self, affordance: Affordance) -> bool:
        return bool(await self.eval_js(build_present_js(affordance)))

    async def count(self, affordance: Affordance) -> int:
        value = await self.eval_js(build_count_js(affordance))
        return int(value) if isinstance(value, (int, float)) else 0

    async def wait_for(
        self, affordance: Affordance, timeout: float, *, last: bool = False
    ) -> ElementHandle | None:
        """Poll until the affordance is visible, or return None at the deadline."""
        deadline = self.clock.deadline(timeout)
        while True:
            found = await self.locate(affordance, last=last)
            if found is not None:
                return found
            if self.clock.remaining(deadline) <= 0:
                return None
            await self.clock.sleep(self.POLL)

    async def wait_for_gone(self, affordance: Affordance, timeout: float) -> bool:
        deadline = self.clock.deadline(timeout)
        while True:
            if not await self.is_present(affordance):
                return True
            if self.clock.remaining(deadline) <= 0:
                return False
            await self.clock.sleep(self.POLL)

    async def read_text(self, handle: ElementHandle) -> str | None:
        value = await self.eval_js(build_text_js(handle))
        return value if isinstance(value, str) else None

    # ─────────────────────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────────────────────

    async def _fresh_bounds(self, handle: ElementHandle) -> dict[str, float]:
        js = f"""
(() => {{
    const el = document.querySelector({json.dumps(handle.selector)});
    if (!el) return null;
    const r = el.getBoundingClientRect();
    return {{x: r.x, y: r.y, width: r.width, height: r.height}};
}})()
"""
        bounds = await self.eval_js(js)
        return bounds if isinstance(bounds, dict) else dict(handle.bounds)

    async def click(self, handle: ElementHandle) -> None:
        """Click the element's center with a real mouse press/release."""
        # Layout may have moved since locate(); re-measure before clicking.
        x, y = replace(handle, bounds=await self._fresh_bounds(handle)).center()
        for event_type in ("mousePressed", "mouseReleased"):
            await self.conn.send(
                "Input.dispatchMouseEvent",
                {"type": event_type, "x": x, "y": y, "button": "left", "clickCount": 1},
            )

    async def fill(self, handle: ElementHandle, text: str) -> None:
        """Replace an editable element's content with text."""
        focused = await self.eval_js(build_focus_js(handle))
        if not focused:
            raise CdpError(f"Could not focus {handle.affordance}")
        if text:
            await self.conn.send("Input.insertText", {"text": text})
        else:
            await self.press_key("Delete")

    async def press_key(self, key: str) -> None:
        key_codes = {"Enter": 13, "Tab": 9, "Escape": 27, "Backspace": 8, "Delete": 46}
        code = key_codes.get(key, 0)
        for event_type in ("keyDown", "keyUp"):
            params: dict[str, Any] = {
                "type": event_type,
                "key": key,
                "code": key,
                "windowsVirtualKeyCode": code,
            }
            if event_type == "keyDown" and key == "Enter":
                params["text"] = "\r"
            await self.conn.send("Input.dispatchKeyEvent", params)

    # ─────────────────────────────────────────────────────────────────────────
    # Identity state
    # ─────────────────────────────────────────────────────────────────────────

    async def set_cookies(self, cookies: list[dict[str, Any]]) -> None:
        if not cookies:
            return
        await self.enable_domains(network=True)
        await self.conn.send("Network.setCookies", {"cookies": cookies})

    async def add_init_script(self, source: str) -> None:
        await self.enable_domains(page=True)
        await self.conn.send("Page.addScriptToEvaluateOnNewDocument", {"source": source})


__all__ = ["BrowserSession"]
