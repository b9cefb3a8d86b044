from __future__ import annotations

import asyncio
from typing import Any

import pytest

from mcp_servers.notebook.affordances import load_affordances
from mcp_servers.notebook.browser_session import BrowserSession
from mcp_servers.notebook.errors import CdpError
from mcp_servers.notebook.locators import HANDLE_ATTR, ElementHandle

from notebook_fakes import FakeClock


class DummyConn:
    def __init__(self, values: list[Any] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.values = list(values or [])

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        self.calls.append((method, params))
        if method == "Runtime.evaluate":
            value = self.values.pop(0) if self.values else None
            if isinstance(value, dict) and "exceptionDetails" in value:
                return value
            if value is None:
                return {"result": {"type": "undefined"}}
            return {"result": {"type": "object", "value": value}}
        return {}

    def methods(self, name: str) -> list[dict[str, Any] | None]:
        return [params for method, params in self.calls if method == name]


def test_eval_js_maps_undefined_and_null_to_none() -> None:
    class NullConn(DummyConn):
        async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
            if method == "Runtime.evaluate":
                return {"result": {"type": "object", "subtype": "null"}}
            return {}

    assert asyncio.run(BrowserSession(DummyConn(), tab_id="t1").eval_js("undefined")) is None
    assert asyncio.run(BrowserSession(NullConn(), tab_id="t1").eval_js("null")) is None


def test_eval_js_requests_values_and_enables_runtime_once() -> None:
    conn = DummyConn([1, 2])
    session = BrowserSession(conn, tab_id="t1")

    async def _main() -> None:
        assert await session.eval_js("1") == 1
        assert await session.eval_js("2") == 2

    asyncio.run(_main())
    assert [m for m, _ in conn.calls].count("Runtime.enable") == 1
    params = conn.methods("Runtime.evaluate")[0] or {}
    assert params["returnByValue"] is True
    assert params["awaitPromise"] is True


def test_eval_js_exception_raises_cdp_error() -> None:
    conn = DummyConn([{"exceptionDetails": {"text": "Uncaught", "exception": {"description": "ReferenceError: x"}}}])
    with pytest.raises(CdpError, match="ReferenceError"):
        asyncio.run(BrowserSession(conn, tab_id="t1").eval_js("x"))


def test_locate_tags_the_element_with_a_handle() -> None:
    aff = load_affordances()["confirm"]
    conn = DummyConn([{"found": True, "label": "Insert", "bounds": {"x": 10, "y": 20, "width": 40, "height": 10}}])

    handle = asyncio.run(BrowserSession(conn, tab_id="t1").locate(aff))

    assert handle is not None
    assert handle.affordance == "confirm"
    assert handle.label == "Insert"
    assert handle.center() == (30.0, 25.0)
    expression = (conn.methods("Runtime.evaluate")[0] or {})["expression"]
    assert HANDLE_ATTR in expression
    assert '"Insert"' in expression


def test_wait_for_polls_through_the_clock() -> None:
    aff = load_affordances()["confirm"]
    clock = FakeClock()
    conn = DummyConn([{"found": False}, {"found": False}, {"found": True, "label": "Insert", "bounds": {}}])

    handle = asyncio.run(BrowserSession(conn, tab_id="t1", clock=clock).wait_for(aff, timeout=5.0))

    assert handle is not None
    assert clock.sleeps == [BrowserSession.POLL, BrowserSession.POLL]


def test_wait_for_returns_none_at_the_deadline() -> None:
    aff = load_affordances()["confirm"]
    clock = FakeClock()
    conn = DummyConn([{"found": False}] * 10)

    assert asyncio.run(BrowserSession(conn, tab_id="t1", clock=clock).wait_for(aff, timeout=1.0)) is None
    assert clock.now >= 1.0


def test_click_presses_and_releases_at_the_fresh_center() -> None:
    conn = DummyConn([{"x": 100, "y": 50, "width": 20, "height": 10}])
    handle = ElementHandle(handle="h1", affordance="confirm", bounds={"x": 0, "y": 0, "width": 1, "height": 1})

    asyncio.run(BrowserSession(conn, tab_id="t1").click(handle))

    events = conn.methods("Input.dispatchMouseEvent")
    assert [e["type"] for e in events] == ["mousePressed", "mouseReleased"]
    assert all((e["x"], e["y"]) == (110.0, 55.0) for e in events)


def test_fill_inserts_text_after_focusing() -> None:
    conn = DummyConn([True])
    asyncio.run(BrowserSession(conn, tab_id="t1").fill(ElementHandle(handle="h2", affordance="q"), "hello"))
    assert conn.methods("Input.insertText") == [{"text": "hello"}]


def test_fill_with_empty_text_clears_the_field() -> None:
    conn = DummyConn([True])
    asyncio.run(BrowserSession(conn, tab_id="t1").fill(ElementHandle(handle="h2", affordance="q"), ""))
    assert conn.methods("Input.insertText") == []
    assert [e["key"] for e in conn.methods("Input.dispatchKeyEvent")] == ["Delete", "Delete"]


def test_fill_raises_when_focus_fails() -> None:
    conn = DummyConn([False])
    with pytest.raises(CdpError):
        asyncio.run(BrowserSession(conn, tab_id="t1").fill(ElementHandle(handle="h2", affordance="q"), "x"))


def test_enter_key_carries_a_carriage_return() -> None:
    conn = DummyConn()
    asyncio.run(BrowserSession(conn, tab_id="t1").press_key("Enter"))
    down, up = conn.methods("Input.dispatchKeyEvent")
    assert down["type"] == "keyDown" and down["text"] == "\r"
    assert up["type"] == "keyUp" and "text" not in up


def test_set_cookies_skips_empty_lists() -> None:
    conn = DummyConn()
    asyncio.run(BrowserSession(conn, tab_id="t1").set_cookies([]))
    assert conn.calls == []


def test_locate_by_index_accepts_an_empty_zero_size_element() -> None:
    aff = load_affordances()["answer_region"]
    conn = DummyConn([{"found": True, "label": "", "bounds": {"x": 0, "y": 0, "width": 0, "height": 0}}])

    handle = asyncio.run(BrowserSession(conn, tab_id="t1").locate(aff, index=1))

    assert handle is not None
    assert handle.affordance == "answer_region"
    assert handle.bounds["height"] == 0
    expression = (conn.methods("Runtime.evaluate")[0] or {})["expression"]
    assert "const pickIndex = 1;" in expression
