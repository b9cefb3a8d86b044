"""Async DevTools protocol connection over a websocket."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import suppress
from typing import Any

import websockets

from .errors import CdpError

logger = logging.getLogger("mcp.notebook.cdp")


class CdpConnection:
    """Low-level CDP WebSocket connection.

    Commands are issued one at a time; events that arrive while waiting for a
    reply are queued (bounded) so later waits can still observe them.
    """

    def __init__(self, ws: Any, ws_url: str = "", timeout: float = 10.0) -> None:
        self.ws = ws
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        self._event_queue: list[dict[str, Any]] = []
        self._max_event_queue = 2000
        self._closed = False

    @classmethod
    async def connect(cls, ws_url: str, timeout: float = 10.0) -> CdpConnection:
        try:
            ws = await asyncio.wait_for(
                websockets.connect(ws_url, max_size=None, ping_interval=None),
                timeout=timeout,
            )
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
            raise CdpError(f"CDP connect failed for {ws_url}: {exc}") from exc
        return cls(ws, ws_url=ws_url, timeout=timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    def _push_event(self, event: dict[str, Any]) -> None:
        self._event_queue.append(event)
        if len(self._event_queue) > self._max_event_queue:
            # Drop oldest events to avoid unbounded growth in long sessions.
            del self._event_queue[: len(self._event_queue) - self._max_event_queue]

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest queued event params for the given event name."""
        for i, ev in enumerate(self._event_queue):
            if ev.get("method") == event_name:
                self._event_queue.pop(i)
                params = ev.get("params")
                return params if isinstance(params, dict) else {}
        return None

    def clear_events(self, event_name: str | None = None) -> None:
        if event_name is None:
            self._event_queue.clear()
            return
        self._event_queue = [ev for ev in self._event_queue if ev.get("method") != event_name]

    async def _recv_message(self, timeout: float) -> dict[str, Any] | None:
        """Receive one decoded message; None on timeout or undecodable frame."""
        try:
            raw = await asyncio.wait_for(self.ws.recv(), timeout=timeout)
        except asyncio.TimeoutError:
            return None
        except websockets.WebSocketException as exc:
            raise CdpError(f"CDP connection closed: {exc}") from exc
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            return None
        return data if isinstance(data, dict) else None

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send CDP command and wait for its response."""
        if self._closed:
            raise CdpError(f"CDP connection is closed ({method})")
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params
        try:
            await self.ws.send(json.dumps(msg))
        except websockets.WebSocketException as exc:
            raise CdpError(str(exc)) from exc
        return await self._recv_until(msg_id, method)

    async def _recv_until(self, expected_id: int, method: str) -> dict[str, Any]:
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise CdpError(f"CDP response timed out ({method})")
            data = await self._recv_message(min(0.5, remaining))
            if data is None:
                continue

            # CDP event: store and keep waiting for the command response.
            if isinstance(data.get("method"), str) and "id" not in data:
                self._push_event(data)
                continue

            if data.get("id") == expected_id:
                if "error" in data:
                    raise CdpError(f"{method}: {data['error']}")
                result = data.get("result")
                return result if isinstance(result, dict) else {}

    async def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        """Wait for a specific CDP event, consuming the queue first."""
        queued = self.pop_event(event_name)
        if queued is not None:
            return queued

        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            data = await self._recv_message(min(0.5, remaining))
            if data is None:
                continue
            if isinstance(data.get("method"), str) and "id" not in data:
                if data.get("method") == event_name:
                    params = data.get("params")
                    return params if isinstance(params, dict) else {}
                self._push_event(data)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        with suppress(Exception):
            await asyncio.wait_for(self.ws.close(), timeout=2.0)


__all__ = ["CdpConnection"]
