from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen

from .config import NotebookConfig, expand_path
from .errors import CdpError, ProfileInUseError, SessionError
from .session_cdp import CdpConnection

logger = logging.getLogger("mcp.notebook.launcher")

# Chrome's wording when another process owns the user-data-dir.
PROFILE_IN_USE_PATTERNS = (
    re.compile(r"profile appears to be in use", re.IGNORECASE),
    re.compile(r"ProcessSingleton", re.IGNORECASE),
    re.compile(r"SingletonLock", re.IGNORECASE),
    re.compile(r"user data directory is already in use", re.IGNORECASE),
    re.compile(r"already in use", re.IGNORECASE),
    re.compile(r"Opening in existing browser session", re.IGNORECASE),
)


def looks_like_profile_in_use(text: str) -> bool:
    return any(p.search(text or "") for p in PROFILE_IN_USE_PATTERNS)


def profile_lock_owner(profile_path: str) -> int | None:
    """Return the pid holding the profile's SingletonLock when it is alive on this host."""
    lock = Path(profile_path) / "SingletonLock"
    try:
        target = os.readlink(lock)
    except OSError:
        return None
    host, _, pid_raw = target.rpartition("-")
    try:
        pid = int(pid_raw)
    except ValueError:
        return None
    if host and host != socket.gethostname():
        # Locked from another machine (shared home directory): treat as in use.
        return pid
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return None
    except PermissionError:
        return pid
    except OSError:
        return None
    return pid


def _http_get_json(url: str, timeout: float = 1.0) -> Any:
    req = Request(url, headers={"User-Agent": "mcp-notebook"})
    with urlopen(req, timeout=timeout) as resp:
        return json.loads(resp.read().decode())


def _tail_text(path: str | None, max_chars: int = 4000) -> str:
    if not path:
        return ""
    try:
        raw = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""
    return raw[-max_chars:]


@dataclass
class LaunchResult:
    command: list[str]
    port: int
    browser_ws_url: str
    log_path: str | None = None


class BrowserLauncher:
    """Owns one Chrome process bound to one user-data-dir."""

    def __init__(self, config: NotebookConfig, profile_path: str, *, headless: bool = True) -> None:
        self.config = config
        self.profile_path = expand_path(profile_path)
        self.headless = headless
        self.port = self.find_free_port()
        self.process: subprocess.Popen | None = None
        self.log_path: str | None = None

    @staticmethod
    def find_free_port() -> int:
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]

    def build_launch_command(self) -> list[str]:
        flags = [
            f"--remote-debugging-port={self.port}",
            f"--user-data-dir={self.profile_path}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-fre",
            "--disable-blink-features=AutomationControlled",
            "--disable-dev-shm-usage",
        ]
        if self.headless:
            flags.append("--headless=new")
        else:
            flags.append("--window-size=1280,900")
        flags.extend(self.config.extra_flags)
        flags.append("about:blank")
        return [self.config.binary_path, *flags]

    def _version(self, timeout: float = 0.5) -> dict[str, Any] | None:
        try:
            payload = _http_get_json(f"http://127.0.0.1:{self.port}/json/version", timeout=timeout)
        except (OSError, URLError, ValueError):
            return None
        return payload if isinstance(payload, dict) else None

    async def launch(self, timeout: float | None = None) -> LaunchResult:
        """Start Chrome and wait until its DevTools endpoint answers.

        Raises ProfileInUseError when another process owns the profile and
        SessionError for every other launch failure.
        """
        owner = profile_lock_owner(self.profile_path)
        if owner is not None:
            raise ProfileInUseError(
                component="launcher",
                action="launch",
                reason=f"Profile is already in use by process {owner}",
                details={"pid": owner},
            )

        cmd = self.build_launch_command()
        fd, self.log_path = tempfile.mkstemp(prefix="chrome_launch_", suffix=".log")
        try:
            with os.fdopen(fd, "ab", buffering=0) as log_fh:
                self.process = subprocess.Popen(
                    cmd,
                    stdout=log_fh,
                    stderr=log_fh,
                    stdin=subprocess.DEVNULL,
                    start_new_session=True,
                )
        except OSError as exc:
            self._discard_log()
            raise SessionError(
                component="launcher",
                action="launch",
                reason=f"Could not start browser: {exc}",
                suggestion="Set MCP_BROWSER_BINARY to a Chrome/Chromium executable",
            ) from exc

        deadline = time.monotonic() + (timeout if timeout is not None else self.config.launch_timeout)
        while time.monotonic() < deadline:
            version = await asyncio.to_thread(self._version)
            ws_url = version.get("webSocketDebuggerUrl") if version else None
            if ws_url:
                logger.info("browser ready port=%s profile=%s", self.port, self.profile_path)
                return LaunchResult(cmd, self.port, str(ws_url), log_path=self.log_path)
            if self.process.poll() is not None:
                break
            await asyncio.sleep(0.1)

        tail = _tail_text(self.log_path)
        exited = self.process.poll() is not None
        await self.stop()
        if looks_like_profile_in_use(tail):
            raise ProfileInUseError(
                component="launcher",
                action="launch",
                reason="Profile is already in use by another browser process",
                details={"logTail": tail[-400:]},
            )
        raise SessionError(
            component="launcher",
            action="launch",
            reason="Browser exited during startup" if exited else "Browser launch timed out",
            suggestion="Check the browser binary and profile directory",
            details={"logTail": tail[-400:]},
        )

    async def new_page_target(self, browser_ws_url: str, timeout: float = 10.0) -> tuple[str, str]:
        """Create a fresh tab and return (target_id, page websocket url)."""
        conn = await CdpConnection.connect(browser_ws_url, timeout=timeout)
        try:
            result = await conn.send("Target.createTarget", {"url": "about:blank"})
        finally:
            await conn.close()
        target_id = result.get("targetId")
        if not target_id:
            raise CdpError("Failed to create browser tab")

        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            try:
                targets = await asyncio.to_thread(_http_get_json, f"http://127.0.0.1:{self.port}/json/list")
            except (OSError, URLError, ValueError):
                targets = []
            for target in targets or []:
                if isinstance(target, dict) and target.get("id") == target_id and target.get("webSocketDebuggerUrl"):
                    return str(target_id), str(target["webSocketDebuggerUrl"])
            await asyncio.sleep(0.1)
        raise CdpError(f"Tab {target_id} has no debugger URL")

    async def stop(self, *, timeout: float = 3.0) -> None:
        """Best-effort stop of the launcher-owned Chrome process."""
        proc = self.process
        self.process = None
        if proc is not None and proc.poll() is None:
            with contextlib.suppress(OSError):
                proc.terminate()
            deadline = time.monotonic() + timeout
            while time.monotonic() < deadline and proc.poll() is None:
                await asyncio.sleep(0.05)
            if proc.poll() is None:
                # Escalate to kill.
                with contextlib.suppress(OSError):
                    proc.kill()
                with contextlib.suppress(subprocess.TimeoutExpired):
                    await asyncio.to_thread(proc.wait, 2.0)
        self._discard_log()

    def _discard_log(self) -> None:
        if self.log_path:
            with contextlib.suppress(OSError):
                os.unlink(self.log_path)
            self.log_path = None


__all__ = [
    "BrowserLauncher",
    "LaunchResult",
    "PROFILE_IN_USE_PATTERNS",
    "looks_like_profile_in_use",
    "profile_lock_owner",
]
