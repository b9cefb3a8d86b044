"""
Session acquisition on the durable authenticated browser profile.

The profile directory is shared with other automation processes. When it is
held by another browser, it is never touched in place: it is copied into a
disposable workspace (lock and temp markers excluded) and the session runs on
the copy. The copy is deleted when the session closes, on every exit path.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import logging
import os
import shutil
import tempfile
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager, suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .browser_session import BrowserSession
from .clock import Clock
from .config import NotebookConfig, expand_path
from .errors import CdpError, DriverError, ProfileInUseError, SessionError
from .launcher import BrowserLauncher
from .session_cdp import CdpConnection

logger = logging.getLogger("mcp.notebook.profile")

LOCK_MARKER_PATTERNS: tuple[str, ...] = (
    "Singleton*",
    "LOCK",
    "lockfile",
    "*.lock",
    "*.tmp",
    "*.temp",
    "~*",
    ".org.chromium.*",
    ".com.google.Chrome.*",
)

_SAME_SITE = {"strict": "Strict", "lax": "Lax", "none": "None"}


def is_lock_marker(name: str) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in LOCK_MARKER_PATTERNS)


@dataclass
class CloneResult:
    """Outcome of a best-effort profile copy."""

    path: str
    copied: int = 0
    skipped: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.warnings)


def clone_profile(source: str, dest: str) -> CloneResult:
    """Copy a profile file by file, skipping lock/temporary markers.

    Unreadable entries are recorded as warnings; the copy continues.
    """
    result = CloneResult(path=dest)
    src_root = Path(source)
    dst_root = Path(dest)
    dst_root.mkdir(parents=True, exist_ok=True)

    def _on_walk_error(exc: OSError) -> None:
        result.warnings.append(f"{exc.filename}: {exc.strerror or exc}")

    for dirpath, dirnames, filenames in os.walk(src_root, onerror=_on_walk_error):
        rel_dir = Path(dirpath).relative_to(src_root)
        kept_dirs = []
        for name in dirnames:
            if is_lock_marker(name):
                result.skipped.append(str(rel_dir / name))
            else:
                kept_dirs.append(name)
        dirnames[:] = kept_dirs

        target_dir = dst_root / rel_dir
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            result.warnings.append(f"{rel_dir}: {exc}")
            dirnames[:] = []
            continue

        for name in filenames:
            rel = rel_dir / name
            if is_lock_marker(name):
                result.skipped.append(str(rel))
                continue
            src_file = Path(dirpath) / name
            if src_file.is_symlink():
                result.skipped.append(str(rel))
                continue
            try:
                shutil.copy2(src_file, target_dir / name)
                result.copied += 1
            except OSError as exc:
                result.warnings.append(f"{rel}: {exc}")

    for warning in result.warnings:
        logger.warning("profile clone partial copy: %s", warning)
    logger.info(
        "profile cloned files=%d skipped=%d warnings=%d dest=%s",
        result.copied,
        len(result.skipped),
        len(result.warnings),
        dest,
    )
    return result


def load_storage_state(path: str | None) -> tuple[list[dict[str, Any]], dict[str, dict[str, str]]]:
    """Read an exported storage state file into CDP cookies and per-origin localStorage."""
    if not path or not Path(path).is_file():
        return [], {}
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        return [], {}

    cookies: list[dict[str, Any]] = []
    for raw in data.get("cookies") or []:
        if not isinstance(raw, dict) or not raw.get("name") or not raw.get("domain"):
            continue
        cookie: dict[str, Any] = {
            "name": str(raw["name"]),
            "value": str(raw.get("value") or ""),
            "domain": str(raw["domain"]),
            "path": str(raw.get("path") or "/"),
            "secure": bool(raw.get("secure")),
            "httpOnly": bool(raw.get("httpOnly")),
        }
        expires = raw.get("expires")
        if isinstance(expires, (int, float)) and expires > 0:
            cookie["expires"] = float(expires)
        same_site = _SAME_SITE.get(str(raw.get("sameSite") or "").lower())
        if same_site:
            cookie["sameSite"] = same_site
        cookies.append(cookie)

    storage: dict[str, dict[str, str]] = {}
    for origin in data.get("origins") or []:
        if not isinstance(origin, dict) or not origin.get("origin"):
            continue
        items = {
            str(item["name"]): str(item.get("value") or "")
            for item in origin.get("localStorage") or []
            if isinstance(item, dict) and item.get("name")
        }
        if items:
            storage[str(origin["origin"])] = items
    return cookies, storage


def local_storage_script(storage: dict[str, dict[str, str]]) -> str:
    return (
        "(() => {\n"
        f"  const storage = {json.dumps(storage)};\n"
        "  const items = storage[window.location.origin];\n"
        "  if (!items) return;\n"
        "  for (const [k, v] of Object.entries(items)) {\n"
        "    if (window.localStorage.getItem(k) === null) window.localStorage.setItem(k, v);\n"
        "  }\n"
        "})();"
    )


class AutomationSession:
    """An exclusively owned page session plus the resources backing it."""

    def __init__(
        self,
        *,
        identity_path: str,
        workspace_path: str,
        is_temporary: bool,
        page: BrowserSession,
        launcher: Any,
        clone: CloneResult | None = None,
    ) -> None:
        self.identity_path = identity_path
        self.workspace_path = workspace_path
        self.is_temporary = is_temporary
        self.page = page
        self.launcher = launcher
        self.clone = clone
        self.state = "open"

    @property
    def is_open(self) -> bool:
        return self.state == "open"

    async def close(self) -> None:
        """Close page, stop the browser and delete a temporary workspace. Idempotent."""
        if self.state == "closed":
            return
        self.state = "closed"
        try:
            with suppress(Exception):
                await self.page.close()
            with suppress(Exception):
                await self.launcher.stop()
        finally:
            if self.is_temporary:
                await asyncio.to_thread(_remove_workspace, self.workspace_path)


def _remove_workspace(path: str) -> None:
    shutil.rmtree(path, ignore_errors=True)
    if os.path.exists(path):
        logger.warning("temporary workspace not fully removed: %s", path)
    else:
        logger.info("temporary workspace removed: %s", path)


LauncherFactory = Callable[..., Any]
Connector = Callable[[str], Awaitable[Any]]


class SessionAcquirer:
    """Opens authenticated sessions, cloning the profile when it is contended."""

    def __init__(
        self,
        config: NotebookConfig,
        *,
        clock: Clock | None = None,
        launcher_factory: LauncherFactory | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config
        self.clock = clock or Clock()
        self.launcher_factory = launcher_factory or BrowserLauncher
        self.connector = connector or self._default_connector

    async def _default_connector(self, ws_url: str) -> CdpConnection:
        return await CdpConnection.connect(ws_url, timeout=self.config.step_timeout)

    @property
    def identity_path(self) -> str:
        return expand_path(self.config.profile_path)

    async def acquire(self, headless: bool | None = None) -> tuple[AutomationSession, bool]:
        """Open a session; returns (session, workspace_is_temporary)."""
        headless = self.config.headless if headless is None else headless
        identity = self.identity_path
        try:
            session = await self._open(identity, headless=headless, is_temporary=False)
            return session, False
        except ProfileInUseError as exc:
            logger.info("profile in use (%s); cloning into a temporary workspace", exc.reason)

        workspace = tempfile.mkdtemp(prefix="notebook_profile_")
        try:
            clone = await asyncio.to_thread(clone_profile, identity, workspace)
            session = await self._open(workspace, headless=headless, is_temporary=True, clone=clone)
        except ProfileInUseError as exc:
            await asyncio.to_thread(_remove_workspace, workspace)
            raise SessionError(
                component="session",
                action="acquire",
                reason="Cloned profile is also reported in use",
                suggestion="Close other browser automations and retry",
            ) from exc
        except Exception:
            await asyncio.to_thread(_remove_workspace, workspace)
            raise
        except BaseException:
            # cancelled: do not yield to the loop again
            _remove_workspace(workspace)
            raise
        return session, True

    @asynccontextmanager
    async def session(self, headless: bool | None = None) -> AsyncIterator[AutomationSession]:
        """Scoped acquisition: the session is closed even when the body raises."""
        session, _is_temporary = await self.acquire(headless)
        try:
            yield session
        finally:
            await session.close()

    async def _open(
        self,
        profile_path: str,
        *,
        headless: bool,
        is_temporary: bool,
        clone: CloneResult | None = None,
    ) -> AutomationSession:
        launcher = self.launcher_factory(self.config, profile_path, headless=headless)
        try:
            launched = await launcher.launch()
            _target_id, page_ws = await launcher.new_page_target(launched.browser_ws_url)
            conn = await self.connector(page_ws)
        except ProfileInUseError:
            raise
        except (DriverError, CdpError, OSError) as exc:
            with suppress(Exception):
                await launcher.stop()
            if isinstance(exc, SessionError):
                raise
            raise SessionError(
                component="session",
                action="open",
                reason=f"Could not open a browser session: {exc}",
                suggestion="Check the browser installation and profile directory",
            ) from exc
        except BaseException:
            with suppress(Exception):
                await launcher.stop()
            raise

        page = BrowserSession(conn, tab_id=str(_target_id), clock=self.clock)
        session = AutomationSession(
            identity_path=self.identity_path,
            workspace_path=profile_path,
            is_temporary=is_temporary,
            page=page,
            launcher=launcher,
            clone=clone,
        )
        try:
            await self._apply_storage_state(page)
        except BaseException:
            await session.close()
            raise
        return session

    async def _apply_storage_state(self, page: BrowserSession) -> None:
        try:
            cookies, storage = load_storage_state(self.config.state_file)
        except (OSError, ValueError) as exc:
            logger.warning("storage state unreadable (%s): %s", self.config.state_file, exc)
            return
        if not cookies and not storage:
            return
        try:
            await page.set_cookies(cookies)
            if storage:
                await page.add_init_script(local_storage_script(storage))
            logger.info("storage state injected cookies=%d origins=%d", len(cookies), len(storage))
        except CdpError as exc:
            logger.warning("storage state injection failed: %s", exc)


__all__ = [
    "LOCK_MARKER_PATTERNS",
    "AutomationSession",
    "CloneResult",
    "SessionAcquirer",
    "clone_profile",
    "is_lock_marker",
    "load_storage_state",
    "local_storage_script",
]
