from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BINARY_CANDIDATES: list[str] = [
    # Chromium first; the snap build is last because it ignores --user-data-dir.
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/local/bin/chromium",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    "/snap/bin/chromium",
]

DEFAULT_BASE_URL = "https://notebooklm.google.com"


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def default_data_dir() -> Path:
    """Per-platform data directory shared with the external auth tool."""
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Application Support" / "notebooklm-mcp"
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA") or home) / "notebooklm-mcp"
    return home / ".local" / "share" / "notebooklm-mcp"


def default_profile_dir() -> str:
    return str(default_data_dir() / "chrome_profile")


def default_state_file() -> str:
    return str(default_data_dir() / "browser_state" / "state.json")


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


@dataclass
class NotebookConfig:
    binary_path: str
    profile_path: str
    base_url: str = DEFAULT_BASE_URL
    state_file: str | None = None
    headless: bool = True
    extra_flags: list[str] = field(default_factory=list)
    affordances_path: str | None = None

    # Deadlines and delays (seconds).
    step_timeout: float = 30.0
    query_timeout: float = 120.0
    launch_timeout: float = 15.0
    poll_interval: float = 1.0
    stable_polls: int = 3
    thinking_grace: float = 3.0
    settle_delay: float = 1.0
    home_settle_delay: float = 3.0
    post_submit_delay: float = 2.0
    creation_poll_interval: float = 0.5

    retry_attempts: int = 3
    retry_delay: float = 2.5

    @classmethod
    def detect_binary(cls) -> str:
        env_path = os.environ.get("MCP_BROWSER_BINARY")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        return "google-chrome"

    @classmethod
    def from_env(cls) -> NotebookConfig:
        profile = expand_path(os.environ.get("MCP_NOTEBOOK_PROFILE") or default_profile_dir())
        state_raw = os.environ.get("MCP_NOTEBOOK_STATE_FILE")
        state_file = expand_path(state_raw) if state_raw else default_state_file()
        flags_raw = os.environ.get("MCP_BROWSER_FLAGS", "")
        extra_flags = [flag.strip() for flag in flags_raw.split(",") if flag.strip()]
        affordances_raw = os.environ.get("MCP_NOTEBOOK_AFFORDANCES")
        base_url = (os.environ.get("MCP_NOTEBOOK_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        return cls(
            binary_path=cls.detect_binary(),
            profile_path=profile,
            base_url=base_url,
            state_file=state_file,
            headless=os.environ.get("MCP_HEADLESS", "1") != "0",
            extra_flags=extra_flags,
            affordances_path=expand_path(affordances_raw) if affordances_raw else None,
            step_timeout=_env_float("MCP_NOTEBOOK_STEP_TIMEOUT", 30.0, minimum=1.0),
            query_timeout=_env_float("MCP_NOTEBOOK_QUERY_TIMEOUT", 120.0, minimum=1.0),
            poll_interval=_env_float("MCP_NOTEBOOK_POLL_INTERVAL", 1.0, minimum=0.05),
            stable_polls=_env_int("MCP_NOTEBOOK_STABLE_POLLS", 3, minimum=2),
            retry_attempts=_env_int("MCP_NOTEBOOK_RETRY_ATTEMPTS", 3),
            retry_delay=_env_float("MCP_NOTEBOOK_RETRY_DELAY", 2.5),
        )

    @property
    def home_url(self) -> str:
        return self.base_url.rstrip("/") + "/"
