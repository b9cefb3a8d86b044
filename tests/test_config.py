from __future__ import annotations

from pathlib import Path

import pytest

from mcp_servers.notebook import config as config_mod
from mcp_servers.notebook.config import DEFAULT_BASE_URL, NotebookConfig

ENV_VARS = [
    "MCP_BROWSER_BINARY",
    "MCP_BROWSER_FLAGS",
    "MCP_HEADLESS",
    "MCP_NOTEBOOK_BASE_URL",
    "MCP_NOTEBOOK_PROFILE",
    "MCP_NOTEBOOK_STATE_FILE",
    "MCP_NOTEBOOK_AFFORDANCES",
    "MCP_NOTEBOOK_STEP_TIMEOUT",
    "MCP_NOTEBOOK_QUERY_TIMEOUT",
    "MCP_NOTEBOOK_POLL_INTERVAL",
    "MCP_NOTEBOOK_STABLE_POLLS",
    "MCP_NOTEBOOK_RETRY_ATTEMPTS",
    "MCP_NOTEBOOK_RETRY_DELAY",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_mod, "default_data_dir", lambda: tmp_path / "data")


def test_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_BROWSER_BINARY", "/opt/chrome/chrome")
    cfg = NotebookConfig.from_env()

    assert cfg.binary_path == "/opt/chrome/chrome"
    assert cfg.base_url == DEFAULT_BASE_URL
    assert cfg.home_url == DEFAULT_BASE_URL + "/"
    assert cfg.profile_path == str(tmp_path / "data" / "chrome_profile")
    assert cfg.state_file == str(tmp_path / "data" / "browser_state" / "state.json")
    assert cfg.headless is True
    assert cfg.extra_flags == []
    assert cfg.affordances_path is None
    assert (cfg.step_timeout, cfg.query_timeout, cfg.poll_interval) == (30.0, 120.0, 1.0)
    assert (cfg.stable_polls, cfg.retry_attempts, cfg.retry_delay) == (3, 3, 2.5)


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_BROWSER_BINARY", "chromium")
    monkeypatch.setenv("MCP_BROWSER_FLAGS", "--lang=en, --disable-gpu ,")
    monkeypatch.setenv("MCP_HEADLESS", "0")
    monkeypatch.setenv("MCP_NOTEBOOK_BASE_URL", "https://nb.example.test/")
    monkeypatch.setenv("MCP_NOTEBOOK_PROFILE", str(tmp_path / "p"))
    monkeypatch.setenv("MCP_NOTEBOOK_STATE_FILE", str(tmp_path / "s.json"))
    monkeypatch.setenv("MCP_NOTEBOOK_AFFORDANCES", str(tmp_path / "a.json"))
    monkeypatch.setenv("MCP_NOTEBOOK_QUERY_TIMEOUT", "300")
    monkeypatch.setenv("MCP_NOTEBOOK_STABLE_POLLS", "5")
    monkeypatch.setenv("MCP_NOTEBOOK_RETRY_ATTEMPTS", "1")
    monkeypatch.setenv("MCP_NOTEBOOK_RETRY_DELAY", "0")

    cfg = NotebookConfig.from_env()

    assert cfg.extra_flags == ["--lang=en", "--disable-gpu"]
    assert cfg.headless is False
    assert cfg.base_url == "https://nb.example.test"
    assert cfg.home_url == "https://nb.example.test/"
    assert cfg.profile_path == str(tmp_path / "p")
    assert cfg.state_file == str(tmp_path / "s.json")
    assert cfg.affordances_path == str(tmp_path / "a.json")
    assert cfg.query_timeout == 300.0
    assert cfg.stable_polls == 5
    assert cfg.retry_attempts == 1
    assert cfg.retry_delay == 0.0


def test_invalid_numbers_fall_back_or_clamp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MCP_NOTEBOOK_STEP_TIMEOUT", "soon")
    monkeypatch.setenv("MCP_NOTEBOOK_POLL_INTERVAL", "0")
    monkeypatch.setenv("MCP_NOTEBOOK_STABLE_POLLS", "1")
    monkeypatch.setenv("MCP_NOTEBOOK_RETRY_ATTEMPTS", "-4")

    cfg = NotebookConfig.from_env()

    assert cfg.step_timeout == 30.0
    assert cfg.poll_interval == 0.05
    assert cfg.stable_polls == 2
    assert cfg.retry_attempts == 1


def test_binary_falls_back_to_path_lookup(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config_mod, "DEFAULT_BINARY_CANDIDATES", ["/nonexistent/chrome"])
    assert NotebookConfig.detect_binary() == "google-chrome"
