"""
Versioned description of the remote application's interaction surface.

Label variants and scope selectors live in affordances.json so that UI drift is
a data change. A deployment can point MCP_NOTEBOOK_AFFORDANCES at its own copy.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

DEFAULT_AFFORDANCES_PATH = Path(__file__).resolve().parent / "affordances.json"

REQUIRED_AFFORDANCES = (
    "question_input",
    "add_source",
    "dialog_overlay",
    "kind_pasted_text",
    "kind_websites",
    "payload_field_text",
    "payload_field_urls",
    "confirm",
    "create_repository",
    "answer_region",
    "thinking_indicator",
)


@dataclass(frozen=True)
class Affordance:
    name: str
    role: str
    selectors: tuple[str, ...]
    labels: tuple[str, ...] = ()
    match: str = "contains"
    scope: str | None = None
    aria_contains: tuple[str, ...] = ()


@dataclass(frozen=True)
class AffordanceSet:
    version: str
    entries: dict[str, Affordance]
    real_repository_pattern: str
    placeholder_repository_pattern: str
    sign_in_hosts: tuple[str, ...] = field(default_factory=tuple)

    def __getitem__(self, name: str) -> Affordance:
        return self.entries[name]

    def is_placeholder_repository(self, url: str) -> bool:
        return re.search(self.placeholder_repository_pattern, _path_of(url)) is not None

    def is_real_repository(self, url: str) -> bool:
        if self.is_placeholder_repository(url):
            return False
        return re.search(self.real_repository_pattern, _path_of(url)) is not None

    def is_sign_in(self, url: str) -> bool:
        host = (urlsplit(url or "").hostname or "").lower()
        return any(host == h or host.endswith("." + h) for h in self.sign_in_hosts)


def _path_of(url: str) -> str:
    return urlsplit(url or "").path or ""


def _as_tuple(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(str(item) for item in raw if isinstance(item, str) and item)


def parse_affordances(data: dict[str, Any]) -> AffordanceSet:
    raw_entries = data.get("affordances")
    if not isinstance(raw_entries, dict):
        raise ValueError("affordance data must contain an 'affordances' object")

    entries: dict[str, Affordance] = {}
    for name, entry in raw_entries.items():
        if not isinstance(entry, dict):
            raise ValueError(f"affordance {name!r} must be an object")
        selectors = _as_tuple(entry.get("selectors"))
        if not selectors:
            raise ValueError(f"affordance {name!r} has no selectors")
        match = str(entry.get("match") or "contains").lower()
        if match not in {"contains", "exact"}:
            raise ValueError(f"affordance {name!r} has unknown match mode {match!r}")
        entries[name] = Affordance(
            name=name,
            role=str(entry.get("role") or ""),
            selectors=selectors,
            labels=_as_tuple(entry.get("labels")),
            match=match,
            scope=entry.get("scope") or None,
            aria_contains=_as_tuple(entry.get("aria_contains")),
        )

    missing = [name for name in REQUIRED_AFFORDANCES if name not in entries]
    if missing:
        raise ValueError(f"affordance data is missing: {', '.join(missing)}")

    shapes = data.get("repository_url") or {}
    return AffordanceSet(
        version=str(data.get("version") or "unversioned"),
        entries=entries,
        real_repository_pattern=str(shapes.get("real") or r"/notebook/[^/]+/?$"),
        placeholder_repository_pattern=str(shapes.get("placeholder") or r"/notebook/creating/?$"),
        sign_in_hosts=_as_tuple(data.get("sign_in_hosts")),
    )


def load_affordances(path: str | Path | None = None) -> AffordanceSet:
    source = Path(path) if path else DEFAULT_AFFORDANCES_PATH
    data = json.loads(source.read_text(encoding="utf-8"))
    return parse_affordances(data)


__all__ = [
    "DEFAULT_AFFORDANCES_PATH",
    "REQUIRED_AFFORDANCES",
    "Affordance",
    "AffordanceSet",
    "load_affordances",
    "parse_affordances",
]
