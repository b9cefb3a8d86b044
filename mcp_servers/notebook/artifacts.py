"""
Requests the driver acts on, and adapters from the collaborators that feed them.

The codebase analyzer and the search collaborator live outside this package;
only their output shapes are consumed here.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlsplit, urlunsplit

# Result pages of the search provider cannot be fetched by the remote application.
DEFAULT_EXCLUDED_URL_HOSTS: tuple[str, ...] = ("duckduckgo.com",)

SUMMARY_LABEL = "Codebase Architecture Summary"
RESEARCH_LABEL = "RESEARCH UPDATE"
FEEDBACK_LABEL = "USER FEEDBACK"


@dataclass(frozen=True)
class RepositoryHandle:
    """Stable URL of a remote repository. Query string and fragment are dropped."""

    url: str

    def __post_init__(self) -> None:
        raw = (self.url or "").strip()
        if not raw:
            raise ValueError("repository url is required")
        parts = urlsplit(raw)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"repository url must be an absolute http(s) URL: {raw!r}")
        object.__setattr__(self, "url", urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")))

    @property
    def identifier(self) -> str:
        return urlsplit(self.url).path.rstrip("/").rsplit("/", 1)[-1]

    def __str__(self) -> str:
        return self.url


class ArtifactKind(str, Enum):
    PASTED_TEXT = "pasted-text"
    URL_LIST = "url-list"


@dataclass(frozen=True)
class KnowledgeArtifactRequest:
    kind: ArtifactKind
    payload: str | tuple[str, ...]
    label: str = ""
    repository: RepositoryHandle | None = None

    def __post_init__(self) -> None:
        kind = ArtifactKind(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind is ArtifactKind.URL_LIST:
            if isinstance(self.payload, str):
                raise TypeError("url-list payload must be a sequence of URLs")
            object.__setattr__(self, "payload", tuple(filter_urls(self.payload)))
        elif not str(self.payload).strip() and not (self.label or "").strip():
            raise ValueError("pasted-text needs a label or a body")

    @property
    def urls(self) -> tuple[str, ...]:
        if self.kind is not ArtifactKind.URL_LIST:
            return ()
        return tuple(self.payload)  # type: ignore[arg-type]

    @property
    def is_empty(self) -> bool:
        """Only a URL list can end up empty; a labelled blank text is still submitted."""
        return self.kind is ArtifactKind.URL_LIST and not self.urls

    def rendered_payload(self) -> str:
        """Text typed into the dialog's payload field."""
        if self.kind is ArtifactKind.URL_LIST:
            return "\n".join(self.urls)
        if self.label:
            return f"# {self.label}\n\n{self.payload}"
        return str(self.payload)


def is_excluded_url(url: str, excluded_hosts: Iterable[str] = DEFAULT_EXCLUDED_URL_HOSTS) -> bool:
    host = (urlsplit(url).hostname or "").lower()
    for raw in excluded_hosts:
        excluded = raw.strip().lower().lstrip(".")
        if excluded and (host == excluded or host.endswith("." + excluded)):
            return True
    return False


def filter_urls(urls: Iterable[str], excluded_hosts: Iterable[str] = DEFAULT_EXCLUDED_URL_HOSTS) -> list[str]:
    """Keep fetchable http(s) URLs, drop search-provider pages and duplicates (order kept)."""
    excluded = tuple(excluded_hosts)
    out: list[str] = []
    for raw in urls:
        url = (raw or "").strip()
        if not url or urlsplit(url).scheme not in ("http", "https"):
            continue
        if is_excluded_url(url, excluded) or url in out:
            continue
        out.append(url)
    return out


def text_artifact(label: str, body: str, repository: RepositoryHandle | None = None) -> KnowledgeArtifactRequest:
    return KnowledgeArtifactRequest(ArtifactKind.PASTED_TEXT, str(body), label=label, repository=repository)


def url_artifact(
    urls: Iterable[str],
    repository: RepositoryHandle | None = None,
    *,
    excluded_hosts: Iterable[str] = DEFAULT_EXCLUDED_URL_HOSTS,
) -> KnowledgeArtifactRequest:
    return KnowledgeArtifactRequest(
        ArtifactKind.URL_LIST,
        tuple(filter_urls(urls, excluded_hosts)),
        repository=repository,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Collaborator adapters
# ─────────────────────────────────────────────────────────────────────────────


def urls_from_search(
    results: Iterable[Mapping[str, Any]],
    excluded_hosts: Iterable[str] = DEFAULT_EXCLUDED_URL_HOSTS,
) -> list[str]:
    """Flatten [{topic, results: [{url, title, description}]}] into fetchable URLs."""
    flat: list[str] = []
    for topic in results:
        for item in topic.get("results") or []:
            if isinstance(item, Mapping) and isinstance(item.get("url"), str):
                flat.append(item["url"])
    return filter_urls(flat, excluded_hosts)


def search_artifact(
    results: Iterable[Mapping[str, Any]],
    repository: RepositoryHandle | None = None,
    *,
    excluded_hosts: Iterable[str] = DEFAULT_EXCLUDED_URL_HOSTS,
) -> KnowledgeArtifactRequest:
    return KnowledgeArtifactRequest(
        ArtifactKind.URL_LIST,
        tuple(urls_from_search(results, excluded_hosts)),
        repository=repository,
    )


@dataclass(frozen=True)
class CodebaseAnalysis:
    """Output of the external codebase analyzer."""

    project_name: str
    summary_text: str
    file_count: int = 0
    tech_stack: tuple[str, ...] = field(default_factory=tuple)
    research_queries: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> CodebaseAnalysis:
        return cls(
            project_name=str(data.get("projectName") or data.get("project_name") or ""),
            summary_text=str(data.get("summaryText") or data.get("summary") or ""),
            file_count=int(data.get("fileCount") or data.get("file_count") or 0),
            tech_stack=tuple(str(t) for t in data.get("techStack") or data.get("tech_stack") or ()),
            research_queries=tuple(str(q) for q in data.get("researchQueries") or data.get("research_queries") or ()),
        )


def summary_artifact(analysis: CodebaseAnalysis, repository: RepositoryHandle | None = None) -> KnowledgeArtifactRequest:
    lines = [f"**Project**: {analysis.project_name}"] if analysis.project_name else []
    lines.append(f"**Files analyzed**: {analysis.file_count}")
    lines.append(f"**Tech stack**: {', '.join(analysis.tech_stack) or 'Not detected'}")
    body = "\n".join(lines) + "\n\n" + analysis.summary_text.strip()
    return text_artifact(SUMMARY_LABEL, body, repository)


def research_digest(results: Iterable[Mapping[str, Any]], project_name: str | None = None) -> str:
    parts: list[str] = []
    if project_name:
        parts.append(f"**Project**: {project_name}\n")
    for topic in results:
        parts.append(f"### {topic.get('topic') or 'Untitled topic'}")
        for item in topic.get("results") or []:
            if not isinstance(item, Mapping):
                continue
            parts.append(f"- **[{item.get('title') or item.get('url')}]({item.get('url')})**")
            if item.get("description"):
                parts.append(f"  {item['description']}")
        parts.append("")
    return "\n".join(parts)


def research_digest_artifact(
    results: Iterable[Mapping[str, Any]],
    repository: RepositoryHandle | None = None,
    project_name: str | None = None,
) -> KnowledgeArtifactRequest:
    return text_artifact(RESEARCH_LABEL, research_digest(list(results), project_name), repository)


def feedback_artifact(note: str, repository: RepositoryHandle | None = None, *, source: str = "") -> KnowledgeArtifactRequest:
    body = note.strip()
    if source:
        body = f"**Source**: {source}\n\n{body}"
    return text_artifact(FEEDBACK_LABEL, body, repository)


__all__ = [
    "DEFAULT_EXCLUDED_URL_HOSTS",
    "FEEDBACK_LABEL",
    "RESEARCH_LABEL",
    "SUMMARY_LABEL",
    "ArtifactKind",
    "CodebaseAnalysis",
    "KnowledgeArtifactRequest",
    "RepositoryHandle",
    "feedback_artifact",
    "filter_urls",
    "is_excluded_url",
    "research_digest",
    "research_digest_artifact",
    "search_artifact",
    "summary_artifact",
    "text_artifact",
    "url_artifact",
    "urls_from_search",
]
