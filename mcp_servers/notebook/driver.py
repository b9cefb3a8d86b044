"""
Caller surface of the notebook automation driver.

Each operation runs one full session cycle (acquire, act, release) and either
returns its result or raises OperationFailed. Calls are never run concurrently
against the same identity; `add_artifacts` runs its requests one by one.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .affordances import AffordanceSet, load_affordances
from .artifacts import KnowledgeArtifactRequest, RepositoryHandle
from .clock import Clock
from .config import NotebookConfig
from .dialog import DialogController
from .navigator import PageNavigator
from .profile import SessionAcquirer
from .query import QueryEngine, QueryRequest, QueryResponse
from .repository import RepositoryCreator
from .retry import RetryOrchestrator, RetryPolicy

logger = logging.getLogger("mcp.notebook.driver")


def _as_handle(repository: RepositoryHandle | str) -> RepositoryHandle:
    return repository if isinstance(repository, RepositoryHandle) else RepositoryHandle(str(repository))


class NotebookDriver:
    def __init__(
        self,
        config: NotebookConfig | None = None,
        *,
        acquirer: SessionAcquirer | None = None,
        affordances: AffordanceSet | None = None,
        clock: Clock | None = None,
        headless: bool | None = None,
        retry_artifacts: bool = True,
    ) -> None:
        self.config = config or NotebookConfig.from_env()
        self.clock = clock or Clock()
        self.affordances = affordances or load_affordances(self.config.affordances_path)
        self.acquirer = acquirer or SessionAcquirer(self.config, clock=self.clock)
        self.headless = headless
        self.retry_artifacts = retry_artifacts

        self.navigator = PageNavigator(self.config, self.affordances, self.clock)
        self.dialogs = DialogController(self.config, self.affordances, self.navigator, self.clock)
        self.creator = RepositoryCreator(self.config, self.affordances, self.navigator, self.clock)
        self.queries = QueryEngine(self.config, self.affordances, self.navigator, self.clock)
        self.retry = RetryOrchestrator(
            RetryPolicy(max_attempts=self.config.retry_attempts, delay=self.config.retry_delay),
            self.clock,
        )

    async def create_repository(self) -> RepositoryHandle:
        """Create a new repository. Not retried: a retry could create a second one."""

        async def _attempt() -> RepositoryHandle:
            async with self.acquirer.session(self.headless) as session:
                return await self.creator.create(session.page)

        return await self.retry.run(_attempt, action="create_repository", retry=False)

    async def add_artifact(
        self, request: KnowledgeArtifactRequest, repository: RepositoryHandle | str | None = None
    ) -> bool:
        """Add one artifact. Returns False when the request had nothing to submit."""
        target = repository if repository is not None else request.repository
        if target is None:
            raise ValueError("a repository is required to add an artifact")
        handle = _as_handle(target)
        if request.is_empty:
            logger.info("skipping empty %s artifact", request.kind.value)
            return False

        async def _attempt() -> bool:
            async with self.acquirer.session(self.headless) as session:
                return await self.dialogs.add_artifact(session.page, handle, request)

        return await self.retry.run(_attempt, action="add_artifact", retry=self.retry_artifacts)

    async def add_artifacts(
        self, requests: Iterable[KnowledgeArtifactRequest], repository: RepositoryHandle | str
    ) -> list[bool]:
        """Add artifacts sequentially, one session per artifact. Stops at the first failure."""
        results: list[bool] = []
        for request in requests:
            results.append(await self.add_artifact(request, repository))
        return results

    async def _ask_response(self, question: str, repository: RepositoryHandle | str) -> QueryResponse:
        request = QueryRequest(question, _as_handle(repository))

        async def _attempt() -> QueryResponse:
            async with self.acquirer.session(self.headless) as session:
                return await self.queries.ask(session.page, request)

        return await self.retry.run(_attempt, action="ask")

    async def ask(self, question: str, repository: RepositoryHandle | str) -> str:
        response = await self._ask_response(question, repository)
        return response.answer


__all__ = ["NotebookDriver"]
