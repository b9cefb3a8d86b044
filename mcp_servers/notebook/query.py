"""
Question submission and answer stabilization.

The application streams its answer without an end-of-stream signal. An answer
is final once the newest answer element reads the same non-empty text on
`threshold` consecutive polls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .affordances import AffordanceSet
from .artifacts import RepositoryHandle
from .clock import Clock
from .config import NotebookConfig
from .errors import AffordanceNotFound, ResponseTimeout
from .navigator import PageNavigator

logger = logging.getLogger("mcp.notebook.query")


@dataclass(frozen=True)
class StabilizationState:
    """Rolling record of recent polls.

    `matches` is the length of the current run of identical non-empty reads.
    An empty read resets it to zero; a read that differs from the previous one
    discards the run and starts a new one.
    """

    threshold: int = 3
    window: int = 8
    polls: tuple[str, ...] = ()
    matches: int = 0

    @property
    def last(self) -> str | None:
        return self.polls[-1] if self.polls else None

    @property
    def is_final(self) -> bool:
        return self.matches >= self.threshold

    def observe(self, text: str | None) -> StabilizationState:
        text = text or ""
        if not text.strip():
            matches = 0
        elif text == self.last:
            matches = self.matches + 1
        else:
            # A differing read restarts the run with itself.
            matches = 1
        polls = (*self.polls, text)[-self.window :]
        return StabilizationState(threshold=self.threshold, window=self.window, polls=polls, matches=matches)


def stabilize(reads: list[str | None], threshold: int = 3) -> str | None:
    """Feed a finite poll sequence; return the first stabilized text, if any."""
    state = StabilizationState(threshold=threshold)
    for text in reads:
        state = state.observe(text)
        if state.is_final:
            return state.last
    return None


@dataclass(frozen=True)
class QueryRequest:
    question: str
    repository: RepositoryHandle

    def __post_init__(self) -> None:
        if not (self.question or "").strip():
            raise ValueError("question is required")


@dataclass(frozen=True)
class QueryResponse:
    question: str
    repository: RepositoryHandle
    answer: str
    polls: int = 0
    thinking_seen: bool = False
    history: tuple[str, ...] = field(default_factory=tuple)


class QueryEngine:
    def __init__(
        self,
        config: NotebookConfig,
        affordances: AffordanceSet,
        navigator: PageNavigator,
        clock: Clock | None = None,
    ) -> None:
        self.config = config
        self.affordances = affordances
        self.navigator = navigator
        self.clock = clock or Clock()

    async def ask(self, page: Any, request: QueryRequest) -> QueryResponse:
        await self.navigator.open(page, request.repository)
        deadline = self.clock.deadline(self.config.query_timeout)

        answers = self.affordances["answer_region"]
        before = await page.count(answers)

        field_handle = await page.wait_for(self.affordances["question_input"], timeout=self.config.step_timeout)
        if field_handle is None:
            raise AffordanceNotFound(
                component="query",
                action="submit",
                reason="Question input was not found",
                suggestion="The application UI may have changed; update the affordance labels",
                details={"affordance": "question_input"},
            )
        await page.fill(field_handle, request.question)
        await page.press_key("Enter")
        logger.info("question submitted repository=%s", request.repository.identifier)

        thinking_seen = await self._wait_out_thinking(page, deadline)
        answer_handle = await self._newest_answer(page, before, deadline)

        state = StabilizationState(threshold=self.config.stable_polls)
        polls = 0
        while True:
            text = await page.read_text(answer_handle)
            polls += 1
            state = state.observe(text)
            if state.is_final:
                answer = state.last or ""
                logger.info("answer stabilized polls=%d chars=%d", polls, len(answer))
                return QueryResponse(
                    question=request.question,
                    repository=request.repository,
                    answer=answer,
                    polls=polls,
                    thinking_seen=thinking_seen,
                    history=state.polls,
                )
            if self.clock.remaining(deadline) <= 0:
                raise self._timeout(f"answer did not stabilize after {polls} polls", polls=polls)
            await self.clock.sleep(self.config.poll_interval)

    async def _wait_out_thinking(self, page: Any, deadline: float) -> bool:
        indicator = self.affordances["thinking_indicator"]
        grace = min(self.config.thinking_grace, max(0.0, self.clock.remaining(deadline)))
        if await page.wait_for(indicator, timeout=grace) is None:
            # Fast answers may never show the indicator.
            logger.info("thinking indicator not observed within %.1fs", grace)
            return False
        remaining = max(0.0, self.clock.remaining(deadline))
        if not await page.wait_for_gone(indicator, timeout=remaining):
            raise self._timeout("application was still thinking at the deadline")
        return True

    async def _newest_answer(self, page: Any, before: int, deadline: float) -> Any:
        """
        Tag the first answer element that appeared after submission.

        Picked by position, not visibility: a fresh answer is often still empty
        and zero-size while earlier turns are fully rendered. Empty reads reset
        stabilization, so the caller keeps polling until it fills in.
        """
        answers = self.affordances["answer_region"]
        while True:
            if await page.count(answers) > before:
                handle = await page.locate(answers, index=before)
                if handle is not None:
                    return handle
            if self.clock.remaining(deadline) <= 0:
                raise self._timeout("no new answer appeared", answers_before=before)
            await self.clock.sleep(self.config.poll_interval)

    def _timeout(self, why: str, **details: Any) -> ResponseTimeout:
        return ResponseTimeout(
            component="query",
            action="ask",
            reason=f"{why} within {self.config.query_timeout:g}s",
            suggestion="Ask again; long answers may need a larger MCP_NOTEBOOK_QUERY_TIMEOUT",
            details=details,
        )


__all__ = ["QueryEngine", "QueryRequest", "QueryResponse", "StabilizationState", "stabilize"]
