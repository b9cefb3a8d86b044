"""Creation of new repositories from the application's home surface."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from .affordances import AffordanceSet
from .artifacts import RepositoryHandle
from .clock import Clock
from .config import NotebookConfig
from .errors import AffordanceNotFound, CreationTimeout
from .navigator import HOME, PageNavigator

logger = logging.getLogger("mcp.notebook.repository")


class CreationPhase(str, Enum):
    IDLE = "idle"
    NAVIGATING = "navigating"
    CLICKING = "clicking"
    WAITING_FOR_IDENTIFIER = "waiting_for_identifier"
    READY = "ready"


def creation_step(phase: CreationPhase, url: str, affordances: AffordanceSet) -> CreationPhase:
    """Advance on the observed page URL; only WAITING_FOR_IDENTIFIER depends on it."""
    if phase is CreationPhase.IDLE:
        return CreationPhase.NAVIGATING
    if phase is CreationPhase.NAVIGATING:
        return CreationPhase.CLICKING
    if phase is CreationPhase.CLICKING:
        return CreationPhase.WAITING_FOR_IDENTIFIER
    if phase is CreationPhase.WAITING_FOR_IDENTIFIER:
        # The provisioning placeholder is never a result.
        if affordances.is_real_repository(url):
            return CreationPhase.READY
        return CreationPhase.WAITING_FOR_IDENTIFIER
    return phase


class RepositoryCreator:
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

    async def create(self, page: Any) -> RepositoryHandle:
        phase = creation_step(CreationPhase.IDLE, "", self.affordances)
        await self.navigator.open(page, HOME)

        phase = creation_step(phase, "", self.affordances)
        button = await page.locate(self.affordances["create_repository"])
        if button is None:
            raise AffordanceNotFound(
                component="repository",
                action="create",
                reason="Could not find the create-repository control on the home page",
                suggestion="The application UI may have changed, or the browser profile is not signed in",
                details={"affordance": "create_repository", "version": self.affordances.version},
            )
        await page.click(button)

        phase = creation_step(phase, "", self.affordances)
        deadline = self.clock.deadline(self.config.step_timeout)
        url = ""
        while True:
            await self.clock.sleep(self.config.creation_poll_interval)
            url = await page.current_url()
            phase = creation_step(phase, url, self.affordances)
            if phase is CreationPhase.READY:
                break
            if self.clock.remaining(deadline) <= 0:
                raise CreationTimeout(
                    component="repository",
                    action="create",
                    reason=f"New repository did not receive a stable identifier within {self.config.step_timeout:g}s",
                    suggestion="Check the application home page for a half-created repository",
                    details={"lastUrl": url},
                )

        handle = RepositoryHandle(url)
        await self.navigator.ensure_ready(page, handle.url)
        logger.info("repository created url=%s", handle.url)
        return handle


__all__ = ["CreationPhase", "RepositoryCreator", "creation_step"]
