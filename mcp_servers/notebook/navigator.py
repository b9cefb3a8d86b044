"""
Page navigation with an explicit interface-ready signal.

A repository page is ready once the question input is visible. The home
surface has no such marker, so it only gets a longer settle delay.
"""

from __future__ import annotations

import logging
from typing import Any

from .affordances import AffordanceSet
from .artifacts import RepositoryHandle
from .clock import Clock
from .config import NotebookConfig
from .errors import AuthSessionError, NavigationTimeout

logger = logging.getLogger("mcp.notebook.navigator")

HOME = "home"


class PageNavigator:
    def __init__(self, config: NotebookConfig, affordances: AffordanceSet, clock: Clock | None = None) -> None:
        self.config = config
        self.affordances = affordances
        self.clock = clock or Clock()

    async def open(self, page: Any, target: RepositoryHandle | str) -> Any:
        """Load target (a RepositoryHandle or HOME) and wait until it is usable."""
        is_home = target == HOME
        url = self.config.home_url if is_home else str(target)
        loaded = await page.navigate(url, timeout=self.config.step_timeout)
        if not loaded:
            await self._raise_not_ready(page, url, "content never loaded")

        if is_home:
            await self._check_sign_in(page, url)
            await self.clock.sleep(self.config.home_settle_delay)
            logger.info("home ready url=%s", url)
            return page

        await self.ensure_ready(page, url)
        return page

    async def ensure_ready(self, page: Any, url: str = "") -> None:
        """Wait for the question input, then let entrance animations settle."""
        marker = self.affordances["question_input"]
        found = await page.wait_for(marker, timeout=self.config.step_timeout)
        if found is None:
            await self._raise_not_ready(page, url, "question input never appeared")
        await self.clock.sleep(self.config.settle_delay)
        logger.info("repository ready url=%s", url)

    async def _check_sign_in(self, page: Any, url: str) -> None:
        current = await page.current_url()
        if self.affordances.is_sign_in(current):
            raise AuthSessionError(
                component="navigator",
                action="open",
                reason="Redirected to the sign-in page; the login session is missing or expired",
                suggestion="Re-authenticate the browser profile and retry",
                details={"url": url},
            )

    async def _raise_not_ready(self, page: Any, url: str, why: str) -> None:
        await self._check_sign_in(page, url)
        raise NavigationTimeout(
            component="navigator",
            action="open",
            reason=f"Page did not become ready within {self.config.step_timeout:g}s ({why})",
            suggestion="Check network access; an expired login can also redirect the page",
            details={"url": url},
        )


__all__ = ["HOME", "PageNavigator"]
