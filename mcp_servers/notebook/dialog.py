"""
"Add source" dialog controller.

The dialog flow is a linear state machine with one branch: entry points that
leave the dialog pre-opened (e.g. right after repository creation) skip the
open click. `dialog_step` is the pure transition function; DialogController
executes the actions it returns against a page.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .affordances import AffordanceSet
from .artifacts import ArtifactKind, KnowledgeArtifactRequest, RepositoryHandle
from .clock import Clock
from .config import NotebookConfig
from .errors import AffordanceNotFound, DialogTimeout
from .navigator import PageNavigator

logger = logging.getLogger("mcp.notebook.dialog")


class DialogPhase(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    KIND_SELECTED = "kind_selected"
    PAYLOAD_FILLED = "payload_filled"
    SUBMITTING = "submitting"
    CLOSING = "closing"


class DialogAction(str, Enum):
    OPEN_DIALOG = "open_dialog"
    WAIT_OVERLAY = "wait_overlay"
    SELECT_KIND = "select_kind"
    FILL_PAYLOAD = "fill_payload"
    CLICK_CONFIRM = "click_confirm"
    WAIT_CLOSED = "wait_closed"
    SETTLE = "settle"
    FINISH = "finish"


@dataclass(frozen=True)
class DialogObservation:
    overlay_open: bool = False
    settled: bool = False


def dialog_step(phase: DialogPhase, obs: DialogObservation) -> tuple[DialogPhase, DialogAction]:
    if phase is DialogPhase.CLOSED:
        if obs.settled:
            return DialogPhase.CLOSED, DialogAction.FINISH
        if obs.overlay_open:
            return DialogPhase.OPENING, DialogAction.WAIT_OVERLAY
        return DialogPhase.OPENING, DialogAction.OPEN_DIALOG
    if phase is DialogPhase.OPENING:
        return DialogPhase.KIND_SELECTED, DialogAction.SELECT_KIND
    if phase is DialogPhase.KIND_SELECTED:
        return DialogPhase.PAYLOAD_FILLED, DialogAction.FILL_PAYLOAD
    if phase is DialogPhase.PAYLOAD_FILLED:
        return DialogPhase.SUBMITTING, DialogAction.CLICK_CONFIRM
    if phase is DialogPhase.SUBMITTING:
        return DialogPhase.CLOSING, DialogAction.WAIT_CLOSED
    if phase is DialogPhase.CLOSING:
        return DialogPhase.CLOSED, DialogAction.SETTLE
    raise ValueError(f"unknown dialog phase: {phase!r}")


class DialogController:
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

    async def add_artifact(
        self,
        page: Any,
        repository: RepositoryHandle | None,
        request: KnowledgeArtifactRequest,
        *,
        navigate: bool = True,
    ) -> bool:
        """Insert one artifact. Returns False when there was nothing to submit."""
        if request.is_empty:
            logger.info("%s artifact is empty; nothing to add", request.kind.value)
            return False

        if navigate:
            if repository is None:
                raise ValueError("a repository is required to add an artifact")
            await self.navigator.open(page, repository)

        overlay = self.affordances["dialog_overlay"]
        phase = DialogPhase.CLOSED
        obs = DialogObservation(overlay_open=await page.is_present(overlay))
        while True:
            phase, action = dialog_step(phase, obs)
            if action is DialogAction.FINISH:
                break
            logger.debug("dialog phase=%s action=%s", phase.value, action.value)
            obs = await self._perform(page, action, request)

        logger.info("artifact added kind=%s label=%s", request.kind.value, request.label or "-")
        return True

    async def _perform(self, page: Any, action: DialogAction, request: KnowledgeArtifactRequest) -> DialogObservation:
        is_text = request.kind is ArtifactKind.PASTED_TEXT
        overlay = self.affordances["dialog_overlay"]
        timeout = self.config.step_timeout

        if action is DialogAction.OPEN_DIALOG:
            await page.click(await self._require(page, "add_source", "open"))
            if await page.wait_for(overlay, timeout=timeout) is None:
                raise self._timeout("open", "dialog never opened")
            return DialogObservation(overlay_open=True)

        if action is DialogAction.WAIT_OVERLAY:
            if await page.wait_for(overlay, timeout=timeout) is None:
                raise self._timeout("open", "pre-opened dialog disappeared")
            return DialogObservation(overlay_open=True)

        if action is DialogAction.SELECT_KIND:
            name = "kind_pasted_text" if is_text else "kind_websites"
            await page.click(await self._require(page, name, "select_kind"))
            return DialogObservation(overlay_open=True)

        if action is DialogAction.FILL_PAYLOAD:
            name = "payload_field_text" if is_text else "payload_field_urls"
            await page.fill(await self._require(page, name, "fill"), request.rendered_payload())
            return DialogObservation(overlay_open=True)

        if action is DialogAction.CLICK_CONFIRM:
            await page.click(await self._require(page, "confirm", "submit"))
            return DialogObservation(overlay_open=True)

        if action is DialogAction.WAIT_CLOSED:
            field_name = "payload_field_text" if is_text else "payload_field_urls"
            closed = await page.wait_for_gone(overlay, timeout=timeout)
            if closed:
                closed = await page.wait_for_gone(self.affordances[field_name], timeout=timeout)
            if not closed:
                raise self._timeout("close", "dialog never closed after submit")
            return DialogObservation(overlay_open=False)

        if action is DialogAction.SETTLE:
            # Give the remote application time to register the new source.
            await self.clock.sleep(self.config.post_submit_delay)
            return DialogObservation(overlay_open=False, settled=True)

        raise ValueError(f"unexpected dialog action: {action!r}")

    async def _require(self, page: Any, name: str, action: str) -> Any:
        handle = await page.wait_for(self.affordances[name], timeout=self.config.step_timeout)
        if handle is None:
            raise AffordanceNotFound(
                component="dialog",
                action=action,
                reason=f"Control '{name}' was not found in the add-source dialog",
                suggestion="The application UI may have changed; update the affordance labels",
                details={"affordance": name, "version": self.affordances.version},
            )
        return handle

    def _timeout(self, action: str, why: str) -> DialogTimeout:
        return DialogTimeout(
            component="dialog",
            action=action,
            reason=f"{why} within {self.config.step_timeout:g}s",
            suggestion="Retry; check the repository in the application for a partially added source",
        )


__all__ = ["DialogAction", "DialogController", "DialogObservation", "DialogPhase", "dialog_step"]
