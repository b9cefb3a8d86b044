from __future__ import annotations

import asyncio

import pytest

from mcp_servers.notebook.affordances import load_affordances
from mcp_servers.notebook.artifacts import RepositoryHandle, text_artifact, url_artifact
from mcp_servers.notebook.dialog import (
    DialogAction,
    DialogController,
    DialogObservation,
    DialogPhase,
    dialog_step,
)
from mcp_servers.notebook.errors import AffordanceNotFound, DialogTimeout
from mcp_servers.notebook.navigator import PageNavigator

from notebook_fakes import FakeClock, FakePage, make_config

REPO = RepositoryHandle("https://notebook.example.test/notebook/abc123def")

DIALOG_CONTROLS = {"dialog_overlay", "kind_pasted_text", "kind_websites"}
FIELDS = {"payload_field_text", "payload_field_urls", "confirm"}


def _effects(*, closes: bool = True) -> dict[str, tuple[set[str], set[str]]]:
    closed = (set(), DIALOG_CONTROLS | FIELDS) if closes else (set(), set())
    return {
        "add_source": (set(DIALOG_CONTROLS), set()),
        "kind_websites": ({"payload_field_urls", "confirm"}, set()),
        "kind_pasted_text": ({"payload_field_text", "confirm"}, set()),
        "confirm": closed,
    }


def _controller(clock: FakeClock, **overrides) -> DialogController:  # noqa: ANN003
    cfg = make_config(**overrides)
    aff = load_affordances()
    return DialogController(cfg, aff, PageNavigator(cfg, aff, clock), clock)


def test_url_list_is_added_through_the_websites_flow() -> None:
    clock = FakeClock()
    controller = _controller(clock)
    page = FakePage(clock, visible={"question_input", "add_source"}, effects=_effects())
    request = url_artifact(["https://a.example/x", "https://b.example/y"])

    added = asyncio.run(controller.add_artifact(page, REPO, request))

    assert added is True
    assert page.names("navigate") == [REPO.url]
    assert page.names("click") == ["add_source", "kind_websites", "confirm"]
    assert page.filled == {"payload_field_urls": "https://a.example/x\nhttps://b.example/y"}
    assert "dialog_overlay" not in page.visible
    assert clock.sleeps[-1] == controller.config.post_submit_delay


def test_pasted_text_is_added_with_its_label() -> None:
    clock = FakeClock()
    controller = _controller(clock)
    page = FakePage(clock, visible={"question_input", "add_source"}, effects=_effects())

    added = asyncio.run(controller.add_artifact(page, REPO, text_artifact("Summary", "hello")))

    assert added is True
    assert page.names("click") == ["add_source", "kind_pasted_text", "confirm"]
    assert page.filled == {"payload_field_text": "# Summary\n\nhello"}
    assert "kind_websites" not in page.names("locate")
    assert clock.sleeps.count(controller.config.post_submit_delay) == 1


def test_labelled_text_with_a_blank_body_is_still_submitted() -> None:
    clock = FakeClock()
    controller = _controller(clock)
    page = FakePage(clock, visible={"question_input", "add_source"}, effects=_effects())

    added = asyncio.run(controller.add_artifact(page, REPO, text_artifact("Empty", "   ")))

    assert added is True
    assert page.names("click") == ["add_source", "kind_pasted_text", "confirm"]
    assert page.filled["payload_field_text"].startswith("# Empty\n\n")


@pytest.mark.parametrize(
    "request_",
    [
        url_artifact([]),
        url_artifact(["https://duckduckgo.com/?q=x", "not a url"]),
    ],
)
def test_empty_request_touches_nothing(request_) -> None:  # noqa: ANN001
    clock = FakeClock()
    controller = _controller(clock)
    page = FakePage(clock, visible={"question_input", "add_source"}, effects=_effects())

    assert asyncio.run(controller.add_artifact(page, REPO, request_)) is False
    assert page.calls == []
    assert clock.sleeps == []


def test_pre_opened_dialog_skips_the_open_click() -> None:
    clock = FakeClock()
    controller = _controller(clock)
    page = FakePage(clock, visible={"question_input"} | DIALOG_CONTROLS, effects=_effects())

    added = asyncio.run(controller.add_artifact(page, REPO, url_artifact(["https://a.example/"]), navigate=False))

    assert added is True
    assert page.names("navigate") == []
    assert page.names("click") == ["kind_websites", "confirm"]


def test_missing_kind_control_raises_affordance_not_found() -> None:
    clock = FakeClock()
    controller = _controller(clock, step_timeout=1.0)
    effects = _effects()
    effects["add_source"] = ({"dialog_overlay"}, set())
    page = FakePage(clock, visible={"question_input", "add_source"}, effects=effects)

    with pytest.raises(AffordanceNotFound) as excinfo:
        asyncio.run(controller.add_artifact(page, REPO, url_artifact(["https://a.example/"])))

    assert excinfo.value.details["affordance"] == "kind_websites"
    assert page.names("fill") == []


def test_dialog_that_never_opens_times_out() -> None:
    clock = FakeClock()
    controller = _controller(clock, step_timeout=1.0)
    effects = _effects()
    effects["add_source"] = (set(), set())
    page = FakePage(clock, visible={"question_input", "add_source"}, effects=effects)

    with pytest.raises(DialogTimeout):
        asyncio.run(controller.add_artifact(page, REPO, url_artifact(["https://a.example/"])))


def test_dialog_that_never_closes_times_out() -> None:
    clock = FakeClock()
    controller = _controller(clock, step_timeout=1.0)
    page = FakePage(clock, visible={"question_input", "add_source"}, effects=_effects(closes=False))

    with pytest.raises(DialogTimeout) as excinfo:
        asyncio.run(controller.add_artifact(page, REPO, url_artifact(["https://a.example/"])))

    assert excinfo.value.action == "close"
    assert page.names("click")[-1] == "confirm"


def test_missing_repository_is_rejected_when_navigating() -> None:
    clock = FakeClock()
    controller = _controller(clock)
    page = FakePage(clock)

    with pytest.raises(ValueError):
        asyncio.run(controller.add_artifact(page, None, url_artifact(["https://a.example/"])))


def test_dialog_step_walks_the_linear_flow() -> None:
    phase = DialogPhase.CLOSED
    obs = DialogObservation()
    actions = []
    while True:
        phase, action = dialog_step(phase, obs)
        actions.append(action)
        if action is DialogAction.FINISH:
            break
        obs = DialogObservation(overlay_open=action is not DialogAction.SETTLE, settled=action is DialogAction.SETTLE)

    assert actions == [
        DialogAction.OPEN_DIALOG,
        DialogAction.SELECT_KIND,
        DialogAction.FILL_PAYLOAD,
        DialogAction.CLICK_CONFIRM,
        DialogAction.WAIT_CLOSED,
        DialogAction.SETTLE,
        DialogAction.FINISH,
    ]
    assert phase is DialogPhase.CLOSED


def test_dialog_step_branches_on_pre_opened_overlay() -> None:
    assert dialog_step(DialogPhase.CLOSED, DialogObservation(overlay_open=True)) == (
        DialogPhase.OPENING,
        DialogAction.WAIT_OVERLAY,
    )
    assert dialog_step(DialogPhase.CLOSED, DialogObservation()) == (DialogPhase.OPENING, DialogAction.OPEN_DIALOG)
