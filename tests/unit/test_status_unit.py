# File: tests/unit/test_status_unit.py

import pytest

from rustowl_client.config.settings import DisplayMode
from rustowl_client.lsp.protocol import AnalysisStatus
from rustowl_client.session.transitions import ErrorTally, SessionState, SupervisorState
from rustowl_client.status import STATUS_COMMAND, StatusPresenter, analysis_status_item, display_mode_item, session_item


@pytest.mark.parametrize(
    "status, expected",
    [
        (AnalysisStatus.FINISHED, ("$(check) RustOwl", "Analysis finished")),
        (AnalysisStatus.ANALYZING, ("$(loading~spin) RustOwl", "Analyzing...")),
        (AnalysisStatus.ERROR, ("$(error) RustOwl", "Analysis failed")),
    ],
)
def test_analysis_status_item(status, expected):
    assert analysis_status_item(status) == expected


@pytest.mark.parametrize(
    "mode, icon",
    [
        (DisplayMode.SELECTED, "check"),
        (DisplayMode.HOVER, "eye"),
        (DisplayMode.MANUAL, "tools"),
        (DisplayMode.DISABLED, "debug-pause"),
    ],
)
def test_display_mode_item(mode, icon):
    assert display_mode_item(mode) == (f"$({icon}) RustOwl", f"Display mode: {mode.value}")


def test_session_items():
    assert session_item(SupervisorState(session=SessionState.RUNNING)) is None
    assert session_item(SupervisorState(session=SessionState.STARTING))[0] == "$(sync~spin) RustOwl"
    assert session_item(SupervisorState(session=SessionState.STOPPED))[0] == "$(circle-slash) RustOwl"

    backoff = session_item(SupervisorState(session=SessionState.ERROR_BACKOFF, tally=ErrorTally("timeout", 1)))
    assert backoff == ("$(warning) RustOwl", "RustOwl server error: timeout")

    fatal = session_item(SupervisorState(session=SessionState.SHUTDOWN_FATAL, last_closure="eof"))
    assert fatal == ("$(error) RustOwl", "RustOwl server stopped: eof")


def test_presenter_keeps_status_when_running(host, mocker):
    set_status = mocker.spy(host, "set_status")
    presenter = StatusPresenter(host)
    presenter.show_analysis_status(AnalysisStatus.FINISHED)
    presenter.show_session_state(SupervisorState(session=SessionState.RUNNING))

    assert presenter.current == ("$(check) RustOwl", "Analysis finished")
    assert host.status == presenter.current
    assert all(call.kwargs["command"] == STATUS_COMMAND for call in set_status.call_args_list)
