# File: rustowl_client/status.py

"""Status item text for analysis progress, display mode and session health."""

import logging
from typing import Optional, Tuple

from rustowl_client.config.settings import DisplayMode
from rustowl_client.editor.host import EditorHost
from rustowl_client.lsp.protocol import AnalysisStatus
from rustowl_client.session.transitions import SessionState, SupervisorState

logger = logging.getLogger(__name__)

STATUS_COMMAND = "rustowl.cycleDisplayMode"
LABEL = "RustOwl"

_MODE_ICONS = {
    DisplayMode.SELECTED: "check",
    DisplayMode.HOVER: "eye",
    DisplayMode.MANUAL: "tools",
    DisplayMode.DISABLED: "debug-pause",
}


def _text(icon: Optional[str]) -> str:
    return f"$({icon}) {LABEL}" if icon else LABEL


def analysis_status_item(status: AnalysisStatus) -> Tuple[str, str]:
    if status is AnalysisStatus.FINISHED:
        return _text("check"), "Analysis finished"
    if status is AnalysisStatus.ANALYZING:
        return _text("loading~spin"), "Analyzing..."
    return _text("error"), "Analysis failed"


def display_mode_item(mode: DisplayMode) -> Tuple[str, str]:
    return _text(_MODE_ICONS[mode]), f"Display mode: {mode.value}"


def session_item(state: SupervisorState) -> Optional[Tuple[str, str]]:
    """Status for a session state, or None when RUNNING (analysis status wins)."""
    session = state.session
    if session is SessionState.STARTING:
        return _text("sync~spin"), "Starting RustOwl server..."
    if session is SessionState.ERROR_BACKOFF:
        return _text("warning"), f"RustOwl server error: {state.tally.last_error}"
    if session is SessionState.SHUTDOWN_FATAL:
        reason = state.tally.last_error or state.last_closure or "repeated failures"
        return _text("error"), f"RustOwl server stopped: {reason}"
    if session is SessionState.STOPPED:
        return _text("circle-slash"), "RustOwl server not running"
    return None


class StatusPresenter:
    """Keeps the host's status item up to date."""

    def __init__(self, host: EditorHost):
        self.host = host
        self.current: Tuple[str, str] = (LABEL, "")
        self.host.set_status(LABEL, "", command=STATUS_COMMAND)

    def _show(self, item: Tuple[str, str]) -> None:
        self.current = item
        self.host.set_status(item[0], item[1], command=STATUS_COMMAND)

    def show_analysis_status(self, status: AnalysisStatus) -> None:
        self._show(analysis_status_item(status))

    def show_display_mode(self, mode: DisplayMode) -> None:
        self._show(display_mode_item(mode))

    def show_session_state(self, state: SupervisorState) -> None:
        item = session_item(state)
        if item is None:
            return
        self._show(item)
