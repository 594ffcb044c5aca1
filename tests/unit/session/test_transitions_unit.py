# File: tests/unit/session/test_transitions_unit.py

import pytest

from rustowl_client.session.transitions import (
    MAX_CONSECUTIVE_FAILURES,
    Action,
    ErrorTally,
    ExchangeSucceeded,
    HandshakeCompleted,
    ProtocolError,
    SessionState,
    StartFailed,
    StartRequested,
    StopRequested,
    SupervisorState,
    TransportClosed,
    transition,
)

RUNNING = SupervisorState(session=SessionState.RUNNING)


def run(state, *events):
    actions = []
    for event in events:
        state, action = transition(state, event)
        actions.append(action)
    return state, actions


def test_start_handshake_reaches_running():
    state, actions = run(SupervisorState(), StartRequested(), HandshakeCompleted(1))
    assert state.session is SessionState.RUNNING
    assert actions == [Action.NONE, Action.NONE]


def test_start_failure_reports_and_stops():
    state, actions = run(SupervisorState(), StartRequested(), StartFailed("no binary"))
    assert state.session is SessionState.STOPPED
    assert actions[-1] is Action.REPORT_FAILURE
    assert state.tally.last_error == "no binary"


def test_handshake_resets_error_tally():
    state = SupervisorState(session=SessionState.STARTING, tally=ErrorTally("old", 2))
    state, _ = transition(state, HandshakeCompleted(1))
    assert state.tally == ErrorTally()


def test_protocol_errors_escalate_to_fatal():
    state, actions = run(RUNNING, *[ProtocolError(f"e{i}") for i in range(MAX_CONSECUTIVE_FAILURES)])
    assert state.session is SessionState.SHUTDOWN_FATAL
    assert actions == [Action.NONE, Action.NONE, Action.SHUTDOWN_FATAL]
    assert state.tally == ErrorTally("e2", 3)


def test_first_protocol_error_enters_backoff():
    state, _ = run(RUNNING, ProtocolError("bad frame"))
    assert state.session is SessionState.ERROR_BACKOFF
    assert state.session.is_live


def test_two_errors_then_success_resets_tally():
    state, _ = run(RUNNING, ProtocolError("a"), ProtocolError("b"), ExchangeSucceeded())
    assert state.session is SessionState.RUNNING
    assert state.tally.consecutive_failures == 0
    state, actions = run(state, ProtocolError("c"), ProtocolError("d"))
    assert state.session is SessionState.ERROR_BACKOFF
    assert Action.SHUTDOWN_FATAL not in actions


def test_transport_closures_auto_restart_until_limit():
    state = RUNNING
    for attempt in range(1, MAX_CONSECUTIVE_FAILURES):
        state, action = transition(state, TransportClosed("eof"))
        assert action is Action.AUTO_RESTART
        assert state.session is SessionState.STOPPED
        assert state.restart_attempts == attempt
        state, _ = run(state, StartRequested(), HandshakeCompleted(attempt + 1))
        assert state.restart_attempts == attempt

    state, action = transition(state, TransportClosed("eof"))
    assert action is Action.SHUTDOWN_FATAL
    assert state.session is SessionState.SHUTDOWN_FATAL
    assert state.last_closure == "eof"


def test_successful_exchange_resets_restart_attempts():
    state = SupervisorState(session=SessionState.RUNNING, restart_attempts=2)
    state, _ = transition(state, ExchangeSucceeded())
    assert state.restart_attempts == 0


def test_explicit_restart_resets_restart_attempts():
    state = SupervisorState(session=SessionState.SHUTDOWN_FATAL, restart_attempts=3)
    state, _ = transition(state, StartRequested(reset_restarts=True))
    assert state.session is SessionState.STARTING
    assert state.restart_attempts == 0


def test_closure_and_protocol_tallies_are_independent():
    state, _ = run(RUNNING, ProtocolError("a"), ProtocolError("b"), TransportClosed("eof"))
    assert state.tally.consecutive_failures == 2
    assert state.restart_attempts == 1


@pytest.mark.parametrize(
    "event",
    [ProtocolError("late"), ExchangeSucceeded(), TransportClosed("late"), HandshakeCompleted(3), StartFailed("x")],
)
def test_inapplicable_events_in_stopped_are_ignored(event):
    state = SupervisorState()
    assert transition(state, event) == (state, Action.NONE)


def test_fatal_state_does_not_restart_on_its_own():
    fatal = SupervisorState(session=SessionState.SHUTDOWN_FATAL, restart_attempts=3)
    for event in (TransportClosed("again"), ProtocolError("again"), ExchangeSucceeded()):
        assert transition(fatal, event) == (fatal, Action.NONE)


def test_start_requested_while_running_is_ignored():
    assert transition(RUNNING, StartRequested()) == (RUNNING, Action.NONE)


@pytest.mark.parametrize("session", list(SessionState))
def test_stop_from_any_state(session):
    state, action = transition(SupervisorState(session=session), StopRequested())
    assert state.session is SessionState.STOPPED
    assert action is Action.NONE
