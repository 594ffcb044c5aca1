# File: rustowl_client/session/transitions.py

"""Session lifecycle as a pure state transition function.

`transition(state, event)` returns the next `SupervisorState` and the
`Action` the supervisor must carry out. It captures nothing and touches no
client, so every escalation rule can be checked with plain values.

Two independent tallies are kept:

- `ErrorTally` counts consecutive protocol errors (malformed frames, error
  responses, timeouts). It is reset when a session reaches RUNNING and on
  every successful exchange.
- `restart_attempts` counts consecutive transport closures. It is reset by a
  successful exchange or an explicit restart/update, but not by a completed
  handshake, so a server that crashes right after starting still escalates.

Either one reaching `MAX_CONSECUTIVE_FAILURES` moves the session to
SHUTDOWN_FATAL, which never restarts on its own.
"""

import enum
from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

MAX_CONSECUTIVE_FAILURES = 3


class SessionState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR_BACKOFF = "error-backoff"
    SHUTDOWN_FATAL = "shutdown-fatal"

    @property
    def is_live(self) -> bool:
        return self in (SessionState.RUNNING, SessionState.ERROR_BACKOFF)


class Action(enum.Enum):
    NONE = "none"
    AUTO_RESTART = "auto-restart"
    SHUTDOWN_FATAL = "shutdown-fatal"
    REPORT_FAILURE = "report-failure"


@dataclass(frozen=True)
class ErrorTally:
    last_error: Optional[str] = None
    consecutive_failures: int = 0

    def record(self, message: str) -> "ErrorTally":
        return ErrorTally(last_error=message, consecutive_failures=self.consecutive_failures + 1)

    @property
    def exhausted(self) -> bool:
        return self.consecutive_failures >= MAX_CONSECUTIVE_FAILURES


@dataclass(frozen=True)
class SupervisorState:
    session: SessionState = SessionState.STOPPED
    tally: ErrorTally = ErrorTally()
    restart_attempts: int = 0
    last_closure: Optional[str] = None


# --- Events ---


@dataclass(frozen=True)
class StartRequested:
    reset_restarts: bool = False


@dataclass(frozen=True)
class HandshakeCompleted:
    generation: int = 0


@dataclass(frozen=True)
class StartFailed:
    message: str


@dataclass(frozen=True)
class ProtocolError:
    message: str
    generation: Optional[int] = None


@dataclass(frozen=True)
class ExchangeSucceeded:
    generation: Optional[int] = None


@dataclass(frozen=True)
class TransportClosed:
    message: str
    generation: Optional[int] = None


@dataclass(frozen=True)
class StopRequested:
    pass


SessionEvent = Union[
    StartRequested,
    HandshakeCompleted,
    StartFailed,
    ProtocolError,
    ExchangeSucceeded,
    TransportClosed,
    StopRequested,
]


def transition(state: SupervisorState, event: SessionEvent) -> Tuple[SupervisorState, Action]:
    """Computes the next supervisor state for an event.

    Args:
        state: Current state, including both tallies.
        event: What happened.

    Returns:
        ``(next_state, action)``. Events that do not apply to the current
        state return it unchanged with `Action.NONE`.
    """
    session = state.session

    if isinstance(event, StopRequested):
        return replace(state, session=SessionState.STOPPED), Action.NONE

    if isinstance(event, StartRequested):
        if session in (SessionState.STOPPED, SessionState.SHUTDOWN_FATAL):
            restarts = 0 if event.reset_restarts else state.restart_attempts
            return replace(state, session=SessionState.STARTING, restart_attempts=restarts), Action.NONE
        return state, Action.NONE

    if isinstance(event, HandshakeCompleted):
        if session is SessionState.STARTING:
            return replace(state, session=SessionState.RUNNING, tally=ErrorTally()), Action.NONE
        return state, Action.NONE

    if isinstance(event, StartFailed):
        if session is SessionState.STARTING:
            return replace(state, session=SessionState.STOPPED, tally=state.tally.record(event.message)), Action.REPORT_FAILURE
        return state, Action.NONE

    if not session.is_live:
        return state, Action.NONE

    if isinstance(event, ProtocolError):
        tally = state.tally.record(event.message)
        if tally.exhausted:
            return replace(state, session=SessionState.SHUTDOWN_FATAL, tally=tally), Action.SHUTDOWN_FATAL
        return replace(state, session=SessionState.ERROR_BACKOFF, tally=tally), Action.NONE

    if isinstance(event, ExchangeSucceeded):
        return SupervisorState(session=SessionState.RUNNING), Action.NONE

    if isinstance(event, TransportClosed):
        attempts = state.restart_attempts + 1
        closed = replace(state, restart_attempts=attempts, last_closure=event.message)
        if attempts >= MAX_CONSECUTIVE_FAILURES:
            return replace(closed, session=SessionState.SHUTDOWN_FATAL), Action.SHUTDOWN_FATAL
        return replace(closed, session=SessionState.STOPPED), Action.AUTO_RESTART

    return state, Action.NONE
