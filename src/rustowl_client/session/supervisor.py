# File: rustowl_client/session/supervisor.py

"""Owns the single server connection and its lifecycle.

`SessionSupervisor` is the only place a client is created, replaced or
disposed. Every path that begins a new session (activation, restart, update,
automatic recovery) runs stop-then-start under one `asyncio.Lock`, and the
previous client is fully closed before the next one is constructed, so two
server processes never race for the transport.

Transport health events from the client and exchange outcomes reported by the
command router are fed through `transitions.transition`; the returned action
decides whether to do nothing, restart automatically, or shut down and ask the
user what to do.
"""

import asyncio
import logging
import os
from typing import Callable, List, Optional, Set

from rustowl_client.config.loader import ConfigStore
from rustowl_client.config.settings import get_server_settings
from rustowl_client.editor.host import EditorHost
from rustowl_client.lsp.client import EventSink, OwlLspClient
from rustowl_client.server.bootstrap import BinaryResolver, BootstrapError, ServerLocation
from rustowl_client.session.transitions import (
    MAX_CONSECUTIVE_FAILURES,
    Action,
    ExchangeSucceeded,
    HandshakeCompleted,
    ProtocolError,
    SessionEvent,
    SessionState,
    StartFailed,
    StartRequested,
    StopRequested,
    SupervisorState,
    transition,
)

logger = logging.getLogger(__name__)

RESTART_CHOICE = "Restart"
UPDATE_CHOICE = "Update"

ClientFactory = Callable[[str, str, float, EventSink, int], OwlLspClient]
StateObserver = Callable[[SupervisorState], None]


def _default_client_factory(
    command: str, cwd: str, timeout: float, event_sink: EventSink, generation: int
) -> OwlLspClient:
    return OwlLspClient(command, cwd, timeout=timeout, event_sink=event_sink, generation=generation)


class SessionSupervisor:
    """Lifecycle owner of the RustOwl client.

    Attributes:
        resolver (BinaryResolver): Produces the server command.
        host (EditorHost): Receives messages and prompts.
        store (ConfigStore): Source of the request timeout.
        workspace (str): Directory the server is started in.
        location (Optional[ServerLocation]): Location used by the current or
            last session.
    """

    def __init__(
        self,
        resolver: BinaryResolver,
        host: EditorHost,
        store: ConfigStore,
        workspace: Optional[str] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.resolver = resolver
        self.host = host
        self.store = store
        self.workspace = workspace or os.getcwd()
        self.location: Optional[ServerLocation] = None
        self._client_factory = client_factory or _default_client_factory
        self._client: Optional[OwlLspClient] = None
        self._generation = 0
        self._state = SupervisorState()
        self._lock = asyncio.Lock()
        self._observers: List[StateObserver] = []
        self._background: Set[asyncio.Task] = set()

    # --- State ---

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def client(self) -> Optional[OwlLspClient]:
        """The live client, or None while no session is running."""
        if self._state.session.is_live:
            return self._client
        return None

    def subscribe(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    def _apply(self, event: SessionEvent) -> Action:
        previous = self._state
        self._state, action = transition(previous, event)
        if self._state != previous:
            logger.debug(f"Session {previous.session.value} -> {self._state.session.value} on {event!r} ({action.value})")
            for observer in list(self._observers):
                try:
                    observer(self._state)
                except Exception as e:
                    logger.exception(f"Session state observer failed: {e}")
        return action

    # --- Events ---

    def handle_event(self, event: SessionEvent) -> None:
        """Entry point for client events and exchange outcomes.

        Events tagged with the generation of a client that has already been
        replaced are ignored.
        """
        generation = getattr(event, "generation", None)
        if generation is not None and generation != self._generation:
            logger.debug(f"Ignoring {event!r} from stale client generation {generation}.")
            return
        action = self._apply(event)
        if action is Action.AUTO_RESTART:
            attempt = self._state.restart_attempts
            logger.warning(f"RustOwl server closed ({self._state.last_closure}); restart attempt {attempt}/{MAX_CONSECUTIVE_FAILURES}.")
            self.host.show_warning(
                f"RustOwl server stopped unexpectedly. Restarting (attempt {attempt} of {MAX_CONSECUTIVE_FAILURES})..."
            )
            self._spawn(self._auto_restart())
        elif action is Action.SHUTDOWN_FATAL:
            self._spawn(self._shutdown_fatal())

    def report_success(self, generation: Optional[int] = None) -> None:
        self.handle_event(ExchangeSucceeded(generation=generation))

    def report_protocol_error(self, message: str, generation: Optional[int] = None) -> None:
        self.handle_event(ProtocolError(message, generation=generation))

    def report_exchange(self, ok: bool, message: str = "", generation: Optional[int] = None) -> None:
        if ok:
            self.report_success(generation)
        else:
            self.report_protocol_error(message or "request failed", generation)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # --- Lifecycle ---

    async def start(self, force_install: bool = False) -> ServerLocation:
        """Resolves the server and starts a session, replacing any current one.

        Raises:
            BootstrapError: If no server command could be produced.
            ConnectionError: If the server could not be started or initialized.
        """
        async with self._lock:
            return await self._start_locked(force_install=force_install, reset_restarts=True)

    async def stop(self) -> None:
        """Stops the session and cancels any pending automatic recovery."""
        current = asyncio.current_task()
        for task in list(self._background):
            if task is not current:
                task.cancel()
        async with self._lock:
            await self._stop_locked()

    async def restart(self) -> bool:
        """Re-resolves the server (without forcing a reinstall) and starts fresh.

        Returns:
            True on success. Failures are reported to the host and leave the
            supervisor STOPPED; they are never raised.
        """
        return await self._replace_session(force_install=False, reset_restarts=True, verb="restart")

    async def update(self) -> bool:
        """Forces a reinstall attempt, then starts fresh. See `restart`."""
        return await self._replace_session(force_install=True, reset_restarts=True, verb="update")

    async def _auto_restart(self) -> None:
        await self._replace_session(force_install=False, reset_restarts=False, verb="restart", announce=False)

    async def _replace_session(self, force_install: bool, reset_restarts: bool, verb: str, announce: bool = True) -> bool:
        async with self._lock:
            await self._stop_locked()
            try:
                location = await self._start_locked(force_install=force_install, reset_restarts=reset_restarts)
            except (BootstrapError, ConnectionError, OSError) as e:
                logger.error(f"RustOwl {verb} failed: {e}")
                self.host.show_error(f"RustOwl {verb} failed: {e}")
                return False
        logger.info(f"RustOwl {verb} succeeded using {location.path}.")
        if announce:
            self.host.show_info(f"RustOwl {verb} complete ({location.path}).")
        return True

    async def _start_locked(self, force_install: bool, reset_restarts: bool) -> ServerLocation:
        if self._client is not None:
            await self._stop_locked()
        self._apply(StartRequested(reset_restarts=reset_restarts))

        try:
            location = await self.resolver.resolve(force_install=force_install)
        except BootstrapError as e:
            self._apply(StartFailed(str(e)))
            raise

        self.location = location
        self._generation += 1
        timeout = get_server_settings(self.store).request_timeout
        client = self._client_factory(location.path, self.workspace, timeout, self.handle_event, self._generation)
        self._client = client
        try:
            await client.start_server()
            await client.initialize()
        except (ConnectionError, OSError) as e:
            logger.error(f"Failed to start RustOwl session: {e}")
            await self._dispose_client_locked()
            self._apply(StartFailed(str(e)))
            if isinstance(e, ConnectionError):
                raise
            raise ConnectionError(f"Failed to start RustOwl server '{location.path}': {e}") from e

        self._apply(HandshakeCompleted(generation=self._generation))
        logger.info(f"RustOwl session {self._generation} running ({location.origin.value}: {location.path}).")
        return location

    async def _stop_locked(self) -> None:
        self._apply(StopRequested())
        await self._dispose_client_locked()

    async def _dispose_client_locked(self) -> None:
        client = self._client
        if client is None:
            return
        try:
            await client.close()
        finally:
            if self._client is client:
                self._client = None

    async def _shutdown_fatal(self) -> None:
        async with self._lock:
            await self._dispose_client_locked()
        reason = self._state.tally.last_error or self._state.last_closure or "unknown error"
        logger.error(f"RustOwl session shut down after repeated failures: {reason}")
        choice = await self.host.prompt(
            f"RustOwl server stopped after {MAX_CONSECUTIVE_FAILURES} consecutive failures ({reason}). "
            "It will not restart automatically. Try a restart, or rebuild it with an update.",
            [RESTART_CHOICE, UPDATE_CHOICE],
        )
        if choice == RESTART_CHOICE:
            await self.restart()
        elif choice == UPDATE_CHOICE:
            await self.update()
        else:
            logger.info("Fatal shutdown prompt dismissed.")

    @property
    def is_fatal(self) -> bool:
        return self._state.session is SessionState.SHUTDOWN_FATAL
