# File: rustowl_client/extension.py

"""Activation and deactivation: builds the component graph for one host."""

import logging
import os
from typing import Callable, Optional

from rustowl_client.commands.router import CommandRouter
from rustowl_client.config.loader import ConfigStore
from rustowl_client.config.settings import get_display_mode
from rustowl_client.decoration.engine import DecorationEngine
from rustowl_client.editor.host import EditorHost
from rustowl_client.server.bootstrap import BinaryResolver, BootstrapError, CommandRunner
from rustowl_client.session.supervisor import ClientFactory, SessionSupervisor
from rustowl_client.session.transitions import SessionState, SupervisorState
from rustowl_client.status import StatusPresenter

logger = logging.getLogger(__name__)


class Extension:
    """Everything the client runs inside one editor host.

    Attributes:
        supervisor (SessionSupervisor): Owns the server session.
        engine (DecorationEngine): Owns the overlay.
        presenter (StatusPresenter): Owns the status item.
        router (CommandRouter): Receives editor events and commands.
    """

    def __init__(
        self,
        host: EditorHost,
        store: ConfigStore,
        workspace: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.host = host
        self.store = store
        self.workspace = workspace or os.getcwd()
        resolver = BinaryResolver(store, runner=runner, host=host)
        self.supervisor = SessionSupervisor(resolver, host, store, self.workspace, client_factory=client_factory)
        self.engine = DecorationEngine(host, store)
        self.presenter = StatusPresenter(host)
        self.router = CommandRouter(self.supervisor, self.engine, self.presenter, host, store)
        self._unsubscribe_config: Optional[Callable[[], None]] = None
        self.active = False

    def _on_session_state(self, state: SupervisorState) -> None:
        if state.session is SessionState.RUNNING:
            self.presenter.show_display_mode(get_display_mode(self.store))
        else:
            self.presenter.show_session_state(state)
        if not state.session.is_live:
            self.engine.clear()

    async def activate(self) -> bool:
        """Wires components together and starts the session.

        Returns:
            True if a session is running. Startup failures are shown to the
            user and logged, never raised.
        """
        if self.active:
            return self.supervisor.client is not None
        self.active = True
        self.supervisor.subscribe(self._on_session_state)
        self._unsubscribe_config = self.store.subscribe(self.router.on_config_changed)
        self.presenter.show_display_mode(get_display_mode(self.store))

        try:
            location = await self.supervisor.start()
        except (BootstrapError, ConnectionError, OSError) as e:
            logger.error(f"Failed to start RustOwl: {e}")
            self.host.show_error(f"Failed to start RustOwl\n{e}")
            return False
        logger.info(f"RustOwl activated with {location.path} in {self.workspace}.")
        return True

    async def deactivate(self) -> None:
        self.router.dispose()
        if self._unsubscribe_config is not None:
            self._unsubscribe_config()
            self._unsubscribe_config = None
        await self.supervisor.stop()
        self.active = False
        logger.info("RustOwl deactivated.")
