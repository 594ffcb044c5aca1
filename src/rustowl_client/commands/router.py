# File: rustowl_client/commands/router.py

"""Maps editor events and user commands onto server requests.

Cursor movement (and hover, depending on the display mode) clears the overlay
and schedules a debounced ``rustowl/cursor`` query. Each dispatched query
takes the next sequence number; a response is rendered only if no newer query
was dispatched while it was in flight.

Every exchange outcome is reported to the `SessionSupervisor`: a response
counts as success, an error response, timeout or connection failure counts as
a protocol error. A response that arrives but does not have the expected shape
is logged and discarded without touching either tally.

The configuration file is re-checked (`ConfigStore.reload`) before the display
mode gates a trigger and before a response is rendered.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from rustowl_client.commands.debounce import Debouncer
from rustowl_client.config.loader import ConfigStore
from rustowl_client.config.settings import (
    DISPLAY_MODE_KEY,
    DisplayMode,
    get_display_delay,
    get_display_mode,
    get_language_id,
)
from rustowl_client.decoration.engine import DecorationEngine
from rustowl_client.editor.host import EditorHost, TextDocument, TextEditor
from rustowl_client.lsp.client import LspResponseError
from rustowl_client.lsp.protocol import CursorResponse, MalformedResponseError, Position
from rustowl_client.session.supervisor import SessionSupervisor
from rustowl_client.status import StatusPresenter

logger = logging.getLogger(__name__)

REANALYZE_MESSAGE = "RustOwl: Re-analyzing workspace..."


class CommandRouter:
    """Dispatches editor events and the ``rustowl.*`` commands.

    Attributes:
        commands (Dict[str, Callable[..., Awaitable[Any]]]): Command id to
            handler, for hosts that register commands by name.
    """

    def __init__(
        self,
        supervisor: SessionSupervisor,
        engine: DecorationEngine,
        presenter: StatusPresenter,
        host: EditorHost,
        store: ConfigStore,
    ):
        self.supervisor = supervisor
        self.engine = engine
        self.presenter = presenter
        self.host = host
        self.store = store
        self.debouncer = Debouncer(lambda: get_display_delay(self.store))
        self._sequence = 0
        self._background: Set[asyncio.Task] = set()
        self.commands: Dict[str, Callable[..., Awaitable[Any]]] = {
            "rustowl.hover": self.hover,
            "rustowl.cycleDisplayMode": self.cycle_display_mode,
            "rustowl.toggle": self.toggle,
            "rustowl.toggleOwnership": self.toggle_ownership,
            "rustowl.analyze": self.analyze,
            "rustowl.restart": self.restart,
            "rustowl.update": self.update,
        }

    @property
    def sequence(self) -> int:
        return self._sequence

    async def execute(self, command_id: str, *args: Any) -> Any:
        handler = self.commands.get(command_id)
        if handler is None:
            raise KeyError(f"Unknown command '{command_id}'")
        return await handler(*args)

    # --- Editor events ---

    def _is_rust(self, document: TextDocument) -> bool:
        return document.language_id == get_language_id(self.store)

    def on_selection_changed(self, editor: TextEditor) -> None:
        self.store.reload()
        if get_display_mode(self.store) is not DisplayMode.SELECTED:
            return
        if editor is not self.host.active_editor or not self._is_rust(editor.document):
            return
        self._trigger(editor, editor.selection)

    def on_hover(self, editor: TextEditor, position: Position) -> None:
        self.store.reload()
        if get_display_mode(self.store) is not DisplayMode.HOVER:
            return
        if editor is not self.host.active_editor or not self._is_rust(editor.document):
            return
        self._trigger(editor, position)

    def on_active_editor_changed(self, editor: Optional[TextEditor]) -> None:
        self.debouncer.cancel()
        self.engine.clear()

    def on_document_saved(self, document: TextDocument) -> None:
        if not self._is_rust(document):
            return
        task = asyncio.get_running_loop().create_task(self._send_analyze())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def on_config_changed(self, key: str) -> None:
        if key != DISPLAY_MODE_KEY:
            return
        mode = get_display_mode(self.store)
        self.presenter.show_display_mode(mode)
        if mode is DisplayMode.DISABLED:
            self.debouncer.cancel()
            self.engine.clear()

    def _trigger(self, editor: TextEditor, position: Position) -> None:
        self.engine.clear()
        self.debouncer.schedule(lambda: self.query(editor, position))

    # --- Queries ---

    async def query(self, editor: TextEditor, position: Position) -> Optional[CursorResponse]:
        """Sends one cursor query and renders the response if it is still current.

        Returns:
            The rendered response, or None if there was no session, the
            exchange failed, the response was malformed or it was superseded.
        """
        client = self.supervisor.client
        if client is None:
            logger.debug("No running RustOwl session; cursor query skipped.")
            return None
        self._sequence += 1
        sequence = self._sequence
        generation = self.supervisor.generation
        uri = editor.document.uri

        try:
            raw = await client.cursor(uri, position)
        except LspResponseError as e:
            self.supervisor.report_protocol_error(f"Cursor request failed: {e}", generation)
            return None
        except asyncio.TimeoutError:
            self.supervisor.report_protocol_error("Cursor request timed out", generation)
            return None
        except ConnectionError as e:
            self.supervisor.report_protocol_error(f"Cursor request failed: {e}", generation)
            return None

        try:
            response = CursorResponse.from_lsp(raw)
        except MalformedResponseError as e:
            logger.warning(f"Discarding malformed cursor response for {uri}: {e}")
            return None
        self.supervisor.report_success(generation)

        if sequence != self._sequence:
            logger.debug(f"Dropping stale cursor response {sequence} (latest is {self._sequence}).")
            return None
        self.store.reload()
        if get_display_mode(self.store) is DisplayMode.DISABLED:
            return None

        self.presenter.show_analysis_status(response.status)
        self.engine.render(editor, response)
        return response

    async def _send_analyze(self) -> bool:
        client = self.supervisor.client
        if client is None:
            logger.info("No running RustOwl session; analyze skipped.")
            return False
        generation = self.supervisor.generation
        try:
            await client.analyze()
        except ConnectionError as e:
            self.supervisor.report_protocol_error(f"Analyze notification failed: {e}", generation)
            return False
        return True

    # --- Commands ---

    async def hover(self) -> Optional[CursorResponse]:
        """Queries the active selection immediately, regardless of mode."""
        editor = self.host.active_editor
        if editor is None:
            return None
        self.debouncer.cancel()
        return await self.query(editor, editor.selection)

    async def cycle_display_mode(self) -> DisplayMode:
        next_mode = get_display_mode(self.store).next()
        self.store.update(DISPLAY_MODE_KEY, next_mode.value)
        self.host.show_info(f"RustOwl display mode: {next_mode.value}")
        return next_mode

    async def toggle(self) -> DisplayMode:
        current = get_display_mode(self.store)
        new_mode = DisplayMode.SELECTED if current is DisplayMode.DISABLED else DisplayMode.DISABLED
        self.store.update(DISPLAY_MODE_KEY, new_mode.value)
        self.host.show_info(f"RustOwl {'disabled' if new_mode is DisplayMode.DISABLED else 'enabled'}")
        return new_mode

    async def toggle_ownership(
        self, uri: Optional[str] = None, line: Optional[int] = None, character: Optional[int] = None
    ) -> bool:
        """Toggles ownership display at an explicit position or the active selection."""
        if uri and isinstance(line, int) and isinstance(character, int):
            target_uri, position = uri, Position(line, character)
        elif self.host.active_editor is not None:
            editor = self.host.active_editor
            target_uri, position = editor.document.uri, editor.selection
        else:
            logger.debug("toggleOwnership without a target position; ignored.")
            return False

        client = self.supervisor.client
        if client is None:
            return False
        generation = self.supervisor.generation
        try:
            await client.toggle_ownership(target_uri, position)
        except (LspResponseError, asyncio.TimeoutError, ConnectionError) as e:
            self.supervisor.report_protocol_error(f"toggleOwnership failed: {str(e) or 'timed out'}", generation)
            return False
        self.supervisor.report_success(generation)
        return True

    async def analyze(self) -> bool:
        sent = await self._send_analyze()
        if sent:
            self.host.show_info(REANALYZE_MESSAGE)
        return sent

    async def restart(self) -> bool:
        return await self.supervisor.restart()

    async def update(self) -> bool:
        return await self.supervisor.update()

    def dispose(self) -> None:
        self.debouncer.cancel()
        self.engine.dispose()
