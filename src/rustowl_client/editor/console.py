# File: rustowl_client/editor/console.py

"""An `EditorHost` for terminals and headless use.

Keeps the painted state in memory (so it can be inspected) and echoes
overlays, status changes and messages as plain text lines.
"""

import itertools
import logging
from typing import Callable, Dict, List, Optional, Sequence

from rustowl_client.editor.host import (
    DecorationOptions,
    DecorationStyle,
    EditorHost,
    StyleSpec,
    TextEditor,
)

logger = logging.getLogger(__name__)

_style_ids = itertools.count(1)


class ConsoleStyle(DecorationStyle):
    def __init__(self, host: "ConsoleHost", spec: StyleSpec):
        self.id = next(_style_ids)
        self.spec = spec
        self.disposed = False
        self._host = host

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._host._forget(self)

    def __repr__(self) -> str:
        return f"ConsoleStyle(id={self.id}, spec={self.spec}, disposed={self.disposed})"


class ConsoleHost(EditorHost):
    """Console-backed host.

    Attributes:
        painted: Options currently painted, keyed by style id.
        styles: Live (undisposed) styles, keyed by style id.
        status: Last ``(text, tooltip)`` given to the status item.
        messages: ``(level, text)`` for every message shown.
    """

    def __init__(
        self,
        editor: Optional[TextEditor] = None,
        echo: Callable[[str], None] = print,
        prompt_answer: Optional[str] = None,
    ):
        self._editor = editor
        self._echo = echo
        self._prompt_answer = prompt_answer
        self.painted: Dict[int, List[DecorationOptions]] = {}
        self.styles: Dict[int, ConsoleStyle] = {}
        self.status = ("", "")
        self.messages: List[tuple] = []

    @property
    def active_editor(self) -> Optional[TextEditor]:
        return self._editor

    @active_editor.setter
    def active_editor(self, editor: Optional[TextEditor]) -> None:
        self._editor = editor

    def create_decoration_style(self, spec: StyleSpec) -> ConsoleStyle:
        style = ConsoleStyle(self, spec)
        self.styles[style.id] = style
        return style

    def set_decorations(
        self, editor: TextEditor, style: DecorationStyle, options: Sequence[DecorationOptions]
    ) -> None:
        if not isinstance(style, ConsoleStyle):
            raise TypeError(f"ConsoleHost cannot paint a {type(style).__name__}")
        if style.disposed:
            logger.warning(f"Ignoring paint on disposed style {style.id}.")
            return
        self.painted[style.id] = list(options)
        for option in options:
            r = option.range
            label = style.spec.background_color or style.spec.text_decoration or "hover"
            line = f"{editor.document.uri}:{r.start_line + 1}:{r.start_character + 1}-{r.end_line + 1}:{r.end_character + 1} [{label}]"
            if option.hover_message:
                line += f" {option.hover_message}"
            self._echo(line)

    def live_paint(self) -> Dict[int, List[DecorationOptions]]:
        """Non-empty paint of styles that are still alive."""
        return {sid: opts for sid, opts in self.painted.items() if sid in self.styles and opts}

    def _forget(self, style: ConsoleStyle) -> None:
        self.styles.pop(style.id, None)
        self.painted.pop(style.id, None)

    def set_status(self, text: str, tooltip: str, command: Optional[str] = None) -> None:
        self.status = (text, tooltip)
        logger.debug(f"Status: {text} ({tooltip})")

    def show_info(self, message: str) -> None:
        self.messages.append(("info", message))
        self._echo(message)

    def show_warning(self, message: str) -> None:
        self.messages.append(("warning", message))
        self._echo(f"warning: {message}")

    def show_error(self, message: str) -> None:
        self.messages.append(("error", message))
        self._echo(f"error: {message}")

    async def prompt(self, message: str, choices: List[str]) -> Optional[str]:
        self.messages.append(("prompt", message))
        self._echo(f"{message} [{'/'.join(choices)}]")
        if self._prompt_answer in choices:
            return self._prompt_answer
        return None

    def report_progress(self, title: str, message: str) -> None:
        self.messages.append(("progress", f"{title}: {message}"))
        logger.info(f"{title}: {message}")
