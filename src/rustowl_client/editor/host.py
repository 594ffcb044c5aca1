# File: rustowl_client/editor/host.py

"""Capability interface of the host editor.

The client never talks to an editor toolkit directly. Everything visible
(overlays, status item, messages, prompts, progress) goes through an
`EditorHost` implementation supplied at activation time.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from rustowl_client.lsp.protocol import Position, Range


@dataclass(frozen=True)
class StyleSpec:
    """Render attributes of one decoration style. Both fields None is a zero style."""
    background_color: Optional[str] = None
    text_decoration: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.background_color is None and self.text_decoration is None


@dataclass(frozen=True)
class DecorationOptions:
    range: Range
    hover_message: Optional[str] = None


@dataclass(frozen=True)
class TextDocument:
    uri: str
    language_id: str


@dataclass
class TextEditor:
    """An open editor: a document plus the current cursor position."""
    document: TextDocument
    selection: Position


class DecorationStyle(ABC):
    """Handle to a style created by the host. Disposing removes its paint."""

    @abstractmethod
    def dispose(self) -> None:
        ...


class EditorHost(ABC):
    """What the client needs from the editor it runs in."""

    @property
    @abstractmethod
    def active_editor(self) -> Optional[TextEditor]:
        ...

    @abstractmethod
    def create_decoration_style(self, spec: StyleSpec) -> DecorationStyle:
        ...

    @abstractmethod
    def set_decorations(
        self, editor: TextEditor, style: DecorationStyle, options: Sequence[DecorationOptions]
    ) -> None:
        """Replaces everything painted with `style` in `editor` by `options`."""

    @abstractmethod
    def set_status(self, text: str, tooltip: str, command: Optional[str] = None) -> None:
        ...

    @abstractmethod
    def show_info(self, message: str) -> None:
        ...

    @abstractmethod
    def show_warning(self, message: str) -> None:
        ...

    @abstractmethod
    def show_error(self, message: str) -> None:
        ...

    @abstractmethod
    async def prompt(self, message: str, choices: List[str]) -> Optional[str]:
        """Shows a message with choices; returns the picked one or None if dismissed."""

    def report_progress(self, title: str, message: str) -> None:
        """Reports progress of long operations such as installs. Optional."""
