# File: rustowl_client/lsp/protocol.py

"""Wire model for the RustOwl LSP extension methods.

Parses the ``rustowl/cursor`` result into typed values. Server decoration
kinds form a closed enum; kinds this client does not recognise are kept as
`DecorationKind.OTHER` instead of being dropped, so newer servers still paint
something.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

METHOD_PREFIX = "rustowl"
CURSOR_METHOD = f"{METHOD_PREFIX}/cursor"
ANALYZE_METHOD = f"{METHOD_PREFIX}/analyze"
EXECUTE_COMMAND_METHOD = "workspace/executeCommand"
TOGGLE_OWNERSHIP_COMMAND = f"{METHOD_PREFIX}.toggleOwnership"


class MalformedResponseError(ValueError):
    """Raised when a cursor response does not have the expected shape."""


@dataclass(frozen=True)
class Position:
    line: int
    character: int

    def to_lsp(self) -> Dict[str, int]:
        return {"line": self.line, "character": self.character}


@dataclass(frozen=True)
class Range:
    start_line: int
    start_character: int
    end_line: int
    end_character: int

    @property
    def start(self) -> Position:
        return Position(self.start_line, self.start_character)

    @property
    def end(self) -> Position:
        return Position(self.end_line, self.end_character)

    @classmethod
    def from_lsp(cls, payload: Any) -> "Range":
        """Builds a Range from an LSP ``{start: {...}, end: {...}}`` object.

        Raises:
            MalformedResponseError: If any field is missing or not an integer.
        """
        try:
            start, end = payload["start"], payload["end"]
            values = (start["line"], start["character"], end["line"], end["character"])
        except (KeyError, TypeError) as e:
            raise MalformedResponseError(f"Invalid range: {payload!r}") from e
        if not all(isinstance(v, int) and not isinstance(v, bool) for v in values):
            raise MalformedResponseError(f"Invalid range coordinates: {payload!r}")
        return cls(*values)


class DecorationKind(enum.Enum):
    LIFETIME = "lifetime"
    IMM_BORROW = "imm_borrow"
    MUT_BORROW = "mut_borrow"
    MOVE = "move"
    CALL = "call"
    SHARED_MUT = "shared_mut"
    OUTLIVE = "outlive"
    OTHER = "other"

    @classmethod
    def from_wire(cls, value: Any) -> "DecorationKind":
        if not isinstance(value, str):
            raise MalformedResponseError(f"Decoration type must be a string, got {value!r}")
        try:
            kind = cls(value)
        except ValueError:
            logger.debug(f"Unknown decoration type '{value}', treating as OTHER.")
            return cls.OTHER
        return kind


class AnalysisStatus(enum.Enum):
    ANALYZING = "analyzing"
    FINISHED = "finished"
    ERROR = "error"

    @classmethod
    def from_wire(cls, value: Any) -> "AnalysisStatus":
        if not isinstance(value, str):
            raise MalformedResponseError(f"Analysis status must be a string, got {value!r}")
        try:
            status = cls(value)
        except ValueError:
            logger.debug(f"Unknown analysis status '{value}', treating as ERROR.")
            return cls.ERROR
        return status


@dataclass(frozen=True)
class Decoration:
    kind: DecorationKind
    range: Range
    hover_text: Optional[str] = None
    overlapped: bool = False

    @classmethod
    def from_lsp(cls, payload: Any) -> "Decoration":
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Decoration must be an object, got {payload!r}")
        hover_text = payload.get("hover_text")
        if hover_text is not None and not isinstance(hover_text, str):
            raise MalformedResponseError(f"hover_text must be a string: {payload!r}")
        return cls(
            kind=DecorationKind.from_wire(payload.get("type")),
            range=Range.from_lsp(payload.get("range")),
            hover_text=hover_text or None,
            overlapped=bool(payload.get("overlapped", False)),
        )


@dataclass(frozen=True)
class CursorResponse:
    """Result of a ``rustowl/cursor`` request.

    Attributes:
        is_analyzed: Whether the server has analysis data for the workspace.
        status: Analysis progress reported by the server.
        decorations: Decorations for the queried position, in server order.
    """
    is_analyzed: bool
    status: AnalysisStatus
    decorations: Tuple[Decoration, ...]

    @classmethod
    def from_lsp(cls, payload: Any) -> "CursorResponse":
        """Validates and parses a raw cursor result.

        Raises:
            MalformedResponseError: If the payload lacks ``is_analyzed``,
                ``status`` or a ``decorations`` list, or any decoration is
                malformed.
        """
        if not isinstance(payload, dict):
            raise MalformedResponseError(f"Cursor response must be an object, got {type(payload).__name__}")
        missing = [key for key in ("is_analyzed", "status", "decorations") if key not in payload]
        if missing:
            raise MalformedResponseError(f"Cursor response missing fields: {', '.join(missing)}")
        if not isinstance(payload["decorations"], list):
            raise MalformedResponseError("Cursor response 'decorations' must be a list")
        status = AnalysisStatus.from_wire(payload["status"])
        decorations = tuple(Decoration.from_lsp(item) for item in payload["decorations"])
        return cls(is_analyzed=bool(payload["is_analyzed"]), status=status, decorations=decorations)


def cursor_params(uri: str, position: Position) -> Dict[str, Any]:
    return {"position": position.to_lsp(), "document": {"uri": uri}}


def toggle_ownership_params(uri: str, position: Position) -> Dict[str, Any]:
    arguments: List[Any] = [uri, position.line, position.character]
    return {"command": TOGGLE_OWNERSHIP_COMMAND, "arguments": arguments}
