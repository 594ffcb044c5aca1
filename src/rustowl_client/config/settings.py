# File: rustowl_client/config/settings.py

"""Typed views over the configuration store.

Readers here are called fresh every time a value is needed (for example on
every render), so edits made through `ConfigStore.update` take effect at once.
Edits made directly in the YAML file take effect after `ConfigStore.reload`,
which the command router calls before gating and rendering a query.
"""

import enum
import logging
import pathlib
from dataclasses import dataclass
from typing import List

from rustowl_client.config.loader import ConfigStore

logger = logging.getLogger(__name__)

DISPLAY_MODE_KEY = "display.mode"
DEFAULT_DISPLAY_DELAY_MS = 500


class DisplayMode(enum.Enum):
    """When decorations are shown. Order defines the cycle order."""
    SELECTED = "selected"
    HOVER = "hover"
    MANUAL = "manual"
    DISABLED = "disabled"

    @classmethod
    def cycle_order(cls) -> List["DisplayMode"]:
        return list(cls)

    def next(self) -> "DisplayMode":
        modes = self.cycle_order()
        return modes[(modes.index(self) + 1) % len(modes)]


@dataclass(frozen=True)
class DecorationConfig:
    """Colors and render style for each paint bucket.

    Attributes:
        underline_thickness: Underline thickness in pixels, as a string.
        lifetime_color: Color for lifetime ranges.
        move_call_color: Color shared by moves and calls.
        immutable_borrow_color: Color for immutable borrows.
        mutable_borrow_color: Color for mutable borrows.
        outlive_color: Color for outlive errors and unknown kinds.
        shared_mut_color: Color for shared-mutable ranges. Empty means the
            shared-mutable bucket is not used and those ranges fall into the
            outlive bucket.
        highlight_background: Paint a background instead of an underline.
    """
    underline_thickness: str = "2"
    lifetime_color: str = "hsla(125, 80%, 60%, 0.6)"
    move_call_color: str = "hsla(35, 80%, 60%, 0.6)"
    immutable_borrow_color: str = "hsla(230, 80%, 60%, 0.6)"
    mutable_borrow_color: str = "hsla(300, 80%, 60%, 0.6)"
    outlive_color: str = "hsla(0, 80%, 60%, 0.6)"
    shared_mut_color: str = ""
    highlight_background: bool = False

    @property
    def supports_shared_mut(self) -> bool:
        return bool(self.shared_mut_color)


@dataclass(frozen=True)
class ServerSettings:
    path: str
    required_version: str
    repo_url: str
    cache_dir: pathlib.Path
    install_dir: pathlib.Path
    request_timeout: float
    install_timeout: float


def get_display_mode(store: ConfigStore) -> DisplayMode:
    raw = store.get(DISPLAY_MODE_KEY, DisplayMode.SELECTED.value)
    try:
        return DisplayMode(str(raw).lower())
    except ValueError:
        logger.warning(f"Unknown display mode '{raw}' in configuration, using 'selected'.")
        return DisplayMode.SELECTED


def get_display_delay(store: ConfigStore) -> float:
    """Returns the debounce delay in seconds."""
    raw = store.get("display.delay_ms", DEFAULT_DISPLAY_DELAY_MS)
    try:
        delay_ms = max(0, int(raw))
    except (TypeError, ValueError):
        logger.warning(f"Invalid display delay '{raw}', using {DEFAULT_DISPLAY_DELAY_MS}ms.")
        delay_ms = DEFAULT_DISPLAY_DELAY_MS
    return delay_ms / 1000.0


def get_language_id(store: ConfigStore) -> str:
    return str(store.get("display.language_id", "rust"))


def get_decoration_config(store: ConfigStore) -> DecorationConfig:
    defaults = DecorationConfig()
    return DecorationConfig(
        underline_thickness=str(store.get("decoration.underline_thickness", defaults.underline_thickness)),
        lifetime_color=str(store.get("decoration.lifetime_color", defaults.lifetime_color)),
        move_call_color=str(store.get("decoration.move_call_color", defaults.move_call_color)),
        immutable_borrow_color=str(store.get("decoration.immutable_borrow_color", defaults.immutable_borrow_color)),
        mutable_borrow_color=str(store.get("decoration.mutable_borrow_color", defaults.mutable_borrow_color)),
        outlive_color=str(store.get("decoration.outlive_color", defaults.outlive_color)),
        shared_mut_color=str(store.get("decoration.shared_mut_color", "") or ""),
        highlight_background=bool(store.get("decoration.highlight_background", False)),
    )


def get_server_settings(store: ConfigStore) -> ServerSettings:
    return ServerSettings(
        path=str(store.get("server.path", "") or ""),
        required_version=str(store.get("server.required_version", "")),
        repo_url=str(store.get("server.repo_url")),
        cache_dir=pathlib.Path(str(store.get("server.cache_dir"))).expanduser(),
        install_dir=pathlib.Path(str(store.get("server.install_dir"))).expanduser(),
        request_timeout=float(store.get("server.request_timeout", 30)),
        install_timeout=float(store.get("server.install_timeout", 1800)),
    )
