# File: rustowl_client/decoration/engine.py

"""Turns cursor responses into painted overlays.

Decorations are grouped into buckets (one style per bucket) and painted in a
single synchronous pass. Every render throws away the previous styles and
builds new ones from the current `DecorationConfig`, so color or thickness
changes apply on the next render without any cache to invalidate.
"""

import enum
import logging
from typing import Dict, List, Optional

from rustowl_client.config.loader import ConfigStore
from rustowl_client.config.settings import DecorationConfig, get_decoration_config
from rustowl_client.editor.host import DecorationOptions, DecorationStyle, EditorHost, StyleSpec, TextEditor
from rustowl_client.lsp.protocol import CursorResponse, DecorationKind

logger = logging.getLogger(__name__)


class Bucket(enum.Enum):
    LIFETIME = "lifetime"
    IMMUTABLE = "immutable"
    MUTABLE = "mutable"
    MOVE_CALL = "move-call"
    SHARED_MUT = "shared-mut"
    OUTLIVE = "outlive"
    MESSAGES = "messages"


# Every kind except SHARED_MUT, whose bucket depends on the configuration.
KIND_BUCKETS: Dict[DecorationKind, Bucket] = {
    DecorationKind.LIFETIME: Bucket.LIFETIME,
    DecorationKind.IMM_BORROW: Bucket.IMMUTABLE,
    DecorationKind.MUT_BORROW: Bucket.MUTABLE,
    DecorationKind.MOVE: Bucket.MOVE_CALL,
    DecorationKind.CALL: Bucket.MOVE_CALL,
    DecorationKind.OUTLIVE: Bucket.OUTLIVE,
    DecorationKind.OTHER: Bucket.OUTLIVE,
}
WILDCARD_BUCKET = Bucket.OUTLIVE


def bucket_for(kind: DecorationKind, config: DecorationConfig) -> Bucket:
    """Maps a decoration kind to the bucket it is painted in."""
    if kind is DecorationKind.SHARED_MUT:
        return Bucket.SHARED_MUT if config.supports_shared_mut else WILDCARD_BUCKET
    bucket = KIND_BUCKETS.get(kind)
    if bucket is None:
        # Wildcard arm.
        logger.debug(f"No bucket for decoration kind {kind!r}; painting as {WILDCARD_BUCKET.value}.")
        return WILDCARD_BUCKET
    return bucket


def bucket_color(bucket: Bucket, config: DecorationConfig) -> Optional[str]:
    colors = {
        Bucket.LIFETIME: config.lifetime_color,
        Bucket.IMMUTABLE: config.immutable_borrow_color,
        Bucket.MUTABLE: config.mutable_borrow_color,
        Bucket.MOVE_CALL: config.move_call_color,
        Bucket.SHARED_MUT: config.shared_mut_color,
        Bucket.OUTLIVE: config.outlive_color,
    }
    return colors.get(bucket)


def style_spec(color: Optional[str], config: DecorationConfig) -> StyleSpec:
    if not color:
        return StyleSpec()
    if config.highlight_background:
        return StyleSpec(background_color=color)
    return StyleSpec(text_decoration=f"underline solid {config.underline_thickness}px {color}")


def group_decorations(response: CursorResponse, config: DecorationConfig) -> Dict[Bucket, List[DecorationOptions]]:
    """Groups a response into per-bucket paint lists.

    Overlapped decorations are never painted, but their hover text still goes
    to the messages bucket like any other decoration with hover text.
    """
    grouped: Dict[Bucket, List[DecorationOptions]] = {bucket: [] for bucket in Bucket}
    for deco in response.decorations:
        if not deco.overlapped:
            grouped[bucket_for(deco.kind, config)].append(DecorationOptions(range=deco.range))
        if deco.hover_text:
            grouped[Bucket.MESSAGES].append(DecorationOptions(range=deco.range, hover_message=deco.hover_text))
    return grouped


class DecorationEngine:
    """Owns the overlay styles of one host."""

    def __init__(self, host: EditorHost, store: ConfigStore):
        self.host = host
        self.store = store
        self._styles: Dict[Bucket, DecorationStyle] = {}

    @property
    def has_styles(self) -> bool:
        return bool(self._styles)

    def render(self, editor: TextEditor, response: CursorResponse) -> Dict[Bucket, List[DecorationOptions]]:
        """Replaces the overlay with the contents of `response`.

        Returns:
            The painted options per bucket.
        """
        config = get_decoration_config(self.store)
        self.dispose()
        self._styles = {
            bucket: self.host.create_decoration_style(style_spec(bucket_color(bucket, config), config))
            for bucket in Bucket
            if bucket is not Bucket.SHARED_MUT or config.supports_shared_mut
        }
        grouped = group_decorations(response, config)
        for bucket, style in self._styles.items():
            self.host.set_decorations(editor, style, grouped[bucket])
        logger.debug(
            f"Rendered {len(response.decorations)} decorations in {editor.document.uri}: "
            + ", ".join(f"{b.value}={len(opts)}" for b, opts in grouped.items() if opts)
        )
        return grouped

    def clear(self) -> None:
        """Removes the overlay."""
        self.dispose()

    def dispose(self) -> None:
        for style in self._styles.values():
            style.dispose()
        self._styles = {}
