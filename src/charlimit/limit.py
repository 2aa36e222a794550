"""
Character-limit wiring for an Editor.

register_character_limit() hooks two things into the editor:
- an update listener that reports the remaining budget and rescans the
  tree whenever the text is, or just was, over the limit
- a low-priority delete-character handler that clears overflow containers
  emptied by the deletion
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .config import get_config
from .core import ScanResult, wrap_overflowed_nodes
from .dom import (
    COMMAND_PRIORITY_LOW,
    DELETE_CHARACTER_COMMAND,
    HISTORY_MERGE_TAG,
    Editor,
    Node,
    NodeKind,
    Transaction,
    UpdatePayload,
)
from .errors import ConfigurationError
from .measure import (
    ClusterIterator,
    Strlen,
    default_cluster_iterator,
    get_measure,
    resolve_offset,
)
from .selection import SelectionPreserver

logger = logging.getLogger(__name__)

RemainingCallback = Callable[[int], None]


def merge_register(*unregisters: Callable[[], None]) -> Callable[[], None]:
    """Combine several unregister callbacks into one."""
    def unregister() -> None:
        for fn in reversed(unregisters):
            fn()
    return unregister


class CharacterLimit:
    """Keeps an editor's overflow marking in step with its text."""

    def __init__(
        self,
        editor: Editor,
        max_characters: int,
        strlen: Strlen | None = None,
        on_remaining_changed: RemainingCallback | None = None,
        clusters: ClusterIterator | None = None,
    ):
        self.editor = editor
        self.max_characters = max_characters
        self.strlen = strlen if strlen is not None else get_measure(get_config().limit.measure)
        self.on_remaining_changed = on_remaining_changed
        self.clusters = clusters if clusters is not None else default_cluster_iterator()
        self.last_length = 0
        self.last_scan: ScanResult | None = None

    def register(self) -> Callable[[], None]:
        return merge_register(
            self.editor.register_update_listener(self.on_update),
            self.editor.register_command(
                DELETE_CHARACTER_COMMAND, self.on_delete_character, COMMAND_PRIORITY_LOW
            ),
        )

    def on_update(self, payload: UpdatePayload) -> None:
        if self.editor.is_composing():
            return
        if not payload.dirty_leaves and not payload.dirty_elements:
            return

        text = self.editor.text_content()
        length = self.strlen(text)
        over_limit = length > self.max_characters or self.last_length > self.max_characters
        self.last_length = length

        if self.on_remaining_changed is not None:
            self.on_remaining_changed(self.max_characters - length)

        if over_limit:
            boundary = resolve_offset(text, self.max_characters, self.strlen, self.clusters)
            self.editor.update(lambda tx: self.rescan(tx, boundary), tag=HISTORY_MERGE_TAG)

    def rescan(self, tx: Transaction, boundary: int) -> ScanResult:
        self.last_scan = wrap_overflowed_nodes(tx, boundary)
        return self.last_scan

    def on_delete_character(self, tx: Transaction, backward: bool) -> bool:
        """Delete, then drop the overflow container (or its follower) left empty."""
        selection = tx.selection
        if selection is None:
            return False

        container = selection.anchor.node.find_ancestor(lambda n: n.is_overflow)
        following = container.next_sibling if container is not None else None
        tx.delete_character(True if backward is None else bool(backward))

        if container is not None and container.is_attached and container.is_empty():
            _remove_keeping_selection(tx, container)
        elif (
            following is not None
            and following.is_element
            and following.is_attached
            and following.is_empty()
        ):
            _remove_keeping_selection(tx, following)
        return True


def _remove_keeping_selection(tx: Transaction, node: Node) -> None:
    parent = node.parent
    previous = node.previous_sibling
    following = node.next_sibling
    preserver = SelectionPreserver(tx)
    tx.remove(node)
    preserver.restore(previous=previous, following=following, parent=parent)
    logger.debug("Removed empty %s node %s after deletion", node.type, node.key)


def register_character_limit(
    editor: Editor,
    max_characters: int | None = None,
    strlen: Strlen | None = None,
    on_remaining_changed: RemainingCallback | None = None,
    clusters: ClusterIterator | None = None,
) -> Callable[[], None]:
    """
    Enforce a character limit on editor until the returned disposer is called.

    max_characters, strlen and clusters default to the configured limit,
    measure and segmentation.
    The editor must have the overflow node kind registered.
    """
    if not editor.has_nodes(NodeKind.OVERFLOW):
        raise ConfigurationError(
            "register_character_limit: overflow node not registered on editor",
            setting="nodes",
        )
    if max_characters is None:
        max_characters = get_config().limit.max_characters

    limit = CharacterLimit(editor, max_characters, strlen, on_remaining_changed, clusters)
    logger.debug("Character limit of %d registered", max_characters)
    return limit.register()
