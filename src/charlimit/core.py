"""
Overflow scanning for charlimit.

Implements:
- One document-order pass that wraps leaves past the boundary
- Shrinking or removing overflow containers that no longer fit the suffix
- Coalescing adjacent containers so the overflow stays one run per parent
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .dom import Node, Transaction
from .mutate import merge_with_previous, split_simple_text, unwrap, wrap
from .selection import SelectionPreserver

logger = logging.getLogger(__name__)


@dataclass
class ScanResult:
    """What one pass changed."""
    wrapped: int = 0
    unwrapped: int = 0
    split: int = 0
    merged: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.wrapped or self.unwrapped or self.split or self.merged)


def _under_overflow(node: Node) -> bool:
    return node.find_ancestor(lambda n: n.is_overflow) is not None


def unwrap_keeping_selection(tx: Transaction, container: Node) -> None:
    """Unwrap, re-anchoring a selection that sat on the container itself."""
    parent = container.parent
    previous = container.previous_sibling
    following = container.next_sibling
    preserver = SelectionPreserver(tx)
    unwrap(tx, container)
    preserver.restore(previous=previous, following=following, parent=parent)


def _should_unwrap(container: Node, previous_length: int, next_length: int, boundary: int) -> bool:
    """
    Decide whether an existing container has to go.

    Gone when empty or wholly inside the budget. When the boundary cuts
    through it, it goes if its first descendant is simple text (so the
    pass can re-split at the exact offset) or still fits entirely.
    """
    if container.is_empty() or next_length <= boundary:
        return True
    if previous_length >= boundary:
        return False
    descendant = container.first_descendant
    if descendant is not None and descendant.is_simple_text:
        return True
    descendant_length = descendant.text_size if descendant is not None else 0
    return previous_length + descendant_length <= boundary


def wrap_overflowed_nodes(tx: Transaction, boundary: int) -> ScanResult:
    """
    Mark everything past the UTF-16 boundary as overflow.

    Walks a pre-order snapshot of the tree. Children lifted out of an
    unwrapped container come later in the snapshot, so they are re-wrapped
    at finer granularity in the same pass and a second pass is a no-op.
    A leaf ending exactly on the boundary stays unwrapped.
    """
    result = ScanResult()
    accumulated = 0

    for node in list(tx.root.depth_first()):
        if not node.is_attached:
            logger.debug("Skipping node %s detached earlier in this pass", node.key)
            continue

        if node.is_overflow:
            previous_length = accumulated
            next_length = previous_length + node.text_size
            if _should_unwrap(node, previous_length, next_length, boundary):
                unwrap_keeping_selection(tx, node)
                result.unwrapped += 1
                continue
            accumulated = next_length
            if merge_with_previous(tx, node):
                result.merged += 1
            continue

        if not node.is_leaf or _under_overflow(node):
            continue

        before = accumulated
        accumulated += node.text_size
        if accumulated <= boundary:
            continue

        preserver = SelectionPreserver(tx)
        target = node
        if before < boundary and node.is_simple_text:
            _, target = split_simple_text(tx, node, boundary - before)
            preserver.after_split(node, target)
            result.split += 1
        container = wrap(tx, target)
        result.wrapped += 1
        if merge_with_previous(tx, container, preserver):
            result.merged += 1
        preserver.restore()

    if result.changed:
        logger.debug(
            "Overflow scan at boundary %d: %d wrapped, %d unwrapped, %d split, %d merged",
            boundary, result.wrapped, result.unwrapped, result.split, result.merged,
        )
    return result
