"""
Structural primitives for overflow containers.

Every function takes the open Transaction explicitly; none of them touch
text content, only where nodes sit in the tree.
"""

from __future__ import annotations

from .dom import Node, Transaction, create_overflow
from .selection import SelectionPreserver


def wrap(tx: Transaction, node: Node) -> Node:
    """Put a new overflow container where node is, with node as its only child."""
    container = create_overflow()
    tx.replace(node, container)
    tx.append(container, node)
    return container


def unwrap(tx: Transaction, container: Node) -> list[Node]:
    """Lift container's children into its place, in order, and drop it."""
    children = list(container.children)
    if container.parent is None:
        return children
    for child in children:
        tx.insert_before(container, child)
    tx.remove(container)
    return children


def split_simple_text(tx: Transaction, leaf: Node, offset: int) -> tuple[Node, Node]:
    """
    Split a plain text run at a UTF-16 offset.

    Both pieces stay where the leaf was; their texts concatenate to the
    original. Only simple text may be split.
    """
    if not leaf.is_simple_text:
        raise ValueError(f"Only simple text can be split, got {leaf.kind.value} ({leaf.mode.value})")
    return tx.split_text(leaf, offset)


def merge_with_previous(
    tx: Transaction, container: Node, preserver: SelectionPreserver | None = None
) -> bool:
    """
    Fold an immediately preceding overflow container into container.

    The previous container's children go to the front, keeping order.
    Returns False (and changes nothing) if the previous sibling is not an
    overflow container.
    """
    previous = container.previous_sibling
    if previous is None or not previous.is_overflow:
        return False

    if preserver is None:
        preserver = SelectionPreserver(tx)
    plan = preserver.plan_merge(previous, container)

    moved = list(previous.children)
    first = container.first_child
    if first is None:
        tx.append(container, *moved)
    else:
        for child in moved:
            tx.insert_before(first, child)

    tx.remove(previous)
    preserver.after_merge(container, plan)
    return True
