"""
Selection preservation across structural edits.

Wrapping keeps node identity, so most points survive untouched. Splits,
merges and removals need the points re-expressed; anything still detached
afterwards is re-anchored to a nearby attached position.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .dom import Node, Point, Transaction

logger = logging.getLogger(__name__)


@dataclass
class SavedPoint:
    """Where a point sat before a mutation."""
    point: Point
    parent: Node | None
    index: int


class SelectionPreserver:
    """
    Records the selection before a mutation and repairs it afterwards.

    Usage:
        preserver = SelectionPreserver(tx)
        ...mutate...
        preserver.restore()
    """

    def __init__(self, tx: Transaction):
        self.tx = tx
        self.saved: list[SavedPoint] = []
        selection = tx.selection
        if selection is not None:
            for point in selection.points():
                self.saved.append(
                    SavedPoint(point=point, parent=point.node.parent, index=point.node.index_in_parent())
                )

    def _points(self) -> tuple[Point, ...]:
        selection = self.tx.selection
        return selection.points() if selection is not None else ()

    def after_split(self, before: Node, after: Node) -> None:
        """Move text offsets past the split into the tail piece."""
        size = before.text_size
        for point in self._points():
            if point.node is before and point.type == "text" and point.offset > size:
                point.set(after, point.offset - size, "text")

    def plan_merge(self, previous: Node, container: Node) -> list[tuple[Point, int]]:
        """
        Where element points land in container once previous's children move
        to its front. Taken before the move, since the move itself shifts them.
        """
        spliced = len(previous.children)
        parent = container.parent
        slot = container.index_in_parent()
        plan = []
        for point in self._points():
            if point.type != "element":
                continue
            if point.node is previous:
                plan.append((point, point.offset))
            elif point.node is container:
                plan.append((point, spliced + point.offset))
            elif point.node is parent and point.offset == slot:
                # Between the two containers: after the spliced children
                plan.append((point, spliced))
        return plan

    def after_merge(self, container: Node, plan: list[tuple[Point, int]]) -> None:
        for point, offset in plan:
            point.set(container, offset, "element")

    def restore(
        self,
        previous: Node | None = None,
        following: Node | None = None,
        parent: Node | None = None,
    ) -> None:
        """
        Re-anchor points whose node was detached, then clamp offsets.

        Preference: previous text sibling (end), following text sibling
        (start), then the former parent at the node's former index.
        """
        for point in self._points():
            if not point.node.is_attached and not self._reanchor(point, previous, following, parent):
                logger.debug("No attached position left for the selection; clearing it")
                self.tx.set_selection(None)
                return
            limit = point.size_limit()
            if point.offset > limit:
                point.offset = limit

    def _reanchor(
        self, point: Point, previous: Node | None, following: Node | None, parent: Node | None
    ) -> bool:
        if previous is not None and previous.is_text and previous.is_attached:
            point.set(previous, previous.text_size, "text")
            return True
        if following is not None and following.is_text and following.is_attached:
            point.set(following, 0, "text")
            return True

        saved = next((entry for entry in self.saved if entry.point is point), None)
        candidates = [parent] if parent is not None else []
        if saved is not None and saved.parent is not None:
            candidates.append(saved.parent)
        for candidate in candidates:
            if candidate.is_attached and candidate.is_element:
                index = saved.index if saved is not None and saved.parent is candidate else len(candidate.children)
                point.set(candidate, max(0, min(index, len(candidate.children))), "element")
                return True
        return False
