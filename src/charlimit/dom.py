"""
DOM - Document Object Model for charlimit

A small in-memory rich-text engine: a single-owner tree of nodes, a range
selection, and transactional updates with change notification, commands
and history.

Key invariant: the tree is only mutated through an open Transaction.
Parent and sibling lookups are derived from the owning parent's child list.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ConfigurationError, TransactionError
from .measure import utf16_length, utf16_to_index

logger = logging.getLogger(__name__)

HISTORY_MERGE_TAG = "history-merge"
HISTORIC_TAG = "historic"

DELETE_CHARACTER_COMMAND = "delete-character"
INSERT_TEXT_COMMAND = "insert-text"

COMMAND_PRIORITY_EDITOR = 0
COMMAND_PRIORITY_LOW = 1
COMMAND_PRIORITY_NORMAL = 2
COMMAND_PRIORITY_HIGH = 3
COMMAND_PRIORITY_CRITICAL = 4


class NodeKind(Enum):
    ROOT = "root"
    ELEMENT = "element"
    TEXT = "text"
    LINEBREAK = "linebreak"
    OVERFLOW = "overflow"


class TextMode(Enum):
    NORMAL = "normal"
    TOKEN = "token"  # deleted and wrapped as a whole
    SEGMENTED = "segmented"


ELEMENT_KINDS = frozenset({NodeKind.ROOT, NodeKind.ELEMENT, NodeKind.OVERFLOW})
LEAF_KINDS = frozenset({NodeKind.TEXT, NodeKind.LINEBREAK})
CORE_KINDS = frozenset({NodeKind.ROOT, NodeKind.ELEMENT, NodeKind.TEXT, NodeKind.LINEBREAK})

_keys = itertools.count(1)


@dataclass(eq=False)
class Node:
    """A node in the document tree."""
    kind: NodeKind
    type: str = ""
    text: str = ""
    mode: TextMode = TextMode.NORMAL
    style: str | None = None
    inline: bool = False
    children: list[Node] = field(default_factory=list)
    parent: Node | None = field(default=None, repr=False)
    key: int = field(default_factory=lambda: next(_keys))

    def __post_init__(self):
        for child in self.children:
            child.parent = self

    # Variant checks

    @property
    def is_element(self) -> bool:
        return self.kind in ELEMENT_KINDS

    @property
    def is_leaf(self) -> bool:
        return self.kind in LEAF_KINDS

    @property
    def is_text(self) -> bool:
        return self.kind is NodeKind.TEXT

    @property
    def is_simple_text(self) -> bool:
        """Plain text runs can be split at any offset."""
        return self.kind is NodeKind.TEXT and self.mode is TextMode.NORMAL

    @property
    def is_overflow(self) -> bool:
        return self.kind is NodeKind.OVERFLOW

    @property
    def is_inline(self) -> bool:
        if self.kind is NodeKind.ROOT:
            return False
        if self.kind is NodeKind.ELEMENT:
            return self.inline
        return True

    # Navigation

    def index_in_parent(self) -> int:
        if self.parent is None:
            return -1
        for i, sibling in enumerate(self.parent.children):
            if sibling is self:
                return i
        return -1

    @property
    def previous_sibling(self) -> Node | None:
        i = self.index_in_parent()
        if i <= 0:
            return None
        return self.parent.children[i - 1]

    @property
    def next_sibling(self) -> Node | None:
        i = self.index_in_parent()
        if i < 0 or i + 1 >= len(self.parent.children):
            return None
        return self.parent.children[i + 1]

    @property
    def first_child(self) -> Node | None:
        return self.children[0] if self.children else None

    @property
    def last_child(self) -> Node | None:
        return self.children[-1] if self.children else None

    @property
    def first_descendant(self) -> Node | None:
        """Deepest first child (may be an empty element)."""
        node = self.first_child
        while node is not None and node.is_element and node.children:
            node = node.children[0]
        return node

    @property
    def last_descendant(self) -> Node | None:
        node = self.last_child
        while node is not None and node.is_element and node.children:
            node = node.children[-1]
        return node

    def find_ancestor(self, predicate: Callable[[Node], bool]) -> Node | None:
        """Nearest node, starting from self, matching predicate."""
        node: Node | None = self
        while node is not None:
            if predicate(node):
                return node
            node = node.parent
        return None

    @property
    def block(self) -> Node | None:
        """Nearest ancestor that is not inline."""
        return self.find_ancestor(lambda n: not n.is_inline)

    @property
    def is_attached(self) -> bool:
        top = self
        while top.parent is not None:
            top = top.parent
        return top.kind is NodeKind.ROOT

    def is_empty(self) -> bool:
        if self.is_element:
            return not self.children
        return self.text == ""

    # Content

    @property
    def text_content(self) -> str:
        if self.is_leaf:
            return self.text
        return "".join(leaf.text for leaf in self.leaves())

    @property
    def text_size(self) -> int:
        """Text length in UTF-16 code units."""
        return utf16_length(self.text_content)

    # Traversal

    def depth_first(self) -> Iterator[Node]:
        """Traverse tree depth-first, yielding self then children."""
        yield self
        for child in self.children:
            yield from child.depth_first()

    def leaves(self) -> Iterator[Node]:
        for node in self.depth_first():
            if node.is_leaf:
                yield node


def create_root(*children: Node) -> Node:
    return Node(kind=NodeKind.ROOT, type="root", children=list(children))


def create_paragraph(*children: Node) -> Node:
    return Node(kind=NodeKind.ELEMENT, type="paragraph", children=list(children))


def create_element(type: str, *children: Node, inline: bool = False) -> Node:
    return Node(kind=NodeKind.ELEMENT, type=type, inline=inline, children=list(children))


def create_text(text: str, mode: TextMode = TextMode.NORMAL, style: str | None = None) -> Node:
    return Node(kind=NodeKind.TEXT, type="text", text=text, mode=mode, style=style)


def create_linebreak() -> Node:
    return Node(kind=NodeKind.LINEBREAK, type="linebreak", text="\n")


def create_overflow(*children: Node) -> Node:
    return Node(kind=NodeKind.OVERFLOW, type="overflow", children=list(children))


def collect_overflows(root: Node) -> list[Node]:
    """All overflow containers under root, in document order."""
    return [node for node in root.depth_first() if node.is_overflow]


def outline(node: Node) -> Any:
    """
    Compact nested view of a tree for logs and assertions.

    Text leaves become their text, line breaks "\\n", elements lists of
    their children, and overflow containers ("overflow", *children).
    """
    if node.is_leaf:
        return node.text
    children = [outline(child) for child in node.children]
    if node.is_overflow:
        return ("overflow", *children)
    return children


@dataclass(eq=False)
class Point:
    """A selection endpoint: text offset into a leaf, or child index into an element."""
    node: Node
    offset: int
    type: str = "text"  # "text" | "element"

    def set(self, node: Node, offset: int, type: str) -> None:
        self.node = node
        self.offset = offset
        self.type = type

    def size_limit(self) -> int:
        if self.type == "element":
            return len(self.node.children)
        return self.node.text_size

    def is_valid(self) -> bool:
        if not self.node.is_attached:
            return False
        if self.type == "element" and not self.node.is_element:
            return False
        return 0 <= self.offset <= self.size_limit()


@dataclass(eq=False)
class RangeSelection:
    anchor: Point
    focus: Point

    @property
    def is_collapsed(self) -> bool:
        a, f = self.anchor, self.focus
        return a.node is f.node and a.offset == f.offset and a.type == f.type

    def points(self) -> tuple[Point, Point]:
        return self.anchor, self.focus

    def is_valid(self) -> bool:
        return self.anchor.is_valid() and self.focus.is_valid()


def point_at_end(node: Node) -> Point:
    """Collapsed caret position at the end of node."""
    if node.is_text:
        return Point(node, node.text_size, "text")
    if node.is_leaf:
        # Line breaks hold no caret; use the slot after them in the parent
        return Point(node.parent, node.index_in_parent() + 1, "element")
    return Point(node, len(node.children), "element")


def caret(point: Point) -> RangeSelection:
    return RangeSelection(
        anchor=Point(point.node, point.offset, point.type),
        focus=Point(point.node, point.offset, point.type),
    )


@dataclass(frozen=True)
class UpdatePayload:
    """What changed in one committed update."""
    dirty_leaves: frozenset[Node]
    dirty_elements: frozenset[Node]
    tags: frozenset[str]


CommandHandler = Callable[["Transaction", Any], bool]
UpdateListener = Callable[[UpdatePayload], None]


class Transaction:
    """
    The only handle through which the tree may be mutated.

    Records dirty nodes for the change notification. Closed once the
    owning update commits or fails.
    """

    def __init__(self, editor: Editor, tags: Iterable[str] = ()):
        self.editor = editor
        self.tags: set[str] = set(tags)
        self.dirty_leaves: set[Node] = set()
        self.dirty_elements: set[Node] = set()
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def root(self) -> Node:
        return self.editor.root

    @property
    def selection(self) -> RangeSelection | None:
        return self.editor._selection

    def set_selection(self, selection: RangeSelection | None) -> None:
        self._check()
        self.editor._selection = selection

    def select(self, node: Node) -> None:
        """Collapse the selection to the end of node."""
        self.set_selection(caret(point_at_end(node)))

    def _check(self) -> None:
        if not self._open:
            raise TransactionError("Transaction is closed; start a new update")

    def _check_registered(self, node: Node) -> None:
        for n in node.depth_first():
            if not self.editor.has_nodes(n.kind):
                raise ConfigurationError(
                    f"Node kind {n.kind.value!r} is not registered on this editor",
                    setting="nodes",
                )

    def mark_dirty(self, node: Node) -> None:
        if node.is_leaf:
            self.dirty_leaves.add(node)
        else:
            self.dirty_elements.add(node)
        parent = node.parent
        while parent is not None:
            self.dirty_elements.add(parent)
            parent = parent.parent

    # Structural primitives

    def _shift_element_points(self, parent: Node, index: int, delta: int, inclusive: bool) -> None:
        """Keep element points on parent pointing at the same children."""
        selection = self.selection
        if selection is None:
            return
        for point in {id(p): p for p in selection.points()}.values():
            if point.type != "element" or point.node is not parent:
                continue
            if point.offset > index or (inclusive and point.offset == index):
                point.offset = max(0, point.offset + delta)

    def _check_insertable(self, parent: Node, node: Node) -> None:
        if not parent.is_element:
            raise ValueError(f"Cannot insert into a {parent.kind.value} node")
        if parent.find_ancestor(lambda n: n is node) is not None:
            raise ValueError("Cannot insert a node into its own subtree")
        self._check_registered(node)

    def _detach(self, node: Node) -> int:
        parent = node.parent
        if parent is None:
            return -1
        index = node.index_in_parent()
        self.mark_dirty(parent)
        del parent.children[index]
        node.parent = None
        self._shift_element_points(parent, index, -1, inclusive=False)
        return index

    def _insert(self, parent: Node, index: int, node: Node, before_points: bool = False) -> None:
        """
        Put node at parent.children[index].

        An element point sitting exactly at index stays in front of the new
        node, unless before_points asks for the node to go in front of it.
        """
        self._check_insertable(parent, node)
        if node.parent is not None:
            old_parent = node.parent
            old_index = self._detach(node)
            if old_parent is parent and old_index < index:
                index -= 1
        parent.children.insert(index, node)
        node.parent = parent
        self.mark_dirty(node)
        self._shift_element_points(parent, index, 1, inclusive=before_points)

    def remove(self, node: Node) -> None:
        self._check()
        self._detach(node)

    def replace(self, node: Node, replacement: Node) -> Node:
        """Put replacement in node's slot; node ends up detached."""
        self._check()
        parent = node.parent
        if parent is None:
            raise ValueError("Cannot replace a detached node")
        if replacement is node:
            return replacement
        self._check_insertable(parent, replacement)
        if replacement.parent is not None:
            self._detach(replacement)
        index = node.index_in_parent()
        parent.children[index] = replacement
        replacement.parent = parent
        node.parent = None
        self.mark_dirty(parent)
        self.mark_dirty(replacement)
        return replacement

    def append(self, parent: Node, *nodes: Node) -> None:
        self._check()
        for node in nodes:
            self._insert(parent, len(parent.children), node)

    def insert_before(self, ref: Node, node: Node) -> None:
        self._check()
        if ref.parent is None:
            raise ValueError("Cannot insert next to a detached node")
        if node is ref:
            return
        self._insert(ref.parent, ref.index_in_parent(), node)

    def insert_after(self, ref: Node, node: Node) -> None:
        self._check()
        if ref.parent is None:
            raise ValueError("Cannot insert next to a detached node")
        if node is ref:
            return
        self._insert(ref.parent, ref.index_in_parent() + 1, node)

    def set_text(self, node: Node, text: str) -> None:
        self._check()
        if not node.is_text:
            raise ValueError(f"Cannot set text on a {node.kind.value} node")
        node.text = text
        self.mark_dirty(node)

    def split_text(self, node: Node, offset: int) -> tuple[Node, Node]:
        """
        Split a text node at a UTF-16 offset strictly inside its text.

        The original node keeps the head; a new sibling with the same mode
        and style takes the tail and is inserted right after it.
        Element points just after the node stay after the tail.
        """
        self._check()
        if not node.is_text:
            raise ValueError(f"Cannot split a {node.kind.value} node")
        if not 0 < offset < node.text_size:
            raise ValueError(f"Split offset {offset} outside 1..{node.text_size - 1}")
        index = utf16_to_index(node.text, offset)
        head, tail = node.text[:index], node.text[index:]
        after = create_text(tail, mode=node.mode, style=node.style)
        self.set_text(node, head)
        if node.parent is not None:
            self._insert(node.parent, node.index_in_parent() + 1, after, before_points=True)
        return node, after

    # Editing primitives

    def insert_text(self, text: str) -> None:
        """Insert text at the caret, replacing any selected range."""
        self._check()
        if not text:
            return
        selection = self.selection
        if selection is None:
            block = self._last_block()
            self.select(block.last_descendant or block)
            selection = self.selection
        if not selection.is_collapsed:
            self._delete_range(selection)
            selection = self.selection
        point = selection.anchor
        node = point.node

        if point.type == "text" and node.is_simple_text:
            index = utf16_to_index(node.text, point.offset)
            self.set_text(node, node.text[:index] + text + node.text[index:])
            target, offset = node, point.offset + utf16_length(text)
        else:
            if point.type == "text":
                # Non-simple leaf: insert beside it
                parent, index = node.parent, node.index_in_parent()
                if point.offset > 0:
                    index += 1
            else:
                parent, index = node, point.offset
            if parent.kind is NodeKind.ROOT:
                paragraph = create_paragraph()
                self._insert(parent, index, paragraph)
                parent, index = paragraph, 0
            target = create_text(text)
            self._insert(parent, index, target)
            offset = target.text_size
        self.set_selection(caret(Point(target, offset, "text")))

    def _last_block(self) -> Node:
        root = self.root
        last = root.last_child
        if last is None or last.is_inline or last.is_leaf:
            last = create_paragraph()
            self._insert(root, len(root.children), last)
        return last

    def delete_character(self, backward: bool = True) -> None:
        """Delete one code point next to the caret, or the selected range."""
        self._check()
        selection = self.selection
        if selection is None:
            return
        if not selection.is_collapsed:
            self._delete_range(selection)
            return

        node, offset = self._leaf_position(selection.anchor, backward)
        if node is None:
            self._merge_blocks(selection.anchor.node, backward)
            return

        inside = 0 < offset if backward else offset < node.text_size
        if node.is_simple_text and inside:
            index = utf16_to_index(node.text, offset)
            if backward:
                start, end = index - 1, index
                new_offset = offset - utf16_length(node.text[start])
            else:
                start, end = index, index + 1
                new_offset = offset
            self.set_text(node, node.text[:start] + node.text[end:])
            if node.text:
                self.set_selection(caret(Point(node, new_offset, "text")))
                return
            self._remove_leaf(node)
            return

        # Tokens and line breaks go as a whole; at an edge, step into the neighbour
        neighbour = node if inside else self._adjacent_leaf(node, backward)
        if neighbour is None:
            self._merge_blocks(node, backward)
            return
        if neighbour.is_simple_text and neighbour.text_size > 0:
            edge = neighbour.text_size if backward else 0
            self.set_selection(caret(Point(neighbour, edge, "text")))
            self.delete_character(backward)
            return
        self._remove_leaf(neighbour)

    def _leaf_position(self, point: Point, backward: bool) -> tuple[Node | None, int]:
        if point.type == "text":
            return point.node, point.offset
        element, offset = point.node, point.offset
        if backward:
            if offset == 0:
                return None, 0
            target = element.children[offset - 1]
            leaf = target if target.is_leaf else target.last_descendant
            if leaf is None or not leaf.is_leaf:
                return None, 0
            return leaf, leaf.text_size
        if offset >= len(element.children):
            return None, 0
        target = element.children[offset]
        leaf = target if target.is_leaf else target.first_descendant
        if leaf is None or not leaf.is_leaf:
            return None, 0
        return leaf, 0

    def _adjacent_leaf(self, node: Node, backward: bool) -> Node | None:
        block = node.block
        leaves = list(block.leaves()) if block is not None else []
        for i, leaf in enumerate(leaves):
            if leaf is node:
                j = i - 1 if backward else i + 1
                return leaves[j] if 0 <= j < len(leaves) else None
        return None

    def _remove_leaf(self, node: Node) -> None:
        """Remove a leaf and park the caret where it was."""
        previous = self._adjacent_leaf(node, True)
        following = self._adjacent_leaf(node, False)
        parent, index = node.parent, node.index_in_parent()
        self._detach(node)
        if previous is not None and previous.is_text:
            self.set_selection(caret(point_at_end(previous)))
        elif following is not None and following.is_text:
            self.set_selection(caret(Point(following, 0, "text")))
        else:
            self.set_selection(caret(Point(parent, index, "element")))

    def _merge_blocks(self, node: Node, backward: bool) -> None:
        """Join the caret's block with its previous (or next) sibling block."""
        block = node.block
        if block is None or block.kind is NodeKind.ROOT:
            return
        other = block.previous_sibling if backward else block.next_sibling
        if other is None or not other.is_element:
            return
        first, second = (other, block) if backward else (block, other)
        join = len(first.children)
        for child in list(second.children):
            self._insert(first, len(first.children), child)
        self._detach(second)
        self.set_selection(caret(Point(first, join, "element")))

    def _delete_range(self, selection: RangeSelection) -> None:
        start, end = self._ordered(selection)
        start_leaf, start_offset = self._leaf_position(start, False)
        if start_leaf is None:
            start_leaf, start_offset = self._leaf_after(start)
        end_leaf, end_offset = self._leaf_position(end, True)
        leaves = list(self.root.leaves())
        if start_leaf is None or end_leaf is None or leaves.index(end_leaf) < leaves.index(start_leaf):
            self.set_selection(caret(start))
            return
        si, ei = leaves.index(start_leaf), leaves.index(end_leaf)
        start_block = self._point_block(start) or start_leaf.block
        end_block = end_leaf.block
        spanned = self._blocks_between(start_block, end_block)
        anchor_parent, anchor_index = start_leaf.parent, start_leaf.index_in_parent()

        if start_leaf is end_leaf:
            self._cut(start_leaf, start_offset, end_offset)
        else:
            for leaf in leaves[si + 1:ei]:
                self._detach(leaf)
            self._cut(start_leaf, start_offset, start_leaf.text_size)
            self._cut(end_leaf, 0, end_offset)
            if end_leaf.parent is not None and end_leaf.is_empty():
                self._detach(end_leaf)

        if start_block is not end_block and start_block is not None and end_block is not None:
            for child in list(end_block.children):
                self._insert(start_block, len(start_block.children), child)
            for block in spanned:
                if block.is_attached and block.is_empty():
                    self._detach(block)

        if start_leaf.parent is None:
            self.set_selection(caret(Point(anchor_parent, anchor_index, "element")))
        elif start_leaf.is_empty():
            self._remove_leaf(start_leaf)
        else:
            self.set_selection(caret(Point(start_leaf, start_offset, "text")))

    def _leaf_after(self, point: Point) -> tuple[Node | None, int]:
        """First leaf at or after an element point, in document order."""
        element, offset = point.node, point.offset
        order = list(self.root.depth_first())
        if offset < len(element.children):
            anchor = element.children[offset]
            position = next(i for i, n in enumerate(order) if n is anchor)
        else:
            last = element.last_descendant or element
            position = next(i for i, n in enumerate(order) if n is last) + 1
        for node in order[position:]:
            if node.is_leaf:
                return node, 0
        return None, 0

    def _point_block(self, point: Point) -> Node | None:
        if point.type == "element" and point.node.kind is NodeKind.ROOT:
            return None
        return point.node.block

    def _blocks_between(self, first: Node | None, last: Node | None) -> list[Node]:
        """Top-level blocks after first, up to and including last."""
        blocks = self.root.children
        if first is None or last is None or first.parent is not self.root or last.parent is not self.root:
            return [last] if last is not None and last is not first else []
        i = next(k for k, b in enumerate(blocks) if b is first)
        j = next(k for k, b in enumerate(blocks) if b is last)
        return list(blocks[i + 1:j + 1])

    def _cut(self, leaf: Node, start: int, end: int) -> None:
        """Drop [start, end) UTF-16 units from a leaf; non-text leaves go whole."""
        if end <= start:
            return
        if leaf.is_text:
            a = utf16_to_index(leaf.text, start)
            b = utf16_to_index(leaf.text, end)
            self.set_text(leaf, leaf.text[:a] + leaf.text[b:])
        else:
            self._detach(leaf)

    def _ordered(self, selection: RangeSelection) -> tuple[Point, Point]:
        order = {node: i for i, node in enumerate(self.root.depth_first())}

        def position(point: Point) -> tuple[int, int]:
            if point.type == "element" and point.offset < len(point.node.children):
                return order[point.node.children[point.offset]], -1
            if point.type == "element":
                last = point.node.last_descendant or point.node
                return order[last], last.text_size + 1
            return order[point.node], point.offset

        a, f = selection.anchor, selection.focus
        return (a, f) if position(a) <= position(f) else (f, a)


@dataclass
class HistoryEntry:
    root: Node
    selection: RangeSelection | None


class Editor:
    """
    Owns the document tree, the selection, and the update loop.

    Node kinds beyond the core ones must be registered up front, e.g.
    Editor(nodes=[NodeKind.OVERFLOW]).
    """

    def __init__(self, root: Node | None = None, nodes: Iterable[NodeKind] = ()):
        self._registered: set[NodeKind] = set(CORE_KINDS) | set(nodes)
        self.root = root if root is not None else create_root()
        if self.root.kind is not NodeKind.ROOT:
            raise ValueError("Editor root must be a ROOT node")
        self._selection: RangeSelection | None = None
        self._active: Transaction | None = None
        self._composing = False
        self._update_listeners: list[UpdateListener] = []
        self._commands: dict[str, list[tuple[int, CommandHandler]]] = {}
        self.history: list[HistoryEntry] = [self._snapshot()]

        self.register_command(DELETE_CHARACTER_COMMAND, _default_delete, COMMAND_PRIORITY_EDITOR)
        self.register_command(INSERT_TEXT_COMMAND, _default_insert, COMMAND_PRIORITY_EDITOR)

    def has_nodes(self, *kinds: NodeKind) -> bool:
        return all(kind in self._registered for kind in kinds)

    # Read side

    def text_content(self) -> str:
        return self.root.text_content

    def get_selection(self) -> RangeSelection | None:
        return self._selection

    def is_composing(self) -> bool:
        return self._composing

    def set_composing(self, composing: bool) -> None:
        self._composing = composing

    # Listeners and commands

    def register_update_listener(self, listener: UpdateListener) -> Callable[[], None]:
        self._update_listeners.append(listener)

        def unregister() -> None:
            if listener in self._update_listeners:
                self._update_listeners.remove(listener)
        return unregister

    def register_command(
        self, command: str, handler: CommandHandler, priority: int
    ) -> Callable[[], None]:
        entry = (priority, handler)
        self._commands.setdefault(command, []).append(entry)

        def unregister() -> None:
            handlers = self._commands.get(command, [])
            if entry in handlers:
                handlers.remove(entry)
        return unregister

    def dispatch_command(self, command: str, payload: Any = None) -> bool:
        """Run handlers from highest priority down until one returns True."""
        handlers = sorted(
            self._commands.get(command, []), key=lambda entry: entry[0], reverse=True
        )

        def run(tx: Transaction) -> bool:
            return any(handler(tx, payload) for _, handler in handlers)

        return self.update(run)

    # Updates

    def update(self, fn: Callable[[Transaction], Any], tag: str | None = None) -> Any:
        """
        Run fn as one atomic update.

        Nested calls join the active transaction. If fn raises, the tree
        and selection are restored and the error propagates.
        """
        if self._active is not None:
            if tag:
                self._active.tags.add(tag)
            return fn(self._active)

        backup = self._snapshot()
        tx = Transaction(self, [tag] if tag else [])
        self._active = tx
        try:
            result = fn(tx)
        except Exception:
            self.root, self._selection = backup.root, backup.selection
            raise
        finally:
            self._active = None
            tx._open = False

        self._commit(tx)
        return result

    def _snapshot(self) -> HistoryEntry:
        root, selection = copy.deepcopy((self.root, self._selection))
        return HistoryEntry(root=root, selection=selection)

    def _commit(self, tx: Transaction) -> None:
        if self._selection is not None and not self._selection.is_valid():
            logger.debug("Dropping selection left on a detached node")
            self._selection = None

        changed = bool(tx.dirty_leaves or tx.dirty_elements)
        if changed and HISTORIC_TAG not in tx.tags:
            entry = self._snapshot()
            if HISTORY_MERGE_TAG in tx.tags and len(self.history) > 1:
                self.history[-1] = entry
            else:
                self.history.append(entry)

        payload = UpdatePayload(
            dirty_leaves=frozenset(n for n in tx.dirty_leaves if n.is_attached),
            dirty_elements=frozenset(n for n in tx.dirty_elements if n.is_attached),
            tags=frozenset(tx.tags),
        )
        for listener in list(self._update_listeners):
            listener(payload)

    def undo(self) -> bool:
        """Step back one history entry. Returns False when there is none."""
        if self._active is not None:
            raise TransactionError("Cannot undo inside an update")
        if len(self.history) < 2:
            return False
        self.history.pop()
        restored = copy.deepcopy(self.history[-1])
        self.root, self._selection = restored.root, restored.selection

        tx = Transaction(self, [HISTORIC_TAG])
        for node in self.root.depth_first():
            tx.mark_dirty(node)
        tx._open = False
        self._commit(tx)
        return True


def _default_delete(tx: Transaction, backward: Any) -> bool:
    tx.delete_character(bool(backward) if backward is not None else True)
    return True


def _default_insert(tx: Transaction, text: Any) -> bool:
    tx.insert_text(str(text))
    return True
