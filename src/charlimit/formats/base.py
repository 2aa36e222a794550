"""
Base format interface and registry.

Each format strategy turns source text into a document tree and renders a
tree back to text, showing overflow containers with caller-chosen markers.
The registry manages format detection and selection.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import PurePath

from ..dom import Node


class FormatStrategy(ABC):
    """Base class for content format handlers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable format name."""
        ...

    @property
    @abstractmethod
    def extensions(self) -> list[str]:
        """File extensions this format handles (e.g., ['.txt', '.text'])."""
        ...

    def detect(self, content: str) -> bool:
        """
        Magic detection: returns True if content looks like this format.
        Default implementation returns False (rely on extension only).
        """
        return False

    @abstractmethod
    def parse(self, content: str) -> Node:
        """
        Parse content into a detached tree.
        Returns a ROOT node whose children are block elements.
        """
        ...

    block_separator: str = ""

    def render(self, root: Node, overflow_open: str = "", overflow_close: str = "") -> str:
        """Render the document, wrapping overflow containers in the markers."""
        return self.block_separator.join(
            self.render_block(block, self.render_inline(block, overflow_open, overflow_close))
            for block in root.children
        )

    def render_block(self, block: Node, inner: str) -> str:
        """Decorate a rendered block. Default: as is."""
        return inner

    def render_leaf(self, leaf: Node) -> str:
        return leaf.text

    def render_inline(self, node: Node, overflow_open: str, overflow_close: str) -> str:
        if node.is_leaf:
            return self.render_leaf(node)
        inner = "".join(
            self.render_inline(child, overflow_open, overflow_close) for child in node.children
        )
        if node.is_overflow:
            return overflow_open + inner + overflow_close
        return inner


@dataclass
class FormatMatch:
    """A detected format and what it was recognised by."""
    strategy: FormatStrategy
    matched_on: str  # "extension" or "content"


class FormatRegistry:
    """Looks strategies up by name or extension, or sniffs them from content."""

    def __init__(self):
        self._strategies: list[FormatStrategy] = []
        self._by_extension: dict[str, FormatStrategy] = {}
        self._by_name: dict[str, FormatStrategy] = {}

    def register(self, strategy: FormatStrategy) -> None:
        self._strategies.append(strategy)
        self._by_name[strategy.name] = strategy
        for ext in strategy.extensions:
            self._by_extension.setdefault(ext, strategy)

    def get_by_name(self, name: str) -> FormatStrategy | None:
        return self._by_name.get(name)

    def get_by_extension(self, ext: str) -> FormatStrategy | None:
        """Accepts the extension with or without its leading dot."""
        return self._by_extension.get("." + ext.lower().lstrip("."))

    def detect(self, content: str, filename: str | None = None) -> FormatMatch | None:
        """
        Pick a strategy for content: a known filename extension wins,
        then the first strategy whose detect() accepts the content.
        Returns None when nothing matches, leaving the fallback to the caller.
        """
        suffix = PurePath(filename).suffix if filename else ""
        if suffix:
            strategy = self.get_by_extension(suffix)
            if strategy is not None:
                return FormatMatch(strategy=strategy, matched_on="extension")

        for strategy in self._strategies:
            if strategy.detect(content):
                return FormatMatch(strategy=strategy, matched_on="content")
        return None


registry = FormatRegistry()
