"""
Text format strategy.

Parses text into paragraphs (sections separated by blank lines) of text
runs and line breaks. Every newline becomes a line-break leaf, so the
document's text content is exactly the input and every newline counts
against the limit.
"""

from ..dom import Node, create_linebreak, create_paragraph, create_root, create_text
from .base import FormatStrategy, registry


class TextStrategy(FormatStrategy):
    """Plain text as paragraphs of lines, split on blank lines."""

    @property
    def name(self) -> str:
        return "text"

    @property
    def extensions(self) -> list[str]:
        return [".txt", ".text", ".log"]

    def parse(self, content: str) -> Node:
        """
        Parse into tree: root -> paragraphs -> text runs and line breaks.
        The newlines separating two sections stay in the earlier paragraph.
        """
        paragraphs: list[list[Node]] = []
        current: list[Node] = []
        section_closed = False

        lines = content.split("\n") if content else []
        for i, line in enumerate(lines):
            if line:
                if section_closed:
                    paragraphs.append(current)
                    current = []
                    section_closed = False
                current.append(create_text(line))
            if i < len(lines) - 1:
                current.append(create_linebreak())
            if not line and current:
                section_closed = True

        if current:
            paragraphs.append(current)

        return create_root(*(create_paragraph(*children) for children in paragraphs))


# Register the default strategy
registry.register(TextStrategy())
