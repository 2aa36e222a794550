"""
Markdown format strategy.

Parses a practical subset of Markdown into blocks with styled text runs:
ATX headings, paragraphs, fenced code blocks, and inline `code`, **bold**
and *italic*. Markup characters are not document text, so they never count
against the limit.

Inline code and code blocks are token runs: they cannot be split, so a run
crossing the limit is marked as overflow as a whole.
"""

from __future__ import annotations

import re

from ..dom import (
    Node,
    TextMode,
    create_element,
    create_linebreak,
    create_paragraph,
    create_root,
    create_text,
)
from .base import FormatStrategy, registry

# ATX heading pattern: # to ###### followed by text
HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+)$")

# Fenced code block start/end
CODE_FENCE_PATTERN = re.compile(r"^```")

INLINE_PATTERN = re.compile(r"(`[^`]+`|\*\*[^*]+\*\*|\*[^*]+\*)")

STYLE_MARKS = {"bold": "**", "italic": "*", "code": "`"}


def parse_inline(text: str) -> list[Node]:
    """Split one line into text runs by inline markup."""
    runs: list[Node] = []
    for part in INLINE_PATTERN.split(text):
        if not part:
            continue
        if part.startswith("`"):
            runs.append(create_text(part[1:-1], mode=TextMode.TOKEN, style="code"))
        elif part.startswith("**"):
            runs.append(create_text(part[2:-2], style="bold"))
        elif part.startswith("*") and len(part) > 2:
            runs.append(create_text(part[1:-1], style="italic"))
        else:
            runs.append(create_text(part))
    return runs


class MarkdownStrategy(FormatStrategy):
    """Markdown parser producing headings, paragraphs and code blocks."""

    block_separator = "\n\n"

    @property
    def name(self) -> str:
        return "markdown"

    @property
    def extensions(self) -> list[str]:
        return [".md", ".markdown"]

    def detect(self, content: str) -> bool:
        return any(HEADING_PATTERN.match(line) for line in content.splitlines()[:20])

    def parse(self, content: str) -> Node:
        """
        Parse Markdown into a flat list of blocks.

        Structure:
        - Document (root)
          - h1..h6 elements with inline runs
          - paragraphs (lines joined by line breaks)
          - code elements holding one token run
        """
        blocks: list[Node] = []
        current_para_lines: list[str] = []

        in_code_block = False
        code_lines: list[str] = []

        def flush_paragraph():
            """Add accumulated paragraph as a block."""
            nonlocal current_para_lines
            if current_para_lines:
                children: list[Node] = []
                for i, line in enumerate(current_para_lines):
                    if i:
                        children.append(create_linebreak())
                    children.extend(parse_inline(line.strip()))
                blocks.append(create_paragraph(*children))
                current_para_lines = []

        def flush_code_block():
            """Add accumulated code block as one token run."""
            nonlocal code_lines
            if code_lines:
                code = create_text("\n".join(code_lines), mode=TextMode.TOKEN, style="code")
                blocks.append(create_element("code", code))
                code_lines = []

        for line in content.splitlines():
            if CODE_FENCE_PATTERN.match(line):
                if in_code_block:
                    flush_code_block()
                    in_code_block = False
                else:
                    flush_paragraph()
                    in_code_block = True
                continue

            if in_code_block:
                code_lines.append(line)
                continue

            heading_match = HEADING_PATTERN.match(line)
            if heading_match:
                flush_paragraph()
                level = len(heading_match.group(1))
                title = heading_match.group(2).strip()
                blocks.append(create_element(f"h{level}", *parse_inline(title)))
            elif line.strip():
                current_para_lines.append(line)
            elif current_para_lines:
                flush_paragraph()

        # Flush any remaining content
        if in_code_block:
            flush_code_block()
        else:
            flush_paragraph()

        return create_root(*blocks)

    def render_block(self, block: Node, inner: str) -> str:
        if block.type.startswith("h") and block.type[1:].isdigit():
            return f"{'#' * int(block.type[1:])} {inner}"
        if block.type == "code":
            return f"```\n{inner}\n```"
        return inner

    def render_leaf(self, leaf: Node) -> str:
        block = leaf.block
        if block is not None and block.type == "code":
            return leaf.text
        mark = STYLE_MARKS.get(leaf.style or "", "")
        return f"{mark}{leaf.text}{mark}"


# Register the strategy
registry.register(MarkdownStrategy())
