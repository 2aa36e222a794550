"""
CLI interface for charlimit.

Reads a file or stdin, applies a character limit, and prints the document
with the overflowed suffix marked. The remaining budget goes to stderr.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass

from .config import get_config
from .dom import Editor, NodeKind
from .errors import CharLimitError
from .formats import markdown as _markdown  # noqa: F401 - ensure markdown format is registered
from .formats import text as _text  # noqa: F401 - ensure text format is registered
from .formats.base import FormatStrategy, registry
from .limit import register_character_limit
from .measure import get_cluster_iterator, get_measure


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    cfg = get_config()

    parser = argparse.ArgumentParser(
        prog="charlimit",
        description="Mark the part of a document that runs past a character limit",
    )

    parser.add_argument(
        "file",
        nargs="?",
        help="Input file (reads from stdin if not provided)",
    )

    parser.add_argument(
        "--limit",
        "-l",
        type=int,
        default=cfg.limit.max_characters,
        help=f"Maximum characters (default: {cfg.limit.max_characters})",
    )

    parser.add_argument(
        "--measure",
        "-m",
        type=str,
        default=cfg.limit.measure,
        help="How characters are counted: utf16, codepoint, grapheme, utf8",
    )

    parser.add_argument(
        "--segmentation",
        type=str,
        default=cfg.limit.segmentation,
        help="Units the limit never splits: grapheme or codepoint",
    )

    parser.add_argument(
        "--type",
        type=str,
        dest="format_type",
        help="Force format type (e.g., text, markdown)",
    )

    parser.add_argument(
        "--open",
        type=str,
        dest="overflow_open",
        default=cfg.render.overflow_open,
        help="Marker printed where the overflow starts",
    )

    parser.add_argument(
        "--close",
        type=str,
        dest="overflow_close",
        default=cfg.render.overflow_close,
        help="Marker printed where the overflow ends",
    )

    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Do not report the remaining count on stderr",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log scan decisions to stderr",
    )

    return parser.parse_args(args)


def read_input(filepath: str | None) -> tuple[str, str | None]:
    """Read from file or stdin, return (content, filename)."""
    if filepath:
        with open(filepath, encoding="utf-8") as f:
            return f.read(), filepath
    return sys.stdin.read(), None


def get_strategy(
    content: str,
    filename: str | None,
    force_type: str | None,
) -> FormatStrategy:
    """Get format strategy via override, detection, or fallback to text."""
    if force_type:
        strategy = registry.get_by_name(force_type)
        if strategy:
            return strategy
        strategy = registry.get_by_extension(force_type)
        if strategy:
            return strategy

    match = registry.detect(content, filename)
    if match:
        return match.strategy

    fallback = registry.get_by_name("text")
    if fallback:
        return fallback

    raise RuntimeError("No format strategy available")


@dataclass
class LimitResult:
    """Outcome of applying a limit to a whole document."""
    rendered: str
    remaining: int
    editor: Editor


def apply_limit(
    content: str,
    limit: int,
    filename: str | None = None,
    format_type: str | None = None,
    measure: str = "utf16",
    segmentation: str = "grapheme",
    overflow_open: str = "[[",
    overflow_close: str = "]]",
) -> LimitResult:
    """
    Load content into a fresh editor under a limit and render the result.

    The document is inserted as one update, exactly like a paste, so the
    limit's own listener does the marking.
    """
    strategy = get_strategy(content, filename, format_type)
    parsed = strategy.parse(content)

    editor = Editor(nodes=[NodeKind.OVERFLOW])
    reports: list[int] = []
    register_character_limit(
        editor,
        limit,
        strlen=get_measure(measure),
        on_remaining_changed=reports.append,
        clusters=get_cluster_iterator(segmentation),
    )
    editor.update(lambda tx: tx.append(tx.root, *parsed.children))

    remaining = reports[-1] if reports else limit
    rendered = strategy.render(editor.root, overflow_open, overflow_close)
    return LimitResult(rendered=rendered, remaining=remaining, editor=editor)


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parsed = parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.WARNING,
        format="[%(levelname)s] %(name)s: %(message)s",
    )

    try:
        content, filename = read_input(parsed.file)
    except FileNotFoundError:
        print(f"Error: File not found: {parsed.file}", file=sys.stderr)
        return 1
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error reading input: {e}", file=sys.stderr)
        return 1

    try:
        result = apply_limit(
            content,
            parsed.limit,
            filename=filename,
            format_type=parsed.format_type,
            measure=parsed.measure,
            segmentation=parsed.segmentation,
            overflow_open=parsed.overflow_open,
            overflow_close=parsed.overflow_close,
        )
    except CharLimitError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(result.rendered, end="" if result.rendered.endswith("\n") else "\n")
    if not parsed.quiet:
        print(f"remaining: {result.remaining}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
