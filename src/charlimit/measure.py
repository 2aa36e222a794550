"""
Length measures and budget-to-offset resolution.

Offsets in the document are UTF-16 code units, the unit rich-text editors
use for selection and text sizes. A length measure is any deterministic
function from text to an integer; the budget is expressed in that measure
while the resolved boundary is always a UTF-16 offset.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator

import regex

from .config import get_config
from .errors import ConfigurationError

Strlen = Callable[[str], int]

GRAPHEME_PATTERN = regex.compile(r"\X")


def utf16_length(text: str) -> int:
    """Count UTF-16 code units (astral code points count twice)."""
    return len(text) + sum(1 for char in text if ord(char) > 0xFFFF)


def codepoint_length(text: str) -> int:
    return len(text)


def grapheme_length(text: str) -> int:
    """Count user-perceived characters."""
    return sum(1 for _ in GRAPHEME_PATTERN.finditer(text))


def utf8_length(text: str) -> int:
    return len(text.encode("utf-8"))


MEASURES: dict[str, Strlen] = {
    "utf16": utf16_length,
    "codepoint": codepoint_length,
    "grapheme": grapheme_length,
    "utf8": utf8_length,
}


def get_measure(name: str) -> Strlen:
    """Look up a named length measure."""
    try:
        return MEASURES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown length measure {name!r}, expected one of {sorted(MEASURES)}",
            setting="measure",
        ) from None


def utf16_to_index(text: str, offset: int) -> int:
    """
    Convert a UTF-16 offset into a Python string index.

    Raises ValueError when the offset is negative, past the end, or falls
    between the two halves of a surrogate pair.
    """
    if offset < 0:
        raise ValueError(f"Offset must be >= 0, got {offset}")
    units = 0
    for index, char in enumerate(text):
        if units == offset:
            return index
        if units > offset:
            break
        units += 2 if ord(char) > 0xFFFF else 1
    else:
        if units == offset:
            return len(text)
        if units < offset:
            raise ValueError(f"Offset {offset} is past the end of a {units}-unit text")
    raise ValueError(f"Offset {offset} falls inside a surrogate pair")


class ClusterIterator(ABC):
    """Splits text into the smallest units a boundary may not fall inside."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def clusters(self, text: str) -> Iterator[str]:
        ...


class GraphemeClusterIterator(ClusterIterator):
    """Extended grapheme clusters (combining marks, ZWJ emoji, flags)."""

    @property
    def name(self) -> str:
        return "grapheme"

    def clusters(self, text: str) -> Iterator[str]:
        for match in GRAPHEME_PATTERN.finditer(text):
            yield match.group()


class CodePointIterator(ClusterIterator):
    """One cluster per code point; never splits a surrogate pair."""

    @property
    def name(self) -> str:
        return "codepoint"

    def clusters(self, text: str) -> Iterator[str]:
        yield from text


_ITERATORS: dict[str, ClusterIterator] = {
    "grapheme": GraphemeClusterIterator(),
    "codepoint": CodePointIterator(),
}


def get_cluster_iterator(mode: str) -> ClusterIterator:
    """Look up a cluster iterator by segmentation mode."""
    try:
        return _ITERATORS[mode]
    except KeyError:
        raise ConfigurationError(
            f"Unknown segmentation mode {mode!r}, expected one of {sorted(_ITERATORS)}",
            setting="segmentation",
        ) from None


def default_cluster_iterator() -> ClusterIterator:
    """Cluster iterator selected by configuration."""
    return get_cluster_iterator(get_config().limit.segmentation)


def resolve_offset(
    text: str,
    max_characters: int,
    strlen: Strlen = utf16_length,
    clusters: ClusterIterator | None = None,
) -> int:
    """
    Find the UTF-16 offset where the budget runs out.

    Walks clusters in order, summing strlen(cluster), and stops before the
    first cluster that would push the sum past max_characters. The result
    never falls inside a cluster.

    Examples:
        "Hello World", 5 -> 5
        "abc", 10 -> 3
        "e\\u0301x", 1 -> 0 (the accent stays with its base)
    """
    if max_characters <= 0:
        return 0
    if clusters is None:
        clusters = default_cluster_iterator()

    measured = 0
    offset = 0
    for cluster in clusters.clusters(text):
        next_measured = measured + strlen(cluster)
        if next_measured > max_characters:
            break
        measured = next_measured
        offset += utf16_length(cluster)
    return offset
