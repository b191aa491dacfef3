"""Condense ``gcov`` text output into per-line execution counts.

A ``.gcov`` file looks like::

    foo.c:
        1:   3:int x;
        -:   4:}
    function main called 2 returned 1

and is reduced to::

    foo.c:
    1:3:
    func

The first line is kept verbatim as the source header. Count lines keep only
their first two colon-separated fields. Non-executable lines (``-``), block
closers (ending in ``}``) and anything without two fields are dropped, and
``function`` summaries collapse to ``func`` so they cannot be read as counts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

FUNCTION_TOKEN = "func"


@dataclass(frozen=True, slots=True)
class Header:
    text: str

    def render(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class Count:
    count: str
    line: str

    def render(self) -> str:
        return f"{self.count}:{self.line}:"


@dataclass(frozen=True, slots=True)
class Function:
    def render(self) -> str:
        return FUNCTION_TOKEN


GcovEntry: TypeAlias = Header | Count | Function


def parse_line(raw: str) -> Count | Function | None:
    """Classify one body line; ``None`` means the line is dropped."""
    stripped = raw.strip()
    if not stripped:
        return None
    if stripped.startswith("function"):
        return Function()
    if stripped.startswith("-") or stripped.endswith("}"):
        return None
    fields = stripped.split(":")
    if len(fields) < 2:  # noqa: PLR2004
        return None
    count, line = fields[0].strip(), fields[1].strip()
    if not count or not line:
        return None
    return Count(count=count, line=line)


def parse(lines: Iterable[str]) -> Iterator[GcovEntry]:
    """Yield the header followed by every kept body entry."""
    it = iter(lines)
    for first in it:
        yield Header(first.rstrip("\r\n"))
        break
    for raw in it:
        entry = parse_line(raw)
        if entry is not None:
            yield entry


def condense(text: str) -> str:
    """Rewrite a whole ``.gcov`` document; the result ends with a newline."""
    rendered = [entry.render() for entry in parse(text.splitlines())]
    return "".join(f"{line}\n" for line in rendered)


def condense_bytes(data: bytes) -> bytes:
    """Byte-level :func:`condense` that preserves undecodable bytes."""
    return condense(data.decode("utf-8", errors="surrogateescape")).encode("utf-8", errors="surrogateescape")


__all__ = [
    "FUNCTION_TOKEN",
    "Count",
    "Function",
    "GcovEntry",
    "Header",
    "condense",
    "condense_bytes",
    "parse",
    "parse_line",
]
