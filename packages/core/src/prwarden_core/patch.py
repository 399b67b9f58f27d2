"""Unified-diff decomposition into line-addressable hunks.

GitHub's review comment API only accepts line numbers in the *new* file, so
every hunk handed to the model carries explicit new-file line numbers instead
of leaving the model to infer them from ``+``/``-`` markers.

Only the hunk-header grammar emitted by GitHub's compare API is supported::

    @@ -oldStart,oldLen +newStart,newLen @@ optional section heading
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_HEADER_LINE_RE = re.compile(r"^@@ .*$", re.MULTILINE)
_HEADER_RE = re.compile(r"^@@ -(\d+),(\d+) \+(\d+),(\d+) @@")

# Context lines this close to either edge of a hunk stay unnumbered: comments
# almost never target unchanged boundary lines, and numbering costs tokens.
_EDGE_CONTEXT = 3


@dataclass(frozen=True)
class LineRange:
    start: int
    end: int

    def overlaps(self, other: LineRange) -> bool:
        return self.start <= other.end and other.start <= self.end

    def contains(self, line: int) -> bool:
        return self.start <= line <= self.end


@dataclass(frozen=True)
class Hunk:
    """One ``@@`` block of a file diff, annotated for the model."""

    old: LineRange
    new: LineRange
    old_text: str
    new_text: str
    added_lines: tuple[int, ...] = ()

    def render(self) -> str:
        return f"""
<new_hunk>
```
{self.new_text}
```
</new_hunk>

<old_hunk>
```
{self.old_text}
```
</old_hunk>
"""


@dataclass(frozen=True)
class FileChange:
    filename: str
    content: str
    diff: str
    hunks: tuple[Hunk, ...] = field(default_factory=tuple)


def split_patch(patch: str | None) -> list[str]:
    """Slice a file diff into per-hunk substrings at each ``@@`` header line."""
    if not patch:
        return []
    starts = [m.start() for m in _HEADER_LINE_RE.finditer(patch)]
    if not starts:
        return []
    ends = starts[1:] + [len(patch)]
    return [patch[s:e] for s, e in zip(starts, ends)]


def patch_bounds(hunk_text: str) -> tuple[LineRange, LineRange] | None:
    """Parse a hunk header into ``(old, new)`` ranges with inclusive ends."""
    match = _HEADER_RE.match(hunk_text)
    if match is None:
        return None
    old_start, old_len, new_start, new_len = (int(g) for g in match.groups())
    return (
        LineRange(old_start, old_start + old_len - 1),
        LineRange(new_start, new_start + new_len - 1),
    )


def annotate_hunk(hunk_text: str) -> Hunk | None:
    """Render one hunk as an old/new pair, numbering new-file lines.

    Added lines are always numbered. Context lines are numbered unless they
    sit within three lines of either edge of a hunk longer than six lines;
    a pure-deletion hunk numbers every context line since there is nothing
    else to anchor a comment on. Returns None when the header does not parse.
    """
    bounds = patch_bounds(hunk_text)
    if bounds is None:
        logger.debug("Skipping hunk with unparsable header: %r", hunk_text.split("\n", 1)[0])
        return None
    old_range, new_range = bounds

    lines = [line for line in hunk_text.split("\n")[1:] if not line.startswith("\\")]
    if lines and lines[-1] == "":
        lines.pop()

    removal_only = not any(line.startswith("+") for line in lines)
    trim_edges = len(lines) > 2 * _EDGE_CONTEXT

    old_lines: list[str] = []
    new_lines: list[str] = []
    added: list[int] = []
    new_line = new_range.start

    for position, line in enumerate(lines, 1):
        if line.startswith("-"):
            old_lines.append(line[1:])
        elif line.startswith("+"):
            new_lines.append(f"{new_line}: {line[1:]}")
            added.append(new_line)
            new_line += 1
        else:
            text = line[1:] if line.startswith(" ") else line
            old_lines.append(text)
            on_edge = trim_edges and (position <= _EDGE_CONTEXT or position > len(lines) - _EDGE_CONTEXT)
            if removal_only or not on_edge:
                new_lines.append(f"{new_line}: {text}")
            else:
                new_lines.append(text)
            new_line += 1

    return Hunk(
        old=old_range,
        new=new_range,
        old_text="\n".join(old_lines),
        new_text="\n".join(new_lines),
        added_lines=tuple(added),
    )


def decompose(patch: str | None) -> list[Hunk]:
    """Split and annotate a whole file diff, dropping hunks that fail to parse."""
    hunks = []
    for text in split_patch(patch):
        hunk = annotate_hunk(text)
        if hunk is not None:
            hunks.append(hunk)
    return hunks
