# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: pulls memory blocks out of raw page text. a block starts at a line holding only [MCP-START] and ends at
a line holding only [MCP-END]; whatever sits strictly between those two lines is the block content (trimmed).

rules the scanner follows (all of them are load-bearing):
- markers are case sensitive, [mcp-start] is just text
- a marker only counts when it is alone on its line (spaces/tabs around it are fine)
- scanning is left to right and non-overlapping
- a start marker line inside an open block is literal content. a block closes at the first end marker line,
  except that when it holds a literal start line and the next marker line after that end is also an end,
  the second end closes it (one level of nesting collapses into the outer block, deeper nesting is not
  tracked)
- one pass over the lines: every line is looked at a bounded number of times
- unmatched start or end markers produce nothing and never raise
- empty blocks are still returned, the caller decides to drop them

also includes a small format validator so users can see why markers on a page were not picked up.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import re  # for splitting lines and spotting same-line marker pairs
from collections.abc import Iterator  # type hint for the block generator
from dataclasses import dataclass, field  # for the format report
from typing import Any  # type hint for flexible dictionary values

from algorithm.content_hash import trim_content  # same trimming the fingerprint uses

START_MARKER = "[MCP-START]"  # literal start delimiter, must be alone on its line
END_MARKER = "[MCP-END]"  # literal end delimiter, must be alone on its line

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")  # accept unix, windows and old mac line endings
_SAME_LINE_BLOCK = re.compile(re.escape(START_MARKER) + r"[^\r\n]*" + re.escape(END_MARKER))

_START = 1  # line is a start marker line
_END = 2  # line is an end marker line
_TEXT = 0  # anything else


def _line_kind(line: str) -> int:
    stripped = line.strip()  # tolerate whitespace around the marker
    if stripped == START_MARKER:
        return _START
    if stripped == END_MARKER:
        return _END
    return _TEXT


def _next_markers(kinds: list[int]) -> list[int | None]:
    # for every line, the index of the next marker line after it (None when there is none)
    out: list[int | None] = [None] * len(kinds)
    nxt: int | None = None
    for j in range(len(kinds) - 1, -1, -1):
        out[j] = nxt
        if kinds[j] != _TEXT:
            nxt = j
    return out


def _find_close(kinds: list[int], next_marker: list[int | None], open_at: int) -> int | None:
    # return the index of the line that closes the block opened at open_at (None if nothing closes it)
    saw_start = False  # a literal start line sits inside the block
    j = next_marker[open_at]
    while j is not None:
        if kinds[j] == _START:
            saw_start = True
        else:
            # one level of nesting: an end line right after the inner end closes the outer block
            after = next_marker[j]
            if saw_start and after is not None and kinds[after] == _END:
                return after
            return j
        j = next_marker[j]
    return None


def iter_blocks(text: str) -> Iterator[str]:
    """yield the trimmed content of every well-formed block, in document order."""
    if not text:
        return
    lines = _LINE_SPLIT.split(text)
    kinds = [_line_kind(line) for line in lines]
    next_marker = _next_markers(kinds)
    i = 0
    while i < len(lines):
        if kinds[i] != _START:
            i += 1
            continue
        close = _find_close(kinds, next_marker, i)
        if close is None:
            # no end marker anywhere below, so no later start can close either
            return
        yield trim_content("\n".join(lines[i + 1 : close]))
        i = close + 1


def extract_blocks(text: str) -> list[str]:
    """eager version of iter_blocks; calling it twice on the same text gives the same list."""
    return list(iter_blocks(text))


@dataclass
class FormatReport:
    start_markers: int  # raw [MCP-START] occurrences anywhere in the text
    end_markers: int  # raw [MCP-END] occurrences anywhere in the text
    valid_blocks: int  # blocks the strict parser accepts
    issues: list[str] = field(default_factory=list)  # readable hints about ignored markers

    @property
    def has_issues(self) -> bool:
        return self.start_markers > self.valid_blocks or self.end_markers > self.valid_blocks

    def to_dict(self) -> dict[str, Any]:
        return {
            "startMarkers": self.start_markers,
            "endMarkers": self.end_markers,
            "totalMarkers": self.start_markers + self.end_markers,
            "validBlocks": self.valid_blocks,
            "hasIssues": self.has_issues,
            "issues": list(self.issues),
        }


def validate_format(text: str) -> FormatReport:
    """count markers and explain the ones the strict parser ignores (same-line pairs, inline markers)."""
    text = text or ""
    report = FormatReport(
        start_markers=text.count(START_MARKER),
        end_markers=text.count(END_MARKER),
        valid_blocks=len(extract_blocks(text)),
    )
    if not report.has_issues:
        return report

    same_line = len(_SAME_LINE_BLOCK.findall(text))
    if same_line:
        report.issues.append(f"{same_line} same-line blocks (markers must be on their own lines)")

    inline_starts = 0
    inline_ends = 0
    for line in _LINE_SPLIT.split(text):
        if START_MARKER in line and _line_kind(line) != _START:
            inline_starts += 1
        if END_MARKER in line and _line_kind(line) != _END:
            inline_ends += 1
    if inline_starts:
        report.issues.append(f"{inline_starts} inline {START_MARKER} markers")
    if inline_ends:
        report.issues.append(f"{inline_ends} inline {END_MARKER} markers")
    return report
