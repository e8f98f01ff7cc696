"""One-line change summaries shown next to history entries."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

_LINE_SPLIT = re.compile(r"\r?\n")
_SECOND_LEVEL_HEADING = re.compile(r"^##(?!#)\s+")
_WHITESPACE = re.compile(r"\s+")
_SKIPPABLE_PREFIXES = ("#", "```", "---", "|", ">", "<!--")

DEFAULT_PREVIEW_LIMIT = 80


@dataclass(slots=True, frozen=True)
class ChangeSummary:
    preview: str
    primary_value: Optional[str] = None


def _first_changed_line(previous: List[str], current: List[str]) -> Tuple[int, str]:
    for index in range(max(len(previous), len(current))):
        line = current[index].strip() if index < len(current) else ""
        before = previous[index].strip() if index < len(previous) else ""
        if line == before:
            continue
        if not line or line.startswith(_SKIPPABLE_PREFIXES):
            continue
        return index, line
    return -1, ""


def _colon_index(text: str) -> int:
    positions = [pos for pos in (text.find(":"), text.find("：")) if pos != -1]
    return min(positions) if positions else -1


def _primary_value(lines: List[str], line_index: int) -> Optional[str]:
    heading = ""
    for line in lines[: line_index + 1]:
        trimmed = line.strip()
        if _SECOND_LEVEL_HEADING.match(trimmed):
            heading = trimmed[2:].strip()
    if not heading:
        return None
    colon = _colon_index(heading)
    if colon <= 0:
        return heading or None
    value = heading[colon + 1 :].strip()
    return value or None


def compute_change_summary(previous: str, content: str, limit: int = DEFAULT_PREVIEW_LIMIT) -> ChangeSummary:
    """Summarise the first meaningful changed line between two revisions."""

    if previous == content:
        return ChangeSummary(preview="")
    lines = _LINE_SPLIT.split(content)
    line_index, line = _first_changed_line(_LINE_SPLIT.split(previous), lines)
    if line_index < 0:
        return ChangeSummary(preview="")
    preview = _WHITESPACE.sub(" ", line).strip()[:limit]
    return ChangeSummary(preview=preview, primary_value=_primary_value(lines, line_index))


__all__ = ["ChangeSummary", "DEFAULT_PREVIEW_LIMIT", "compute_change_summary"]
