"""Heading hierarchy tracking shared by the extractor and the chunker."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Tuple

MAX_HEADING_LEVEL = 6


@dataclass(frozen=True, slots=True)
class HeadingContext:
    """Immutable snapshot of the active heading at each level (h1..h6)."""

    levels: Tuple[str, ...] = ("",) * MAX_HEADING_LEVEL

    def __post_init__(self) -> None:
        if len(self.levels) != MAX_HEADING_LEVEL:
            raise ValueError(f"HeadingContext requires {MAX_HEADING_LEVEL} levels, got {len(self.levels)}")

    def enter(self, level: int, text: str) -> "HeadingContext":
        """Return the context after a heading of ``level`` titled ``text``.

        Levels above ``level`` are kept, ``level`` takes the new text and every
        deeper level is cleared.
        """

        if not 1 <= level <= MAX_HEADING_LEVEL:
            raise ValueError(f"Heading level must be between 1 and {MAX_HEADING_LEVEL}, got {level}")
        kept = self.levels[: level - 1]
        cleared = ("",) * (MAX_HEADING_LEVEL - level)
        return HeadingContext(kept + (text,) + cleared)

    def as_list(self) -> List[str]:
        return list(self.levels)


def heading_level(line: str) -> int:
    """Return the Markdown heading level of ``line`` or 0 if it is not one."""

    if not line or not line.strip():
        return 0
    level = len(line) - len(line.lstrip("#"))
    if level == 0 or level > MAX_HEADING_LEVEL:
        return 0
    if len(line) == level or line[level].isspace():
        return level
    return 0


def heading_text(line: str) -> str:
    return line[heading_level(line):].strip()


def track_headings(lines: Iterable[str]) -> List[HeadingContext]:
    """Return the heading context in effect after each line of ``lines``."""

    context = HeadingContext()
    snapshots: List[HeadingContext] = []
    for line in lines:
        level = heading_level(line)
        if level:
            context = context.enter(level, heading_text(line))
        snapshots.append(context)
    return snapshots
