"""Chunking utilities for grouping extracted lines into embedding-friendly windows."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .headings import heading_level, track_headings
from .models import Chunk
from .tokenization import HuggingFaceTokenCounter, TokenCounter

LOGGER = logging.getLogger(__name__)

CODE_MULTIPLIER = 1.5
TABLE_MULTIPLIER = 1.3
LIST_MULTIPLIER = 0.8
HEADING_MULTIPLIER = 0.7


class ChunkSizeMode(str, Enum):
    CHARACTERS = "characters"
    TOKENS = "tokens"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off", ""}


@dataclass(slots=True)
class ChunkingConfig:
    max_size: int = 1000
    overlap: int = 100
    size_mode: ChunkSizeMode = ChunkSizeMode.CHARACTERS
    token_overlap: int = 20
    scale_by_content: bool = False

    def __post_init__(self) -> None:
        self.size_mode = ChunkSizeMode(self.size_mode)
        _validate(self.max_size, self.overlap)
        _validate(self.max_size, self.token_overlap)

    @property
    def effective_overlap(self) -> int:
        if self.size_mode is ChunkSizeMode.TOKENS:
            return self.token_overlap
        return self.overlap

    @classmethod
    def from_env(cls) -> "ChunkingConfig":
        defaults = cls()
        return cls(
            max_size=int(os.getenv("CHUNK_MAX_SIZE", defaults.max_size)),
            overlap=int(os.getenv("CHUNK_OVERLAP", defaults.overlap)),
            size_mode=ChunkSizeMode(os.getenv("CHUNK_SIZE_MODE", defaults.size_mode.value).strip().lower()),
            token_overlap=int(os.getenv("CHUNK_TOKEN_OVERLAP", defaults.token_overlap)),
            scale_by_content=_env_flag("CHUNK_SCALE_BY_CONTENT", defaults.scale_by_content),
        )


def _validate(max_size: int, overlap: int) -> None:
    if max_size <= 0:
        raise ValueError(f"max_size must be positive, got {max_size}")
    if overlap < 0:
        raise ValueError(f"overlap must not be negative, got {overlap}")


def content_multiplier(line: str) -> float:
    """Return the budget multiplier for ``line`` when content scaling is enabled."""

    stripped = line.lstrip()
    if "`" in line:
        return CODE_MULTIPLIER
    if "|" in line and len(line.split("|")) > 4:
        return TABLE_MULTIPLIER
    if stripped.startswith(("- ", "* ")) or _is_numbered_item(stripped):
        return LIST_MULTIPLIER
    if heading_level(line):
        return HEADING_MULTIPLIER
    return 1.0


def _is_numbered_item(line: str) -> bool:
    digits = len(line) - len(line.lstrip("0123456789"))
    return digits > 0 and line[digits : digits + 2] == ". "


def chunk_lines(
    lines: Sequence[str],
    max_size: int,
    overlap: int,
    *,
    token_counter: Optional[TokenCounter] = None,
    scale_by_content: bool = False,
) -> List[Chunk]:
    """Group ``lines`` into overlapping windows of at most ``max_size``.

    Sizes are character counts, or token counts when ``token_counter`` is
    given. A window always takes at least one line, so a line larger than
    ``max_size`` becomes a window of its own. The next window starts where
    walking backwards from the end of the previous one has collected
    ``overlap`` worth of lines, but never before the previous start + 1.
    Each chunk carries the heading context of its first line.
    """

    _validate(max_size, overlap)
    if not lines:
        return []

    measure: Callable[[str], int]
    if token_counter is not None:
        measure = token_counter.count_tokens
        scale_by_content = False
    else:
        measure = len
    sizes = [measure(line) for line in lines]
    contexts = track_headings(lines)

    chunks: List[Chunk] = []
    start = 0
    total = len(lines)
    while start < total:
        end = start
        accumulated = 0
        while end < total:
            budget = max_size * content_multiplier(lines[end]) if scale_by_content else max_size
            if end > start and accumulated + sizes[end] > budget:
                break
            accumulated += sizes[end]
            end += 1

        chunk = Chunk(
            text="\n".join(lines[start:end]),
            headings=contexts[start].levels,
            index=len(chunks),
            start_line=start,
            end_line=end,
        )
        LOGGER.debug(
            "Chunk %s lines %s-%s size %s",
            chunk.index,
            start,
            end,
            accumulated,
        )
        chunks.append(chunk)
        if end >= total:
            break
        start = max(_overlap_start(sizes, end, overlap), start + 1)
    return chunks


def _overlap_start(sizes: Sequence[int], end: int, overlap: int) -> int:
    if overlap <= 0:
        return end
    position = end - 1
    accumulated = 0
    while position > 0:
        accumulated += sizes[position]
        if accumulated >= overlap:
            break
        position -= 1
    return max(0, position)


class HeadingAwareChunker:
    """Chunk extracted Markdown lines according to a :class:`ChunkingConfig`."""

    def __init__(self, config: Optional[ChunkingConfig] = None, token_counter: Optional[TokenCounter] = None) -> None:
        self.config = config or ChunkingConfig()
        self._token_counter = token_counter

    @property
    def token_counter(self) -> Optional[TokenCounter]:
        if self.config.size_mode is not ChunkSizeMode.TOKENS:
            return None
        if self._token_counter is None:
            self._token_counter = HuggingFaceTokenCounter()
        return self._token_counter

    def chunk(self, lines: Sequence[str]) -> List[Chunk]:
        return chunk_lines(
            lines,
            self.config.max_size,
            self.config.effective_overlap,
            token_counter=self.token_counter,
            scale_by_content=self.config.scale_by_content,
        )
