"""Chunking utilities.

Windows are character based. Consecutive windows share exactly
``overlap_chars`` characters, so dropping the first ``overlap_chars`` of every
window after the first and concatenating reconstructs the input.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Sequence

from knowledge_hub.core.errors import ChunkingConfigError

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")


@dataclass(slots=True, frozen=True)
class TextWindow:
    text: str
    char_start: int
    char_end: int


def validate_window(max_chars: int, overlap_chars: int) -> None:
    """Reject window settings that cannot make progress."""
    if max_chars <= 0:
        raise ChunkingConfigError(f"max_chars must be positive, got {max_chars}")
    if overlap_chars < 0:
        raise ChunkingConfigError(f"overlap_chars must not be negative, got {overlap_chars}")
    if overlap_chars >= max_chars:
        raise ChunkingConfigError(
            f"overlap_chars ({overlap_chars}) must be smaller than max_chars ({max_chars})"
        )


def split_with_overlap(text: str, max_chars: int, overlap_chars: int) -> list[TextWindow]:
    """Split text into fixed windows advancing by ``max_chars - overlap_chars``."""
    validate_window(max_chars, overlap_chars)
    if not text.strip():
        return []

    step = max_chars - overlap_chars
    length = len(text)
    windows: list[TextWindow] = []
    start = 0
    while True:
        end = min(start + max_chars, length)
        windows.append(TextWindow(text=text[start:end], char_start=start, char_end=end))
        if end >= length:
            break
        start += step
    return windows


def paragraph_segments(text: str) -> list[str]:
    """Split text into paragraphs; blank-line separators stay attached so ``"".join`` is lossless."""
    segments: list[str] = []
    last_index = 0
    for match in _PARAGRAPH_BREAK_RE.finditer(text):
        segments.append(text[last_index : match.end()])
        last_index = match.end()
    if last_index < len(text):
        segments.append(text[last_index:])
    return segments


def split_segments(segments: Sequence[str], max_chars: int, overlap_chars: int) -> list[TextWindow]:
    """Pack pre-segmented text into overlapping windows.

    A window ends on the furthest segment boundary that keeps it within
    ``max_chars`` and longer than the overlap; when no boundary qualifies the
    window is cut at ``max_chars``. The next window starts ``overlap_chars``
    before the previous end.
    """
    validate_window(max_chars, overlap_chars)
    text = "".join(segments)
    if not text.strip():
        return []

    boundaries = list(_boundaries(segments))
    length = len(text)
    windows: list[TextWindow] = []
    start = 0
    cursor = 0
    while True:
        limit = min(start + max_chars, length)
        end = None
        while cursor < len(boundaries) and boundaries[cursor] <= limit:
            if boundaries[cursor] - start > overlap_chars:
                end = boundaries[cursor]
            cursor += 1
        if end is None:
            end = limit
        windows.append(TextWindow(text=text[start:end], char_start=start, char_end=end))
        if end >= length:
            break
        start = end - overlap_chars
        cursor = _first_boundary_after(boundaries, start)
    return windows


def estimate_tokens(text: str) -> int:
    """Rough token estimate: whitespace separated words."""
    return max(1, len(text.split())) if text.strip() else 0


def _boundaries(segments: Sequence[str]) -> Iterator[int]:
    offset = 0
    for segment in segments:
        offset += len(segment)
        yield offset


def _first_boundary_after(boundaries: Sequence[int], position: int) -> int:
    for idx, boundary in enumerate(boundaries):
        if boundary > position:
            return idx
    return len(boundaries)


__all__ = [
    "TextWindow",
    "validate_window",
    "split_with_overlap",
    "paragraph_segments",
    "split_segments",
    "estimate_tokens",
]
