"""Split text into short, independently speakable chunks.

Sentences stay whole when they fit.  Anything longer than the limit is
repacked word by word, so the first chunk of a reply is usually one
short sentence that synthesizes quickly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

DEFAULT_MAX_LENGTH = 240

# A run of non-terminators plus its trailing terminators, or a bare run of newlines.
_SEGMENT_RE = re.compile(r"[^.!?\n]+[.!?\n]*|\n+")


@dataclass(frozen=True)
class Chunk:
    """One unit of text to synthesize. ``index`` is its playback position."""

    index: int
    text: str


def _repack_words(segment: str, max_length: int) -> list[str]:
    chunks: list[str] = []
    current = ""
    for word in segment.split():
        if not current:
            current = word
        elif len(current) + len(word) + 1 <= max_length:
            current = f"{current} {word}"
        else:
            chunks.append(current)
            current = word
    if current:
        chunks.append(current)
    return chunks


def split_text(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> list[str]:
    """Split *text* into non-empty chunks of at most *max_length* chars.

    A single word longer than *max_length* is returned as-is.
    """
    parts = _SEGMENT_RE.findall(text) or [text]
    chunks: list[str] = []
    for part in parts:
        trimmed = part.strip()
        if not trimmed:
            continue
        if len(trimmed) <= max_length:
            chunks.append(trimmed)
        else:
            chunks.extend(_repack_words(trimmed, max_length))
    return chunks


def chunk_text(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> list[Chunk]:
    """Like :func:`split_text` but returns indexed :class:`Chunk` objects."""
    return [Chunk(i, t) for i, t in enumerate(split_text(text, max_length))]
