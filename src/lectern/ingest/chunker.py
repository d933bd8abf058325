"""Sliding-window text chunker with natural breakpoints and overlap.

The window prefers to end on a newline, then a sentence end (". "), then a
space, searching backward only within the tail of the window. Consecutive
chunks overlap by ``overlap`` characters unless that would stall progress.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1000
DEFAULT_OVERLAP = 200

# Fraction of the window (from its end) searched for each breakpoint kind.
_BREAKPOINTS: tuple[tuple[str, float], ...] = (
    ("\n", 0.3),
    (". ", 0.2),
    (" ", 0.1),
)

# Circuit breaker: allowed iterations as a multiple of the worst-case count.
_ITERATION_MULTIPLE = 4

_WHITESPACE_RE = re.compile(r"\s+")
_MULTI_NEWLINE_RE = re.compile(r"\n{2,}")


def normalize_text(text: str) -> str:
    """Collapse whitespace runs to one space, collapse newline runs, and trim."""
    cleaned = _WHITESPACE_RE.sub(" ", text)
    cleaned = _MULTI_NEWLINE_RE.sub("\n", cleaned)
    return cleaned.strip()


def estimate_token_count(text: str) -> int:
    """Approximate token count: 4 characters ≈ 1 token, rounded up."""
    return math.ceil(len(text) / 4)


def _validate_params(max_size: int, overlap: int) -> tuple[int, int]:
    if max_size <= 0:
        logger.error("max_size must be positive (got %d); using %d", max_size, DEFAULT_MAX_SIZE)
        max_size = DEFAULT_MAX_SIZE
    if overlap < 0:
        logger.error("overlap cannot be negative (got %d); using 0", overlap)
        overlap = 0
    if overlap >= max_size:
        adjusted = max(0, max_size // 2 - 1)
        logger.warning(
            "overlap (%d) >= max_size (%d); adjusting overlap to %d",
            overlap,
            max_size,
            adjusted,
        )
        overlap = adjusted
    return max_size, overlap


def _find_break(text: str, start: int, end: int, max_size: int) -> int:
    """Return a better window end than *end*, or *end* itself if none qualifies."""
    for token, fraction in _BREAKPOINTS:
        floor = max(start, end - math.floor(max_size * fraction))
        # The cut lands after the token's first char, which must stay inside the window.
        idx = text.rfind(token, 0, end + len(token) - 1)
        if idx > floor and idx > start:
            return idx + 1
    return end


@dataclass
class ChunkedText:
    """Chunks of one text, plus where chunking stopped if the breaker tripped."""

    chunks: list[str] = field(default_factory=list)
    truncated_at: int | None = None
    length: int = 0

    @property
    def truncated(self) -> bool:
        return self.truncated_at is not None


def _max_iterations(length: int, max_size: int, overlap: int) -> int:
    # Slowest legal step: a newline break pulls the end back by up to 30%.
    pullback = math.floor(max_size * _BREAKPOINTS[0][1])
    stride = max(1, max_size - pullback - overlap)
    return _ITERATION_MULTIPLE * math.ceil(length / stride) + 10


def split_text(
    text: str,
    max_size: int = DEFAULT_MAX_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> ChunkedText:
    """Split *text* like :func:`chunk_text` and report a circuit-breaker stop.

    When the iteration bound is hit, the chunks collected so far are kept and
    ``truncated_at`` holds the offset into the normalized text where
    chunking stopped.
    """
    max_size, overlap = _validate_params(max_size, overlap)

    cleaned = normalize_text(text)
    length = len(cleaned)
    if length == 0:
        return ChunkedText()
    if length <= max_size:
        return ChunkedText([cleaned], length=length)

    result = ChunkedText(length=length)
    start = 0
    iterations = 0
    max_iterations = _max_iterations(length, max_size, overlap)

    while start < length:
        if iterations >= max_iterations:
            logger.error(
                "Chunker circuit breaker tripped after %d iterations at offset %d/%d; "
                "returning %d chunks",
                iterations,
                start,
                length,
                len(result.chunks),
            )
            result.truncated_at = start
            break
        iterations += 1

        end = min(start + max_size, length)
        if end < length:
            end = _find_break(cleaned, start, end, max_size)

        piece = cleaned[start:end].strip()
        if piece:
            result.chunks.append(piece)

        if end >= length:
            break

        next_start = end - overlap
        if next_start <= start:
            logger.debug(
                "Chunker stall at offset %d (end=%d, overlap=%d); advancing to end",
                start,
                end,
                overlap,
            )
            start = end
        else:
            start = next_start

    return result


def chunk_text(
    text: str,
    max_size: int = DEFAULT_MAX_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[str]:
    """Split *text* into ordered, overlapping chunks of at most *max_size* chars.

    Invalid parameters are corrected (and logged) rather than rejected:
    ``max_size <= 0`` becomes 1000, a negative overlap becomes 0, and an
    overlap not smaller than ``max_size`` is clamped to ``max_size // 2 - 1``.

    Args:
        text: Raw extracted text; normalized before splitting.
        max_size: Maximum chunk length in characters.
        overlap: Characters shared between consecutive chunks.

    Returns:
        Non-empty, trimmed chunks in document order. Empty for blank input;
        a single chunk equal to the normalized text when it fits.
    """
    return split_text(text, max_size, overlap).chunks
