"""Resolve inline ``[n]`` / ``[n, m]`` markers in generated answers to citations."""

from __future__ import annotations

import re
from collections.abc import Sequence

from lectern.rag.models import Citation, CitationSegment

CITATION_MARKER_RE = re.compile(r"\[(\d+(?:\s*,\s*\d+)*)\]")


def resolve_citation_markers(
    text: str, citations: Sequence[Citation]
) -> list[CitationSegment]:
    """Split *text* into prose segments and marker segments.

    Each marker segment carries the citations whose ``marker`` it names, in the
    order written; numbers with no matching citation are dropped, so a marker
    that names only unknown numbers yields an empty list.
    """
    by_marker = {c.marker: c for c in citations}
    segments: list[CitationSegment] = []
    last = 0
    for match in CITATION_MARKER_RE.finditer(text):
        if match.start() > last:
            segments.append(CitationSegment(text[last : match.start()]))
        numbers = [int(n) for n in match.group(1).split(",")]
        segments.append(
            CitationSegment(
                match.group(0),
                [by_marker[n] for n in numbers if n in by_marker],
            )
        )
        last = match.end()
    if last < len(text):
        segments.append(CitationSegment(text[last:]))
    return segments
