"""Value objects returned by the retriever."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Citation:
    """One numbered source backing an answer.

    Attributes:
        marker: 1-based ordinal; rendered as ``[marker]`` in answer text.
        document_id: Source document.
        source_name: Document name shown to the reader.
        text: The cited chunk text.
        score: Similarity score of the chunk, in [0, 1].
        page_number: Page of the excerpt when known.
    """

    marker: int
    document_id: str
    source_name: str
    text: str
    score: float
    page_number: int | None = None

    @property
    def label(self) -> str:
        return f"[{self.marker}]"


@dataclass
class QueryResult:
    content: str
    citations: list[Citation] = field(default_factory=list)
    confidence: float = 0.0
    documents_used: list[str] = field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return not self.citations


@dataclass
class CitationSegment:
    """A run of answer text: plain prose (no citations) or one citation marker."""

    text: str
    citations: list[Citation] = field(default_factory=list)
