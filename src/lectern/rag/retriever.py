"""Confidence-filtered dense retrieval with numbered citations.

Query flow:
  1. Embed the query with the same embedding model as ingestion.
  2. Fetch ``max_sources * oversample_factor`` nearest neighbours in the collection.
  3. Keep candidates scoring >= min_confidence, best first, at most max_sources.
  4. Nothing left → the fallback strategy answers from the best sub-threshold
     excerpts; otherwise the generator answers from a numbered context block.

Provider failures (embedding, vector query, generation) never escape
``Retriever.query``: they degrade to the fallback answer.
"""

from __future__ import annotations

import hashlib
import logging

from lectern.cache import Cache, NullCache
from lectern.config import RetrievalCfg
from lectern.db.vectors import VectorMatch, VectorStore
from lectern.ingest.embeddings import EmbeddingBatchGenerator
from lectern.rag.fallback import FallbackStrategy, KeywordTopicFallback
from lectern.rag.llm_client import Generator
from lectern.rag.models import Citation, QueryResult

logger = logging.getLogger(__name__)

EMPTY_ANSWER = "Unable to generate response"

_ANSWER_PROMPT = """\
Context information from your knowledge base:
{context}

User Question: {query}

Instructions:
- Understand the nuance and intent of the question
- Synthesize information across the provided excerpts
- Stay grounded in the facts while explaining clearly
- Make connections between different concepts
- Include [number] citations when referencing specific information
- If the question asks for analysis, comparison, or application, provide insights based on the material"""


class Retriever:
    """Answer questions against one collection of the knowledge base.

    Args:
        store: Vector store holding the collection's chunks.
        embedder: Query embedder; must use the ingestion embedding model.
        generator: Answer generation collaborator.
        config: Thresholds, oversampling, and fallback settings.
        fallback: Strategy for low-confidence queries.
        cache: Query embedding cache, keyed by model and query text.
        cache_ttl: Seconds a cached query embedding stays valid.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingBatchGenerator,
        generator: Generator,
        config: RetrievalCfg | None = None,
        fallback: FallbackStrategy | None = None,
        cache: Cache | None = None,
        cache_ttl: float | None = 3_600.0,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._generator = generator
        self._config = config or RetrievalCfg()
        self._fallback = fallback or KeywordTopicFallback(self._config.topic_keywords)
        self._cache = cache if cache is not None else NullCache()
        self._cache_ttl = cache_ttl

    def query(
        self,
        text: str,
        collection_id: str,
        min_confidence: float | None = None,
        max_sources: int | None = None,
    ) -> QueryResult:
        """Answer *text* from *collection_id*.

        Returns:
            A cited answer, or a fallback answer with no citations and
            confidence 0 when nothing scores at least *min_confidence* or a
            provider fails.

        Raises:
            ValueError: If *min_confidence* is outside [0, 1] or *max_sources* < 1.
        """
        threshold = self._config.min_confidence if min_confidence is None else min_confidence
        limit = self._config.max_sources if max_sources is None else max_sources
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {threshold}")
        if limit < 1:
            raise ValueError(f"max_sources must be >= 1, got {limit}")

        try:
            vector = self._embed_query(text)
            matches = self._store.query(
                vector, collection_id, limit * self._config.oversample_factor
            )
        except Exception as exc:
            logger.warning("Retrieval failed for collection %s: %s", collection_id, exc)
            return self._fallback_result(text, [], use_generator=False)

        ranked = sorted(matches, key=lambda m: m.score, reverse=True)
        logger.debug(
            "Query scores in %s: %s",
            collection_id,
            ", ".join(f"{m.score:.3f}" for m in ranked),
        )
        selected = [m for m in ranked if m.score >= threshold][:limit]
        logger.info(
            "%d of %d candidates passed min_confidence %.2f", len(selected), len(ranked), threshold
        )
        if not selected:
            return self._fallback_result(text, ranked)

        citations = build_citations(selected)
        prompt = _ANSWER_PROMPT.format(context=build_context(citations), query=text)
        try:
            content = self._generator.generate(prompt).strip() or EMPTY_ANSWER
        except Exception as exc:
            logger.warning("Answer generation failed: %s", exc)
            return self._fallback_result(text, ranked, use_generator=False)

        return QueryResult(
            content=content,
            citations=citations,
            confidence=sum(c.score for c in citations) / len(citations),
            documents_used=list(dict.fromkeys(c.source_name for c in citations)),
        )

    def _embed_query(self, text: str) -> list[float]:
        key = "query-embedding:{}:{}".format(
            self._embedder.model, hashlib.sha256(text.encode("utf-8")).hexdigest()
        )
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        vector = self._embedder.embed_one(text)
        self._cache.set(key, vector, ttl=self._cache_ttl)
        return vector

    def _fallback_result(
        self, query: str, ranked: list[VectorMatch], *, use_generator: bool = True
    ) -> QueryResult:
        sample = ranked[: self._config.fallback_sample_size]
        content = self._fallback.respond(
            query, sample, self._generator if use_generator else None
        )
        return QueryResult(content=content, citations=[], confidence=0.0, documents_used=[])


def build_citations(matches: list[VectorMatch]) -> list[Citation]:
    """Number *matches* ``[1]..[n]`` in the given (score) order."""
    return [
        Citation(
            marker=i,
            document_id=m.document_id,
            source_name=m.source_name or "Unknown Document",
            text=m.text,
            score=m.score,
            page_number=m.page_number,
        )
        for i, m in enumerate(matches, start=1)
    ]


def build_context(citations: list[Citation]) -> str:
    """Render the numbered context block handed to the generator."""
    parts = []
    for c in citations:
        page = f" (page {c.page_number})" if c.page_number else ""
        parts.append(
            f'{c.label} From "{c.source_name}"{page} '
            f"[confidence: {c.score * 100:.1f}%]:\n{c.text}"
        )
    return "\n\n---\n\n".join(parts)
