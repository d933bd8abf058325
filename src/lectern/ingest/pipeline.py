"""Per-document ingestion state machine.

Drives one document through extraction → chunking → embedding → indexing and
records the outcome on the document row::

    pending ──► processing ──► completed
       ▲            │
       └── error ◄──┘

A document is claimed with an atomic compare-and-set, so a document that is
already ``processing`` is never entered twice. Every failure after the claim
leaves the document in ``error`` with a message and is re-raised to the
caller.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from lectern.cache import Cache, NullCache
from lectern.config import LecternConfig
from lectern.db.connection import open_database
from lectern.db.models import Chunk, Document
from lectern.db.repository import Repository
from lectern.db.vectors import SqliteVecStore, VectorRecord
from lectern.ingest.chunker import estimate_token_count, split_text
from lectern.ingest.embeddings import EmbeddingBatchGenerator, EmbeddingFailurePolicy
from lectern.ingest.extractors import Extractor, SourceExtractor
from lectern.ingest.indexer import VectorIndexer

logger = logging.getLogger(__name__)

NO_CONTENT_MESSAGE = "No content to process."
TRUNCATED_WARNING = (
    "Warning: chunking stopped at character {offset} of {length}; "
    "the rest of the document was not indexed."
)


@dataclass
class IngestResult:
    """Outcome of a successful ingest() call."""

    document_id: str
    chunks_created: int
    processing_time_ms: int
    mock_embeddings: bool = False
    message: str | None = None
    truncated: bool = False


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DocumentIngestor:
    """Run the ingestion state machine for one document at a time.

    One ingestor owns one database connection (through *repo* and the store
    behind *indexer*); use one ingestor per worker thread.

    Args:
        repo: Relational store for documents and chunks.
        extractor: Source → raw text collaborator.
        embedder: Chunk texts → vectors.
        indexer: Vector records → vector store.
        config: Chunking and ingestion settings.
        cache: Extracted text cache, keyed by document id.
    """

    def __init__(
        self,
        repo: Repository,
        extractor: Extractor,
        embedder: EmbeddingBatchGenerator,
        indexer: VectorIndexer,
        config: LecternConfig | None = None,
        cache: Cache | None = None,
    ) -> None:
        self._repo = repo
        self._extractor = extractor
        self._embedder = embedder
        self._indexer = indexer
        self._config = config or LecternConfig()
        self._cache = cache if cache is not None else NullCache()

    @property
    def repo(self) -> Repository:
        return self._repo

    def ingest(self, document: Document, *, reingest: bool = False) -> IngestResult:
        """Process *document* end to end.

        Args:
            document: The document to process (its id is what matters; the
                row is re-read when claimed).
            reingest: Also accept a ``completed`` document.

        Raises:
            InvalidStateTransition: The document is already processing (or
                completed without *reingest*); its row is left untouched.
            ExtractionFailure, EmbeddingProviderFailure, IndexingFailure: After
                the document has been marked ``error``.
        """
        started_at = _now()
        t0 = time.monotonic()
        claimed = self._repo.begin_processing(
            document.id,
            started_at,
            {"start_time": started_at, "method": "direct"},
            allow_reingest=reingest,
        )
        logger.info("Document %s: processing started (%s)", claimed.id, claimed.name)

        try:
            return self._run(claimed, started_at, t0, use_cache=not reingest)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Document %s: processing failed: %s", claimed.id, message)
            self._discard_chunks(claimed.id)
            self._repo.fail_document(claimed.id, message, completed_at=_now())
            raise

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _run(self, document: Document, started_at: str, t0: float, use_cache: bool) -> IngestResult:
        self._clear_previous_attempt(document.id)

        text = self._extract(document, use_cache)
        self._repo.set_extracted_text(
            document.id, text, self._config.ingestion.extracted_text_cap
        )

        split = split_text(
            text,
            max_size=self._config.chunking.max_size,
            overlap=self._config.chunking.overlap,
        )
        pieces = split.chunks
        logger.info("Document %s: %d chunks", document.id, len(pieces))
        truncation = None
        if split.truncated:
            truncation = TRUNCATED_WARNING.format(offset=split.truncated_at, length=split.length)
            logger.error("Document %s: %s", document.id, truncation)
        if not pieces:
            elapsed = _elapsed_ms(t0)
            self._repo.complete_document(
                document.id,
                _now(),
                self._metadata(started_at, elapsed, 0, mock=False),
                message=NO_CONTENT_MESSAGE,
            )
            return IngestResult(document.id, 0, elapsed, message=NO_CONTENT_MESSAGE)

        chunks = [
            Chunk(
                id=str(uuid.uuid4()),
                document_id=document.id,
                chunk_index=i,
                text=piece,
                token_count=estimate_token_count(piece),
            )
            for i, piece in enumerate(pieces)
        ]
        self._repo.add_chunks(chunks)

        batch = self._embedder.embed([c.text for c in chunks])
        if batch.is_mock:
            logger.warning("Document %s: stored with mock embeddings", document.id)

        records = [
            VectorRecord(
                id=chunk.id,
                embedding=vector,
                document_id=document.id,
                collection_id=document.collection_id,
                source_name=document.name,
                source_kind=document.source_kind.value,
                text=chunk.text,
                is_mock_embedding=batch.is_mock,
            )
            for chunk, vector in zip(chunks, batch.vectors)
        ]
        self._indexer.upsert(records)

        self._repo.mark_chunks_embedded([c.id for c in chunks])
        elapsed = _elapsed_ms(t0)
        metadata = self._metadata(started_at, elapsed, len(chunks), mock=batch.is_mock)
        if split.truncated:
            metadata["chunking_truncated_at"] = split.truncated_at
        message = " ".join(m for m in (truncation, batch.warning) if m) or None
        self._repo.complete_document(document.id, _now(), metadata, message=message)
        logger.info(
            "Document %s: completed with %d chunks in %d ms", document.id, len(chunks), elapsed
        )
        return IngestResult(
            document.id,
            len(chunks),
            elapsed,
            mock_embeddings=batch.is_mock,
            message=message,
            truncated=split.truncated,
        )

    def _clear_previous_attempt(self, document_id: str) -> None:
        stale = self._repo.list_chunks(document_id)
        if not stale:
            return
        logger.info("Document %s: clearing %d chunks from a previous run", document_id, len(stale))
        self._indexer.delete([c.id for c in stale])
        self._repo.delete_chunks(document_id)

    def _discard_chunks(self, document_id: str) -> None:
        """Best effort: mark this attempt's chunks ``error`` and drop their vectors."""
        try:
            chunk_ids = [c.id for c in self._repo.list_chunks(document_id)]
        except Exception as exc:
            logger.warning("Document %s: could not list chunks to discard: %s", document_id, exc)
            return
        if not chunk_ids:
            return
        try:
            self._indexer.delete(chunk_ids)
        except Exception as exc:
            logger.warning("Document %s: could not delete vectors: %s", document_id, exc)
        try:
            self._repo.mark_chunks_error(document_id)
        except Exception as exc:
            logger.warning("Document %s: could not mark chunks error: %s", document_id, exc)

    def _extract(self, document: Document, use_cache: bool) -> str:
        key = f"extracted:{document.id}"
        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Document %s: using cached extracted text", document.id)
                return cached
        text = self._extractor.extract(document)
        logger.info("Document %s: extracted %d characters", document.id, len(text))
        self._cache.set(key, text, ttl=self._config.ingestion.extraction_cache_ttl)
        return text

    @staticmethod
    def _metadata(started_at: str, elapsed_ms: int, chunks: int, *, mock: bool) -> dict:
        return {
            "start_time": started_at,
            "end_time": _now(),
            "processing_time_ms": elapsed_ms,
            "chunks_created": chunks,
            "mock_embeddings": mock,
            "method": "direct",
        }


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


# ------------------------------------------------------------------
# Wiring
# ------------------------------------------------------------------


@contextmanager
def open_ingestor(
    config: LecternConfig,
    *,
    extractor: Extractor | None = None,
    cache: Cache | None = None,
    failure_policy: EmbeddingFailurePolicy | str | None = None,
) -> Iterator[DocumentIngestor]:
    """Yield a DocumentIngestor on its own connection to ``config.db_path``.

    The connection is closed on exit. Used directly for single documents and
    as the scheduler's per-worker factory.
    """
    conn = open_database(config.db_path)
    try:
        store = SqliteVecStore(conn, config.embedding.dimensions)
        yield DocumentIngestor(
            repo=Repository(conn),
            extractor=extractor or SourceExtractor(),
            embedder=EmbeddingBatchGenerator(config.embedding, failure_policy),
            indexer=VectorIndexer(store, config.vector_store.upsert_batch_size),
            config=config,
            cache=cache,
        )
    finally:
        conn.close()


def ingest_one(
    document: Document,
    ingestor: DocumentIngestor | None = None,
    *,
    config: LecternConfig | None = None,
    reingest: bool = False,
) -> IngestResult:
    """Ingest a single document with *ingestor*, or with a default one built from *config*."""
    if ingestor is not None:
        return ingestor.ingest(document, reingest=reingest)
    with open_ingestor(config or LecternConfig()) as default:
        return default.ingest(document, reingest=reingest)
