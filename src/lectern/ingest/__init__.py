"""Lectern ingestion pipeline: extraction, chunking, embedding, indexing, scheduling."""

from lectern.ingest.chunker import (
    ChunkedText,
    chunk_text,
    estimate_token_count,
    normalize_text,
    split_text,
)
from lectern.ingest.embeddings import (
    EmbeddingBatch,
    EmbeddingBatchGenerator,
    EmbeddingFailurePolicy,
)
from lectern.ingest.extractors import Extractor, SourceExtractor
from lectern.ingest.indexer import VectorIndexer
from lectern.ingest.pipeline import DocumentIngestor, IngestResult, ingest_one, open_ingestor
from lectern.ingest.scheduler import (
    IngestionJob,
    IngestionScheduler,
    IngestionSummary,
    ingest_all,
)

__all__ = [
    "ChunkedText",
    "DocumentIngestor",
    "EmbeddingBatch",
    "EmbeddingBatchGenerator",
    "EmbeddingFailurePolicy",
    "Extractor",
    "IngestResult",
    "IngestionJob",
    "IngestionScheduler",
    "IngestionSummary",
    "SourceExtractor",
    "VectorIndexer",
    "chunk_text",
    "estimate_token_count",
    "ingest_all",
    "ingest_one",
    "normalize_text",
    "open_ingestor",
    "split_text",
]
