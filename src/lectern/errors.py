"""Error taxonomy for the ingestion and retrieval pipelines.

Ingestion errors are contained per document: the state machine records them as
document status + message and re-raises so the scheduler can tally them.
Retrieval never lets these escape ``Retriever.query``; they degrade to the
fallback answer instead.

A document that yields zero chunks is *not* an error; it completes with an
informational "No content to process." message.
"""

from __future__ import annotations


class LecternError(Exception):
    """Base class for all Lectern pipeline errors."""


class ExtractionFailure(LecternError):
    """Text could not be extracted (unsupported type, download or parse error)."""


class EmbeddingProviderFailure(LecternError):
    """The embedding provider failed or returned malformed vectors."""


class IndexingFailure(LecternError):
    """A vector-store upsert failed; the whole document is marked as error."""


class InvalidStateTransition(LecternError):
    """A document status change that the ingestion state machine forbids.

    Raised when processing is requested for a document that is already
    ``processing``, or for a ``completed`` document without re-ingestion.
    """

    def __init__(self, document_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Document '{document_id}' cannot move from '{current}' to '{target}'."
        )
        self.document_id = document_id
        self.current = current
        self.target = target


class SchemaVersionError(LecternError):
    """The database schema version does not match what this release expects."""
