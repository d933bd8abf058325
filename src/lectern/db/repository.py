"""Repository pattern for the relational store: documents and chunks.

Vector records live behind the VectorStore interface (lectern.db.vectors); this
module only tracks which chunks claim to be embedded.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Sequence

from lectern.db.models import Chunk, ChunkStatus, Document, DocumentStatus, SourceKind
from lectern.errors import InvalidStateTransition

_DOCUMENT_COLUMNS = (
    "id, collection_id, name, source_kind, storage_ref, status, error_message, "
    "extracted_text, processing_started_at, processing_completed_at, "
    "processing_metadata, created_at, updated_at"
)

_CHUNK_COLUMNS = (
    "id, document_id, chunk_index, text, token_count, status, vector_id, created_at"
)


class Repository:
    """Data access layer for documents and chunks.

    Wraps an open sqlite3.Connection. The connection is owned by the caller and
    must be closed after use; it must not be shared between threads.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection whose schema passed verify_schema().
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def add_document(self, document: Document) -> None:
        """Insert a new document record (normally in ``pending`` status)."""
        self._conn.execute(
            """
            INSERT INTO documents (id, collection_id, name, source_kind, storage_ref,
                                   status, error_message, processing_metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                document.id,
                document.collection_id,
                document.name,
                SourceKind(document.source_kind).value,
                document.storage_ref,
                DocumentStatus(document.status).value,
                document.error_message,
                document.processing_metadata,
            ),
        )
        self._conn.commit()

    def get_document(self, document_id: str) -> Document | None:
        """Return a document by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
            (document_id,),
        ).fetchone()
        return _row_to_document(row) if row else None

    def get_document_by_ref(self, collection_id: str, storage_ref: str) -> Document | None:
        """Return the document registered for *storage_ref* in a collection, if any."""
        row = self._conn.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
            "WHERE collection_id = ? AND storage_ref = ?",
            (collection_id, storage_ref),
        ).fetchone()
        return _row_to_document(row) if row else None

    def list_documents(
        self,
        collection_id: str | None = None,
        statuses: Iterable[DocumentStatus] | None = None,
    ) -> list[Document]:
        """Return documents ordered by creation time (oldest first).

        Args:
            collection_id: Restrict to one collection.
            statuses: Restrict to these statuses.
        """
        clauses: list[str] = []
        params: list[str] = []
        if collection_id is not None:
            clauses.append("collection_id = ?")
            params.append(collection_id)
        if statuses is not None:
            values = [DocumentStatus(s).value for s in statuses]
            if not values:
                return []
            clauses.append(f"status IN ({','.join('?' * len(values))})")
            params.extend(values)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._conn.execute(
            f"SELECT {_DOCUMENT_COLUMNS} FROM documents{where} ORDER BY created_at, rowid",
            params,
        ).fetchall()
        return [_row_to_document(r) for r in rows]

    def count_documents_by_status(self, collection_id: str | None = None) -> dict[str, int]:
        """Return ``{status: count}`` with every status present (zero-filled)."""
        sql = "SELECT status, COUNT(*) AS n FROM documents"
        params: tuple[str, ...] = ()
        if collection_id is not None:
            sql += " WHERE collection_id = ?"
            params = (collection_id,)
        sql += " GROUP BY status"
        counts = {s.value: 0 for s in DocumentStatus}
        for row in self._conn.execute(sql, params).fetchall():
            counts[row["status"]] = row["n"]
        return counts

    # ------------------------------------------------------------------
    # Document status transitions
    # ------------------------------------------------------------------

    def begin_processing(
        self,
        document_id: str,
        started_at: str,
        metadata: dict,
        *,
        allow_reingest: bool = False,
    ) -> Document:
        """Atomically move a document into ``processing``.

        Allowed from ``pending`` and ``error`` (retry); from ``completed`` only
        with *allow_reingest*. The check and the write are one UPDATE, so two
        workers can never both claim the same document.

        Raises:
            InvalidStateTransition: If the document is already processing or
                otherwise not eligible.
            LookupError: If the document does not exist.
        """
        allowed = [DocumentStatus.PENDING.value, DocumentStatus.ERROR.value]
        if allow_reingest:
            allowed.append(DocumentStatus.COMPLETED.value)
        cur = self._conn.execute(
            f"""
            UPDATE documents
            SET status = 'processing',
                error_message = NULL,
                processing_started_at = ?,
                processing_completed_at = NULL,
                processing_metadata = ?,
                updated_at = datetime('now')
            WHERE id = ? AND status IN ({','.join('?' * len(allowed))})
            """,
            (started_at, json.dumps(metadata), document_id, *allowed),
        )
        self._conn.commit()
        document = self.get_document(document_id)
        if document is None:
            raise LookupError(f"Document '{document_id}' not found.")
        if cur.rowcount == 0:
            raise InvalidStateTransition(
                document_id, document.status.value, DocumentStatus.PROCESSING.value
            )
        return document

    def complete_document(
        self,
        document_id: str,
        completed_at: str,
        metadata: dict,
        message: str | None = None,
    ) -> None:
        """Mark a processing document ``completed``."""
        self._finish(document_id, DocumentStatus.COMPLETED, completed_at, metadata, message)

    def fail_document(
        self,
        document_id: str,
        message: str,
        completed_at: str | None = None,
        metadata: dict | None = None,
    ) -> None:
        """Mark a document ``error`` with *message*.

        Forced from any status: the state machine calls this from its
        top-level handler whatever step failed.
        """
        self._finish(document_id, DocumentStatus.ERROR, completed_at, metadata, message)

    def _finish(
        self,
        document_id: str,
        status: DocumentStatus,
        completed_at: str | None,
        metadata: dict | None,
        message: str | None,
    ) -> None:
        if metadata is None:
            self._conn.execute(
                """
                UPDATE documents
                SET status = ?, error_message = ?,
                    processing_completed_at = COALESCE(?, processing_completed_at),
                    updated_at = datetime('now')
                WHERE id = ?
                """,
                (status.value, message, completed_at, document_id),
            )
        else:
            self._conn.execute(
                """
                UPDATE documents
                SET status = ?, error_message = ?,
                    processing_completed_at = COALESCE(?, processing_completed_at),
                    processing_metadata = ?,
                    updated_at = datetime('now')
                WHERE id = ?
                """,
                (status.value, message, completed_at, json.dumps(metadata), document_id),
            )
        self._conn.commit()

    def set_extracted_text(self, document_id: str, text: str, cap: int) -> None:
        """Persist the first *cap* characters of the extracted text."""
        self._conn.execute(
            "UPDATE documents SET extracted_text = ?, updated_at = datetime('now') WHERE id = ?",
            (text[:cap], document_id),
        )
        self._conn.commit()

    def reset_stale_processing(self, collection_id: str | None = None) -> int:
        """Move documents stuck in ``processing`` to ``error`` so they can be retried.

        Only safe when no ingestion run is active (e.g. at process start-up).
        Returns the number of documents reset.
        """
        sql = (
            "UPDATE documents SET status = 'error', "
            "error_message = 'Processing was interrupted before completion.', "
            "updated_at = datetime('now') WHERE status = 'processing'"
        )
        params: tuple[str, ...] = ()
        if collection_id is not None:
            sql += " AND collection_id = ?"
            params = (collection_id,)
        cur = self._conn.execute(sql, params)
        self._conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: Sequence[Chunk]) -> None:
        """Insert all *chunks* in a single transaction, preserving order."""
        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO chunks (id, document_id, chunk_index, text, token_count,
                                    status, vector_id)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        c.id,
                        c.document_id,
                        c.chunk_index,
                        c.text,
                        c.token_count,
                        ChunkStatus(c.status).value,
                        c.vector_id,
                    )
                    for c in chunks
                ],
            )

    def list_chunks(self, document_id: str) -> list[Chunk]:
        """Return the chunks of *document_id* ordered by chunk_index."""
        rows = self._conn.execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE document_id = ? ORDER BY chunk_index",
            (document_id,),
        ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, document_id: str, status: ChunkStatus | None = None) -> int:
        """Return the number of chunks of *document_id*, optionally by status."""
        if status is None:
            return self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
            ).fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ? AND status = ?",
            (document_id, ChunkStatus(status).value),
        ).fetchone()[0]

    def mark_chunks_embedded(self, chunk_ids: Sequence[str]) -> None:
        """Bulk-mark chunks ``embedded``; their vector id is the chunk id."""
        if not chunk_ids:
            return
        with self._conn:
            self._conn.executemany(
                "UPDATE chunks SET status = 'embedded', vector_id = id WHERE id = ?",
                [(cid,) for cid in chunk_ids],
            )

    def mark_chunks_error(self, document_id: str) -> None:
        """Bulk-mark every chunk of *document_id* ``error`` and clear vector ids."""
        self._conn.execute(
            "UPDATE chunks SET status = 'error', vector_id = NULL WHERE document_id = ?",
            (document_id,),
        )
        self._conn.commit()

    def delete_chunks(self, document_id: str) -> int:
        """Delete all chunks of *document_id* (used before a retry). Returns count."""
        cur = self._conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        self._conn.commit()
        return cur.rowcount


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=row["id"],
        collection_id=row["collection_id"],
        name=row["name"],
        source_kind=SourceKind(row["source_kind"]),
        storage_ref=row["storage_ref"],
        status=DocumentStatus(row["status"]),
        error_message=row["error_message"],
        extracted_text=row["extracted_text"],
        processing_started_at=row["processing_started_at"],
        processing_completed_at=row["processing_completed_at"],
        processing_metadata=row["processing_metadata"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        document_id=row["document_id"],
        chunk_index=row["chunk_index"],
        text=row["text"],
        token_count=row["token_count"],
        status=ChunkStatus(row["status"]),
        vector_id=row["vector_id"],
        created_at=row["created_at"],
    )
