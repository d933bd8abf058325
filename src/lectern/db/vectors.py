"""Vector store interface and the sqlite-vec backed implementation.

Embeddings live in one sqlite-vec virtual table per collection
(``vec_<collection_slug>``, cosine distance). Their metadata lives in the
ordinary ``vectors`` table, whose ``vec_rowid`` is the rowid used in the vec
table.
"""

from __future__ import annotations

import hashlib
import json
import re
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass


@dataclass
class VectorRecord:
    """One embedded chunk as written to the vector store. ``id`` is the chunk id."""

    id: str
    embedding: list[float]
    document_id: str
    collection_id: str
    source_name: str
    source_kind: str
    text: str
    is_mock_embedding: bool = False
    page_number: int | None = None


@dataclass
class VectorMatch:
    """A nearest-neighbour hit. ``score`` is cosine similarity (higher = closer)."""

    id: str
    score: float
    document_id: str
    collection_id: str
    source_name: str
    text: str
    page_number: int | None = None
    is_mock_embedding: bool = False


class VectorStore(ABC):
    """Backend-agnostic vector store.

    Adding a backend only requires implementing the four methods below; the
    indexer and retriever never touch storage directly.
    """

    @abstractmethod
    def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Write *records*, overwriting any existing record with the same id."""

    @abstractmethod
    def query(
        self, vector: list[float], collection_id: str, top_k: int
    ) -> list[VectorMatch]:
        """Return up to *top_k* matches in *collection_id*, best first."""

    @abstractmethod
    def delete(self, ids: Sequence[str]) -> None:
        """Remove records by id. Unknown ids are ignored."""

    @abstractmethod
    def count(self, collection_id: str | None = None) -> int:
        """Return the number of stored records, optionally for one collection."""


# ------------------------------------------------------------------
# Per-collection vec tables
# ------------------------------------------------------------------


def collection_to_slug(collection_id: str) -> str:
    """Convert a collection id to a valid, collision-free table name suffix.

    Examples:
        "Physics 101" -> "physics_101_<8 hex chars>"
    """
    cleaned = re.sub(r"[^a-z0-9]", "_", collection_id.lower())[:40]
    digest = hashlib.sha1(collection_id.encode("utf-8")).hexdigest()[:8]
    return f"{cleaned}_{digest}"


def vec_table_name(collection_slug: str) -> str:
    """Return the full vec table name for a collection slug."""
    return f"vec_{collection_slug}"


def ensure_vec_table(conn: sqlite3.Connection, collection_slug: str, dimensions: int) -> str:
    """Create vec_{collection_slug} if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        collection_slug: Sanitized collection identifier (see collection_to_slug()).
        dimensions: Embedding vector dimensions.

    Returns:
        The table name.
    """
    if not re.fullmatch(r"[a-z0-9_]+", collection_slug):
        raise ValueError(
            f"Invalid collection slug '{collection_slug}'. Use collection_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(collection_slug)
    if not _table_exists(conn, table):
        # IF NOT EXISTS: another worker connection may create it first.
        conn.execute(
            f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
    return table


def _table_exists(conn: sqlite3.Connection, table: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row is not None


class SqliteVecStore(VectorStore):
    """VectorStore backed by sqlite-vec on a connection from lectern.db.Database.

    Args:
        conn: Open connection with sqlite-vec loaded. Not shared between threads.
        dimensions: Expected embedding length; other lengths are rejected.
    """

    def __init__(self, conn: sqlite3.Connection, dimensions: int) -> None:
        self._conn = conn
        self._dimensions = dimensions

    def upsert(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        for record in records:
            if len(record.embedding) != self._dimensions:
                raise ValueError(
                    f"Vector '{record.id}' has {len(record.embedding)} dimensions, "
                    f"expected {self._dimensions}."
                )
        tables = {
            cid: ensure_vec_table(self._conn, collection_to_slug(cid), self._dimensions)
            for cid in {r.collection_id for r in records}
        }
        with self._conn:
            for record in records:
                self._delete_one(record.id)
                cur = self._conn.execute(
                    """
                    INSERT INTO vectors (id, collection_id, document_id, source_name,
                                         source_kind, text, page_number, is_mock_embedding)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        record.id,
                        record.collection_id,
                        record.document_id,
                        record.source_name,
                        record.source_kind,
                        record.text,
                        record.page_number,
                        int(record.is_mock_embedding),
                    ),
                )
                self._conn.execute(
                    f"INSERT INTO {tables[record.collection_id]}(rowid, embedding) VALUES (?, ?)",
                    (cur.lastrowid, json.dumps(record.embedding)),
                )

    def query(
        self, vector: list[float], collection_id: str, top_k: int
    ) -> list[VectorMatch]:
        if top_k < 1:
            return []
        table = vec_table_name(collection_to_slug(collection_id))
        if not _table_exists(self._conn, table):
            return []
        vec_rows = self._conn.execute(
            f"SELECT rowid, distance FROM {table} "
            "WHERE embedding MATCH ? AND k = ? ORDER BY distance",
            (json.dumps(vector), top_k),
        ).fetchall()

        matches: list[VectorMatch] = []
        for vec_row in vec_rows:
            meta = self._conn.execute(
                "SELECT * FROM vectors WHERE vec_rowid = ? AND collection_id = ?",
                (vec_row["rowid"], collection_id),
            ).fetchone()
            if meta is None:
                continue
            matches.append(
                VectorMatch(
                    id=meta["id"],
                    score=1.0 - vec_row["distance"],
                    document_id=meta["document_id"],
                    collection_id=meta["collection_id"],
                    source_name=meta["source_name"],
                    text=meta["text"],
                    page_number=meta["page_number"],
                    is_mock_embedding=bool(meta["is_mock_embedding"]),
                )
            )
        return matches

    def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        with self._conn:
            for vector_id in ids:
                self._delete_one(vector_id)

    def count(self, collection_id: str | None = None) -> int:
        if collection_id is None:
            return self._conn.execute("SELECT COUNT(*) FROM vectors").fetchone()[0]
        return self._conn.execute(
            "SELECT COUNT(*) FROM vectors WHERE collection_id = ?", (collection_id,)
        ).fetchone()[0]

    def _delete_one(self, vector_id: str) -> None:
        row = self._conn.execute(
            "SELECT vec_rowid, collection_id FROM vectors WHERE id = ?", (vector_id,)
        ).fetchone()
        if row is None:
            return
        table = vec_table_name(collection_to_slug(row["collection_id"]))
        if _table_exists(self._conn, table):
            self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (row["vec_rowid"],))
        self._conn.execute("DELETE FROM vectors WHERE vec_rowid = ?", (row["vec_rowid"],))
