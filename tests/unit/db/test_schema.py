"""Tests for schema initialization and the schema-version contract."""

from __future__ import annotations

import sqlite3

import pytest

from lectern.db.connection import Database
from lectern.db.schema import CURRENT_VERSION, initialize, verify_schema
from lectern.errors import SchemaVersionError


def _table_columns(conn, table: str) -> set[str]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row["name"] for row in rows}


def test_documents_columns(tmp_db):
    assert _table_columns(tmp_db, "documents") == {
        "id",
        "collection_id",
        "name",
        "source_kind",
        "storage_ref",
        "status",
        "error_message",
        "extracted_text",
        "processing_started_at",
        "processing_completed_at",
        "processing_metadata",
        "created_at",
        "updated_at",
    }


def test_chunks_columns(tmp_db):
    assert _table_columns(tmp_db, "chunks") == {
        "id",
        "document_id",
        "chunk_index",
        "text",
        "token_count",
        "status",
        "vector_id",
        "created_at",
    }


def test_vectors_columns(tmp_db):
    cols = _table_columns(tmp_db, "vectors")
    assert {"vec_rowid", "id", "collection_id", "document_id", "is_mock_embedding"} <= cols


def test_schema_version_recorded(tmp_db):
    version = tmp_db.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    assert version == CURRENT_VERSION


def test_initialize_idempotent(tmp_db):
    initialize(tmp_db)
    rows = tmp_db.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert rows == 1


def test_status_check_constraint(tmp_db):
    with pytest.raises(sqlite3.IntegrityError):
        tmp_db.execute(
            "INSERT INTO documents (id, collection_id, name, source_kind, storage_ref, status) "
            "VALUES ('d', 'c', 'n', 'file', 'x', 'bogus')"
        )


# --- verify_schema ---


def test_verify_schema_current(tmp_db):
    assert verify_schema(tmp_db) == CURRENT_VERSION


def test_verify_schema_uninitialised(tmp_path):
    with Database(tmp_path / "empty.db") as conn:
        with pytest.raises(SchemaVersionError, match="no Lectern schema"):
            verify_schema(conn)


def test_verify_schema_no_versions_recorded(tmp_db):
    tmp_db.execute("DELETE FROM schema_version")
    tmp_db.commit()
    with pytest.raises(SchemaVersionError, match="no Lectern schema"):
        verify_schema(tmp_db)


def test_verify_schema_newer(tmp_db):
    tmp_db.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_VERSION + 1,))
    tmp_db.commit()
    with pytest.raises(SchemaVersionError, match="newer"):
        verify_schema(tmp_db)
