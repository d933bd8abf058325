"""Tests for the forward-only migration runner."""

from __future__ import annotations

from lectern.db.connection import Database
from lectern.db.migrations import MIGRATIONS, current_version, run_migrations


def _fresh_conn(tmp_path):
    return Database(tmp_path / "test.db").connect()


def _table_exists(conn, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return row is not None


def test_fresh_database_version_zero(tmp_path):
    conn = _fresh_conn(tmp_path)
    assert current_version(conn) == 0
    conn.close()


def test_run_migrations_creates_tables(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    for table in ("schema_version", "documents", "chunks", "vectors"):
        assert _table_exists(conn, table), table
    conn.close()


def test_run_migrations_records_latest_version(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    assert current_version(conn) == MIGRATIONS[-1][0]
    conn.close()


def test_run_migrations_twice_is_noop(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    run_migrations(conn)
    count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)
    conn.close()


def test_migration_versions_ascending():
    versions = [v for v, _ in MIGRATIONS]
    assert versions == sorted(versions)
    assert len(set(versions)) == len(versions)


def test_chunks_cascade_on_document_delete(tmp_path):
    conn = _fresh_conn(tmp_path)
    run_migrations(conn)
    conn.execute(
        "INSERT INTO documents (id, collection_id, name, source_kind, storage_ref) "
        "VALUES ('d1', 'c', 'a.txt', 'file', '/a.txt')"
    )
    conn.execute(
        "INSERT INTO chunks (id, document_id, chunk_index, text, token_count) "
        "VALUES ('k1', 'd1', 0, 'hello', 2)"
    )
    conn.execute("DELETE FROM documents WHERE id = 'd1'")
    conn.commit()
    assert conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0] == 0
    conn.close()
