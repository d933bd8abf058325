"""Tests for per-collection vec tables and the SqliteVecStore."""

from __future__ import annotations

import pytest

from lectern.db.vectors import (
    SqliteVecStore,
    VectorRecord,
    collection_to_slug,
    ensure_vec_table,
    vec_table_name,
)

DIMS = 4


def _record(rid: str, embedding: list[float], collection: str = "col", **kwargs) -> VectorRecord:
    return VectorRecord(
        id=rid,
        embedding=embedding,
        document_id=kwargs.pop("document_id", "d1"),
        collection_id=collection,
        source_name=kwargs.pop("source_name", "notes.txt"),
        source_kind="file",
        text=kwargs.pop("text", f"text of {rid}"),
        **kwargs,
    )


def _table_exists(conn, name: str) -> bool:
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
    ).fetchone()
    return row is not None


# --- slugs and tables ---


def test_collection_to_slug_is_clean_and_stable():
    slug = collection_to_slug("Physics 101!")
    assert slug.startswith("physics_101__")
    assert slug == collection_to_slug("Physics 101!")
    assert vec_table_name(slug) == f"vec_{slug}"


def test_collection_to_slug_distinguishes_similar_names():
    assert collection_to_slug("a b") != collection_to_slug("a-b")


def test_ensure_vec_table_creates_once(tmp_db):
    slug = collection_to_slug("col")
    table = ensure_vec_table(tmp_db, slug, DIMS)
    assert _table_exists(tmp_db, table)
    assert ensure_vec_table(tmp_db, slug, DIMS) == table


def test_ensure_vec_table_rejects_bad_slug(tmp_db):
    with pytest.raises(ValueError, match="Invalid collection slug"):
        ensure_vec_table(tmp_db, "drop table; --", DIMS)


def test_ensure_vec_table_rejects_zero_dims(tmp_db):
    with pytest.raises(ValueError, match="dimensions"):
        ensure_vec_table(tmp_db, "col", 0)


# --- upsert / query ---


def test_query_ranks_by_cosine_similarity(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    store.upsert(
        [
            _record("same", [1.0, 0.0, 0.0, 0.0]),
            _record("close", [1.0, 1.0, 0.0, 0.0]),
            _record("opposite", [0.0, 0.0, 0.0, 1.0]),
        ]
    )
    matches = store.query([1.0, 0.0, 0.0, 0.0], "col", top_k=3)
    assert [m.id for m in matches] == ["same", "close", "opposite"]
    assert matches[0].score == pytest.approx(1.0, abs=1e-5)
    assert matches[1].score == pytest.approx(0.7071, abs=1e-3)
    assert matches[2].score == pytest.approx(0.0, abs=1e-5)


def test_query_returns_metadata(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    store.upsert([_record("c1", [1.0, 0.0, 0.0, 0.0], page_number=3, is_mock_embedding=True)])
    match = store.query([1.0, 0.0, 0.0, 0.0], "col", top_k=1)[0]
    assert match.document_id == "d1"
    assert match.source_name == "notes.txt"
    assert match.text == "text of c1"
    assert match.page_number == 3
    assert match.is_mock_embedding is True


def test_query_respects_top_k(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    store.upsert([_record(f"c{i}", [1.0, float(i), 0.0, 0.0]) for i in range(5)])
    assert len(store.query([1.0, 0.0, 0.0, 0.0], "col", top_k=2)) == 2
    assert store.query([1.0, 0.0, 0.0, 0.0], "col", top_k=0) == []


def test_query_scoped_to_collection(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    store.upsert([_record("a", [1.0, 0.0, 0.0, 0.0], collection="alpha")])
    store.upsert([_record("b", [1.0, 0.0, 0.0, 0.0], collection="beta")])
    assert [m.id for m in store.query([1.0, 0.0, 0.0, 0.0], "alpha", top_k=5)] == ["a"]


def test_query_unknown_collection_returns_empty(tmp_db):
    assert SqliteVecStore(tmp_db, DIMS).query([1.0, 0.0, 0.0, 0.0], "nothing", top_k=5) == []


def test_upsert_overwrites_same_id(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    store.upsert([_record("c1", [1.0, 0.0, 0.0, 0.0], text="old")])
    store.upsert([_record("c1", [0.0, 1.0, 0.0, 0.0], text="new")])
    assert store.count("col") == 1
    match = store.query([0.0, 1.0, 0.0, 0.0], "col", top_k=5)[0]
    assert match.text == "new"
    assert match.score == pytest.approx(1.0, abs=1e-5)


def test_upsert_rejects_dimension_mismatch(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    with pytest.raises(ValueError, match="dimensions"):
        store.upsert([_record("c1", [1.0, 0.0])])
    assert store.count() == 0


# --- delete / count ---


def test_delete_removes_from_both_tables(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    store.upsert([_record("c1", [1.0, 0.0, 0.0, 0.0]), _record("c2", [0.0, 1.0, 0.0, 0.0])])
    store.delete(["c1", "unknown"])
    assert store.count("col") == 1
    table = vec_table_name(collection_to_slug("col"))
    assert tmp_db.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0] == 1
    assert [m.id for m in store.query([1.0, 0.0, 0.0, 0.0], "col", top_k=5)] == ["c2"]


def test_count_all_and_per_collection(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    store.upsert([_record("a", [1.0, 0.0, 0.0, 0.0], collection="alpha")])
    store.upsert([_record("b", [1.0, 0.0, 0.0, 0.0], collection="beta")])
    assert store.count() == 2
    assert store.count("alpha") == 1
