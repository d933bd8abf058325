"""Tests for VectorIndexer batching and partial-write rollback."""

from __future__ import annotations

import pytest

from lectern.db.vectors import SqliteVecStore, VectorRecord, VectorStore
from lectern.errors import IndexingFailure
from lectern.ingest.indexer import VectorIndexer

DIMS = 4


def _records(n: int) -> list[VectorRecord]:
    return [
        VectorRecord(
            id=f"c{i}",
            embedding=[1.0, float(i), 0.0, 0.0],
            document_id="d1",
            collection_id="col",
            source_name="notes.txt",
            source_kind="file",
            text=f"chunk {i}",
        )
        for i in range(n)
    ]


class _RecordingStore(VectorStore):
    """In-memory store that can be told to fail on the Nth upsert call."""

    def __init__(self, fail_on_call: int | None = None, fail_delete: bool = False) -> None:
        self.records: dict[str, VectorRecord] = {}
        self.upsert_calls: list[int] = []
        self.fail_on_call = fail_on_call
        self.fail_delete = fail_delete

    def upsert(self, records):
        self.upsert_calls.append(len(records))
        if self.fail_on_call == len(self.upsert_calls):
            raise RuntimeError("disk full")
        for r in records:
            self.records[r.id] = r

    def query(self, vector, collection_id, top_k):
        return []

    def delete(self, ids):
        if self.fail_delete:
            raise RuntimeError("locked")
        for i in ids:
            self.records.pop(i, None)

    def count(self, collection_id=None):
        return len(self.records)


def test_upsert_in_batches():
    store = _RecordingStore()
    VectorIndexer(store, batch_size=2).upsert(_records(5))
    assert store.upsert_calls == [2, 2, 1]
    assert store.count() == 5


def test_empty_upsert_is_noop():
    store = _RecordingStore()
    VectorIndexer(store).upsert([])
    assert store.upsert_calls == []


def test_failed_batch_rolls_back_earlier_batches():
    store = _RecordingStore(fail_on_call=2)
    with pytest.raises(IndexingFailure, match="disk full"):
        VectorIndexer(store, batch_size=2).upsert(_records(5))
    assert store.count() == 0


def test_rollback_failure_still_raises_indexing_failure():
    store = _RecordingStore(fail_on_call=2, fail_delete=True)
    with pytest.raises(IndexingFailure):
        VectorIndexer(store, batch_size=2).upsert(_records(4))


def test_invalid_batch_size():
    with pytest.raises(ValueError):
        VectorIndexer(_RecordingStore(), batch_size=0)


def test_delete_forwards_ids():
    store = _RecordingStore()
    indexer = VectorIndexer(store)
    indexer.upsert(_records(3))
    indexer.delete(["c0", "c2"])
    assert set(store.records) == {"c1"}


def test_upsert_is_idempotent_on_sqlite_vec(tmp_db):
    store = SqliteVecStore(tmp_db, DIMS)
    indexer = VectorIndexer(store, batch_size=2)
    indexer.upsert(_records(3))
    indexer.upsert(_records(3))
    assert store.count("col") == 3


def test_dimension_mismatch_becomes_indexing_failure(tmp_db):
    records = _records(2)
    records[1].embedding = [1.0]
    with pytest.raises(IndexingFailure):
        VectorIndexer(SqliteVecStore(tmp_db, DIMS), batch_size=1).upsert(records)
    assert SqliteVecStore(tmp_db, DIMS).count() == 0
