"""Tests for the bounded-concurrency ingestion scheduler."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

import pytest

from lectern.config import ChunkingCfg, EmbeddingCfg, LecternConfig
from lectern.db.connection import open_database
from lectern.db.models import Document, DocumentStatus, SourceKind
from lectern.db.repository import Repository
from lectern.errors import ExtractionFailure
from lectern.ingest.pipeline import IngestResult
from lectern.ingest.scheduler import IngestionScheduler, ingest_all


def _docs(n: int) -> list[Document]:
    return [
        Document(
            id=f"doc-{i}",
            collection_id="col",
            name=f"file{i}.txt",
            source_kind=SourceKind.FILE,
            storage_ref=f"/tmp/file{i}.txt",
        )
        for i in range(n)
    ]


class _FakeIngestor:
    """Records concurrency and fails for the ids it is told to."""

    def __init__(self, tracker: "_Tracker") -> None:
        self._tracker = tracker

    def ingest(self, document: Document, *, reingest: bool = False) -> IngestResult:
        self._tracker.enter()
        try:
            time.sleep(self._tracker.delay)
            if document.id in self._tracker.failing:
                raise ExtractionFailure(f"cannot read {document.name}")
            self._tracker.seen.append((document.id, reingest))
            return IngestResult(document.id, chunks_created=2, processing_time_ms=1)
        finally:
            self._tracker.leave()


class _Tracker:
    def __init__(self, failing: set[str] | None = None, delay: float = 0.01) -> None:
        self.failing = failing or set()
        self.delay = delay
        self.seen: list[tuple[str, bool]] = []
        self.active = 0
        self.peak = 0
        self.opened = 0
        self.closed = 0
        self._lock = threading.Lock()

    def enter(self) -> None:
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)

    def leave(self) -> None:
        with self._lock:
            self.active -= 1

    @contextmanager
    def factory(self):
        with self._lock:
            self.opened += 1
        try:
            yield _FakeIngestor(self)
        finally:
            with self._lock:
                self.closed += 1


# ---------------------------------------------------------------------------
# run_all
# ---------------------------------------------------------------------------


def test_failure_is_contained_to_its_document():
    tracker = _Tracker(failing={"doc-4"})
    summary = IngestionScheduler(tracker.factory, max_concurrent=3).run_all(_docs(10))

    assert summary.total == 10
    assert summary.succeeded == 9
    assert summary.failed == 1
    assert summary.failures[0].document_id == "doc-4"
    assert "cannot read file4.txt" in summary.failures[0].error
    assert summary.chunks_created == 18


def test_concurrency_is_bounded():
    tracker = _Tracker(delay=0.05)
    IngestionScheduler(tracker.factory, max_concurrent=3).run_all(_docs(9))
    assert tracker.peak <= 3
    assert tracker.peak >= 2


def test_one_ingestor_per_worker():
    tracker = _Tracker()
    IngestionScheduler(tracker.factory, max_concurrent=4).run_all(_docs(10))
    assert tracker.opened == 4
    assert tracker.closed == 4


def test_workers_capped_by_document_count():
    tracker = _Tracker()
    IngestionScheduler(tracker.factory, max_concurrent=8).run_all(_docs(2))
    assert tracker.opened == 2


def test_each_document_processed_once():
    tracker = _Tracker()
    IngestionScheduler(tracker.factory, max_concurrent=3).run_all(_docs(12))
    ids = [doc_id for doc_id, _ in tracker.seen]
    assert sorted(ids) == sorted(d.id for d in _docs(12))


def test_reingest_flag_forwarded():
    tracker = _Tracker()
    IngestionScheduler(tracker.factory, max_concurrent=1, reingest=True).run_all(_docs(2))
    assert all(flag for _, flag in tracker.seen)


def test_run_all_override_max_concurrent():
    tracker = _Tracker(delay=0.03)
    IngestionScheduler(tracker.factory, max_concurrent=4).run_all(_docs(6), max_concurrent=1)
    assert tracker.peak == 1


def test_empty_batch():
    tracker = _Tracker()
    summary = IngestionScheduler(tracker.factory).run_all([])
    assert summary.total == 0
    assert tracker.opened == 0


def test_invalid_max_concurrent():
    with pytest.raises(ValueError):
        IngestionScheduler(_Tracker().factory, max_concurrent=0)


def test_broken_factory_records_leftovers_as_failures():
    @contextmanager
    def broken():
        raise RuntimeError("cannot open database")
        yield  # pragma: no cover

    summary = IngestionScheduler(broken, max_concurrent=2).run_all(_docs(3))
    assert summary.failed == 3
    assert summary.succeeded == 0
    assert all("No ingestion worker" in f.error for f in summary.failures)


# ---------------------------------------------------------------------------
# submit / IngestionJob
# ---------------------------------------------------------------------------


def test_submit_returns_pollable_job():
    tracker = _Tracker(failing={"doc-1"})
    job = IngestionScheduler(tracker.factory, max_concurrent=2).submit(_docs(5))

    summary = job.result(timeout=10)
    assert job.done()
    assert job.progress() == (5, 5)
    assert summary.succeeded == 4
    assert summary.failed == 1


def test_job_result_timeout():
    release = threading.Event()

    class _Blocking:
        def ingest(self, document, *, reingest=False):
            release.wait(5)
            return IngestResult(document.id, 1, 1)

    @contextmanager
    def factory():
        yield _Blocking()

    job = IngestionScheduler(factory, max_concurrent=1).submit(_docs(1))
    with pytest.raises(TimeoutError, match="0/1"):
        job.result(timeout=0.05)
    release.set()
    assert job.result(timeout=5).succeeded == 1


# ---------------------------------------------------------------------------
# ingest_all with real ingestors
# ---------------------------------------------------------------------------


def test_ingest_all_against_database(db_path, tmp_path, fake_litellm_embedding):
    cfg = LecternConfig(
        embedding=EmbeddingCfg(model="openai/test-embed", dimensions=4),
        chunking=ChunkingCfg(max_size=100, overlap=10),
    )
    cfg.db_path = db_path

    conn = open_database(db_path)
    repo = Repository(conn)
    docs = []
    for i in range(4):
        path = tmp_path / f"note{i}.txt"
        path.write_text(f"Note {i}: enzymes speed up reactions. " * 5, encoding="utf-8")
        doc = Document(
            id=f"n{i}",
            collection_id="biology",
            name=path.name,
            source_kind=SourceKind.FILE,
            storage_ref=str(path),
        )
        repo.add_document(doc)
        docs.append(doc)
    missing = Document(
        id="gone",
        collection_id="biology",
        name="gone.txt",
        source_kind=SourceKind.FILE,
        storage_ref=str(tmp_path / "gone.txt"),
    )
    repo.add_document(missing)

    summary = ingest_all(docs + [missing], max_concurrent=3, config=cfg)

    assert summary.succeeded == 4
    assert summary.failed == 1
    counts = repo.count_documents_by_status("biology")
    assert counts[DocumentStatus.COMPLETED.value] == 4
    assert counts[DocumentStatus.ERROR.value] == 1
    assert "File not found" in repo.get_document("gone").error_message
    conn.close()
