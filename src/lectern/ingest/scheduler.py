"""Bounded-concurrency ingestion of many documents.

``max_concurrent`` worker threads pull documents from one shared queue. Each
worker owns one DocumentIngestor (and therefore one database connection) for
its whole life. A failed document only increments the failure count; the
worker moves on to the next document.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Sequence
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from functools import partial

from lectern.config import LecternConfig
from lectern.db.models import Document
from lectern.ingest.pipeline import DocumentIngestor, IngestResult, open_ingestor

logger = logging.getLogger(__name__)

IngestorFactory = Callable[[], AbstractContextManager[DocumentIngestor]]


@dataclass
class DocumentFailure:
    document_id: str
    name: str
    error: str


@dataclass
class IngestionSummary:
    """Totals for one scheduler run."""

    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: list[IngestResult] = field(default_factory=list)
    failures: list[DocumentFailure] = field(default_factory=list)

    @property
    def chunks_created(self) -> int:
        return sum(r.chunks_created for r in self.results)


class _Run:
    """Shared, lock-protected state of one scheduler run."""

    def __init__(self, documents: Sequence[Document]) -> None:
        self.pending: queue.Queue[Document] = queue.Queue()
        for doc in documents:
            self.pending.put(doc)
        self.summary = IngestionSummary(total=len(documents))
        self.lock = threading.Lock()

    def record_success(self, result: IngestResult) -> None:
        with self.lock:
            self.summary.succeeded += 1
            self.summary.results.append(result)

    def record_failure(self, document: Document, error: str) -> None:
        with self.lock:
            self.summary.failed += 1
            self.summary.failures.append(DocumentFailure(document.id, document.name, error))

    def progress(self) -> tuple[int, int]:
        with self.lock:
            return self.summary.succeeded + self.summary.failed, self.summary.total


class IngestionJob:
    """Handle for a run started with IngestionScheduler.submit()."""

    def __init__(self, run: _Run, thread: threading.Thread) -> None:
        self._run = run
        self._thread = thread

    def done(self) -> bool:
        return not self._thread.is_alive()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the run finishes or *timeout* elapses. Returns done()."""
        self._thread.join(timeout)
        return self.done()

    def progress(self) -> tuple[int, int]:
        """Return ``(finished, total)`` documents."""
        return self._run.progress()

    def result(self, timeout: float | None = None) -> IngestionSummary:
        """Return the summary, waiting up to *timeout* seconds.

        Raises:
            TimeoutError: If the run is still going after *timeout*.
        """
        if not self.wait(timeout):
            done, total = self.progress()
            raise TimeoutError(f"Ingestion still running ({done}/{total} documents finished).")
        return self._run.summary


class IngestionScheduler:
    """Run DocumentIngestor instances over many documents with a bounded pool.

    Args:
        ingestor_factory: Returns a context manager yielding a fresh ingestor;
            entered once per worker thread.
        max_concurrent: Default worker count.
        stagger_seconds: Delay between successive worker starts.
        reingest: Pass ``reingest=True`` to every ingest() call.
    """

    def __init__(
        self,
        ingestor_factory: IngestorFactory,
        max_concurrent: int = 3,
        stagger_seconds: float = 0.0,
        reingest: bool = False,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._factory = ingestor_factory
        self._max_concurrent = max_concurrent
        self._stagger = stagger_seconds
        self._reingest = reingest

    def run_all(
        self, documents: Sequence[Document], max_concurrent: int | None = None
    ) -> IngestionSummary:
        """Ingest every document and return once all have finished."""
        run = _Run(documents)
        self._execute(run, max_concurrent)
        return run.summary

    def submit(
        self, documents: Sequence[Document], max_concurrent: int | None = None
    ) -> IngestionJob:
        """Start ingesting in the background and return a pollable handle."""
        run = _Run(documents)
        thread = threading.Thread(
            target=self._execute,
            args=(run, max_concurrent),
            name="lectern-ingest",
            daemon=True,
        )
        thread.start()
        return IngestionJob(run, thread)

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def _execute(self, run: _Run, max_concurrent: int | None) -> None:
        total = run.summary.total
        if total == 0:
            return
        workers = min(max_concurrent or self._max_concurrent, total)
        if workers < 1:
            raise ValueError("max_concurrent must be >= 1")
        logger.info("Ingesting %d documents with %d workers", total, workers)

        threads = [
            threading.Thread(
                target=self._worker,
                args=(run, i * self._stagger),
                name=f"lectern-ingest-{i}",
            )
            for i in range(workers)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Documents nobody could pick up (every worker failed to start).
        while True:
            try:
                leftover = run.pending.get_nowait()
            except queue.Empty:
                break
            run.record_failure(leftover, "No ingestion worker was available.")

        s = run.summary
        logger.info(
            "Ingestion finished: %d succeeded, %d failed of %d", s.succeeded, s.failed, s.total
        )

    def _worker(self, run: _Run, delay: float) -> None:
        if delay > 0:
            time.sleep(delay)
        try:
            with self._factory() as ingestor:
                while True:
                    try:
                        document = run.pending.get_nowait()
                    except queue.Empty:
                        return
                    self._process(ingestor, run, document)
        except Exception:
            logger.exception("Ingestion worker %s stopped", threading.current_thread().name)

    def _process(self, ingestor: DocumentIngestor, run: _Run, document: Document) -> None:
        try:
            result = ingestor.ingest(document, reingest=self._reingest)
        except Exception as exc:
            logger.warning("Document %s (%s) failed: %s", document.id, document.name, exc)
            run.record_failure(document, str(exc) or type(exc).__name__)
        else:
            run.record_success(result)


def ingest_all(
    documents: Sequence[Document],
    max_concurrent: int | None = None,
    *,
    config: LecternConfig | None = None,
    ingestor_factory: IngestorFactory | None = None,
    reingest: bool = False,
) -> IngestionSummary:
    """Ingest *documents* concurrently and return the summary.

    Without *ingestor_factory*, each worker opens its own ingestor on
    ``config.db_path``.
    """
    cfg = config or LecternConfig()
    factory = ingestor_factory or partial(open_ingestor, cfg)
    scheduler = IngestionScheduler(
        factory,
        max_concurrent=max_concurrent or cfg.ingestion.max_concurrent,
        stagger_seconds=cfg.ingestion.stagger_seconds,
        reingest=reingest,
    )
    return scheduler.run_all(documents)
