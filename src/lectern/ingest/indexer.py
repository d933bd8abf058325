"""Batched, idempotent writes of vector records to a VectorStore."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from lectern.db.vectors import VectorRecord, VectorStore
from lectern.errors import IndexingFailure

logger = logging.getLogger(__name__)


class VectorIndexer:
    """Upsert vector records in batches of ``batch_size``.

    A failing batch fails the whole call. Records written by earlier batches of
    the same call are removed again (best effort) so the store never keeps
    vectors for chunks that end up marked ``error``.
    """

    def __init__(self, store: VectorStore, batch_size: int = 100) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._store = store
        self._batch_size = batch_size

    def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Write all *records*; raises IndexingFailure if any batch fails."""
        if not records:
            return
        written: list[str] = []
        for start in range(0, len(records), self._batch_size):
            batch = records[start : start + self._batch_size]
            try:
                self._store.upsert(batch)
            except Exception as exc:
                logger.error(
                    "Vector upsert failed at batch offset %d (%d records): %s",
                    start,
                    len(batch),
                    exc,
                )
                self._rollback(written)
                raise IndexingFailure(f"Failed to upsert vectors: {exc}") from exc
            written.extend(r.id for r in batch)
        logger.debug("Upserted %d vectors", len(written))

    def delete(self, ids: Sequence[str]) -> None:
        """Remove vectors by id (used to clear a retried document's stale vectors)."""
        if ids:
            self._store.delete(list(ids))

    def _rollback(self, ids: list[str]) -> None:
        if not ids:
            return
        try:
            self._store.delete(ids)
        except Exception as exc:
            logger.warning("Could not remove %d partially indexed vectors: %s", len(ids), exc)
