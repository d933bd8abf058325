"""Batched embedding generation through LiteLLM.

Texts are split into provider-sized batches, embedded (sequentially or through
a small thread pool) and reassembled in input order. The result is all or
nothing: either every text gets a vector of the configured dimension, or the
call fails, or, under the ``mock`` failure policy, every text gets a
deterministic placeholder vector and the batch is flagged.
"""

from __future__ import annotations

import hashlib
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from lectern.config import MAX_EMBEDDING_BATCH, EmbeddingCfg
from lectern.errors import EmbeddingProviderFailure
from lectern.rag.llm_client import embed_texts

logger = logging.getLogger(__name__)

MOCK_WARNING_PREFIX = "Warning: Using mock embeddings."


class EmbeddingFailurePolicy(str, Enum):
    PROPAGATE = "propagate"
    MOCK = "mock"


@dataclass
class EmbeddingBatch:
    """Vectors for one logical embed() call, in input order.

    Attributes:
        vectors: One vector per input text.
        is_mock: True when placeholder vectors were substituted.
        warning: Human-readable note recorded on the document when mocked.
    """

    vectors: list[list[float]] = field(default_factory=list)
    is_mock: bool = False
    warning: str | None = None


def mock_embedding(text: str, dimensions: int) -> list[float]:
    """Return a reproducible pseudo-random vector in [-1, 1] seeded from *text*."""
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = random.Random(seed)
    return [rng.uniform(-1.0, 1.0) for _ in range(dimensions)]


class EmbeddingBatchGenerator:
    """Turn chunk texts into fixed-dimension vectors in bounded batches.

    Args:
        config: Embedding configuration (model, dimensions, batch size,
            parallelism, retries, failure policy).
        failure_policy: Overrides ``config.failure_policy`` when given.
    """

    def __init__(
        self,
        config: EmbeddingCfg | None = None,
        failure_policy: EmbeddingFailurePolicy | str | None = None,
    ) -> None:
        self._config = config or EmbeddingCfg()
        self._policy = EmbeddingFailurePolicy(failure_policy or self._config.failure_policy)
        self._batch_size = max(1, min(self._config.batch_size, MAX_EMBEDDING_BATCH))

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    def embed(self, texts: list[str]) -> EmbeddingBatch:
        """Embed *texts* as one logical call.

        Raises:
            EmbeddingProviderFailure: Under the ``propagate`` policy, if any
                batch fails or returns the wrong count or dimension.
        """
        if not texts:
            return EmbeddingBatch()
        try:
            return EmbeddingBatch(vectors=self._embed_all(texts))
        except EmbeddingProviderFailure as exc:
            if self._policy is EmbeddingFailurePolicy.PROPAGATE:
                raise
            logger.warning(
                "Embedding provider failed for %d texts; substituting mock vectors: %s",
                len(texts),
                exc,
            )
            return EmbeddingBatch(
                vectors=[mock_embedding(t, self.dimensions) for t in texts],
                is_mock=True,
                warning=f"{MOCK_WARNING_PREFIX} Embedding provider error: {exc}",
            )

    def embed_one(self, text: str) -> list[float]:
        """Embed a single text, always propagating failures."""
        return self._embed_batch([text])[0]

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    def _embed_all(self, texts: list[str]) -> list[list[float]]:
        batches = [
            texts[i : i + self._batch_size] for i in range(0, len(texts), self._batch_size)
        ]
        logger.debug(
            "Embedding %d texts in %d batches with %s", len(texts), len(batches), self.model
        )
        workers = min(self._config.max_parallel_batches, len(batches))
        if workers <= 1:
            results = [self._embed_batch(b) for b in batches]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                # map() yields results in submission order
                results = list(pool.map(self._embed_batch, batches))
        return [vector for batch in results for vector in batch]

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        try:
            vectors = embed_texts(self.model, texts, num_retries=self._config.num_retries)
        except Exception as exc:
            raise EmbeddingProviderFailure(
                f"Embedding request to '{self.model}' failed: {exc}"
            ) from exc
        if len(vectors) != len(texts):
            raise EmbeddingProviderFailure(
                f"Provider returned {len(vectors)} embeddings for {len(texts)} texts."
            )
        for vector in vectors:
            if len(vector) != self.dimensions:
                raise EmbeddingProviderFailure(
                    f"Provider returned a {len(vector)}-dimensional embedding, "
                    f"expected {self.dimensions}."
                )
        return [list(v) for v in vectors]
