"""Shared pytest fixtures."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from lectern.db.connection import Database
from lectern.db.schema import initialize

# Small vectors keep sqlite-vec tables cheap in tests.
TEST_DIMS = 4


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / ".lectern.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_path(tmp_path):
    """Path to an initialized DB file (no open connection), for multi-connection tests."""
    path = tmp_path / ".lectern.db"
    with Database(path) as conn:
        initialize(conn)
    return path


def _fake_vector(text: str, dims: int = TEST_DIMS) -> list[float]:
    """Deterministic, non-zero embedding derived from the text."""
    base = float(len(text) % 7 + 1)
    return [base] + [float((ord(ch) % 5) + 1) for ch in (text + "abcd")[: dims - 1]]


def _embedding_response(texts: list[str], dims: int = TEST_DIMS) -> MagicMock:
    """Shape-compatible stand-in for a litellm.embedding() response."""
    response = MagicMock()
    response.data = [{"embedding": _fake_vector(t, dims)} for t in texts]
    return response


@pytest.fixture
def fake_litellm_embedding():
    """Patch litellm.embedding to return deterministic TEST_DIMS vectors."""

    def _embed(model, input, **kwargs):
        return _embedding_response(list(input))

    with patch("lectern.rag.llm_client.litellm.embedding", side_effect=_embed) as mock:
        yield mock


@pytest.fixture
def lectern_project(tmp_path, monkeypatch):
    """Isolated CLI project dir: cwd, no global config, 4-dim embeddings, DB not yet created."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("lectern.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in ("LECTERN_EMBEDDING_MODEL", "LECTERN_GENERATION_MODEL", "LECTERN_DB"):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "lectern.yaml").write_text(
        "embedding:\n"
        "  model: openai/text-embedding-3-small\n"
        f"  dimensions: {TEST_DIMS}\n"
        "chunking:\n"
        "  max_size: 200\n"
        "  overlap: 20\n",
        encoding="utf-8",
    )
    return tmp_path
