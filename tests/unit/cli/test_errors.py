"""Tests for the CLI's rich error messages."""

from __future__ import annotations

import pytest

from lectern.cli.errors import (
    err_config,
    err_no_api_key,
    err_no_db,
    err_nothing_to_ingest,
    err_schema,
    err_source_not_found,
    err_unsupported_source,
    warn_stale_processing,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _has_action(msg: str) -> bool:
    """Every message must tell the user what to do next."""
    lower = msg.lower()
    return any(
        kw in lower
        for kw in ["run:", "set:", "retry", "fix ", "supported:", "lectern ", "check "]
    )


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "message",
    [
        err_no_api_key("openai/text-embedding-3-small"),
        err_no_db(".lectern.db"),
        err_config("retrieval.max_sources must be >= 1"),
        err_unsupported_source("song.mp3", [".pdf", ".txt"]),
        err_source_not_found("missing.pdf"),
        err_nothing_to_ingest("bio"),
        warn_stale_processing(2),
    ],
)
def test_messages_are_actionable(message):
    assert _has_action(message)


def test_no_api_key_names_env_var():
    assert "OPENAI_API_KEY" in err_no_api_key("openai/gpt-4o-mini")
    assert "ANTHROPIC_API_KEY" in err_no_api_key("anthropic/claude-3-5-haiku")


def test_no_api_key_unknown_provider_guesses_env_var():
    assert "TOGETHER_API_KEY" in err_no_api_key("together/llama")


def test_no_api_key_bare_model_is_openai():
    assert "OPENAI_API_KEY" in err_no_api_key("gpt-4o-mini")


def test_no_db_mentions_path_and_init():
    msg = err_no_db("/tmp/kb.db")
    assert "/tmp/kb.db" in msg
    assert "lectern init" in msg


def test_schema_passes_message_through():
    assert "newer than this release" in err_schema("Database schema version 9 is newer than this release")


def test_unsupported_source_lists_suffixes():
    msg = err_unsupported_source("song.mp3", [".pdf", ".txt"])
    assert "song.mp3" in msg
    assert ".pdf, .txt" in msg


def test_nothing_to_ingest_scope():
    assert "collection 'bio'" in err_nothing_to_ingest("bio")
    assert "collection" not in err_nothing_to_ingest(None).split("\n")[0]


def test_stale_warning_count():
    assert "3 document(s)" in warn_stale_processing(3)
