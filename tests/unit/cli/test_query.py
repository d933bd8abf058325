"""Tests for lectern query (litellm mocked end to end)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from typer.testing import CliRunner

from lectern.cli.main import app

runner = CliRunner()


def _completion(content: str) -> MagicMock:
    response = MagicMock()
    response.choices[0].message.content = content
    return response


def _embed_same(model, input, **kwargs):
    response = MagicMock()
    response.data = [{"embedding": [1.0, 0.5, 0.25, 0.0]} for _ in input]
    return response


def _ingested_project(project, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    runner.invoke(app, ["init"])
    (project / "cells.txt").write_text("Mitochondria produce ATP for the cell.", encoding="utf-8")
    runner.invoke(app, ["add", "cells.txt", "-c", "bio"])
    with patch("lectern.rag.llm_client.litellm.embedding", side_effect=_embed_same):
        result = runner.invoke(app, ["ingest"])
    assert result.exit_code == 0, result.output


def test_query_prints_answer_and_sources(lectern_project, monkeypatch):
    _ingested_project(lectern_project, monkeypatch)

    with (
        patch("lectern.rag.llm_client.litellm.embedding", side_effect=_embed_same),
        patch(
            "lectern.rag.llm_client.litellm.completion",
            return_value=_completion("Mitochondria make ATP [1]."),
        ) as mock_completion,
    ):
        result = runner.invoke(app, ["query", "Who makes ATP?", "-c", "bio"])

    assert result.exit_code == 0, result.output
    assert "Mitochondria make ATP [1]." in result.output
    assert "Sources" in result.output
    assert "cells.txt" in result.output
    prompt = mock_completion.call_args.kwargs["messages"][1]["content"]
    assert '[1] From "cells.txt"' in prompt


def test_query_low_confidence_shows_fallback(lectern_project, monkeypatch):
    _ingested_project(lectern_project, monkeypatch)

    def _orthogonal(model, input, **kwargs):
        response = MagicMock()
        response.data = [{"embedding": [0.0, 0.0, 0.0, 1.0]}]
        return response

    with (
        patch("lectern.rag.llm_client.litellm.embedding", side_effect=_orthogonal),
        patch(
            "lectern.rag.llm_client.litellm.completion",
            side_effect=RuntimeError("provider down"),
        ),
    ):
        result = runner.invoke(app, ["query", "What is a quasar?", "-c", "bio"])

    assert result.exit_code == 0, result.output
    assert "not finding specific information" in result.output
    assert "No sources met the confidence threshold" in result.output


def test_query_requires_api_key(lectern_project, monkeypatch):
    runner.invoke(app, ["init"])
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = runner.invoke(app, ["query", "q", "-c", "bio"])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_query_rejects_out_of_range_confidence(lectern_project, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    runner.invoke(app, ["init"])
    result = runner.invoke(app, ["query", "q", "-c", "bio", "--min-confidence", "1.5"])
    assert result.exit_code == 2
