"""lectern query: ask a question against one collection."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from lectern.cli.common import connect, load_cli_config
from lectern.cli.errors import err_no_api_key
from lectern.db.vectors import SqliteVecStore
from lectern.ingest.embeddings import EmbeddingBatchGenerator, EmbeddingFailurePolicy
from lectern.rag.llm_client import LiteLLMGenerator, validate_api_key
from lectern.rag.models import QueryResult
from lectern.rag.retriever import Retriever

console = Console()

_SNIPPET_CHARS = 120


def query_cmd(
    text: Annotated[str, typer.Argument(help="The question to answer.")],
    collection: Annotated[
        str,
        typer.Option("--collection", "-c", help="Collection to search."),
    ],
    min_confidence: Annotated[
        float | None,
        typer.Option("--min-confidence", min=0.0, max=1.0, help="Score needed to cite a chunk."),
    ] = None,
    max_sources: Annotated[
        int | None,
        typer.Option("--max-sources", min=1, help="Maximum number of citations."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lectern.db."),
    ] = None,
) -> None:
    """Answer a question with citations from the knowledge base."""
    cfg = load_cli_config(db)
    for model in (cfg.embedding.model, cfg.generation.model):
        try:
            validate_api_key(model)
        except EnvironmentError as exc:
            console.print(err_no_api_key(model))
            raise typer.Exit(1) from exc

    conn = connect(cfg.db_path)
    try:
        retriever = Retriever(
            store=SqliteVecStore(conn, cfg.embedding.dimensions),
            embedder=EmbeddingBatchGenerator(cfg.embedding, EmbeddingFailurePolicy.PROPAGATE),
            generator=LiteLLMGenerator(cfg.generation, num_retries=cfg.embedding.num_retries),
            config=cfg.retrieval,
        )
        result = retriever.query(
            text, collection, min_confidence=min_confidence, max_sources=max_sources
        )
    finally:
        conn.close()

    _print_result(result)


def _print_result(result: QueryResult) -> None:
    console.print(result.content, markup=False, highlight=False)
    if result.is_fallback:
        console.print("\n[dim]No sources met the confidence threshold.[/]")
        return

    table = Table(title=f"Sources (confidence {result.confidence:.0%})")
    table.add_column("#", justify="right")
    table.add_column("Document")
    table.add_column("Page", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Excerpt", style="dim")
    for c in result.citations:
        excerpt = c.text if len(c.text) <= _SNIPPET_CHARS else c.text[:_SNIPPET_CHARS] + "…"
        table.add_row(
            c.label,
            c.source_name,
            str(c.page_number) if c.page_number else "",
            f"{c.score:.1%}",
            excerpt,
        )
    console.print()
    console.print(table)
