"""lectern ingest: process pending documents with the parallel scheduler."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from lectern.cli.common import connect, load_cli_config
from lectern.cli.errors import err_no_api_key, err_nothing_to_ingest, warn_stale_processing
from lectern.db.models import DocumentStatus
from lectern.db.repository import Repository
from lectern.ingest.pipeline import open_ingestor
from lectern.ingest.scheduler import IngestionScheduler, IngestionSummary
from lectern.rag.llm_client import validate_api_key

console = Console()

_POLL_SECONDS = 0.2


def ingest_cmd(
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Only ingest this collection."),
    ] = None,
    max_concurrent: Annotated[
        int | None,
        typer.Option("--max-concurrent", "-j", min=1, help="Worker threads (default: config)."),
    ] = None,
    retry_errors: Annotated[
        bool,
        typer.Option("--retry-errors", help="Also retry documents in 'error' status."),
    ] = False,
    reset_stale: Annotated[
        bool,
        typer.Option(
            "--reset-stale",
            help="Mark documents stuck in 'processing' (interrupted run) as 'error' first.",
        ),
    ] = False,
    mock_embeddings: Annotated[
        bool,
        typer.Option(
            "--mock-embeddings",
            help="Substitute placeholder vectors if the embedding provider fails.",
        ),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lectern.db."),
    ] = None,
) -> None:
    """Extract, chunk, embed and index pending documents."""
    cfg = load_cli_config(db)
    if mock_embeddings:
        cfg.embedding.failure_policy = "mock"
    workers = max_concurrent or cfg.ingestion.max_concurrent

    if cfg.embedding.failure_policy != "mock":
        try:
            validate_api_key(cfg.embedding.model)
        except EnvironmentError as exc:
            console.print(err_no_api_key(cfg.embedding.model))
            raise typer.Exit(1) from exc

    conn = connect(cfg.db_path)
    try:
        repo = Repository(conn)
        if reset_stale:
            reset = repo.reset_stale_processing(collection)
            if reset:
                console.print(warn_stale_processing(reset))
        statuses = [DocumentStatus.PENDING]
        if retry_errors or reset_stale:
            statuses.append(DocumentStatus.ERROR)
        documents = repo.list_documents(collection, statuses)
    finally:
        conn.close()

    if not documents:
        console.print(err_nothing_to_ingest(collection))
        raise typer.Exit(0)

    console.print(
        f"[bold]→ Ingesting {len(documents)} document(s)[/] "
        f"[dim]({workers} workers, {cfg.embedding.model})[/]"
    )
    scheduler = IngestionScheduler(
        lambda: open_ingestor(cfg),
        max_concurrent=workers,
        stagger_seconds=cfg.ingestion.stagger_seconds,
    )
    job = scheduler.submit(documents)
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        transient=True,
        console=console,
    ) as prog:
        task = prog.add_task("Ingesting…", total=len(documents))
        while not job.wait(_POLL_SECONDS):
            prog.update(task, completed=job.progress()[0])
        prog.update(task, completed=len(documents))

    summary = job.result()
    _print_summary(summary)
    if summary.failed:
        raise typer.Exit(1)


def _print_summary(summary: IngestionSummary) -> None:
    console.print(
        f"  [green]✓[/] {summary.succeeded} succeeded  "
        f"[red]✗[/] {summary.failed} failed  "
        f"[dim]({summary.chunks_created} chunks)[/]"
    )
    mocked = [r for r in summary.results if r.mock_embeddings]
    if mocked:
        console.print(
            f"  [yellow]⚠[/] {len(mocked)} document(s) stored with mock embeddings; "
            "search results for them are not meaningful."
        )
    if not summary.failures:
        return
    table = Table(title="Failed documents", show_lines=False)
    table.add_column("Document")
    table.add_column("Error", style="red")
    for failure in summary.failures:
        table.add_row(failure.name, failure.error)
    console.print(table)
    console.print("  Retry with:  lectern ingest --retry-errors")
