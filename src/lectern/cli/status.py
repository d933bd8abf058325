"""lectern status: document table with status, chunk count and message."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from lectern.cli.common import connect, load_cli_config
from lectern.db.models import ChunkStatus, DocumentStatus
from lectern.db.repository import Repository
from lectern.db.vectors import SqliteVecStore

console = Console()

_STATUS_STYLE = {
    DocumentStatus.PENDING: "dim",
    DocumentStatus.PROCESSING: "cyan",
    DocumentStatus.COMPLETED: "green",
    DocumentStatus.ERROR: "red",
}


def status_cmd(
    collection: Annotated[
        str | None,
        typer.Option("--collection", "-c", help="Only show this collection."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lectern.db."),
    ] = None,
) -> None:
    """Show documents and their ingestion status."""
    cfg = load_cli_config(db)
    conn = connect(cfg.db_path)
    try:
        repo = Repository(conn)
        counts = repo.count_documents_by_status(collection)
        documents = repo.list_documents(collection)
        chunk_counts = {
            d.id: repo.count_chunks(d.id, ChunkStatus.EMBEDDED) for d in documents
        }
        vectors = SqliteVecStore(conn, cfg.embedding.dimensions).count(collection)
    finally:
        conn.close()

    size_mb = cfg.db_path.stat().st_size / (1024 * 1024)
    summary = "  |  ".join(f"{status}: [bold]{n}[/]" for status, n in counts.items())
    console.print(
        Panel(
            f"Database:  {cfg.db_path} ({size_mb:.1f} MB)\n"
            f"Documents: {summary}\n"
            f"Vectors:   [bold]{vectors:,}[/]",
            title="[bold]Knowledge Base[/]",
            expand=False,
        )
    )

    if not documents:
        console.print("[dim]No documents yet.[/]  Run:  lectern add <file-or-url> --collection <id>")
        return

    table = Table()
    table.add_column("Document")
    table.add_column("Collection")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Message", style="dim")
    for d in documents:
        style = _STATUS_STYLE.get(d.status, "")
        table.add_row(
            d.name,
            d.collection_id,
            f"[{style}]{d.status.value}[/]" if style else d.status.value,
            str(chunk_counts[d.id]),
            d.error_message or "",
        )
    console.print(table)
