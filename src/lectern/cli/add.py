"""lectern add: register files and web pages as pending documents.

Source dispatch:
  https:// / http://            → webpage
  .pdf .docx .txt .md … files   → file (see lectern.ingest.extractors)
"""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lectern.cli.common import connect, load_cli_config
from lectern.cli.errors import err_source_not_found, err_unsupported_source
from lectern.db.models import Document, SourceKind
from lectern.db.repository import Repository
from lectern.ingest.extractors import SUPPORTED_SUFFIXES

console = Console()


def add_cmd(
    sources: Annotated[
        list[str],
        typer.Argument(help="File paths or http(s) URLs."),
    ],
    collection: Annotated[
        str,
        typer.Option("--collection", "-c", help="Collection to add the documents to."),
    ],
    name: Annotated[
        str | None,
        typer.Option("--name", help="Display name (only with a single source)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to .lectern.db."),
    ] = None,
) -> None:
    """Register sources as pending documents; run 'lectern ingest' to process them."""
    if name is not None and len(sources) > 1:
        console.print("[red]Error:[/] --name can only be used with a single source.")
        raise typer.Exit(1)

    cfg = load_cli_config(db)
    conn = connect(cfg.db_path)
    repo = Repository(conn)
    added = 0
    try:
        for source in sources:
            document = _to_document(source, collection, name)
            if document is None:
                continue
            if repo.get_document_by_ref(collection, document.storage_ref) is not None:
                console.print(f"  [dim]↷ Already registered:[/] {document.storage_ref}")
                continue
            repo.add_document(document)
            added += 1
            console.print(f"  [green]✓[/] {document.name} [dim]({document.source_kind.value})[/]")
    finally:
        conn.close()

    console.print(f"\n{added} document(s) added to '{collection}'.")
    if added:
        console.print("  Next:  lectern ingest")


def _to_document(source: str, collection: str, name: str | None) -> Document | None:
    if source.startswith(("https://", "http://")):
        return Document(
            id=str(uuid.uuid4()),
            collection_id=collection,
            name=name or source,
            source_kind=SourceKind.WEBPAGE,
            storage_ref=source,
        )

    path = Path(source)
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        console.print(err_unsupported_source(source, sorted(SUPPORTED_SUFFIXES)))
        return None
    if not path.is_file():
        console.print(err_source_not_found(source))
        return None
    return Document(
        id=str(uuid.uuid4()),
        collection_id=collection,
        name=name or path.name,
        source_kind=SourceKind.FILE,
        storage_ref=str(path.resolve()),
    )
