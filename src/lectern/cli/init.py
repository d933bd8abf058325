"""lectern init: create the knowledge base and a starter lectern.yaml.

Creates:
  .lectern.db     SQLite database with the current schema (migrated in place
                    when it already exists)
  lectern.yaml    project config template (left alone when present)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from lectern.cli.errors import err_schema
from lectern.config import DEFAULT_DB_NAME, write_project_template
from lectern.db.connection import open_database
from lectern.errors import SchemaVersionError

console = Console()


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = Path("."),
    db: Annotated[
        Path | None,
        typer.Option("--db", help=f"Database path (default: <project_dir>/{DEFAULT_DB_NAME})."),
    ] = None,
) -> None:
    """Initialize a Lectern project: database schema and config template."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    db_path = db if db is not None else project_dir / DEFAULT_DB_NAME

    existed = db_path.exists()
    try:
        conn = open_database(db_path, migrate=True)
    except SchemaVersionError as exc:
        console.print(err_schema(str(exc)))
        raise typer.Exit(1) from exc
    conn.close()
    verb = "up to date" if existed else "created"
    console.print(f"  [green]✓[/] {db_path} ({verb})")

    written = write_project_template(project_dir)
    if written is not None:
        console.print(f"  [green]✓[/] {written}")
    else:
        console.print("  [dim]↷ lectern.yaml already exists, left unchanged[/]")

    console.print("\nNext steps:")
    console.print("  1. lectern add <file-or-url> --collection <id>   (register sources)")
    console.print("  2. lectern ingest                                (build the index)")
    console.print('  3. lectern query "<question>" --collection <id>  (ask)')
