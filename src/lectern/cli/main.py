"""Lectern CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

from lectern.cli.add import add_cmd
from lectern.cli.ingest import ingest_cmd
from lectern.cli.init import init_cmd
from lectern.cli.query import query_cmd
from lectern.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("lectern")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"lectern {_installed_version()}")
        raise typer.Exit()


def configure_logging(verbose: bool) -> None:
    """Route library logging through Rich; DEBUG with --verbose, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )
    # LiteLLM and HTTP clients are chatty at DEBUG.
    for name in ("LiteLLM", "litellm", "httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


app = typer.Typer(
    name="lectern",
    help=(
        "Lectern: document knowledge base with cited answers.\n\n"
        "  lectern add      Register files or web pages in a collection.\n"
        "  lectern ingest   Extract, chunk, embed and index pending documents.\n"
        "  lectern query    Ask a question and get an answer with citations."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Lectern: document knowledge base with cited answers."""
    configure_logging(verbose)


app.command("init")(init_cmd)
app.command("add")(add_cmd)
app.command("ingest")(ingest_cmd)
app.command("query")(query_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed Lectern version."""
    typer.echo(f"lectern {_installed_version()}")


if __name__ == "__main__":
    app()
