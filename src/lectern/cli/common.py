"""Helpers shared by the CLI commands: config loading and database opening."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from lectern.cli.errors import err_config, err_no_db, err_schema
from lectern.config import ConfigError, LecternConfig, load_config
from lectern.db.connection import open_database
from lectern.errors import SchemaVersionError

console = Console()


def load_cli_config(db: Path | None) -> LecternConfig:
    """Load config from the current directory; ``--db`` overrides ``db_path``."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.db_path = db
    return cfg


def connect(db_path: Path) -> sqlite3.Connection:
    """Open an existing, up-to-date database or exit with an actionable message."""
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    try:
        return open_database(db_path)
    except SchemaVersionError as exc:
        console.print(err_schema(str(exc)))
        raise typer.Exit(1) from exc
