"""SQLite connections for the knowledge base.

Each connection loads sqlite-vec and runs in WAL mode with a busy timeout, so
ingestion workers holding their own connections can write concurrently.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

from lectern.db.schema import initialize, verify_schema

_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
)


class Database:
    """Knowledge-base file; hands out sqlite-vec enabled connections.

    A Database may be shared between threads. The connections it returns
    may not.
    """

    def __init__(self, db_path: Path | str, *, busy_timeout: float = 30.0) -> None:
        self.db_path = Path(db_path)
        self.busy_timeout = busy_timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Return a new connection with sqlite-vec loaded and pragmas applied."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        try:
            sqlite_vec.load(conn)
        finally:
            conn.enable_load_extension(False)
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        return conn

    def open(self, *, migrate: bool = False) -> sqlite3.Connection:
        """Connect and check the schema version, migrating first if asked.

        Raises:
            SchemaVersionError: If the schema does not match this release.
        """
        conn = self.connect()
        try:
            if migrate:
                initialize(conn)
            verify_schema(conn)
        except Exception:
            conn.close()
            raise
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def open_database(db_path: Path | str, *, migrate: bool = False) -> sqlite3.Connection:
    """Shorthand for ``Database(db_path).open(migrate=migrate)``."""
    return Database(db_path).open(migrate=migrate)
