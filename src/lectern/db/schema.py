"""Schema initialization and the startup schema-version contract."""

from __future__ import annotations

import sqlite3

from lectern.db.migrations import MIGRATIONS, current_version, run_migrations
from lectern.errors import SchemaVersionError

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)


def verify_schema(conn: sqlite3.Connection) -> int:
    """Check once, at startup, that the database is at CURRENT_VERSION.

    Components rely on this contract instead of probing columns per request.

    Returns:
        The verified schema version.

    Raises:
        SchemaVersionError: If the database is uninitialised, older (run
            ``initialize``), or newer than this release understands.
    """
    version = current_version(conn)
    if version == CURRENT_VERSION:
        return version
    if version == 0:
        raise SchemaVersionError(
            "Database has no Lectern schema. Run 'lectern init' first."
        )
    if version < CURRENT_VERSION:
        raise SchemaVersionError(
            f"Database schema is at version {version}, expected {CURRENT_VERSION}. "
            "Run 'lectern init' to apply pending migrations."
        )
    raise SchemaVersionError(
        f"Database schema version {version} is newer than this release "
        f"supports ({CURRENT_VERSION}). Upgrade Lectern."
    )
