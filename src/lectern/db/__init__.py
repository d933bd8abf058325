"""Lectern database layer."""

from lectern.db.connection import Database, open_database
from lectern.db.migrations import MIGRATIONS, run_migrations
from lectern.db.repository import Repository
from lectern.db.schema import CURRENT_VERSION, initialize, verify_schema
from lectern.db.vectors import (
    SqliteVecStore,
    VectorMatch,
    VectorRecord,
    VectorStore,
    collection_to_slug,
    ensure_vec_table,
    vec_table_name,
)

__all__ = [
    "CURRENT_VERSION",
    "Database",
    "MIGRATIONS",
    "Repository",
    "SqliteVecStore",
    "VectorMatch",
    "VectorRecord",
    "VectorStore",
    "collection_to_slug",
    "ensure_vec_table",
    "initialize",
    "open_database",
    "run_migrations",
    "vec_table_name",
    "verify_schema",
]
