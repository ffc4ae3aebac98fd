"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from refindex.db.migrations import run_migrations
from refindex.db.vectors import ensure_vec_tables


def initialize(conn: sqlite3.Connection, dimensions: int | None = None) -> None:
    """Initialize the schema via the migration runner (idempotent).

    The applied version is read from the store's schema_version table, so
    repeated calls from separate connections or processes are no-ops.

    Args:
        conn: Open connection with sqlite-vec loaded.
        dimensions: When given, also create the vec tables at this width.
    """
    run_migrations(conn)
    if dimensions is not None:
        ensure_vec_tables(conn, dimensions)


def ensure_source(
    conn: sqlite3.Connection,
    source_type: str,
    source_name: str,
    version: str = "",
    base_url: str = "",
) -> int:
    """Upsert the sources row for *source_type* and return its id."""
    conn.execute(
        """
        INSERT INTO sources (source_type, source_name, version, base_url)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(source_type) DO UPDATE SET
            source_name = excluded.source_name,
            version = excluded.version,
            base_url = excluded.base_url
        """,
        (source_type, source_name, version, base_url),
    )
    conn.commit()
    row = conn.execute(
        "SELECT id FROM sources WHERE source_type = ?", (source_type,)
    ).fetchone()
    return row[0]
