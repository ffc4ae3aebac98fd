"""sqlite-vec virtual tables for document and element embeddings."""

from __future__ import annotations

import json
import re
import sqlite3

from refindex.errors import VectorTableMismatchError

DOCUMENT_VEC_TABLE = "vec_documents"
ELEMENT_VEC_TABLE = "vec_elements"
DISTANCE_METRIC = "cosine"

# sqlite-vec rejects KNN queries with k above this.
MAX_KNN = 4096


def serialize(embedding: list[float]) -> str:
    """Encode *embedding* in the JSON form sqlite-vec accepts."""
    return json.dumps([float(x) for x in embedding])


def _table_sql(conn: sqlite3.Connection, table: str) -> str | None:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    return row[0] if row else None


def vec_table_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    """Return the declared width of *table*, or None if it does not exist."""
    sql = _table_sql(conn, table)
    if sql is None:
        return None
    start = sql.index("float[") + len("float[")
    return int(sql[start : sql.index("]", start)])


def vec_table_metric(conn: sqlite3.Connection, table: str) -> str | None:
    """Return the distance metric of *table* (vec0 defaults to l2), or None if missing."""
    sql = _table_sql(conn, table)
    if sql is None:
        return None
    match = re.search(r"distance_metric\s*=\s*(\w+)", sql)
    return match.group(1).lower() if match else "l2"


def ensure_vec_table(conn: sqlite3.Connection, table: str, dimensions: int) -> str:
    """Create *table* as a cosine vec0 virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        table: One of DOCUMENT_VEC_TABLE / ELEMENT_VEC_TABLE.
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name.

    Raises:
        ValueError: *table* is unknown or *dimensions* is invalid.
        VectorTableMismatchError: The table already exists with a different
            width or distance metric.
    """
    if table not in (DOCUMENT_VEC_TABLE, ELEMENT_VEC_TABLE):
        raise ValueError(f"Unknown vec table '{table}'")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    existing = vec_table_dimensions(conn, table)
    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric={DISTANCE_METRIC})"
        )
        conn.commit()
    elif existing != dimensions:
        raise VectorTableMismatchError(
            f"{table} stores {existing}-dimensional vectors but the embedding model "
            f"produces {dimensions}. Rebuild the index with --force after deleting the store.",
            {"table": table, "stored": existing, "configured": dimensions},
        )
    elif (metric := vec_table_metric(conn, table)) != DISTANCE_METRIC:
        raise VectorTableMismatchError(
            f"{table} uses {metric} distance but refindex searches by "
            f"{DISTANCE_METRIC} distance. Rebuild the index with --force after deleting the store.",
            {"table": table, "stored": metric, "configured": DISTANCE_METRIC},
        )
    return table


def ensure_vec_tables(conn: sqlite3.Connection, dimensions: int) -> None:
    """Create both the document and the element vec tables."""
    ensure_vec_table(conn, DOCUMENT_VEC_TABLE, dimensions)
    ensure_vec_table(conn, ELEMENT_VEC_TABLE, dimensions)
