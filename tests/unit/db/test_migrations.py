"""Tests for the migration runner and schema initialization."""

from __future__ import annotations

from refindex.db.migrations import MIGRATIONS, current_version, run_migrations
from refindex.db.schema import ensure_source, initialize

_TABLES = {
    "schema_version",
    "sources",
    "documents",
    "doc_metadata",
    "elements",
    "elements_fts",
    "relationships",
    "processing_state",
    "usage_log",
}


def _tables(conn) -> set[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {r[0] for r in rows}


def test_fresh_store_is_version_zero(connections):
    with connections.connection() as conn:
        assert current_version(conn) == 0


def test_run_migrations_creates_tables(connections):
    with connections.connection() as conn:
        applied = run_migrations(conn)
        assert applied == len(MIGRATIONS)
        assert _TABLES <= _tables(conn)
        assert current_version(conn) == MIGRATIONS[-1][0]


def test_run_migrations_idempotent(connections):
    with connections.connection() as conn:
        run_migrations(conn)
        assert run_migrations(conn) == 0
        count = conn.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
    assert count == len(MIGRATIONS)


def test_migrations_visible_from_second_connection(connections):
    with connections.connection() as conn:
        run_migrations(conn)
    with connections.connection() as conn:
        assert run_migrations(conn) == 0


def test_initialize_without_dimensions_skips_vec_tables(connections):
    with connections.connection() as conn:
        initialize(conn)
        assert "vec_documents" not in _tables(conn)


def test_initialize_with_dimensions_creates_vec_tables(tmp_db):
    tables = _tables(tmp_db)
    assert "vec_documents" in tables
    assert "vec_elements" in tables


def test_ensure_source_upserts(tmp_db):
    first = ensure_source(tmp_db, "reference", "Reference", "2023.2.1f1")
    second = ensure_source(tmp_db, "reference", "Scripting Reference", "2023.3.0f1", "https://docs")
    assert first == second
    row = tmp_db.execute("SELECT * FROM sources WHERE id = ?", (first,)).fetchone()
    assert row["source_name"] == "Scripting Reference"
    assert row["version"] == "2023.3.0f1"
    assert row["base_url"] == "https://docs"


def test_ensure_source_distinct_types(tmp_db):
    a = ensure_source(tmp_db, "reference", "Reference")
    b = ensure_source(tmp_db, "manual", "Manual")
    assert a != b
