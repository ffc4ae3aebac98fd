"""Forward-only migration runner for the refindex store.

Vec tables (vec_documents, vec_elements) are NOT migration-managed; their
width depends on the embedding model, so use ensure_vec_tables().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id              INTEGER PRIMARY KEY,
    source_type     TEXT NOT NULL UNIQUE,
    source_name     TEXT NOT NULL,
    version         TEXT NOT NULL DEFAULT '',
    base_url        TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS documents (
    id              INTEGER PRIMARY KEY,
    source_id       INTEGER NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    doc_key         TEXT NOT NULL,
    title           TEXT NOT NULL,
    url             TEXT NOT NULL DEFAULT '',
    construct_type  TEXT NOT NULL DEFAULT '',
    category        TEXT NOT NULL DEFAULT '',
    version         TEXT NOT NULL,
    content_hash    TEXT NOT NULL,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now')),
    UNIQUE (source_id, doc_key)
);

CREATE INDEX IF NOT EXISTS idx_documents_version ON documents(version);

CREATE TABLE IF NOT EXISTS doc_metadata (
    doc_id          INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    metadata_type   TEXT NOT NULL,
    metadata_json   TEXT NOT NULL DEFAULT '{}',
    UNIQUE (doc_id, metadata_type)
);

CREATE TABLE IF NOT EXISTS elements (
    id              INTEGER PRIMARY KEY,
    doc_id          INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    element_type    TEXT NOT NULL,
    title           TEXT NOT NULL DEFAULT '',
    content         TEXT NOT NULL,
    attributes_json TEXT NOT NULL DEFAULT '{}'
);

CREATE INDEX IF NOT EXISTS idx_elements_doc ON elements(doc_id);

CREATE VIRTUAL TABLE IF NOT EXISTS elements_fts USING fts5(
    title, content, tokenize='porter ascii'
);

CREATE TABLE IF NOT EXISTS relationships (
    id                  INTEGER PRIMARY KEY,
    source_doc_id       INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    target_doc_id       INTEGER NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    relationship_type   TEXT NOT NULL,
    context             TEXT NOT NULL DEFAULT '',
    UNIQUE (source_doc_id, target_doc_id, relationship_type, context)
);

CREATE TABLE IF NOT EXISTS processing_state (
    file_path       TEXT PRIMARY KEY,
    version         TEXT NOT NULL,
    content_hash    TEXT NOT NULL,
    state           TEXT NOT NULL,
    last_updated    DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_processing_state_version ON processing_state(version);

CREATE TABLE IF NOT EXISTS usage_log (
    id                      INTEGER PRIMARY KEY,
    operation               TEXT NOT NULL,
    parameters_json         TEXT NOT NULL DEFAULT '{}',
    result_summary_json     TEXT NOT NULL DEFAULT '{}',
    duration_ms             REAL NOT NULL,
    success                 INTEGER NOT NULL,
    peak_memory_mb          REAL,
    logged_at               DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version, 0 for a fresh store."""
    exists = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
    ).fetchone()
    if exists is None:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.

    Returns:
        The number of migrations applied by this call.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    current = current_version(conn)
    applied = 0
    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
            applied += 1
    return applied
