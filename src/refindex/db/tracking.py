"""Per-file processing state for resumable, change-aware indexing."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Mapping

from loguru import logger

from refindex.db.models import DocumentState, TrackedFile


def classify(
    discovered: Mapping[str, str],
    existing: Mapping[str, TrackedFile],
    version: str,
) -> list[TrackedFile]:
    """Decide the state each discovered file should be tracked with.

    Unchanged Processed files stay Processed and unchanged Failed files stay
    Failed (they are not retried automatically). Anything new, changed,
    tracked under another version, or left Processing by an interrupted run
    becomes Pending.

    Args:
        discovered: {file_path: sha256 hex} for every file found on disk.
        existing: Tracking rows loaded for those paths.
        version: Corpus version of the current run.
    """
    keep = (DocumentState.PROCESSED, DocumentState.FAILED)
    result: list[TrackedFile] = []
    for path, content_hash in discovered.items():
        prior = existing.get(path)
        unchanged = (
            prior is not None
            and prior.content_hash == content_hash
            and prior.version == version
        )
        state = prior.state if unchanged and prior.state in keep else DocumentState.PENDING
        result.append(TrackedFile(path, content_hash, state, version))
    return result


class ProcessingTracker:
    """Reads and writes processing_state rows on an open connection.

    Every mutating call commits; the connection is owned by the caller.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def load(self, version: str | None = None) -> dict[str, TrackedFile]:
        """Return tracked files keyed by path, optionally for one version only."""
        sql = "SELECT file_path, content_hash, state, version, last_updated FROM processing_state"
        params: tuple = ()
        if version is not None:
            sql += " WHERE version = ?"
            params = (version,)
        return {
            r["file_path"]: _row_to_tracked(r)
            for r in self._conn.execute(sql, params).fetchall()
        }

    def upsert(self, files: Iterable[TrackedFile]) -> None:
        """Insert or replace the hash, version and state of every file in one transaction."""
        with self._conn:
            self._conn.executemany(
                """
                INSERT INTO processing_state (file_path, version, content_hash, state)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(file_path) DO UPDATE SET
                    version = excluded.version,
                    content_hash = excluded.content_hash,
                    state = excluded.state,
                    last_updated = datetime('now')
                """,
                [(f.file_path, f.version, f.content_hash, f.state.value) for f in files],
            )

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def mark_processing(self, paths: Iterable[str]) -> None:
        self._set_state(paths, DocumentState.PROCESSING)

    def mark_processed(self, paths: Iterable[str]) -> None:
        self._set_state(paths, DocumentState.PROCESSED)

    def mark_failed(self, paths: Iterable[str]) -> None:
        self._set_state(paths, DocumentState.FAILED)

    def mark_deprecated(self, paths: Iterable[str]) -> None:
        self._set_state(paths, DocumentState.DEPRECATED)

    def _set_state(self, paths: Iterable[str], state: DocumentState) -> None:
        with self._conn:
            self._conn.executemany(
                "UPDATE processing_state SET state = ?, last_updated = datetime('now') "
                "WHERE file_path = ?",
                [(state.value, p) for p in paths],
            )

    def reset_version(self, version: str) -> int:
        """Set every file of *version* back to Pending (forced reindex).

        Returns:
            Number of rows reset.
        """
        with self._conn:
            cur = self._conn.execute(
                "UPDATE processing_state SET state = ?, last_updated = datetime('now') "
                "WHERE version = ?",
                (DocumentState.PENDING.value, version),
            )
        logger.debug("Reset {} tracked files of version {} to Pending", cur.rowcount, version)
        return cur.rowcount

    # ------------------------------------------------------------------
    # Orphans
    # ------------------------------------------------------------------

    def find_orphans(self, existing_paths: Iterable[str], root: str | None = None) -> list[str]:
        """Return tracked paths (under *root*, if given) that are no longer on disk."""
        present = set(existing_paths)
        rows = self._conn.execute("SELECT file_path FROM processing_state").fetchall()
        return sorted(
            r["file_path"]
            for r in rows
            if r["file_path"] not in present
            and (root is None or r["file_path"].startswith(root))
        )

    def remove_orphans(self, paths: Iterable[str]) -> int:
        """Mark *paths* Deprecated and purge them. Returns the number purged."""
        paths = list(paths)
        if not paths:
            return 0
        self.mark_deprecated(paths)
        return self.remove_deprecated()

    def remove_deprecated(self) -> int:
        """Delete every Deprecated row. Returns the number deleted."""
        with self._conn:
            cur = self._conn.execute(
                "DELETE FROM processing_state WHERE state = ?",
                (DocumentState.DEPRECATED.value,),
            )
        return cur.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def pending_files(self, version: str) -> list[TrackedFile]:
        """Return files of *version* awaiting processing, ordered by path."""
        rows = self._conn.execute(
            "SELECT file_path, content_hash, state, version, last_updated FROM processing_state "
            "WHERE version = ? AND state = ? ORDER BY file_path",
            (version, DocumentState.PENDING.value),
        ).fetchall()
        return [_row_to_tracked(r) for r in rows]

    def get(self, path: str) -> TrackedFile | None:
        row = self._conn.execute(
            "SELECT file_path, content_hash, state, version, last_updated FROM processing_state "
            "WHERE file_path = ?",
            (path,),
        ).fetchone()
        return _row_to_tracked(row) if row else None

    def counts(self, version: str) -> dict[DocumentState, int]:
        """Return {state: count} for *version*; every state is present."""
        result = {state: 0 for state in DocumentState}
        rows = self._conn.execute(
            "SELECT state, COUNT(*) AS n FROM processing_state WHERE version = ? GROUP BY state",
            (version,),
        ).fetchall()
        for row in rows:
            result[DocumentState(row["state"])] = row["n"]
        return result


def _row_to_tracked(row: sqlite3.Row) -> TrackedFile:
    return TrackedFile(
        file_path=row["file_path"],
        content_hash=row["content_hash"],
        state=DocumentState(row["state"]),
        version=row["version"],
        last_updated=row["last_updated"],
    )
