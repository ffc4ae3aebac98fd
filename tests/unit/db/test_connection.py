"""Tests for ConnectionManager: sqlite-vec loading, pragmas, lock retry and recovery."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import pytest

from refindex.db.connection import ConnectionManager, is_lock_error
from refindex.errors import DatabaseLockedError, VectorExtensionError


def test_connect_creates_file(tmp_path):
    path = tmp_path / "new.db"
    conn = ConnectionManager(path).connect()
    conn.close()
    assert path.exists()


def test_connect_loads_vec_extension(connections):
    with connections.connection() as conn:
        version = conn.execute("SELECT vec_version()").fetchone()[0]
    assert version.startswith("v")


def test_connect_sets_row_factory_and_pragmas(connections):
    with connections.connection() as conn:
        assert conn.row_factory is sqlite3.Row
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"


def test_connection_block_closes(connections):
    with connections.connection() as conn:
        conn.execute("SELECT 1")
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


def test_connection_block_closes_on_error(connections):
    with pytest.raises(RuntimeError):
        with connections.connection() as conn:
            raise RuntimeError("boom")
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")


# ------------------------------------------------------------------
# Lock classification
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "message",
    ["database is locked", "database table is locked", "unable to open database file"],
)
def test_is_lock_error_matches_contention(message):
    assert is_lock_error(sqlite3.OperationalError(message))


def test_is_lock_error_ignores_other_errors():
    assert not is_lock_error(sqlite3.OperationalError("no such table: foo"))
    assert not is_lock_error(ValueError("database is locked"))


# ------------------------------------------------------------------
# Retry
# ------------------------------------------------------------------


def test_connect_retries_then_succeeds(db_path):
    manager = ConnectionManager(db_path, max_attempts=3, backoff_seconds=0)
    real_open = manager._open
    calls = {"n": 0}

    def flaky():
        calls["n"] += 1
        if calls["n"] == 1:
            raise sqlite3.OperationalError("database is locked")
        return real_open()

    with patch.object(manager, "_open", side_effect=flaky), patch.object(
        manager, "recover", return_value=True
    ) as recover:
        conn = manager.connect()
    conn.close()
    assert calls["n"] == 2
    recover.assert_called_once()


def test_connect_gives_up_after_max_attempts(db_path):
    manager = ConnectionManager(db_path, max_attempts=3, backoff_seconds=0)
    with patch.object(
        manager, "_open", side_effect=sqlite3.OperationalError("database is locked")
    ) as opener, patch.object(manager, "recover", return_value=True) as recover:
        with pytest.raises(DatabaseLockedError) as exc_info:
            manager.connect()
    assert opener.call_count == 3
    # No recovery after the final attempt.
    assert recover.call_count == 2
    assert exc_info.value.context["attempts"] == 3


def test_connect_does_not_retry_other_errors(db_path):
    manager = ConnectionManager(db_path, max_attempts=3, backoff_seconds=0)
    with patch.object(
        manager, "_open", side_effect=sqlite3.OperationalError("disk I/O error")
    ) as opener:
        with pytest.raises(sqlite3.OperationalError):
            manager.connect()
    assert opener.call_count == 1


def test_connect_raises_vector_extension_error(db_path):
    manager = ConnectionManager(db_path)
    with patch(
        "refindex.db.connection.sqlite_vec.load",
        side_effect=sqlite3.OperationalError("not authorized"),
    ):
        with pytest.raises(VectorExtensionError, match="refindex index"):
            manager.connect()


# ------------------------------------------------------------------
# Recovery
# ------------------------------------------------------------------


def test_recover_checkpoints_healthy_store(connections):
    with connections.connection() as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
        conn.commit()
    assert connections.recover() is True


def test_recover_removes_artifacts_when_checkpoint_fails(db_path):
    manager = ConnectionManager(db_path)
    for suffix in ("-wal", "-shm", "-journal"):
        db_path.with_name(db_path.name + suffix).write_bytes(b"stale")

    with patch(
        "refindex.db.connection.sqlite3.connect",
        side_effect=sqlite3.OperationalError("database is locked"),
    ):
        assert manager.recover() is False

    for suffix in ("-wal", "-shm", "-journal"):
        assert not db_path.with_name(db_path.name + suffix).exists()
