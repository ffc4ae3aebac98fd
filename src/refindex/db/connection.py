"""SQLite connection layer with sqlite-vec extension and lock recovery."""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import sqlite_vec
from loguru import logger

from refindex.errors import DatabaseLockedError, VectorExtensionError

# Substrings of sqlite3.OperationalError messages treated as transient contention.
_LOCK_MARKERS: tuple[str, ...] = (
    "database is locked",
    "database table is locked",
    "could not set lock",
    "unable to open database file",
    "out of memory",
)

_STALE_SUFFIXES: tuple[str, ...] = ("-wal", "-shm", "-journal")


def is_lock_error(exc: BaseException) -> bool:
    """Return True if *exc* is a lock-contention or resource error worth retrying."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


class ConnectionManager:
    """Opens per-operation SQLite connections with sqlite-vec loaded.

    Every connection gets ``row_factory = sqlite3.Row``, foreign keys and WAL
    journaling. Lock contention while opening is retried with exponential
    backoff; between attempts the store is checkpointed, and if that fails
    the stale WAL/lock artifacts are deleted.
    """

    def __init__(
        self,
        db_path: Path | str,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        busy_timeout: float = 30.0,
    ) -> None:
        """Store the database path. Call connect() to open a connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            max_attempts: Connection attempts before DatabaseLockedError.
            backoff_seconds: Base delay; attempt *n* waits ``backoff * 2**(n-1)``.
            busy_timeout: Seconds sqlite waits on a locked database per statement.
        """
        self.db_path = Path(db_path)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.busy_timeout = busy_timeout

    # ------------------------------------------------------------------
    # Open / close
    # ------------------------------------------------------------------

    def connect(self) -> sqlite3.Connection:
        """Open a connection, verify sqlite-vec, and return it.

        Raises:
            DatabaseLockedError: Lock contention survived every attempt.
            VectorExtensionError: sqlite-vec could not be loaded.
        """
        last_error: sqlite3.OperationalError | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return self._open()
            except sqlite3.OperationalError as exc:
                if not is_lock_error(exc):
                    raise
                last_error = exc
                logger.warning(
                    "Database '{}' busy (attempt {}/{}): {}",
                    self.db_path,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt < self.max_attempts:
                    time.sleep(self.backoff_seconds * 2 ** (attempt - 1))
                    self.recover()

        logger.error(
            "Giving up on database '{}' after {} attempts", self.db_path, self.max_attempts
        )
        raise DatabaseLockedError(
            f"Database '{self.db_path}' is locked after {self.max_attempts} attempts: "
            f"{last_error}",
            {"db_path": str(self.db_path), "attempts": self.max_attempts},
        )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Yield a fresh connection and close it when the block exits."""
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def recover(self) -> bool:
        """Try a WAL checkpoint; on failure delete stale WAL/lock artifacts.

        Returns:
            True if the checkpoint succeeded, False if artifacts were removed instead.
        """
        try:
            conn = sqlite3.connect(self.db_path, timeout=1.0)
            try:
                conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            finally:
                conn.close()
            logger.debug("Checkpointed '{}'", self.db_path)
            return True
        except sqlite3.Error as exc:
            logger.warning("Checkpoint of '{}' failed: {}", self.db_path, exc)

        for suffix in _STALE_SUFFIXES:
            artifact = self.db_path.with_name(self.db_path.name + suffix)
            try:
                artifact.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Could not remove '{}': {}", artifact, exc)
            else:
                logger.debug("Removed stale artifact '{}'", artifact)
        return False

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        try:
            conn.row_factory = sqlite3.Row
            _ensure_vec_loaded(conn)
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
        except BaseException:
            conn.close()
            raise
        return conn


def _ensure_vec_loaded(conn: sqlite3.Connection) -> None:
    """Load sqlite-vec into *conn* unless it is already available."""
    try:
        conn.execute("SELECT vec_version()").fetchone()
        return
    except sqlite3.OperationalError:
        pass

    try:
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("SELECT vec_version()").fetchone()
    except (AttributeError, sqlite3.Error) as exc:
        raise VectorExtensionError(
            f"sqlite-vec extension is unavailable: {exc}. "
            "Rebuild the index with a Python build that supports loadable "
            "extensions: refindex index <corpus> --force",
        ) from exc
