"""Typed exception hierarchy for refindex.

RefIndexError (base)
├── ParseError            – one document could not be parsed
├── EmbeddingError        – embedding call failed or returned bad vectors
├── StorageError          – store-level failures
│   ├── DatabaseLockedError   – lock contention survived every retry
│   ├── VectorExtensionError  – sqlite-vec could not be loaded
│   ├── VectorTableMismatchError – vec table width or metric differs from config
│   └── BatchInsertError      – a batch transaction was rolled back
└── IndexingCancelled     – the cancellation signal fired mid-run

Per-file errors (ParseError, EmbeddingError) are absorbed by the orchestrator
and recorded in tracking state. Storage errors propagate to the caller.
"""

from __future__ import annotations

from typing import Any


class RefIndexError(Exception):
    """Base exception for refindex."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


class ParseError(RefIndexError):
    """Raised when a document is malformed or has an unexpected structure."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to parse '{path}': {reason}", {"path": path})
        self.path = path
        self.reason = reason


class EmbeddingError(RefIndexError):
    """Raised when an embedding batch fails. The pool stays usable."""


class StorageError(RefIndexError):
    """Base class for store failures."""


class DatabaseLockedError(StorageError):
    """Raised when a connection cannot be acquired after all retries."""


class VectorExtensionError(StorageError):
    """Raised when the vector extension is unavailable on a connection."""


class VectorTableMismatchError(StorageError):
    """Raised when an existing vec table does not match the configured embeddings."""


class BatchInsertError(StorageError):
    """Raised when a batch insert transaction fails and is rolled back."""

    def __init__(self, message: str, doc_keys: list[str] | None = None) -> None:
        super().__init__(message, {"doc_keys": doc_keys or []})
        self.doc_keys = doc_keys or []


class IndexingCancelled(RefIndexError):
    """Raised when indexing stops because the cancellation signal was set."""
