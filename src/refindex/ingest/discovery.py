"""Corpus discovery and content hashing."""

from __future__ import annotations

import hashlib
import os
import threading
from collections.abc import Iterable
from pathlib import Path

from loguru import logger

from refindex.errors import IndexingCancelled

_READ_SIZE = 1024 * 1024


def _check(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise IndexingCancelled("Indexing cancelled")


def discover_files(
    root: Path | str,
    extensions: Iterable[str] = (".html", ".htm"),
    cancel: threading.Event | None = None,
) -> list[Path]:
    """Return every file under *root* whose suffix is in *extensions*, sorted.

    Raises:
        FileNotFoundError: *root* is not a directory.
        IndexingCancelled: *cancel* was set during the walk.
    """
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"Corpus directory not found: {root}")
    wanted = {e.lower() if e.startswith(".") else f".{e.lower()}" for e in extensions}

    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        _check(cancel)
        dirnames.sort()
        for name in filenames:
            if os.path.splitext(name)[1].lower() in wanted:
                found.append(Path(dirpath) / name)
    return sorted(found)


def compute_hash(path: Path | str) -> str:
    """SHA-256 hex digest of the file's bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for block in iter(lambda: fh.read(_READ_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def hash_files(
    paths: Iterable[Path], cancel: threading.Event | None = None
) -> dict[str, str]:
    """Return {str(path): sha256} for *paths*, checking *cancel* between files.

    Unreadable files are logged and left out.
    """
    hashes: dict[str, str] = {}
    for path in paths:
        _check(cancel)
        try:
            hashes[str(path)] = compute_hash(path)
        except OSError as exc:
            logger.warning("Skipping unreadable file '{}': {}", path, exc)
    return hashes
