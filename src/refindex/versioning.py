"""Corpus version resolution."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from loguru import logger

UNKNOWN_VERSION = "unknown"


class VersionResolver(Protocol):
    def resolve(self) -> str: ...


class StaticVersionResolver:
    """Returns a fixed version tag (from config or the CLI)."""

    def __init__(self, version: str) -> None:
        self.version = version

    def resolve(self) -> str:
        return self.version


class FileVersionResolver:
    """Reads ``<key>: <value>`` from a version file.

    Example file::

        m_EditorVersion: 2023.2.1f1
        m_EditorVersionWithRevision: 2023.2.1f1 (abcdef)

    Falls back to ``"unknown"`` when the file or key is missing.
    """

    def __init__(self, path: Path | str, key: str = "m_EditorVersion") -> None:
        self.path = Path(path)
        self.key = key

    def resolve(self) -> str:
        try:
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Cannot read version file '{}': {}", self.path, exc)
            return UNKNOWN_VERSION

        for line in text.splitlines():
            name, sep, value = line.partition(":")
            if sep and name.strip() == self.key and value.strip():
                return value.strip()

        logger.warning("Key '{}' not found in version file '{}'", self.key, self.path)
        return UNKNOWN_VERSION


def resolver_for(
    version: str | None,
    version_file: str | None,
    key: str = "m_EditorVersion",
    base_dir: Path | None = None,
) -> VersionResolver:
    """Pick the resolver for a configuration: explicit version wins over a file."""
    if version:
        return StaticVersionResolver(version)
    if version_file:
        path = Path(version_file)
        if base_dir is not None and not path.is_absolute():
            path = base_dir / path
        return FileVersionResolver(path, key)
    return StaticVersionResolver(UNKNOWN_VERSION)
