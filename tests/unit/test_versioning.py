"""Tests for corpus version resolution."""

from __future__ import annotations

from pathlib import Path

from refindex.versioning import (
    UNKNOWN_VERSION,
    FileVersionResolver,
    StaticVersionResolver,
    resolver_for,
)

PROJECT_VERSION = """m_EditorVersion: 2023.2.1f1
m_EditorVersionWithRevision: 2023.2.1f1 (abc123)
"""


def test_static_resolver() -> None:
    assert StaticVersionResolver("6000.0.1f1").resolve() == "6000.0.1f1"


def test_file_resolver_reads_key(tmp_path: Path) -> None:
    path = tmp_path / "ProjectVersion.txt"
    path.write_text(PROJECT_VERSION, encoding="utf-8")
    assert FileVersionResolver(path).resolve() == "2023.2.1f1"


def test_file_resolver_custom_key(tmp_path: Path) -> None:
    path = tmp_path / "ProjectVersion.txt"
    path.write_text(PROJECT_VERSION, encoding="utf-8")
    resolver = FileVersionResolver(path, "m_EditorVersionWithRevision")
    assert resolver.resolve() == "2023.2.1f1 (abc123)"


def test_file_resolver_missing_file(tmp_path: Path) -> None:
    assert FileVersionResolver(tmp_path / "missing.txt").resolve() == UNKNOWN_VERSION


def test_file_resolver_missing_key(tmp_path: Path) -> None:
    path = tmp_path / "ProjectVersion.txt"
    path.write_text("other: 1\nm_EditorVersion:\n", encoding="utf-8")
    assert FileVersionResolver(path).resolve() == UNKNOWN_VERSION


def test_resolver_for_prefers_explicit_version(tmp_path: Path) -> None:
    resolver = resolver_for("1.0", str(tmp_path / "ProjectVersion.txt"))
    assert resolver.resolve() == "1.0"


def test_resolver_for_relative_file(tmp_path: Path) -> None:
    (tmp_path / "ProjectSettings").mkdir()
    (tmp_path / "ProjectSettings" / "ProjectVersion.txt").write_text(
        PROJECT_VERSION, encoding="utf-8"
    )
    resolver = resolver_for(None, "ProjectSettings/ProjectVersion.txt", base_dir=tmp_path)
    assert isinstance(resolver, FileVersionResolver)
    assert resolver.resolve() == "2023.2.1f1"


def test_resolver_for_nothing_configured() -> None:
    assert resolver_for(None, None).resolve() == UNKNOWN_VERSION
