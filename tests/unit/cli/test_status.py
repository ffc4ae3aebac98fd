"""Tests for refindex status and the version flags."""

from __future__ import annotations

from pathlib import Path

from typer.testing import CliRunner

from refindex.cli.main import app

runner = CliRunner()


# ---------------------------------------------------------------------------
# refindex --version
# ---------------------------------------------------------------------------


def test_version_flag_exits_zero() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "refindex" in result.output.lower()


def test_version_command_shows_version() -> None:
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "refindex" in result.output.lower()


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("index", "search", "status"):
        assert command in result.output


# ---------------------------------------------------------------------------
# refindex status: no DB
# ---------------------------------------------------------------------------


def test_status_no_db(workdir: Path) -> None:
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0
    assert "No index found" in result.output
    assert "refindex index" in result.output
    assert not (workdir / ".refindex.db").exists()


def test_status_no_db_explicit_path(workdir: Path) -> None:
    result = runner.invoke(app, ["status", "--db", str(workdir / "missing.db")])
    assert result.exit_code == 0
    assert "Not Started" in result.output


# ---------------------------------------------------------------------------
# refindex status: after indexing
# ---------------------------------------------------------------------------


def test_status_after_index(workdir: Path, corpus: Path, mock_litellm) -> None:
    runner.invoke(app, ["index", str(corpus)])
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    assert "Complete" in result.output
    assert "3/3 files" in result.output
    assert "Documents: 3" in result.output
    assert "Relationships: 2" in result.output
    assert "(8 dims)" in result.output


def test_status_other_version(workdir: Path, corpus: Path, mock_litellm) -> None:
    runner.invoke(app, ["index", str(corpus)])
    result = runner.invoke(app, ["status", "--corpus-version", "2.0"])
    assert result.exit_code == 0, result.output
    assert "Not Started" in result.output
    assert "Documents: 0" in result.output


def test_status_reports_failures(workdir: Path, corpus: Path, mock_litellm) -> None:
    (corpus / "Broken.html").write_text("<html><body></body></html>", encoding="utf-8")
    runner.invoke(app, ["index", str(corpus)])
    result = runner.invoke(app, ["status"])
    assert result.exit_code == 0, result.output
    assert "3/4 files" in result.output
    assert "1 file(s) failed" in result.output
