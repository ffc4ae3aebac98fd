"""CLI fixtures: an isolated working directory and config per test."""

from __future__ import annotations

from pathlib import Path

import pytest
from loguru import logger


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the command from tmp_path with no global config and a small embedding model."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("refindex.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    for name in ("REFINDEX_EMBEDDING_MODEL", "REFINDEX_DB_PATH", "REFINDEX_CORPUS_VERSION"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "refindex.yaml").write_text(
        "embedding:\n"
        "  dimensions: 8\n"
        "  pool_size: 2\n"
        "indexing:\n"
        "  max_parallelism: 2\n"
        "corpus:\n"
        '  version: "1.0"\n',
        encoding="utf-8",
    )
    yield tmp_path
    # The CLI points loguru at the runner's stderr, which is closed after invoke.
    logger.remove()
