"""Service wiring shared by the CLI commands."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from refindex.cli.errors import err_config, err_no_api_key
from refindex.config import ConfigError, RefIndexConfig, load_config
from refindex.db.connection import ConnectionManager
from refindex.errors import EmbeddingError
from refindex.ingest.embedding import EmbeddingService, check_api_key
from refindex.log import configure_logging

console = Console()


def load_settings(db: Path | None = None) -> RefIndexConfig:
    """Load config from the current directory, apply --db, configure logging.

    Exits with code 1 on a config error.
    """
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    if db is not None:
        cfg.storage.db_path = str(db)
    configure_logging(cfg.logging.level, cfg.logging.file)
    return cfg


def open_connections(cfg: RefIndexConfig) -> ConnectionManager:
    return ConnectionManager(
        cfg.storage.db_path,
        max_attempts=cfg.storage.max_attempts,
        backoff_seconds=cfg.storage.backoff_seconds,
        busy_timeout=cfg.storage.busy_timeout,
    )


def open_embeddings(cfg: RefIndexConfig) -> EmbeddingService:
    """Build the embedding pool. Exits with code 1 when the provider key is missing."""
    try:
        check_api_key(cfg.embedding.model)
    except EmbeddingError as exc:
        provider = cfg.embedding.model.split("/")[0]
        console.print(err_no_api_key(provider))
        raise typer.Exit(1) from exc
    return EmbeddingService.from_config(cfg.embedding)
