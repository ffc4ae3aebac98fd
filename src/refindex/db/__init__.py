"""refindex database layer."""

from refindex.db.connection import ConnectionManager
from refindex.db.migrations import MIGRATIONS, run_migrations
from refindex.db.repository import Repository
from refindex.db.schema import ensure_source, initialize
from refindex.db.tracking import ProcessingTracker
from refindex.db.vectors import ensure_vec_table, ensure_vec_tables

__all__ = [
    "ConnectionManager",
    "Repository",
    "ProcessingTracker",
    "initialize",
    "ensure_source",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "ensure_vec_tables",
]
