"""refindex status: index readiness and store statistics."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from refindex.cli.common import load_settings, open_connections
from refindex.cli.errors import err_database_locked, err_vector_extension
from refindex.config import RefIndexConfig
from refindex.db.models import DocumentState
from refindex.db.repository import Repository
from refindex.db.schema import initialize
from refindex.db.tracking import ProcessingTracker
from refindex.db.vectors import DOCUMENT_VEC_TABLE, vec_table_dimensions
from refindex.errors import DatabaseLockedError, VectorExtensionError
from refindex.ingest.orchestrator import COMPLETE, IN_PROGRESS, NOT_STARTED
from refindex.versioning import resolver_for

console = Console()

_STATE_STYLE = {
    COMPLETE: "green",
    IN_PROGRESS: "yellow",
    NOT_STARTED: "dim",
}


def status_cmd(
    corpus_version: Annotated[
        str | None,
        typer.Option("--corpus-version", help="Version to report on (default: resolved)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database (default: storage.db_path)."),
    ] = None,
) -> None:
    """Show indexing state for a corpus version and what the store holds."""
    cfg = load_settings(db)
    db_path = Path(cfg.storage.db_path)
    version = corpus_version or resolver_for(
        cfg.corpus.version, cfg.corpus.version_file, cfg.corpus.version_key, Path.cwd()
    ).resolve()

    if not db_path.exists():
        console.print(
            Panel(
                f"Version:  [bold]{version}[/]\n"
                f"State:    [dim]{NOT_STARTED}[/]\n"
                "[yellow]No index found.[/]\n"
                "  Run:  refindex index <corpus-dir>",
                title="[bold]Index[/]",
                expand=False,
            )
        )
        return

    try:
        with open_connections(cfg).connection() as conn:
            initialize(conn)
            counts = ProcessingTracker(conn).counts(version)
            repo = Repository(conn)
            docs = repo.get_doc_count_for_version(version)
            elements = repo.count_elements()
            relationships = repo.count_relationships()
            dims = vec_table_dimensions(conn, DOCUMENT_VEC_TABLE)
    except DatabaseLockedError as exc:
        console.print(err_database_locked(str(db_path)))
        raise typer.Exit(1) from exc
    except VectorExtensionError as exc:
        console.print(err_vector_extension(str(exc)))
        raise typer.Exit(1) from exc

    state = _state_for(counts)
    _show_index_panel(cfg, db_path, version, state, counts, dims)
    _show_store_panel(docs, elements, relationships)


def _state_for(counts: dict[DocumentState, int]) -> str:
    total = sum(n for s, n in counts.items() if s is not DocumentState.DEPRECATED)
    if total == 0:
        return NOT_STARTED
    if counts[DocumentState.PENDING] or counts[DocumentState.PROCESSING]:
        return IN_PROGRESS
    return COMPLETE


def _show_index_panel(
    cfg: RefIndexConfig,
    db_path: Path,
    version: str,
    state: str,
    counts: dict[DocumentState, int],
    dims: int | None,
) -> None:
    size_mb = db_path.stat().st_size / (1024 * 1024)
    total = sum(n for s, n in counts.items() if s is not DocumentState.DEPRECATED)
    style = _STATE_STYLE.get(state, "")
    lines = [
        f"Database:  {db_path} ({size_mb:.1f} MB)",
        f"Version:   [bold]{version}[/]",
        f"State:     [{style}]{state}[/]",
        f"Progress:  {counts[DocumentState.PROCESSED]}/{total} files",
        f"Model:     {cfg.embedding.model}"
        + (f" ({dims} dims)" if dims is not None else ""),
    ]

    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("State", style="bold")
    table.add_column("Files", justify="right")
    for s in DocumentState:
        table.add_row(s.value, str(counts[s]))

    console.print(Panel("\n".join(lines), title="[bold]Index[/]", expand=False))
    console.print(Panel(table, title="[bold]Tracking[/]", expand=False))
    if counts[DocumentState.FAILED]:
        console.print(
            f"[yellow]⚠[/] {counts[DocumentState.FAILED]} file(s) failed. "
            "Run:  refindex index --force  to retry them."
        )


def _show_store_panel(docs: int, elements: int, relationships: int) -> None:
    console.print(
        Panel(
            f"Documents: [bold]{docs:,}[/]  |  "
            f"Chunks: [bold]{elements:,}[/]  |  "
            f"Relationships: [bold]{relationships:,}[/]",
            title="[bold]Store[/]",
            expand=False,
        )
    )
