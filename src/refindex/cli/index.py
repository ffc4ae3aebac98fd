"""refindex index: build or refresh the index for a documentation corpus.

Indexing runs on a background thread; the command follows it with a rich
progress bar. Ctrl-C asks the run to stop after the files in flight; the
next run resumes from the tracking state.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from refindex.cli.common import load_settings, open_connections, open_embeddings
from refindex.cli.errors import (
    err_corpus_not_found,
    err_database_locked,
    err_dimension_mismatch,
    err_no_corpus,
    err_vector_extension,
)
from refindex.errors import DatabaseLockedError, VectorExtensionError, VectorTableMismatchError
from refindex.ingest.orchestrator import BackgroundIndexing, IndexingOrchestrator, IndexingReport

console = Console()

_POLL_SECONDS = 0.2


def index_cmd(
    corpus: Annotated[
        Path | None,
        typer.Argument(help="Directory of HTML reference pages (default: corpus.path)."),
    ] = None,
    corpus_version: Annotated[
        str | None,
        typer.Option("--corpus-version", help="Version tag for this corpus (default: resolved)."),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", help="Delete this version's documents and reindex every file."),
    ] = False,
    if_required: Annotated[
        bool,
        typer.Option(
            "--if-required",
            help="Skip indexing when the stored document count already matches the corpus.",
        ),
    ] = False,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database (default: storage.db_path)."),
    ] = None,
) -> None:
    """Index a documentation corpus. Unchanged files are skipped."""
    cfg = load_settings(db)

    root = corpus if corpus is not None else (Path(cfg.corpus.path) if cfg.corpus.path else None)
    if root is None:
        console.print(err_no_corpus())
        raise typer.Exit(1)
    if not root.is_dir():
        console.print(err_corpus_not_found(str(root)))
        raise typer.Exit(1)

    embeddings = open_embeddings(cfg)
    connections = open_connections(cfg)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Discovering files…", total=None)

        def on_progress(done: int, total: int) -> None:
            progress.update(task, description="Indexing", completed=done, total=total)

        orchestrator = IndexingOrchestrator.from_config(
            cfg,
            connections,
            embeddings,
            corpus_root=root,
            base_dir=Path.cwd(),
            progress=on_progress,
        )
        try:
            version = orchestrator.resolve_version(corpus_version)
            if if_required:
                handle = orchestrator.index_if_required(version, force=force)
            else:
                handle = orchestrator.start_background(version, force=force)
            report = _follow(handle) if handle is not None else None
        except DatabaseLockedError as exc:
            console.print(err_database_locked(cfg.storage.db_path))
            raise typer.Exit(1) from exc
        except VectorExtensionError as exc:
            console.print(err_vector_extension(str(exc)))
            raise typer.Exit(1) from exc
        except VectorTableMismatchError as exc:
            console.print(err_dimension_mismatch(str(exc)))
            raise typer.Exit(1) from exc
        finally:
            embeddings.close()

    if report is None:
        console.print(f"[green]✓[/] Version {version} is already indexed. Nothing to do.")
        return

    _print_report(report)
    if report.cancelled:
        console.print("[yellow]⚠[/] Indexing cancelled. Run the command again to resume.")
        raise typer.Exit(130)


def _follow(handle: BackgroundIndexing) -> IndexingReport | None:
    """Wait for *handle*; on Ctrl-C cancel it and wait for the in-flight files."""
    try:
        while not handle.done:
            handle.wait(_POLL_SECONDS)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelling…[/] waiting for files in flight.")
        handle.cancel()
    return handle.wait()


def _print_report(report: IndexingReport) -> None:
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column("Label", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Version", report.version)
    table.add_row("Discovered", str(report.discovered))
    table.add_row("Processed", f"[green]{report.processed}[/]")
    table.add_row("Skipped (unchanged)", str(report.skipped))
    failed_style = "red" if report.failed else "dim"
    table.add_row("Failed", f"[{failed_style}]{report.failed}[/]")
    table.add_row("Orphans removed", str(report.orphans_removed))
    table.add_row("Relationships", str(report.relationships))
    table.add_row("Elapsed", f"{report.elapsed:.1f}s")
    console.print(table)
    if report.failed:
        console.print(
            f"[yellow]⚠[/] {report.failed} file(s) failed. "
            "They are retried when their content changes, or with --force."
        )
