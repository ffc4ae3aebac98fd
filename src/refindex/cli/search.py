"""refindex search: query the index from the terminal."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from refindex.cli.common import load_settings, open_connections, open_embeddings
from refindex.cli.errors import (
    err_database_locked,
    err_dimension_mismatch,
    err_embedding_failed,
    err_no_db,
    err_vector_extension,
    warn_not_ready,
)
from refindex.db.models import DocumentState
from refindex.db.queue import WriteQueue
from refindex.db.schema import initialize
from refindex.db.tracking import ProcessingTracker
from refindex.db.usage import UsageLogger
from refindex.errors import (
    DatabaseLockedError,
    EmbeddingError,
    VectorExtensionError,
    VectorTableMismatchError,
)
from refindex.search.service import DocumentGroup, SearchResult, SearchService
from refindex.versioning import resolver_for

console = Console()


def search_cmd(
    query: Annotated[str, typer.Argument(help="Free-text query.")],
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum documents (default: search.limit)."),
    ] = None,
    source: Annotated[
        str | None,
        typer.Option("--source", help="Source type to search (default: search.source)."),
    ] = None,
    hybrid: Annotated[
        bool,
        typer.Option("--hybrid", help="Rank chunks by vector + keyword score, grouped by document."),
    ] = False,
    chunks_per_doc: Annotated[
        int | None,
        typer.Option("--chunks-per-doc", min=1, help="Chunks shown per document with --hybrid."),
    ] = None,
    corpus_version: Annotated[
        str | None,
        typer.Option("--corpus-version", help="Version checked for indexing progress."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Path to the index database (default: storage.db_path)."),
    ] = None,
) -> None:
    """Search the indexed documentation."""
    cfg = load_settings(db)
    if not Path(cfg.storage.db_path).exists():
        console.print(err_no_db(cfg.storage.db_path))
        raise typer.Exit(1)

    version = corpus_version or resolver_for(
        cfg.corpus.version, cfg.corpus.version_file, cfg.corpus.version_key, Path.cwd()
    ).resolve()
    embeddings = open_embeddings(cfg)
    connections = open_connections(cfg)
    queue = WriteQueue(connections)
    service = SearchService.from_config(
        cfg.search, connections, embeddings, usage=UsageLogger(queue)
    )

    try:
        with connections.connection() as conn:
            initialize(conn, cfg.embedding.dimensions)
            counts = ProcessingTracker(conn).counts(version)
        _warn_if_incomplete(version, counts)
        queue.start()
        if hybrid:
            groups = service.hybrid_search(query, limit, chunks_per_doc, source)
        else:
            results = service.search(query, limit, source)
    except DatabaseLockedError as exc:
        console.print(err_database_locked(cfg.storage.db_path))
        raise typer.Exit(1) from exc
    except VectorExtensionError as exc:
        console.print(err_vector_extension(str(exc)))
        raise typer.Exit(1) from exc
    except EmbeddingError as exc:
        console.print(err_embedding_failed(str(exc)))
        raise typer.Exit(1) from exc
    except VectorTableMismatchError as exc:
        console.print(err_dimension_mismatch(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        queue.stop()
        embeddings.close()

    if hybrid:
        _print_groups(groups)
    else:
        _print_results(results)


def _warn_if_incomplete(version: str, counts: dict[DocumentState, int]) -> None:
    unfinished = counts[DocumentState.PENDING] + counts[DocumentState.PROCESSING]
    if unfinished:
        total = sum(n for s, n in counts.items() if s is not DocumentState.DEPRECATED)
        console.print(warn_not_ready(version, counts[DocumentState.PROCESSED], total))


def _print_results(results: list[SearchResult]) -> None:
    if not results:
        console.print("[dim]No results.[/]")
        return
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Title")
    table.add_column("Relevance", justify="right")
    table.add_column("URL", style="dim")
    for i, r in enumerate(results, start=1):
        table.add_row(str(i), escape(r.title), f"{r.relevance:.3f}", escape(r.url))
    console.print(table)


def _print_groups(groups: list[DocumentGroup]) -> None:
    if not groups:
        console.print("[dim]No results.[/]")
        return
    for i, group in enumerate(groups, start=1):
        console.print(
            f"[bold]{i}. {escape(group.title)}[/]  [dim]{escape(group.url)}[/]  "
            f"relevance {group.max_relevance:.3f}"
        )
        for chunk in group.top_chunks:
            console.print(
                f"   [cyan]{escape(chunk.section)}[/] ({chunk.relevance:.3f})  {escape(chunk.snippet)}"
            )
        if group.related:
            console.print(f"   [dim]Related: {escape(', '.join(group.related[:10]))}[/]")
