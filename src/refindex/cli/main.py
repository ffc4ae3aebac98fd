"""refindex CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from refindex.cli.index import index_cmd
from refindex.cli.search import search_cmd
from refindex.cli.status import status_cmd


def _version_callback(value: bool) -> None:
    if value:
        try:
            ver = importlib.metadata.version("refindex")
        except importlib.metadata.PackageNotFoundError:
            ver = "dev"
        typer.echo(f"refindex {ver}")
        raise typer.Exit()


app = typer.Typer(
    name="refindex",
    help=(
        "refindex: semantic search over reference documentation.\n\n"
        "  refindex index   Parse, chunk and embed a corpus of HTML reference pages.\n"
        "  refindex search  Query the index (semantic, or --hybrid with keywords)."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """refindex: semantic search over reference documentation."""


app.command("index")(index_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed refindex version."""
    try:
        ver = importlib.metadata.version("refindex")
    except importlib.metadata.PackageNotFoundError:
        ver = "dev"
    typer.echo(f"refindex {ver}")


if __name__ == "__main__":
    app()
