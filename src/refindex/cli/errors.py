"""refindex rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from refindex.cli.errors import err_no_api_key, err_no_db
    console.print(err_no_api_key("openai"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_api_key(provider: str) -> str:
    """No API key for *provider*.

    Example:
        No API key for 'openai'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_map = {
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "cohere": "COHERE_API_KEY",
        "gemini": "GEMINI_API_KEY",
        "mistral": "MISTRAL_API_KEY",
        "voyage": "VOYAGE_API_KEY",
    }
    env_var = env_map.get(provider.lower(), f"{provider.upper()}_API_KEY")
    return (
        f"[red]Error:[/] No API key for '{provider}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_no_db(db_path: str = ".refindex.db") -> str:
    """No index store at *db_path*."""
    return (
        f"[red]Error:[/] No index found at '{db_path}'.\n"
        "  Run:  refindex index <corpus-dir>"
    )


def err_no_corpus() -> str:
    """Neither an argument nor corpus.path names the corpus."""
    return (
        "[red]Error:[/] No corpus directory given.\n"
        "  Run:  refindex index <corpus-dir>  or set corpus.path in refindex.yaml"
    )


def err_corpus_not_found(path: str) -> str:
    return (
        f"[red]Error:[/] Corpus directory not found: '{path}'\n"
        "  Use an existing directory of HTML reference pages."
    )


def err_config(message: str, config_path: str = "refindex.yaml") -> str:
    """Config file has an invalid or forbidden value."""
    return (
        f"[red]Error:[/] Invalid configuration: {message}\n"
        f"  Fix the value in {config_path} or remove it to use the default."
    )


def err_vector_extension(detail: str) -> str:
    """sqlite-vec cannot be loaded; the store is unusable."""
    return (
        f"[red]Error:[/] Vector search extension unavailable: {detail}\n"
        "  Install sqlite-vec for this Python (pip install sqlite-vec), then rebuild the index:\n"
        "    refindex index <corpus-dir> --force"
    )


def err_database_locked(db_path: str) -> str:
    """Lock contention survived every retry."""
    return (
        f"[red]Error:[/] Index '{db_path}' is locked by another process.\n"
        "  Wait for the other indexing run to finish, then run the command again."
    )


def err_dimension_mismatch(detail: str) -> str:
    """Store vectors and embedding model disagree on width."""
    return (
        f"[red]Error:[/] {detail}\n"
        "  Set embedding.dimensions to the model's width, or delete the index and re-index."
    )


def err_embedding_failed(detail: str) -> str:
    """The query could not be embedded."""
    return (
        f"[red]Error:[/] Embedding failed: {detail}\n"
        "  Check embedding.model in refindex.yaml and your provider API key."
    )


def warn_not_ready(version: str, processed: int, total: int) -> str:
    """Search ran against an index that is still being built."""
    return (
        f"[yellow]⚠[/] Index for version {version} is incomplete ({processed}/{total} files).\n"
        "  Run:  refindex status  to follow progress."
    )
