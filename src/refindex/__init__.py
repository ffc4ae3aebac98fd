"""refindex: documentation indexing and semantic search."""

__version__ = "0.1.0"
