"""refindex search: semantic and hybrid retrieval."""

from refindex.search.service import ChunkResult, DocumentGroup, SearchResult, SearchService

__all__ = ["ChunkResult", "DocumentGroup", "SearchResult", "SearchService"]
