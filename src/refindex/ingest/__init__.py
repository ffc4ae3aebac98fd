"""refindex ingest pipeline: parser, chunker, embedding pool, orchestrator."""

from refindex.ingest.chunker import DocumentChunker
from refindex.ingest.embedding import EmbeddingService, LiteLLMEmbedder
from refindex.ingest.orchestrator import (
    BackgroundIndexing,
    IndexingOrchestrator,
    IndexingReport,
    IndexingStatus,
)
from refindex.ingest.parser import DocumentParser

__all__ = [
    "BackgroundIndexing",
    "DocumentChunker",
    "DocumentParser",
    "EmbeddingService",
    "IndexingOrchestrator",
    "IndexingReport",
    "IndexingStatus",
    "LiteLLMEmbedder",
]
