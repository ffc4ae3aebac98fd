"""Semantic and hybrid search over the indexed reference documents.

Semantic search ranks whole documents by cosine similarity between the
query embedding and each document's summary embedding.

Hybrid search ranks chunks instead:

  score(chunk) = w * similarity + (1 - w) * keyword     w = 0.75

where *similarity* is ``1 - cosine distance`` and *keyword* is the chunk's
BM25 score over the dense candidates, normalised so the best match is 1.0.
Chunks are grouped by document; each document appears once with its top-N
chunks and the titles of the documents it links to.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from refindex.config import SearchCfg
from refindex.db.connection import ConnectionManager
from refindex.db.repository import Repository
from refindex.db.usage import UsageLogger, UsageTracker
from refindex.ingest.embedding import EmbeddingService

SNIPPET_CHARS = 300
# Dense candidates fetched per requested chunk before grouping.
_CANDIDATE_FACTOR = 4


@dataclass
class SearchResult:
    doc_id: int
    title: str
    url: str
    source: str
    relevance: float


@dataclass
class ChunkResult:
    chunk_id: int
    snippet: str
    relevance: float
    section: str


@dataclass
class DocumentGroup:
    doc_id: int
    title: str
    url: str
    source: str
    max_relevance: float
    top_chunks: list[ChunkResult] = field(default_factory=list)
    related: list[str] = field(default_factory=list)


def snippet(text: str, limit: int = SNIPPET_CHARS) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit].rstrip() + "..."


def _require_positive(name: str, value: int) -> None:
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")


class SearchService:
    """Read-only query side of the store. Safe to share between threads."""

    def __init__(
        self,
        connections: ConnectionManager,
        embeddings: EmbeddingService,
        *,
        limit: int = 5,
        chunks_per_doc: int = 3,
        semantic_weight: float = 0.75,
        source: str | None = "reference",
        usage: UsageLogger | None = None,
    ) -> None:
        self.connections = connections
        self.embeddings = embeddings
        self.limit = limit
        self.chunks_per_doc = chunks_per_doc
        self.semantic_weight = semantic_weight
        self.source = source
        self.usage = usage

    @classmethod
    def from_config(
        cls,
        cfg: SearchCfg,
        connections: ConnectionManager,
        embeddings: EmbeddingService,
        usage: UsageLogger | None = None,
    ) -> SearchService:
        return cls(
            connections,
            embeddings,
            limit=cfg.limit,
            chunks_per_doc=cfg.chunks_per_doc,
            semantic_weight=cfg.semantic_weight,
            source=cfg.source,
            usage=usage,
        )

    # ------------------------------------------------------------------
    # Semantic search
    # ------------------------------------------------------------------

    def search(
        self, query: str, limit: int | None = None, source: str | None = None
    ) -> list[SearchResult]:
        """Return the documents closest to *query*, most relevant first.

        Args:
            query: Free-text query. Blank queries return no results.
            limit: Maximum documents (defaults to the configured limit).
            source: Source type filter (defaults to the configured source).

        Raises:
            ValueError: *limit* is below 1.
        """
        limit = self.limit if limit is None else limit
        _require_positive("limit", limit)
        source = source or self.source
        params = {"query": query, "limit": limit, "source": source}
        with self._track("search", params) as tracker:
            if not query.strip():
                return []
            embedding = self.embeddings.embed(query)
            with self.connections.connection() as conn:
                hits = Repository(conn).search_documents(embedding, limit, source)
            results = [
                SearchResult(
                    doc_id=doc.id,
                    title=doc.title,
                    url=doc.url,
                    source=doc.source_type,
                    relevance=1.0 - distance,
                )
                for doc, distance in hits
            ]
            tracker.result_summary = {"results": len(results)}
            logger.debug("search {!r}: {} results", query, len(results))
            return results

    # ------------------------------------------------------------------
    # Hybrid search
    # ------------------------------------------------------------------

    def hybrid_search(
        self,
        query: str,
        limit: int | None = None,
        chunks_per_doc: int | None = None,
        source: str | None = None,
        semantic_weight: float | None = None,
    ) -> list[DocumentGroup]:
        """Rank chunks, group them by document and return each document once.

        Args:
            query: Free-text query. Blank queries return no results.
            limit: Maximum documents.
            chunks_per_doc: Maximum chunks kept per document.
            source: Source type filter.
            semantic_weight: Weight of vector similarity versus keyword score, in [0, 1].

        Raises:
            ValueError: *limit* or *chunks_per_doc* is below 1, or the weight is out of range.
        """
        limit = self.limit if limit is None else limit
        chunks_per_doc = self.chunks_per_doc if chunks_per_doc is None else chunks_per_doc
        _require_positive("limit", limit)
        _require_positive("chunks_per_doc", chunks_per_doc)
        source = source or self.source
        weight = self.semantic_weight if semantic_weight is None else semantic_weight
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"semantic_weight must be in [0, 1], got {weight}")

        params = {
            "query": query,
            "limit": limit,
            "chunks_per_doc": chunks_per_doc,
            "source": source,
            "semantic_weight": weight,
        }
        with self._track("hybrid_search", params) as tracker:
            if not query.strip():
                return []
            embedding = self.embeddings.embed(query)
            with self.connections.connection() as conn:
                repo = Repository(conn)
                hits = repo.search_elements(
                    embedding, limit * chunks_per_doc * _CANDIDATE_FACTOR, source
                )
                keyword = repo.keyword_scores(query, [h.element_id for h in hits])
                scored = sorted(
                    (
                        (weight * (1.0 - h.distance) + (1.0 - weight) * keyword.get(h.element_id, 0.0), h)
                        for h in hits
                    ),
                    key=lambda pair: (-pair[0], pair[1].element_id),
                )

                groups: dict[int, DocumentGroup] = {}
                for score, hit in scored:
                    group = groups.get(hit.doc_id)
                    if group is None:
                        if len(groups) >= limit:
                            continue
                        group = groups[hit.doc_id] = DocumentGroup(
                            doc_id=hit.doc_id,
                            title=hit.doc_title,
                            url=hit.doc_url,
                            source=hit.source_type,
                            max_relevance=score,
                        )
                    if len(group.top_chunks) < chunks_per_doc:
                        group.top_chunks.append(
                            ChunkResult(
                                chunk_id=hit.element_id,
                                snippet=snippet(hit.content),
                                relevance=score,
                                section=hit.attributes.get("section", hit.element_type),
                            )
                        )

                related = repo.related_titles(groups.keys())
            for doc_id, group in groups.items():
                group.related = related.get(doc_id, [])

            results = sorted(groups.values(), key=lambda g: (-g.max_relevance, g.doc_id))
            tracker.result_summary = {
                "documents": len(results),
                "chunks": sum(len(g.top_chunks) for g in results),
            }
            logger.debug("hybrid_search {!r}: {} documents", query, len(results))
            return results

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    @contextmanager
    def _track(self, operation: str, params: dict[str, Any]) -> Iterator[UsageTracker]:
        if self.usage is None:
            yield UsageTracker()
            return
        with self.usage.track(operation, params) as tracker:
            yield tracker
