"""Tests for SearchService over an indexed three-page corpus."""

from __future__ import annotations

import json

import pytest

from refindex.db.queue import WriteQueue
from refindex.db.repository import Repository
from refindex.db.usage import UsageLogger
from refindex.ingest.orchestrator import IndexingOrchestrator
from refindex.ingest.records import METADATA_TYPE
from refindex.search.service import SearchService, snippet


@pytest.fixture
def indexed(connections, embeddings, corpus):
    IndexingOrchestrator(connections, embeddings, corpus, dimensions=8).run("1.0")
    return connections


@pytest.fixture
def service(indexed, embeddings):
    return SearchService(indexed, embeddings)


def _doc(connections, key):
    with connections.connection() as conn:
        repo = Repository(conn)
        doc = repo.get_document_by_key(1, key)
        meta = repo.get_metadata(doc.id, METADATA_TYPE)
        elements = repo.list_elements(doc.id)
    return doc, meta, elements


def test_snippet_collapses_whitespace_and_truncates():
    assert snippet("a  b\n\nc") == "a b c"
    assert snippet("x" * 400, 10) == "x" * 10 + "..."


# ------------------------------------------------------------------
# Semantic search
# ------------------------------------------------------------------


def test_search_ranks_exact_summary_first(service, indexed):
    doc, meta, _ = _doc(indexed, "Component")
    results = service.search(f"Component: {meta['description']}")
    assert results[0].doc_id == doc.id
    assert results[0].title == "Component"
    assert results[0].relevance == pytest.approx(1.0, abs=1e-5)
    assert results[0].source == "reference"
    relevances = [r.relevance for r in results]
    assert relevances == sorted(relevances, reverse=True)


def test_search_respects_limit(service):
    assert len(service.search("physics", limit=2)) == 2
    assert len(service.search("physics")) == 3


def test_search_blank_query(service, fake_embedder):
    calls = len(fake_embedder.calls)
    assert service.search("   ") == []
    assert len(fake_embedder.calls) == calls


def test_search_unknown_source(service):
    assert service.search("physics", source="manual") == []


def test_search_empty_store(connections, embeddings, tmp_db):
    assert SearchService(connections, embeddings).search("anything") == []


# ------------------------------------------------------------------
# Hybrid search
# ------------------------------------------------------------------


def test_hybrid_groups_by_document(service, indexed):
    doc, _, elements = _doc(indexed, "Component")
    groups = service.hybrid_search(elements[0]["content"], semantic_weight=1.0)
    assert groups[0].doc_id == doc.id
    assert groups[0].max_relevance == pytest.approx(1.0, abs=1e-5)
    assert len({g.doc_id for g in groups}) == len(groups)
    assert [g.max_relevance for g in groups] == sorted(
        (g.max_relevance for g in groups), reverse=True
    )


def test_hybrid_chunks_per_doc_and_order(service):
    groups = service.hybrid_search("force applied to the rigidbody", chunks_per_doc=2)
    for group in groups:
        assert 1 <= len(group.top_chunks) <= 2
        scores = [c.relevance for c in group.top_chunks]
        assert scores == sorted(scores, reverse=True)
        assert group.max_relevance == scores[0]


def test_hybrid_includes_related_titles(service):
    groups = {g.title: g for g in service.hybrid_search("rigidbody", limit=5)}
    assert groups["Rigidbody"].related == ["Component", "Rigidbody.AddForce"]
    assert groups["Component"].related == []


def test_hybrid_respects_limit(service):
    assert len(service.hybrid_search("rigidbody", limit=1)) == 1


def test_hybrid_keyword_only_weight(service):
    groups = service.hybrid_search("GameObject", semantic_weight=0.0)
    assert groups[0].title == "Component"
    assert groups[0].max_relevance == pytest.approx(1.0)


def test_hybrid_rejects_bad_weight(service):
    with pytest.raises(ValueError, match="semantic_weight"):
        service.hybrid_search("force", semantic_weight=1.5)


@pytest.mark.parametrize("limit", [0, -1])
def test_search_rejects_non_positive_limit(service, limit):
    with pytest.raises(ValueError, match="limit"):
        service.search("physics", limit=limit)


@pytest.mark.parametrize("kwargs", [{"limit": 0}, {"limit": -3}, {"chunks_per_doc": 0}])
def test_hybrid_rejects_non_positive_counts(service, kwargs):
    with pytest.raises(ValueError, match="must be >= 1"):
        service.hybrid_search("physics", **kwargs)


def test_hybrid_blank_query(service):
    assert service.hybrid_search("") == []


def test_hybrid_sections_reported(service):
    sections = {
        c.section for g in service.hybrid_search("rigidbody", limit=5) for c in g.top_chunks
    }
    assert "Overview" in sections


# ------------------------------------------------------------------
# Usage logging
# ------------------------------------------------------------------


def test_queries_are_logged(indexed, embeddings):
    queue = WriteQueue(indexed, poll_interval=0.01)
    service = SearchService(indexed, embeddings, usage=UsageLogger(queue))
    queue.start()
    try:
        service.search("mass")
        service.hybrid_search("mass", limit=2)
        queue.flush()
    finally:
        queue.stop()
    with indexed.connection() as conn:
        rows = conn.execute("SELECT * FROM usage_log ORDER BY id").fetchall()
    assert [r["operation"] for r in rows] == ["search", "hybrid_search"]
    assert json.loads(rows[0]["result_summary_json"]) == {"results": 3}
    assert json.loads(rows[1]["parameters_json"])["limit"] == 2
