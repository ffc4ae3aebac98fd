"""Build storage records from a parsed, chunked and embedded document."""

from __future__ import annotations

from pathlib import Path

from refindex.db.models import ContentElementRecord, DocMetadata, SemanticDocumentRecord
from refindex.ingest.chunker import (
    EXAMPLES_SECTION,
    OVERLOAD_DESCRIPTION_SECTION,
    OVERLOAD_PARAMETER_SECTION,
    OVERVIEW_SECTION,
)
from refindex.ingest.document import MEMBER_SECTIONS, DocumentChunk, SourceDocument

METADATA_TYPE = "reference"
_SUMMARY_CHARS = 2000


def doc_key_for(path: Path | str, root: Path | str) -> str:
    """The document key is *path* relative to the corpus *root*, without its extension.

    >>> doc_key_for("/docs/ScriptReference/Manual/Rigidbody.html", "/docs/ScriptReference")
    'Manual/Rigidbody'
    """
    try:
        relative = Path(path).resolve().relative_to(Path(root).resolve())
    except ValueError:
        relative = Path(Path(path).name)
    return relative.with_suffix("").as_posix()


def url_for(path: Path | str, root: Path | str, base_url: str = "") -> str:
    """Join *base_url* with *path* relative to the corpus *root* (POSIX separators)."""
    try:
        relative = Path(path).resolve().relative_to(Path(root).resolve()).as_posix()
    except ValueError:
        relative = Path(path).name
    if not base_url:
        return relative
    return f"{base_url.rstrip('/')}/{relative}"


def element_type_for(section: str) -> str:
    if section == OVERVIEW_SECTION:
        return "overview"
    if section in MEMBER_SECTIONS:
        return "member"
    if section == EXAMPLES_SECTION:
        return "example"
    if section == OVERLOAD_DESCRIPTION_SECTION:
        return "overload_description"
    if section == OVERLOAD_PARAMETER_SECTION:
        return "parameter"
    if section.startswith("MethodOverload."):
        return "overload_example"
    return "section"


def summary_text(doc: SourceDocument) -> str:
    """Text embedded as the document-level vector."""
    if not doc.description:
        return doc.title
    return f"{doc.title}: {doc.description[:_SUMMARY_CHARS]}"


def build_record(
    doc: SourceDocument,
    chunks: list[DocumentChunk],
    document_embedding: list[float],
    *,
    doc_key: str,
    url: str,
    version: str,
    content_hash: str,
    category: str,
) -> SemanticDocumentRecord:
    """Assemble a SemanticDocumentRecord; every chunk must already carry its embedding.

    Raises:
        ValueError: A chunk has no embedding.
    """
    elements: list[ContentElementRecord] = []
    for chunk in chunks:
        if chunk.embedding is None:
            raise ValueError(f"Chunk {chunk.index} of '{doc.path}' has no embedding")
        elements.append(
            ContentElementRecord(
                element_type=element_type_for(chunk.section),
                title=chunk.title,
                content=chunk.text,
                embedding=chunk.embedding,
                attributes={
                    "chunk_index": chunk.index,
                    "section": chunk.section,
                    "start": chunk.start,
                    "end": chunk.end,
                },
            )
        )

    metadata = DocMetadata(
        METADATA_TYPE,
        {
            "description": doc.description,
            "construct_type": doc.construct_type,
            "inherits_from": doc.inherits_from.title if doc.inherits_from else None,
            "implemented_in": doc.implemented_in.title if doc.implemented_in else None,
            "interfaces": [link.title for link in doc.interfaces],
            "source_path": doc.path,
        },
    )

    return SemanticDocumentRecord(
        doc_key=doc_key,
        title=doc.title,
        url=url,
        construct_type=doc.construct_type,
        category=category,
        version=version,
        content_hash=content_hash,
        embedding=document_embedding,
        metadata=[metadata],
        elements=elements,
        source_path=doc.path,
    )
