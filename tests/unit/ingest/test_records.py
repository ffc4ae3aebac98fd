"""Tests for record building from parsed documents."""

from __future__ import annotations

from pathlib import Path

import pytest

from refindex.ingest.document import DocumentChunk, DocumentationLink, SourceDocument
from refindex.ingest.records import (
    METADATA_TYPE,
    build_record,
    doc_key_for,
    element_type_for,
    summary_text,
    url_for,
)


def test_doc_key_strips_extension(tmp_path):
    assert doc_key_for(tmp_path / "Rigidbody.AddForce.html", tmp_path) == "Rigidbody.AddForce"


def test_doc_key_keeps_subdirectories(tmp_path):
    assert doc_key_for(tmp_path / "Manual" / "Rigidbody.html", tmp_path) == "Manual/Rigidbody"
    assert doc_key_for(tmp_path / "Rigidbody.html", tmp_path) != doc_key_for(
        tmp_path / "Manual" / "Rigidbody.html", tmp_path
    )


def test_doc_key_outside_root_uses_name(tmp_path):
    assert doc_key_for(Path("/elsewhere/Rigidbody.html"), tmp_path) == "Rigidbody"


def test_url_for_relative_path(tmp_path):
    root = tmp_path / "corpus"
    path = root / "sub" / "Rigidbody.html"
    assert url_for(path, root) == "sub/Rigidbody.html"


def test_url_for_with_base_url(tmp_path):
    url = url_for(tmp_path / "Rigidbody.html", tmp_path, "https://docs.example.com/ScriptReference/")
    assert url == "https://docs.example.com/ScriptReference/Rigidbody.html"


def test_url_for_outside_root_uses_name(tmp_path):
    assert url_for(Path("/elsewhere/Rigidbody.html"), tmp_path) == "Rigidbody.html"


@pytest.mark.parametrize(
    "section, expected",
    [
        ("Overview", "overview"),
        ("Properties", "member"),
        ("Inherited Operators", "member"),
        ("Examples", "example"),
        ("MethodOverload.Description", "overload_description"),
        ("MethodOverload.Parameter", "parameter"),
        ("MethodOverload.void Foo();", "overload_example"),
        ("Notes", "section"),
    ],
)
def test_element_type_for(section, expected):
    assert element_type_for(section) == expected


def test_summary_text():
    assert summary_text(SourceDocument("p", "Rigidbody")) == "Rigidbody"
    doc = SourceDocument("p", "Rigidbody", description="x" * 5000)
    summary = summary_text(doc)
    assert summary.startswith("Rigidbody: ")
    assert len(summary) == len("Rigidbody: ") + 2000


def _doc():
    return SourceDocument(
        path="/c/Rigidbody.html",
        title="Rigidbody",
        construct_type="Class",
        description="Physics body.",
        inherits_from=DocumentationLink("Component", "Component.html"),
        interfaces=[DocumentationLink("ISerializable", "ISerializable.html")],
    )


def _chunk(index, section="Overview", embedding=(1.0, 0.0)):
    return DocumentChunk(
        index=index,
        title="Rigidbody",
        section=section,
        text=f"chunk {index}",
        start=0,
        end=7,
        embedding=list(embedding) if embedding is not None else None,
    )


def test_build_record_fields():
    record = build_record(
        _doc(),
        [_chunk(0), _chunk(1, "Properties")],
        [0.5, 0.5],
        doc_key="Rigidbody",
        url="Rigidbody.html",
        version="2023.2",
        content_hash="abc",
        category="Scripting API",
    )
    assert record.doc_key == "Rigidbody"
    assert record.construct_type == "Class"
    assert record.category == "Scripting API"
    assert record.version == "2023.2"
    assert record.embedding == [0.5, 0.5]
    assert record.source_path == "/c/Rigidbody.html"
    assert [e.element_type for e in record.elements] == ["overview", "member"]
    assert record.elements[1].attributes == {
        "chunk_index": 1,
        "section": "Properties",
        "start": 0,
        "end": 7,
    }


def test_build_record_metadata():
    record = build_record(
        _doc(), [_chunk(0)], [1.0, 0.0],
        doc_key="Rigidbody", url="", version="1", content_hash="h", category="",
    )
    [meta] = record.metadata
    assert meta.metadata_type == METADATA_TYPE
    assert meta.data["inherits_from"] == "Component"
    assert meta.data["implemented_in"] is None
    assert meta.data["interfaces"] == ["ISerializable"]
    assert meta.data["description"] == "Physics body."


def test_build_record_requires_embeddings():
    with pytest.raises(ValueError, match="no embedding"):
        build_record(
            _doc(), [_chunk(0, embedding=None)], [1.0],
            doc_key="Rigidbody", url="", version="1", content_hash="h", category="",
        )
