"""Tests for the HTML reference-page parser."""

from __future__ import annotations

import pytest

from refindex.errors import ParseError
from refindex.ingest.parser import DocumentParser


@pytest.fixture
def parser():
    return DocumentParser()


@pytest.fixture
def rigidbody(parser, make_page):
    html = make_page(
        "Rigidbody",
        'Control of an object\'s position through physics simulation. '
        'See <a href="ForceMode.html">ForceMode</a> and <a href="#top">top</a>.',
        inherits="Component",
        implemented_in="UnityEngine.PhysicsModule",
        properties=[
            ("mass", "Rigidbody-mass.html", "The mass of the rigidbody."),
            ("drag", "Rigidbody-drag.html", "The drag of the object."),
        ],
        methods=[("AddForce", "Rigidbody.AddForce.html", "Adds a force to the Rigidbody.")],
        example=("Move the body upwards.", "void Start()\n{\n    rb.AddForce(Vector3.up);\n}"),
        extra={"Notes": "Use FixedUpdate for physics work."},
    )
    return parser.parse_html(html, "Rigidbody.html")


# ------------------------------------------------------------------
# Class pages
# ------------------------------------------------------------------


def test_title_and_construct_type(rigidbody):
    assert rigidbody.title == "Rigidbody"
    assert rigidbody.construct_type == "Class"
    assert rigidbody.path == "Rigidbody.html"


def test_description_text(rigidbody):
    assert "physics simulation" in rigidbody.description
    assert "<a" not in rigidbody.description


def test_header_links(rigidbody):
    assert rigidbody.inherits_from.title == "Component"
    assert rigidbody.inherits_from.href == "Component.html"
    assert rigidbody.implemented_in.title == "UnityEngine.PhysicsModule"


def test_member_tables(rigidbody):
    props = rigidbody.member_links("Properties")
    assert [link.title for link in props] == ["mass", "drag"]
    assert props[0].href == "Rigidbody-mass.html"
    assert props[0].description == "The mass of the rigidbody."
    assert [link.title for link in rigidbody.member_links("Public Methods")] == ["AddForce"]
    assert rigidbody.member_links("Static Methods") == []


def test_link_groups_skip_anchors(rigidbody):
    hrefs = [link.href for group in rigidbody.link_groups for link in group.links]
    assert hrefs == ["ForceMode.html"]
    assert "physics simulation" in rigidbody.link_groups[0].context


def test_examples_with_description(rigidbody):
    [example] = rigidbody.examples
    assert example.description == "Move the body upwards."
    assert "rb.AddForce(Vector3.up);" in example.code
    assert example.language == "csharp"


def test_additional_sections(rigidbody):
    assert rigidbody.additional_sections == {"Notes": "Use FixedUpdate for physics work."}
    assert rigidbody.has_content


@pytest.mark.parametrize(
    "kind, expected",
    [
        ("struct in UnityEngine", "Struct"),
        ("enumeration", "Enum"),
        ("interface in UnityEngine", "Interface"),
        ("attribute in UnityEngine", "attribute"),
    ],
)
def test_construct_type_variants(parser, make_page, kind, expected):
    doc = parser.parse_html(make_page("Thing", "Text.", kind=kind))
    assert doc.construct_type == expected


def test_minimal_page_has_empty_collections(parser, make_page):
    doc = parser.parse_html(make_page("Empty", kind=""))
    assert doc.description == ""
    assert doc.inherits_from is None
    assert doc.interfaces == []
    assert doc.members == {}
    assert doc.examples == []
    assert doc.overloads == []
    assert not doc.has_content


# ------------------------------------------------------------------
# Method pages
# ------------------------------------------------------------------


def test_method_page_overloads(parser, method_page):
    doc = parser.parse_html(method_page, "Rigidbody.AddForce.html")
    assert doc.title == "Rigidbody.AddForce"
    assert doc.construct_type == "Method"
    assert len(doc.overloads) == 2

    first, second = doc.overloads
    assert first.declaration == "public void AddForce(Vector3 force, ForceMode mode);"
    assert first.description.startswith("Adds a force to the Rigidbody.")
    assert "continuously" in first.description
    assert [(p.name, p.description) for p in first.parameters] == [
        ("force", "Force vector in world coordinates."),
        ("mode", "Type of force to apply."),
    ]
    assert len(first.examples) == 1
    assert "MonoBehaviour" in first.examples[0].code

    assert second.declaration == "public void AddForce(float x, float y, float z);"
    assert second.parameters == []
    assert second.examples == []


def test_overload_examples_not_repeated_at_document_level(parser, method_page):
    doc = parser.parse_html(method_page)
    assert doc.examples == []


# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------


def test_missing_content_root_raises(parser):
    with pytest.raises(ParseError, match="div.content"):
        parser.parse_html("<html><body><p>nothing</p></body></html>", "x.html")


def test_missing_title_raises(parser):
    with pytest.raises(ParseError, match="title"):
        parser.parse_html('<div class="content"><div class="section"></div></div>', "x.html")


def test_parse_file(parser, make_page, tmp_path):
    path = tmp_path / "Camera.html"
    path.write_text(make_page("Camera", "A camera."), encoding="utf-8")
    assert parser.parse(path).title == "Camera"


def test_parse_missing_file_raises(parser, tmp_path):
    with pytest.raises(ParseError) as exc_info:
        parser.parse(tmp_path / "missing.html")
    assert exc_info.value.path.endswith("missing.html")


def test_parse_undecodable_file_raises(parser, tmp_path):
    path = tmp_path / "bad.html"
    path.write_bytes(b"\xff\xfe\xfa<html>")
    with pytest.raises(ParseError):
        parser.parse(path)
