"""Cross-document relationship extraction.

Links found while parsing become candidates keyed by document key; after
all batches are committed the keys are resolved to stored ids and only
pairs where both ends exist are written.
"""

from __future__ import annotations

import posixpath
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from refindex.db.models import RelationshipRecord
from refindex.ingest.document import DocumentationLink, SourceDocument

INHERITS = "inherits"
IMPLEMENTS = "implements"
IMPLEMENTED_IN = "implemented_in"
MEMBER = "member"
REFERENCES = "references"

_CONTEXT_CHARS = 200


@dataclass(frozen=True)
class LinkCandidate:
    source_key: str
    target_key: str
    relationship_type: str
    context: str = ""


def target_key(href: str, source_key: str = "", root: str = "/") -> str | None:
    """Document key a link points at, or None for anchors and links leaving the corpus.

    Relative hrefs resolve against the directory of the linking document
    *source_key* under the corpus *root*, the same way a browser would.

    >>> target_key("../ScriptReference/Rigidbody.AddForce.html#params", "Rigidbody", "/docs/ScriptReference")
    'Rigidbody.AddForce'
    """
    if not href or href.startswith("#"):
        return None
    parts = urlsplit(href)
    if parts.scheme or parts.netloc:
        return None
    path = unquote(parts.path).replace("\\", "/")
    if not path or path.endswith("/"):
        return None

    root = posixpath.normpath(root)
    target = posixpath.normpath(
        posixpath.join(root, posixpath.dirname(source_key), path)
    )
    relative = posixpath.relpath(target, root)
    if relative == "." or relative == ".." or relative.startswith("../"):
        return None

    head, name = posixpath.split(relative)
    stem = name.rsplit(".", 1)[0] if "." in name else name
    if not stem:
        return None
    return posixpath.join(head, stem) if head else stem


def extract_candidates(
    doc: SourceDocument, doc_key: str, root: str = "/"
) -> list[LinkCandidate]:
    """Return the distinct outgoing link candidates of *doc*, self-links excluded.

    *root* is the corpus root in POSIX form; link targets are keyed relative to it.
    """
    found: dict[LinkCandidate, None] = {}

    def add(link: DocumentationLink | None, kind: str, context: str = "") -> None:
        if link is None:
            return
        key = target_key(link.href, doc_key, root)
        if key is None or key == doc_key:
            return
        found[LinkCandidate(doc_key, key, kind, context[:_CONTEXT_CHARS])] = None

    add(doc.inherits_from, INHERITS)
    add(doc.implemented_in, IMPLEMENTED_IN)
    for link in doc.interfaces:
        add(link, IMPLEMENTS)
    for section, links in doc.members.items():
        for link in links:
            add(link, MEMBER, section)
    for group in doc.link_groups:
        for link in group.links:
            add(link, REFERENCES, group.context)
    return list(found)


def resolve(
    candidates: Iterable[LinkCandidate], ids: Mapping[str, int]
) -> list[RelationshipRecord]:
    """Map candidates to RelationshipRecords; unresolved endpoints are dropped."""
    records: dict[RelationshipRecord, None] = {}
    for c in candidates:
        source_id = ids.get(c.source_key)
        target_id = ids.get(c.target_key)
        if source_id is None or target_id is None or source_id == target_id:
            continue
        records[RelationshipRecord(source_id, target_id, c.relationship_type, c.context)] = None
    return list(records)
