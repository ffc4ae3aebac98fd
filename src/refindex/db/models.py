"""Domain models for the refindex database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum


class DocumentState(str, Enum):
    """Lifecycle of a tracked corpus file."""

    PENDING = "Pending"
    PROCESSING = "Processing"
    PROCESSED = "Processed"
    FAILED = "Failed"
    DEPRECATED = "Deprecated"


@dataclass
class TrackedFile:
    file_path: str
    content_hash: str
    state: DocumentState = DocumentState.PENDING
    version: str = ""
    last_updated: str | None = None


@dataclass
class DocMetadata:
    metadata_type: str
    data: dict = field(default_factory=dict)

    @property
    def metadata_json(self) -> str:
        return json.dumps(self.data, sort_keys=True)


@dataclass
class ContentElementRecord:
    """One chunk row. Never persisted without its embedding."""

    element_type: str
    title: str
    content: str
    embedding: list[float]
    attributes: dict = field(default_factory=dict)
    id: int | None = None  # set after insert
    doc_id: int | None = None

    @property
    def attributes_json(self) -> str:
        return json.dumps(self.attributes, sort_keys=True)


@dataclass
class SemanticDocumentRecord:
    """A parsed document ready for bulk insert, keyed by (source, doc_key)."""

    doc_key: str
    title: str
    url: str
    construct_type: str
    category: str
    version: str
    content_hash: str
    embedding: list[float]
    metadata: list[DocMetadata] = field(default_factory=list)
    elements: list[ContentElementRecord] = field(default_factory=list)
    source_path: str = ""
    id: int | None = None  # set after insert


@dataclass
class StoredDocument:
    id: int
    doc_key: str
    title: str
    url: str
    construct_type: str
    category: str
    version: str
    content_hash: str
    source_type: str


@dataclass
class ElementHit:
    """An element matched by vector search, with its parent document."""

    element_id: int
    doc_id: int
    element_type: str
    title: str
    content: str
    attributes: dict
    doc_title: str
    doc_url: str
    source_type: str
    distance: float


@dataclass(frozen=True)
class RelationshipRecord:
    source_doc_id: int
    target_doc_id: int
    relationship_type: str
    context: str = ""
