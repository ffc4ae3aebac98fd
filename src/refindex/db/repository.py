"""Repository pattern for the refindex storage engine.

Single interface for: documents, metadata, elements, FTS5 keyword scoring,
vec embeddings and relationships. Vec tables are created by
ensure_vec_tables(); the repository handles read + write.
"""

from __future__ import annotations

import json
import re
import sqlite3
from collections.abc import Iterable, Iterator, Sequence
from typing import TypeVar

from loguru import logger

from refindex.db.models import (
    ElementHit,
    RelationshipRecord,
    SemanticDocumentRecord,
    StoredDocument,
)
from refindex.db.vectors import DOCUMENT_VEC_TABLE, ELEMENT_VEC_TABLE, MAX_KNN, serialize
from refindex.errors import BatchInsertError

T = TypeVar("T")

# Stay well below SQLITE_MAX_VARIABLE_NUMBER on older builds.
_IN_CHUNK = 500


def _chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _placeholders(n: int) -> str:
    return ",".join("?" * n)


class Repository:
    """Data access layer for all refindex database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see refindex.db.schema.initialize).
        """
        self._conn = conn

    # ------------------------------------------------------------------
    # Documents: bulk insert
    # ------------------------------------------------------------------

    def insert_documents_bulk(
        self,
        source_id: int,
        records: Sequence[SemanticDocumentRecord],
        removed_keys: Sequence[str] = (),
    ) -> dict[str, int]:
        """Insert *records* with their metadata, elements and embeddings in one transaction.

        Existing rows with the same (source, doc_key) are deleted first, so a
        reprocessed document supersedes its previous row set. Documents under
        *removed_keys* are deleted in the same transaction. Links from other
        documents into a superseded document are carried over to its new row.

        Args:
            source_id: Id of the owning sources row.
            records: Prepared records; every element must carry its embedding.
            removed_keys: Keys whose documents are dropped without replacement.

        Returns:
            Mapping of doc_key to the new document id.

        Raises:
            BatchInsertError: Any statement failed; the whole batch was rolled back.
        """
        if not records and not removed_keys:
            return {}

        keys = [r.doc_key for r in records]
        ids: dict[str, int] = {}
        try:
            with self._conn:
                superseded = self._doc_ids_for_keys(source_id, keys + list(removed_keys))
                incoming = self._incoming_links(superseded)
                self._delete_doc_ids(superseded)
                for record in records:
                    ids[record.doc_key] = self._insert_document(source_id, record)
                restored = self._restore_links(incoming, ids)
        except sqlite3.Error as exc:
            for record in records:
                record.id = None
            logger.error(
                "Batch insert of {} documents rolled back: {}", len(records), exc
            )
            raise BatchInsertError(
                f"Batch insert of {len(records)} documents failed: {exc}", keys
            ) from exc
        if incoming:
            logger.debug("Carried over {}/{} incoming links", restored, len(incoming))
        return ids

    def _insert_document(self, source_id: int, record: SemanticDocumentRecord) -> int:
        cur = self._conn.execute(
            """
            INSERT INTO documents
                (source_id, doc_key, title, url, construct_type, category, version, content_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source_id,
                record.doc_key,
                record.title,
                record.url,
                record.construct_type,
                record.category,
                record.version,
                record.content_hash,
            ),
        )
        doc_id = cur.lastrowid
        self._conn.execute(
            f"INSERT INTO {DOCUMENT_VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
            (doc_id, serialize(record.embedding)),
        )
        for meta in record.metadata:
            self._conn.execute(
                """
                INSERT INTO doc_metadata (doc_id, metadata_type, metadata_json)
                VALUES (?, ?, ?)
                """,
                (doc_id, meta.metadata_type, meta.metadata_json),
            )
        for element in record.elements:
            cur = self._conn.execute(
                """
                INSERT INTO elements (doc_id, element_type, title, content, attributes_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    doc_id,
                    element.element_type,
                    element.title,
                    element.content,
                    element.attributes_json,
                ),
            )
            element_id = cur.lastrowid
            # FTS5 and vec rows share the element's id as rowid.
            self._conn.execute(
                "INSERT INTO elements_fts(rowid, title, content) VALUES (?, ?, ?)",
                (element_id, element.title, element.content),
            )
            self._conn.execute(
                f"INSERT INTO {ELEMENT_VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
                (element_id, serialize(element.embedding)),
            )
            element.id = element_id
            element.doc_id = doc_id
        record.id = doc_id
        return doc_id

    # ------------------------------------------------------------------
    # Documents: lookup / delete
    # ------------------------------------------------------------------

    def resolve_doc_ids(self, source_id: int, doc_keys: Iterable[str]) -> dict[str, int]:
        """Return {doc_key: id} for the keys that exist under *source_id*."""
        keys = list(dict.fromkeys(doc_keys))
        resolved: dict[str, int] = {}
        for part in _chunked(keys, _IN_CHUNK):
            rows = self._conn.execute(
                f"SELECT id, doc_key FROM documents WHERE source_id = ? "
                f"AND doc_key IN ({_placeholders(len(part))})",
                (source_id, *part),
            ).fetchall()
            resolved.update({r["doc_key"]: r["id"] for r in rows})
        return resolved

    def get_document(self, doc_id: int) -> StoredDocument | None:
        """Return a document by id, or None if not found."""
        row = self._conn.execute(
            """
            SELECT d.id, d.doc_key, d.title, d.url, d.construct_type, d.category,
                   d.version, d.content_hash, s.source_type
            FROM documents d JOIN sources s ON s.id = d.source_id
            WHERE d.id = ?
            """,
            (doc_id,),
        ).fetchone()
        return _row_to_document(row) if row else None

    def get_document_by_key(self, source_id: int, doc_key: str) -> StoredDocument | None:
        """Return the document stored under (*source_id*, *doc_key*), or None."""
        row = self._conn.execute(
            """
            SELECT d.id, d.doc_key, d.title, d.url, d.construct_type, d.category,
                   d.version, d.content_hash, s.source_type
            FROM documents d JOIN sources s ON s.id = d.source_id
            WHERE d.source_id = ? AND d.doc_key = ?
            """,
            (source_id, doc_key),
        ).fetchone()
        return _row_to_document(row) if row else None

    def get_metadata(self, doc_id: int, metadata_type: str) -> dict | None:
        """Return the decoded metadata JSON of one kind for *doc_id*, or None."""
        row = self._conn.execute(
            "SELECT metadata_json FROM doc_metadata WHERE doc_id = ? AND metadata_type = ?",
            (doc_id, metadata_type),
        ).fetchone()
        return json.loads(row["metadata_json"]) if row else None

    def list_elements(self, doc_id: int) -> list[sqlite3.Row]:
        """Return element rows for *doc_id* in insertion order."""
        return self._conn.execute(
            "SELECT id, element_type, title, content, attributes_json FROM elements "
            "WHERE doc_id = ? ORDER BY id",
            (doc_id,),
        ).fetchall()

    def get_doc_count_for_version(self, version: str, source_type: str | None = None) -> int:
        """Return the number of documents stored for *version* (optionally one source)."""
        if source_type is None:
            return self._conn.execute(
                "SELECT COUNT(*) FROM documents WHERE version = ?", (version,)
            ).fetchone()[0]
        return self._conn.execute(
            """
            SELECT COUNT(*) FROM documents d JOIN sources s ON s.id = d.source_id
            WHERE d.version = ? AND s.source_type = ?
            """,
            (version, source_type),
        ).fetchone()[0]

    def count_documents(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def count_elements(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM elements").fetchone()[0]

    def count_relationships(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM relationships").fetchone()[0]

    def delete_docs_by_version(self, version: str) -> int:
        """Delete every document of *version* plus its elements, vectors and links.

        Returns:
            Number of documents deleted.
        """
        ids = [
            r[0]
            for r in self._conn.execute(
                "SELECT id FROM documents WHERE version = ?", (version,)
            ).fetchall()
        ]
        with self._conn:
            self._delete_doc_ids(ids)
        return len(ids)

    def delete_docs_by_keys(self, source_id: int, doc_keys: Iterable[str]) -> int:
        """Delete the documents stored under *doc_keys* for *source_id*.

        Returns:
            Number of documents deleted.
        """
        ids = self._doc_ids_for_keys(source_id, list(doc_keys))
        with self._conn:
            self._delete_doc_ids(ids)
        return len(ids)

    def _doc_ids_for_keys(self, source_id: int, keys: Sequence[str]) -> list[int]:
        return list(self.resolve_doc_ids(source_id, keys).values())

    def _delete_doc_ids(self, doc_ids: Sequence[int]) -> None:
        """Delete documents by id. FTS and vec rows are removed explicitly
        because foreign-key cascades do not reach virtual tables."""
        for part in _chunked(list(doc_ids), _IN_CHUNK):
            marks = _placeholders(len(part))
            element_ids = [
                r[0]
                for r in self._conn.execute(
                    f"SELECT id FROM elements WHERE doc_id IN ({marks})", part
                ).fetchall()
            ]
            for element_part in _chunked(element_ids, _IN_CHUNK):
                element_marks = _placeholders(len(element_part))
                self._conn.execute(
                    f"DELETE FROM elements_fts WHERE rowid IN ({element_marks})",
                    element_part,
                )
                self._conn.execute(
                    f"DELETE FROM {ELEMENT_VEC_TABLE} WHERE rowid IN ({element_marks})",
                    element_part,
                )
            self._conn.execute(
                f"DELETE FROM {DOCUMENT_VEC_TABLE} WHERE rowid IN ({marks})", part
            )
            self._conn.execute(f"DELETE FROM documents WHERE id IN ({marks})", part)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def insert_relationships_bulk(
        self, relationships: Sequence[RelationshipRecord], batch_size: int = 1000
    ) -> int:
        """Insert *relationships* in transactions of *batch_size*; duplicates are ignored.

        Returns:
            Number of rows actually inserted.
        """
        inserted = 0
        for part in _chunked(list(relationships), max(1, batch_size)):
            with self._conn:
                for rel in part:
                    cur = self._conn.execute(
                        """
                        INSERT OR IGNORE INTO relationships
                            (source_doc_id, target_doc_id, relationship_type, context)
                        VALUES (?, ?, ?, ?)
                        """,
                        (
                            rel.source_doc_id,
                            rel.target_doc_id,
                            rel.relationship_type,
                            rel.context,
                        ),
                    )
                    inserted += cur.rowcount
        return inserted

    def _incoming_links(self, doc_ids: Sequence[int]) -> list[tuple[int, str, str, str]]:
        """Links into *doc_ids* from documents outside that set.

        Returns (source_doc_id, target doc_key, relationship_type, context) tuples.
        """
        excluded = set(doc_ids)
        links: list[tuple[int, str, str, str]] = []
        for part in _chunked(list(doc_ids), _IN_CHUNK):
            rows = self._conn.execute(
                f"""
                SELECT r.source_doc_id, d.doc_key, r.relationship_type, r.context
                FROM relationships r JOIN documents d ON d.id = r.target_doc_id
                WHERE r.target_doc_id IN ({_placeholders(len(part))})
                """,
                part,
            ).fetchall()
            links.extend(
                (r["source_doc_id"], r["doc_key"], r["relationship_type"], r["context"])
                for r in rows
                if r["source_doc_id"] not in excluded
            )
        return links

    def _restore_links(
        self, links: Sequence[tuple[int, str, str, str]], ids: dict[str, int]
    ) -> int:
        """Re-point *links* at the new ids of their target keys; returns rows inserted."""
        restored = 0
        for source_doc_id, target_key, relationship_type, context in links:
            target_id = ids.get(target_key)
            if target_id is None:
                continue
            cur = self._conn.execute(
                """
                INSERT OR IGNORE INTO relationships
                    (source_doc_id, target_doc_id, relationship_type, context)
                VALUES (?, ?, ?, ?)
                """,
                (source_doc_id, target_id, relationship_type, context),
            )
            restored += cur.rowcount
        return restored

    def related_titles(self, doc_ids: Iterable[int]) -> dict[int, list[str]]:
        """Return {doc_id: sorted distinct titles of documents it links to}."""
        ids = list(dict.fromkeys(doc_ids))
        related: dict[int, list[str]] = {doc_id: [] for doc_id in ids}
        for part in _chunked(ids, _IN_CHUNK):
            rows = self._conn.execute(
                f"""
                SELECT DISTINCT r.source_doc_id, d.title
                FROM relationships r JOIN documents d ON d.id = r.target_doc_id
                WHERE r.source_doc_id IN ({_placeholders(len(part))})
                ORDER BY d.title
                """,
                part,
            ).fetchall()
            for row in rows:
                related[row["source_doc_id"]].append(row["title"])
        return related

    # ------------------------------------------------------------------
    # Vector search
    # ------------------------------------------------------------------

    def search_documents(
        self,
        embedding: list[float],
        limit: int = 5,
        source_type: str | None = None,
    ) -> list[tuple[StoredDocument, float]]:
        """Return (document, cosine distance) pairs from the KNN index, nearest first."""
        where = "WHERE s.source_type = ?" if source_type is not None else ""
        sql = f"""
            WITH knn AS (
                SELECT rowid, distance FROM {DOCUMENT_VEC_TABLE}
                WHERE embedding MATCH ? AND k = ?
            )
            SELECT d.id, d.doc_key, d.title, d.url, d.construct_type, d.category,
                   d.version, d.content_hash, s.source_type, knn.distance
            FROM knn
            JOIN documents d ON d.id = knn.rowid
            JOIN sources s ON s.id = d.source_id
            {where}
            ORDER BY knn.distance, d.id LIMIT ?
        """
        rows = self._nearest(sql, embedding, limit, source_type, self.count_documents())
        return [(_row_to_document(r), r["distance"]) for r in rows]

    def search_elements(
        self,
        embedding: list[float],
        limit: int = 60,
        source_type: str | None = None,
    ) -> list[ElementHit]:
        """Nearest-neighbour element search, sorted by cosine distance."""
        where = "WHERE s.source_type = ?" if source_type is not None else ""
        sql = f"""
            WITH knn AS (
                SELECT rowid, distance FROM {ELEMENT_VEC_TABLE}
                WHERE embedding MATCH ? AND k = ?
            )
            SELECT e.id, e.doc_id, e.element_type, e.title, e.content, e.attributes_json,
                   d.title AS doc_title, d.url AS doc_url, s.source_type, knn.distance
            FROM knn
            JOIN elements e ON e.id = knn.rowid
            JOIN documents d ON d.id = e.doc_id
            JOIN sources s ON s.id = d.source_id
            {where}
            ORDER BY knn.distance, e.id LIMIT ?
        """
        rows = self._nearest(sql, embedding, limit, source_type, self.count_elements())
        return [
            ElementHit(
                element_id=r["id"],
                doc_id=r["doc_id"],
                element_type=r["element_type"],
                title=r["title"],
                content=r["content"],
                attributes=json.loads(r["attributes_json"]),
                doc_title=r["doc_title"],
                doc_url=r["doc_url"],
                source_type=r["source_type"],
                distance=r["distance"],
            )
            for r in rows
        ]

    def _nearest(
        self,
        sql: str,
        embedding: list[float],
        limit: int,
        source_type: str | None,
        total: int,
    ) -> list[sqlite3.Row]:
        """Run a KNN query, widening k until *limit* rows survive the source filter.

        *sql* takes (vector, k, [source_type], limit) parameters. k starts at
        *limit* and grows while filtered-out neighbours leave the result short,
        up to the stored row count or MAX_KNN.
        """
        if limit < 1 or total == 0:
            return []
        ceiling = min(total, MAX_KNN)
        k = min(limit, ceiling)
        vector = serialize(embedding)
        while True:
            params: list[object] = [vector, k]
            if source_type is not None:
                params.append(source_type)
            params.append(limit)
            rows = self._conn.execute(sql, params).fetchall()
            if len(rows) >= limit or k >= ceiling:
                return rows
            k = min(k * 4, ceiling)

    # ------------------------------------------------------------------
    # FTS5 / BM25 keyword scoring
    # ------------------------------------------------------------------

    def keyword_scores(self, query: str, element_ids: Sequence[int]) -> dict[int, float]:
        """BM25 keyword scores for *element_ids*, normalised so the best match is 1.0.

        bm25() returns negative values; lower (more negative) = better match.
        Elements that do not match any query term are absent from the result.
        """
        # FTS5 MATCH rejects punctuation as syntax; quote each word and OR them.
        tokens = re.findall(r"\w+", query)
        if not tokens or not element_ids:
            return {}
        fts_query = " OR ".join(f'"{t}"' for t in dict.fromkeys(tokens))

        raw: dict[int, float] = {}
        for part in _chunked(list(element_ids), _IN_CHUNK):
            rows = self._conn.execute(
                f"""
                SELECT rowid, bm25(elements_fts) AS score FROM elements_fts
                WHERE elements_fts MATCH ? AND rowid IN ({_placeholders(len(part))})
                """,
                (fts_query, *part),
            ).fetchall()
            raw.update({r["rowid"]: r["score"] for r in rows})

        if not raw:
            return {}
        best = min(raw.values())
        if best >= 0:
            return {rowid: 1.0 for rowid in raw}
        return {rowid: max(0.0, min(1.0, score / best)) for rowid, score in raw.items()}


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------

def _row_to_document(row: sqlite3.Row) -> StoredDocument:
    return StoredDocument(
        id=row["id"],
        doc_key=row["doc_key"],
        title=row["title"],
        url=row["url"],
        construct_type=row["construct_type"],
        category=row["category"],
        version=row["version"],
        content_hash=row["content_hash"],
        source_type=row["source_type"],
    )
