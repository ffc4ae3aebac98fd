"""Indexing orchestrator: discovery → parse → chunk → embed → bulk insert → relationships.

One run for a corpus version:

1. discover candidate files and hash them (SHA-256);
2. classify them against processing_state, drop orphaned rows and their
   documents, upsert the rest;
3. split the Pending files into fixed-size batches and process batches in
   parallel, files within a batch sequentially;
4. insert each batch in one transaction, then mark its files Processed
   (or all of them Failed if the transaction rolled back);
5. once every batch is committed, resolve the links collected from this
   run's documents and insert the relationships.

Per-file failures are recorded as Failed and never stop the run. Storage
errors other than a rolled-back batch propagate to the caller.
"""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from refindex.config import RefIndexConfig
from refindex.db.connection import ConnectionManager
from refindex.db.models import DocumentState, SemanticDocumentRecord, TrackedFile
from refindex.db.repository import Repository
from refindex.db.schema import ensure_source, initialize
from refindex.db.tracking import ProcessingTracker, classify
from refindex.errors import BatchInsertError, IndexingCancelled
from refindex.ingest.chunker import DocumentChunker
from refindex.ingest.discovery import discover_files, hash_files
from refindex.ingest.embedding import EmbeddingService
from refindex.ingest.parser import DocumentParser
from refindex.ingest.records import build_record, doc_key_for, summary_text, url_for
from refindex.ingest.relationships import LinkCandidate, extract_candidates, resolve
from refindex.versioning import VersionResolver, resolver_for

NOT_STARTED = "Not Started"
IN_PROGRESS = "In Progress"
COMPLETE = "Complete"

ProgressCallback = Callable[[int, int], None]


@dataclass
class IndexingReport:
    version: str
    discovered: int = 0
    pending: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    orphans_removed: int = 0
    relationships: int = 0
    cancelled: bool = False
    elapsed: float = 0.0


@dataclass
class IndexingStatus:
    version: str
    status: str
    processed_count: int
    total_count: int
    failed_count: int = 0

    @property
    def is_ready(self) -> bool:
        return self.status == COMPLETE


@dataclass
class _BatchResult:
    processed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    candidates: list[LinkCandidate] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class _Prepared:
    path: str
    record: SemanticDocumentRecord
    candidates: list[LinkCandidate]


class BackgroundIndexing:
    """Handle for an indexing run on a background thread.

    The run's report or exception is kept on the handle; ``wait()`` returns
    the report or re-raises the exception.
    """

    def __init__(self, orchestrator: IndexingOrchestrator, version: str, force: bool) -> None:
        self.version = version
        self.force = force
        self.cancel_event = threading.Event()
        self.report: IndexingReport | None = None
        self.error: BaseException | None = None
        self._orchestrator = orchestrator
        self._thread = threading.Thread(
            target=self._run, name=f"refindex-index-{version}", daemon=True
        )

    def start(self) -> None:
        self._thread.start()

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    @property
    def done(self) -> bool:
        return self._thread.ident is not None and not self._thread.is_alive()

    def cancel(self) -> None:
        """Ask the run to stop; files in flight are left Processing."""
        self.cancel_event.set()

    def wait(self, timeout: float | None = None) -> IndexingReport | None:
        """Block until the run ends (or *timeout* passes) and return its report.

        Raises:
            Exception: Whatever the run raised.
        """
        self._thread.join(timeout)
        if self.error is not None:
            raise self.error
        return self.report

    def _run(self) -> None:
        try:
            self.report = self._orchestrator.run(
                self.version, force=self.force, cancel=self.cancel_event
            )
        except Exception as exc:
            self.error = exc
            logger.exception("Background indexing of version {} failed", self.version)


class IndexingOrchestrator:
    """Drives resumable, change-aware indexing of one corpus into the store."""

    def __init__(
        self,
        connections: ConnectionManager,
        embeddings: EmbeddingService,
        corpus_root: Path | str,
        *,
        dimensions: int,
        version_resolver: VersionResolver | None = None,
        parser: DocumentParser | None = None,
        chunker: DocumentChunker | None = None,
        extensions: Sequence[str] = (".html", ".htm"),
        source_type: str = "reference",
        source_name: str = "Reference Documentation",
        base_url: str = "",
        category: str = "Scripting API",
        files_per_batch: int = 1024,
        max_parallelism: int = 1,
        relationship_batch_size: int = 1000,
        progress: ProgressCallback | None = None,
    ) -> None:
        self.connections = connections
        self.embeddings = embeddings
        self.corpus_root = Path(corpus_root).resolve()
        self.dimensions = dimensions
        self.version_resolver = version_resolver or resolver_for(None, None)
        self.parser = parser or DocumentParser()
        self.chunker = chunker or DocumentChunker()
        self.extensions = tuple(extensions)
        self.source_type = source_type
        self.source_name = source_name
        self.base_url = base_url
        self.category = category
        self.files_per_batch = max(1, files_per_batch)
        self.max_parallelism = max(1, max_parallelism)
        self.relationship_batch_size = max(1, relationship_batch_size)
        self.progress = progress
        self._background: BackgroundIndexing | None = None
        self._background_lock = threading.Lock()
        self._progress_lock = threading.Lock()
        self._done = 0
        self._total = 0
        self._next_milestone = 10

    @classmethod
    def from_config(
        cls,
        cfg: RefIndexConfig,
        connections: ConnectionManager,
        embeddings: EmbeddingService,
        *,
        corpus_root: Path | str | None = None,
        base_dir: Path | None = None,
        progress: ProgressCallback | None = None,
    ) -> IndexingOrchestrator:
        """Wire an orchestrator from a loaded RefIndexConfig."""
        root = Path(corpus_root) if corpus_root is not None else Path(cfg.corpus.path)
        return cls(
            connections,
            embeddings,
            root,
            dimensions=cfg.embedding.dimensions,
            version_resolver=resolver_for(
                cfg.corpus.version, cfg.corpus.version_file, cfg.corpus.version_key, base_dir
            ),
            chunker=DocumentChunker.from_config(cfg.chunking),
            extensions=cfg.corpus.extensions,
            source_type=cfg.corpus.source_type,
            source_name=cfg.corpus.source_name,
            base_url=cfg.corpus.base_url,
            category=cfg.corpus.category,
            files_per_batch=cfg.indexing.files_per_batch,
            max_parallelism=cfg.indexing.max_parallelism,
            relationship_batch_size=cfg.indexing.relationship_batch_size,
            progress=progress,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def resolve_version(self, version: str | None = None) -> str:
        return version or self.version_resolver.resolve()

    def prepare_store(self, version: str) -> int:
        """Initialise the schema and vec tables; return the source id."""
        with self.connections.connection() as conn:
            initialize(conn, self.dimensions)
            return ensure_source(
                conn, self.source_type, self.source_name, version, self.base_url
            )

    def run(
        self,
        version: str | None = None,
        *,
        force: bool = False,
        cancel: threading.Event | None = None,
    ) -> IndexingReport:
        """Index the corpus for *version* and return what happened.

        Args:
            version: Corpus version; resolved from the version resolver when None.
            force: Delete the version's documents and reprocess every file.
            cancel: Checked between files and before every batch insert.

        Raises:
            StorageError: The store could not be opened or a non-batch write failed.
            FileNotFoundError: The corpus directory does not exist.
        """
        started = time.perf_counter()
        version = self.resolve_version(version)
        cancel = cancel or threading.Event()
        report = IndexingReport(version=version)
        logger.info("Indexing '{}' (version {}, force={})", self.corpus_root, version, force)

        source_id = self.prepare_store(version)
        if force:
            self._reset_version(version)

        try:
            paths = discover_files(self.corpus_root, self.extensions, cancel)
            hashes = hash_files(paths, cancel)
        except IndexingCancelled:
            logger.warning("Indexing cancelled during discovery")
            report.cancelled = True
            report.elapsed = time.perf_counter() - started
            return report
        report.discovered = len(hashes)

        report.orphans_removed = self._sync_tracking(source_id, version, hashes)

        with self.connections.connection() as conn:
            pending = ProcessingTracker(conn).pending_files(version)
        report.pending = len(pending)
        report.skipped = report.discovered - report.pending
        if not pending:
            logger.info("All {} files are up to date", report.discovered)
            report.elapsed = time.perf_counter() - started
            return report

        candidates = self._process_batches(source_id, version, pending, cancel, report)

        if report.cancelled:
            logger.warning(
                "Indexing cancelled: {} processed, {} failed", report.processed, report.failed
            )
        else:
            report.relationships = self._insert_relationships(source_id, candidates)

        report.elapsed = time.perf_counter() - started
        logger.info(
            "Indexed version {}: {} processed, {} failed, {} skipped, {} relationships in {:.1f}s",
            version,
            report.processed,
            report.failed,
            report.skipped,
            report.relationships,
            report.elapsed,
        )
        return report

    def needs_indexing(self, version: str) -> bool:
        """True when the stored document count differs from the corpus file count."""
        files = discover_files(self.corpus_root, self.extensions)
        with self.connections.connection() as conn:
            initialize(conn, self.dimensions)
            stored = Repository(conn).get_doc_count_for_version(version, self.source_type)
        logger.debug("Version {}: {} stored documents, {} files", version, stored, len(files))
        return stored != len(files)

    def index_if_required(
        self, version: str | None = None, *, force: bool = False
    ) -> BackgroundIndexing | None:
        """Start background indexing when forced or when the store is incomplete.

        Returns:
            The running handle, or None when the store already matches the corpus.
        """
        version = self.resolve_version(version)
        if not force and not self.needs_indexing(version):
            logger.info("Documentation for version {} is already indexed", version)
            return None
        return self.start_background(version, force=force)

    def start_background(
        self, version: str | None = None, *, force: bool = False
    ) -> BackgroundIndexing:
        """Run indexing on a background thread; returns the existing handle if one is running."""
        with self._background_lock:
            if self._background is not None and self._background.running:
                logger.info("Indexing already running for version {}", self._background.version)
                return self._background
            handle = BackgroundIndexing(self, self.resolve_version(version), force)
            self._background = handle
            handle.start()
            return handle

    @property
    def background(self) -> BackgroundIndexing | None:
        return self._background

    def status(self, version: str | None = None) -> IndexingStatus:
        """Processed/total counts and a coarse state for *version*."""
        version = self.resolve_version(version)
        with self.connections.connection() as conn:
            initialize(conn, self.dimensions)
            counts = ProcessingTracker(conn).counts(version)
        total = sum(n for state, n in counts.items() if state is not DocumentState.DEPRECATED)
        processed = counts[DocumentState.PROCESSED]
        unfinished = counts[DocumentState.PENDING] + counts[DocumentState.PROCESSING]
        running = self._background is not None and self._background.running

        if total == 0 and not running:
            state = NOT_STARTED
        elif unfinished or running:
            state = IN_PROGRESS
        else:
            state = COMPLETE
        return IndexingStatus(
            version=version,
            status=state,
            processed_count=processed,
            total_count=total,
            failed_count=counts[DocumentState.FAILED],
        )

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def _reset_version(self, version: str) -> None:
        with self.connections.connection() as conn:
            deleted = Repository(conn).delete_docs_by_version(version)
            reset = ProcessingTracker(conn).reset_version(version)
        logger.info(
            "Forced reindex of version {}: {} documents deleted, {} files reset",
            version,
            deleted,
            reset,
        )

    def _sync_tracking(self, source_id: int, version: str, hashes: dict[str, str]) -> int:
        """Classify discovered files, remove orphans and upsert tracking rows."""
        with self.connections.connection() as conn:
            tracker = ProcessingTracker(conn)
            existing = tracker.load()
            orphans = tracker.find_orphans(
                hashes.keys(), root=str(self.corpus_root) + os.sep
            )
            if orphans:
                live_keys = {doc_key_for(p, self.corpus_root) for p in hashes}
                dead_keys = {doc_key_for(p, self.corpus_root) for p in orphans} - live_keys
                deleted = Repository(conn).delete_docs_by_keys(source_id, dead_keys)
                tracker.remove_orphans(orphans)
                logger.info(
                    "Removed {} orphaned files ({} documents)", len(orphans), deleted
                )
            tracker.upsert(classify(hashes, existing, version))
        return len(orphans)

    def _mark(self, paths: Iterable[str], state: DocumentState) -> None:
        paths = list(paths)
        if not paths:
            return
        with self.connections.connection() as conn:
            tracker = ProcessingTracker(conn)
            if state is DocumentState.PROCESSING:
                tracker.mark_processing(paths)
            elif state is DocumentState.PROCESSED:
                tracker.mark_processed(paths)
            elif state is DocumentState.FAILED:
                tracker.mark_failed(paths)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    def _process_batches(
        self,
        source_id: int,
        version: str,
        pending: list[TrackedFile],
        cancel: threading.Event,
        report: IndexingReport,
    ) -> list[LinkCandidate]:
        batches = [
            pending[i : i + self.files_per_batch]
            for i in range(0, len(pending), self.files_per_batch)
        ]
        workers = min(self.max_parallelism, len(batches))
        logger.info(
            "Processing {} files in {} batches with {} workers",
            len(pending),
            len(batches),
            workers,
        )
        self._start_progress(len(pending))

        candidates: list[LinkCandidate] = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="refindex-batch") as pool:
            futures = [
                pool.submit(self._process_batch, source_id, version, batch, cancel)
                for batch in batches
            ]
            try:
                for future in as_completed(futures):
                    result = future.result()
                    report.processed += len(result.processed)
                    report.failed += len(result.failed)
                    report.cancelled = report.cancelled or result.cancelled
                    candidates.extend(result.candidates)
            except BaseException:
                # Stop the remaining batches before the executor joins them.
                cancel.set()
                raise
        report.cancelled = report.cancelled or cancel.is_set()
        return candidates

    def _process_batch(
        self,
        source_id: int,
        version: str,
        batch: list[TrackedFile],
        cancel: threading.Event,
    ) -> _BatchResult:
        result = _BatchResult()
        prepared: list[_Prepared] = []
        empty: list[str] = []

        for tracked in batch:
            if cancel.is_set():
                result.cancelled = True
                break
            self._mark([tracked.file_path], DocumentState.PROCESSING)
            try:
                item = self._prepare(tracked, version)
            except Exception as exc:
                logger.warning("Failed to index '{}': {}", tracked.file_path, exc)
                self._mark([tracked.file_path], DocumentState.FAILED)
                result.failed.append(tracked.file_path)
                self._advance()
                continue
            if item is None:
                empty.append(tracked.file_path)
            else:
                prepared.append(item)
            self._advance()

        if result.cancelled or cancel.is_set():
            # Prepared files stay Processing and are picked up by the next run.
            result.cancelled = True
            return result

        batch_paths = [p.path for p in prepared] + empty
        if batch_paths:
            try:
                with self.connections.connection() as conn:
                    # Files that no longer have content drop their previous documents.
                    Repository(conn).insert_documents_bulk(
                        source_id,
                        [p.record for p in prepared],
                        removed_keys=[doc_key_for(p, self.corpus_root) for p in empty],
                    )
            except BatchInsertError as exc:
                logger.error(
                    "Batch of {} files failed to insert and was rolled back: {}. Files: {}",
                    len(batch_paths),
                    exc,
                    batch_paths,
                )
                self._mark(batch_paths, DocumentState.FAILED)
                result.failed.extend(batch_paths)
                return result

        self._mark(batch_paths, DocumentState.PROCESSED)
        result.processed.extend(batch_paths)
        for item in prepared:
            result.candidates.extend(item.candidates)
        return result

    def _prepare(self, tracked: TrackedFile, version: str) -> _Prepared | None:
        """Parse, chunk and embed one file. Returns None when it has nothing to index."""
        doc = self.parser.parse(tracked.file_path)
        chunks = self.chunker.chunk(doc)
        if not chunks:
            logger.debug("'{}' has no indexable content", tracked.file_path)
            return None

        vectors = self.embeddings.embed_batch([summary_text(doc)] + [c.text for c in chunks])
        for chunk, vector in zip(chunks, vectors[1:]):
            chunk.embedding = vector

        doc_key = doc_key_for(tracked.file_path, self.corpus_root)
        record = build_record(
            doc,
            chunks,
            vectors[0],
            doc_key=doc_key,
            url=url_for(tracked.file_path, self.corpus_root, self.base_url),
            version=version,
            content_hash=tracked.content_hash,
            category=self.category,
        )
        candidates = extract_candidates(doc, doc_key, self.corpus_root.as_posix())
        return _Prepared(tracked.file_path, record, candidates)

    # ------------------------------------------------------------------
    # Relationships
    # ------------------------------------------------------------------

    def _insert_relationships(self, source_id: int, candidates: list[LinkCandidate]) -> int:
        if not candidates:
            return 0
        keys = {c.source_key for c in candidates} | {c.target_key for c in candidates}
        with self.connections.connection() as conn:
            repo = Repository(conn)
            records = resolve(candidates, repo.resolve_doc_ids(source_id, keys))
            inserted = repo.insert_relationships_bulk(records, self.relationship_batch_size)
        logger.info(
            "Inserted {} relationships ({} candidates, {} resolved)",
            inserted,
            len(candidates),
            len(records),
        )
        return inserted

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _start_progress(self, total: int) -> None:
        with self._progress_lock:
            self._done = 0
            self._total = total
            self._next_milestone = 10
        if self.progress is not None:
            self.progress(0, total)

    def _advance(self) -> None:
        with self._progress_lock:
            self._done += 1
            done, total = self._done, self._total
            percent = done * 100 // total if total else 100
            if percent >= self._next_milestone:
                logger.info("Indexing progress: {}% ({}/{})", percent, done, total)
                self._next_milestone = (percent // 10 + 1) * 10
        if self.progress is not None:
            self.progress(done, total)
