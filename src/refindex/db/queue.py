"""Single-writer queue for fire-and-forget database writes.

Producers call enqueue() from any thread; one daemon writer thread drains
the queue in batches of at most ``max_batch`` items, groups each batch by
item type and hands every group to the handler registered for that type on
a short-lived connection. Handler failures are logged and never reach the
producer.
"""

from __future__ import annotations

import sqlite3
import threading
from collections import defaultdict
from collections.abc import Callable
from queue import Empty, Queue
from typing import Any

from loguru import logger

from refindex.db.connection import ConnectionManager

Handler = Callable[[sqlite3.Connection, list[Any]], None]

_STOP = object()


class WriteQueue:
    """Serializes writes through one background thread."""

    def __init__(
        self,
        connections: ConnectionManager,
        *,
        max_batch: int = 1000,
        poll_interval: float = 0.1,
    ) -> None:
        self._connections = connections
        self._max_batch = max(1, max_batch)
        self._poll_interval = poll_interval
        self._handlers: dict[type, Handler] = {}
        self._queue: Queue[Any] = Queue()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def register(self, item_type: type, handler: Handler) -> None:
        """Route items of exactly *item_type* to *handler*."""
        self._handlers[item_type] = handler

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the writer thread (no-op if already running)."""
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(
                target=self._writer_loop, daemon=True, name="refindex-writer"
            )
            self._thread.start()
            logger.debug("Write queue started")

    def enqueue(self, item: Any) -> None:
        """Queue *item* for writing. Never blocks, never raises on handler errors.

        Raises:
            TypeError: No handler is registered for ``type(item)``.
        """
        if type(item) not in self._handlers:
            raise TypeError(f"No write handler registered for {type(item).__name__}")
        self._queue.put(item)

    def flush(self) -> None:
        """Block until every queued item has been handled."""
        self._queue.join()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Drain remaining items, then stop the writer thread."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._queue.put(_STOP)
            thread.join(timeout=timeout)
            self._thread = None
            logger.debug("Write queue stopped")

    # ------------------------------------------------------------------
    # Writer thread
    # ------------------------------------------------------------------

    def _writer_loop(self) -> None:
        stopping = False
        while not stopping:
            try:
                first = self._queue.get(timeout=self._poll_interval)
            except Empty:
                continue

            batch: list[Any] = []
            taken = 1
            if first is _STOP:
                stopping = True
            else:
                batch.append(first)
            while len(batch) < self._max_batch:
                try:
                    item = self._queue.get_nowait()
                except Empty:
                    break
                taken += 1
                if item is _STOP:
                    stopping = True
                    continue
                batch.append(item)

            try:
                if batch:
                    self._write(batch)
            finally:
                for _ in range(taken):
                    self._queue.task_done()

    def _write(self, batch: list[Any]) -> None:
        groups: dict[type, list[Any]] = defaultdict(list)
        for item in batch:
            groups[type(item)].append(item)

        try:
            with self._connections.connection() as conn:
                for item_type, items in groups.items():
                    try:
                        self._handlers[item_type](conn, items)
                    except Exception as exc:
                        logger.error(
                            "Write handler for {} failed on {} items: {}",
                            item_type.__name__,
                            len(items),
                            exc,
                        )
        except Exception as exc:
            logger.error("Write queue could not open the store for {} items: {}", len(batch), exc)
