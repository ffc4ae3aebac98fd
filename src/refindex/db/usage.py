"""Usage telemetry sink: operation timings written through the WriteQueue."""

from __future__ import annotations

import json
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import psutil
from loguru import logger

from refindex.db.queue import WriteQueue


@dataclass
class UsageRecord:
    operation: str
    parameters: dict[str, Any]
    result_summary: dict[str, Any]
    duration_ms: float
    success: bool
    peak_memory_mb: float | None = None


@dataclass
class UsageTracker:
    """Mutable summary a caller fills in inside UsageLogger.track()."""

    result_summary: dict[str, Any] = field(default_factory=dict)


def write_usage(conn: sqlite3.Connection, records: list[UsageRecord]) -> None:
    """WriteQueue handler: insert *records* into usage_log in one transaction."""
    with conn:
        conn.executemany(
            """
            INSERT INTO usage_log
                (operation, parameters_json, result_summary_json, duration_ms,
                 success, peak_memory_mb)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    r.operation,
                    json.dumps(r.parameters, default=str, sort_keys=True),
                    json.dumps(r.result_summary, default=str, sort_keys=True),
                    r.duration_ms,
                    int(r.success),
                    r.peak_memory_mb,
                )
                for r in records
            ],
        )


class UsageLogger:
    """Fire-and-forget usage sink backed by a WriteQueue.

    Registers its own handler on construction; the queue must be started by
    its owner.
    """

    def __init__(self, queue: WriteQueue) -> None:
        self._queue = queue
        self._process = psutil.Process()
        queue.register(UsageRecord, write_usage)

    def current_memory_mb(self) -> float:
        return self._process.memory_info().rss / (1024 * 1024)

    def log(self, record: UsageRecord) -> None:
        """Queue *record*. Failures are logged, never raised."""
        try:
            self._queue.enqueue(record)
        except Exception as exc:
            logger.warning("Dropping usage record for {}: {}", record.operation, exc)

    @contextmanager
    def track(self, operation: str, parameters: dict[str, Any]) -> Iterator[UsageTracker]:
        """Time the enclosed block and log one UsageRecord when it exits.

        Exceptions propagate after being recorded with ``success=False``.
        """
        tracker = UsageTracker()
        start_mem = self.current_memory_mb()
        start = time.perf_counter()
        success = False
        try:
            yield tracker
            success = True
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            peak = max(start_mem, self.current_memory_mb())
            self.log(
                UsageRecord(
                    operation=operation,
                    parameters=parameters,
                    result_summary=tracker.result_summary,
                    duration_ms=duration_ms,
                    success=success,
                    peak_memory_mb=round(peak, 2),
                )
            )
