"""Simple metrics for the send log.

This module provides:
- Database operation timing
- Counters for recorded, evicted and skipped content
- Simple in-memory metrics that the CLI can print

Metrics are designed to be lightweight and not require external dependencies.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Iterator

logger = logging.getLogger(__name__)

# Operations slower than this are logged
SLOW_OPERATION_MS = 100.0


@dataclass
class TimingStats:
    """Statistics for a timed operation."""

    count: int = 0
    total_ms: float = 0.0
    min_ms: float = float("inf")
    max_ms: float = 0.0

    def record(self, duration_ms: float) -> None:
        """Record a timing measurement."""
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    @property
    def avg_ms(self) -> float:
        """Average duration in milliseconds."""
        return self.total_ms / self.count if self.count > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "count": self.count,
            "total_ms": round(self.total_ms, 2),
            "avg_ms": round(self.avg_ms, 2),
            "min_ms": round(self.min_ms, 2) if self.count > 0 else 0,
            "max_ms": round(self.max_ms, 2),
        }


@dataclass
class Metrics:
    """Global metrics collector."""

    _lock: Lock = field(default_factory=Lock)
    db_operations: dict[str, TimingStats] = field(default_factory=lambda: defaultdict(TimingStats))
    counters: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    _start_time: float = field(default_factory=time.time)

    def record_db_operation(self, operation: str, duration_ms: float) -> None:
        """Record a database operation timing."""
        with self._lock:
            self.db_operations[operation].record(duration_ms)

    def increment(self, counter: str, amount: int = 1) -> None:
        with self._lock:
            self.counters[counter] += amount

    def get(self, counter: str) -> int:
        with self._lock:
            return self.counters.get(counter, 0)

    def to_dict(self) -> dict:
        """Export metrics as a dictionary."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._start_time, 1),
                "db_operations": {k: v.to_dict() for k, v in self.db_operations.items()},
                "counters": dict(self.counters),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.db_operations.clear()
            self.counters.clear()
            self._start_time = time.time()


# Global metrics instance
metrics = Metrics()


@contextmanager
def timed_db_operation(operation: str) -> Iterator[None]:
    """Context manager to time a database operation.

    Usage:
        with timed_db_operation("find_messages"):
            cursor = conn.execute(...)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_db_operation(operation, duration_ms)
        if duration_ms > SLOW_OPERATION_MS:
            logger.warning(f"Slow DB operation: {operation} took {duration_ms:.1f}ms")
