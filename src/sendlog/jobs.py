"""Scheduled jobs for the send log.

TTL Processing Strategy:
- A background thread sweeps expired content every cleanup interval
  (hourly by default) for as long as the store is open
- Every lookup also sweeps before reading, so expired content is never
  returned even when the background job has stopped
- A sweep that fails stops the background job for good; it is not retried
- The same sweep can be run on demand via the CLI (`sendlog prune`)
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .store import SendLogStore

logger = logging.getLogger(__name__)

CLEANUP_THREAD_NAME = "msl-cleanup"


def process_ttl(store: SendLogStore, dry_run: bool = False) -> int:
    """
    Process expired send log content.

    Args:
        store: The send log to sweep
        dry_run: If True, just count without deleting

    Returns:
        Number of content rows deleted (or that would be deleted)

    Raises:
        sqlite3.Error: If the database can't be read or written
    """
    if dry_run:
        return store.count_outdated_entries()
    return store.delete_outdated_entries()


class EvictionDaemon:
    """Background thread that periodically deletes expired send log content.

    The thread waits on a stop event rather than sleeping, so stop()
    interrupts the wait immediately. stop() joins the thread: once it
    returns, no sweep is running or will run.
    """

    def __init__(
        self,
        store: SendLogStore,
        interval_seconds: float = 3600.0,
        name: str = CLEANUP_THREAD_NAME,
    ) -> None:
        self._store = store
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self.sweeps = 0
        self.failed = False

    def start(self) -> None:
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the thread to stop and wait for it to exit."""
        self._stop_event.set()
        if self._thread.ident is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        logger.debug(f"Starting msl cleanup thread (interval {self.interval_seconds}s)")
        # wait() returns True once stop() has been called
        while not self._stop_event.wait(self.interval_seconds):
            try:
                process_ttl(self._store)
            except sqlite3.Error as e:
                logger.warning(f"Deleting outdated entries failed, stopping cleanup: {e}")
                self.failed = True
                break
            self.sweeps += 1
        logger.debug("Stopping msl cleanup thread")
