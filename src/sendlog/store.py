"""The message send log.

Keeps, for a limited time, the exact content sent to every recipient device
so a recipient that failed to decrypt a message can ask for a resend.

Content is stored once per logical send and fanned out to (recipient,
device) entries. Content disappears when it ages out of the retention
window, when it is invalidated explicitly, or when its last entry is
deleted.

Usage:
    store = SendLogStore(resolver, SendLogOptions(path="sendlog.db"))

    result = store.insert_if_possible(timestamp, send_results, ContentHint.RESENDABLE)
    if result:
        # later sends of the same message reuse the content row
        store.add_recipient_to_existing_entry_if_possible(result.content_id, more_results)

    entries = store.find_messages(recipient_id, device_id, timestamp)

    store.close()

Every public operation catches sqlite3 errors, logs them and returns an
empty or "not recorded" result: a broken send log must never break sending.
"""

from __future__ import annotations

import logging
import sqlite3
import time
from contextlib import AbstractContextManager
from typing import Callable, Iterable, Iterator, Sequence

from . import db
from .content import Content, ContentDecodeError, decode_content, encode_content, extract_group_id
from .groups import GroupId, InvalidGroupIdError
from .jobs import EvictionDaemon
from .metrics import metrics, timed_db_operation
from .models import (
    ContentHint,
    RecipientDevices,
    RecipientId,
    RecordResult,
    RecordStatus,
    SendLogEntry,
    SendResult,
)
from .options import SendLogOptions
from .recipients import RecipientResolver

logger = logging.getLogger(__name__)


class SendLogClosedError(RuntimeError):
    """Raised when a finished in-memory store is restarted."""


class _ContentNotInserted(Exception):
    """The content insert produced no row id."""


def _now_ms() -> int:
    return int(time.time() * 1000)


def _as_list(send_results: SendResult | Sequence[SendResult]) -> list[SendResult]:
    if isinstance(send_results, SendResult):
        return [send_results]
    return list(send_results)


def _has_loggable_content(result: SendResult) -> bool:
    return result.success is not None and result.success.content is not None


class SendLogStore(AbstractContextManager):
    """Send log backed by SQLite, with a background cleanup job.

    Args:
        recipient_resolver: Maps send result addresses to recipient ids
        options: Storage and retention settings (defaults read the environment)
        clock: Returns the current time in milliseconds since the epoch
    """

    def __init__(
        self,
        recipient_resolver: RecipientResolver,
        options: SendLogOptions | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.recipient_resolver = recipient_resolver
        self.options = options if options is not None else SendLogOptions()
        self._clock = clock or _now_ms
        self._db_uri = self.options.database_uri()
        self._cleanup: EvictionDaemon | None = None
        self._closed = False

        # An in-memory database lives as long as one connection to it is
        # open, so memory stores keep an anchor connection for their lifetime.
        self._anchor: sqlite3.Connection | None = None
        if db.is_memory_uri(self._db_uri):
            self._anchor = db.get_connection(self._db_uri)
            db.init_db_with_conn(self._anchor)
        else:
            self.options.resolved_path.parent.mkdir(parents=True, exist_ok=True)
            with db.scoped_connection(self._db_uri) as conn:
                db.init_db_with_conn(conn)

        if self.options.autostart_cleanup:
            self.start()

    # --- Lifecycle ---

    def start(self) -> None:
        """Start the background cleanup job if it isn't running.

        Raises:
            SendLogClosedError: If this is an in-memory store that was closed
        """
        if self._closed and db.is_memory_uri(self._db_uri):
            raise SendLogClosedError("In-memory send log was closed; its data is gone")
        if self._cleanup is not None and self._cleanup.is_running:
            return
        self._cleanup = EvictionDaemon(self, self.options.cleanup_interval_seconds)
        self._cleanup.start()

    def close(self) -> None:
        """Stop the cleanup job and release the database.

        Returns only after the cleanup thread has exited. A closed file store
        can be started again; a closed in-memory store is finished, because
        its database went away with the anchor connection.
        """
        self._closed = True
        if self._cleanup is not None:
            self._cleanup.stop()
            self._cleanup = None
        if self._anchor is not None:
            self._anchor.close()
            self._anchor = None

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def cleanup_running(self) -> bool:
        return self._cleanup is not None and self._cleanup.is_running

    def connection(self) -> AbstractContextManager[sqlite3.Connection]:
        """Open a short-lived connection to the store's database."""
        return db.scoped_connection(self._db_uri)

    # --- Lookup ---

    def find_messages(
        self,
        recipient_id: RecipientId,
        device_id: int,
        timestamp: int,
        is_sender_key: bool = False,
    ) -> list[SendLogEntry]:
        """Find content sent to a recipient device at a timestamp.

        Expired content is swept first. Rows whose content can't be decoded
        are skipped. With is_sender_key, only group content is returned.
        """
        try:
            with self.connection() as conn, timed_db_operation("find_messages"):
                self._delete_outdated_entries(conn)

                cursor = db.find_entry_rows(conn, recipient_id.id, device_id, timestamp)
                return [
                    entry
                    for entry in self._iter_entries(cursor)
                    if not is_sender_key or entry.group_id is not None
                ]
        except sqlite3.Error:
            logger.warning("Failed read from message send log", exc_info=True)
            metrics.increment("storage_failures")
            return []

    def _iter_entries(self, rows: Iterable[sqlite3.Row]) -> Iterator[SendLogEntry]:
        for row in rows:
            entry = self._row_to_entry(row)
            if entry is not None:
                yield entry

    def _row_to_entry(self, row: sqlite3.Row) -> SendLogEntry | None:
        try:
            content = decode_content(row["content"])
            group_id = (
                GroupId.unknown_version(row["group_id"]) if row["group_id"] is not None else None
            )
        except (ContentDecodeError, InvalidGroupIdError) as e:
            logger.warning(f"Failed to parse content from message send log: {e}")
            metrics.increment("decode_failures")
            return None

        return SendLogEntry(
            group_id=group_id,
            content=content,
            content_hint=ContentHint.from_type(row["content_hint"]),
        )

    # --- Recording ---

    def insert_if_possible(
        self,
        sent_timestamp: int,
        send_results: SendResult | Sequence[SendResult],
        content_hint: ContentHint,
    ) -> RecordResult:
        """Log the content of a completed send.

        Only deliveries that succeeded and carried content are logged. The
        content of the first such delivery is stored once, with one entry
        per delivered device.

        Returns:
            RecordResult; its content_id can be passed to
            add_recipient_to_existing_entry_if_possible() for later
            recipients of the same message.
        """
        results = _as_list(send_results)
        recipient_devices = self._collect_recipient_devices(results)
        if not recipient_devices:
            return RecordResult.nothing_to_record()

        content = next(r.success.content for r in results if _has_loggable_content(r))
        return self._insert(recipient_devices, sent_timestamp, content, content_hint)

    def add_recipient_to_existing_entry_if_possible(
        self,
        content_id: int,
        send_results: SendResult | Sequence[SendResult],
    ) -> RecordStatus:
        """Point more delivered devices at already logged content."""
        recipient_devices = self._collect_recipient_devices(_as_list(send_results))
        if not recipient_devices:
            return RecordStatus.NOTHING_TO_RECORD

        try:
            with self.connection() as conn, timed_db_operation("append_send_log"):
                with db.transaction(conn):
                    written = self._insert_recipients(conn, content_id, recipient_devices)
        except sqlite3.Error:
            logger.warning("Failed to append recipients to message send log", exc_info=True)
            metrics.increment("storage_failures")
            return RecordStatus.STORAGE_FAILURE

        metrics.increment("entries_recorded", written)
        return RecordStatus.RECORDED

    def _collect_recipient_devices(self, results: list[SendResult]) -> list[RecipientDevices]:
        recipient_devices = []
        for result in results:
            if not _has_loggable_content(result) or not result.success.devices:
                continue
            recipient_id = self.recipient_resolver.resolve_recipient(result.address)
            recipient_devices.append(
                RecipientDevices(recipient_id, tuple(result.success.devices))
            )
        return recipient_devices

    def _insert(
        self,
        recipient_devices: list[RecipientDevices],
        sent_timestamp: int,
        content: Content,
        content_hint: ContentHint,
    ) -> RecordResult:
        group_id = extract_group_id(content)

        try:
            with self.connection() as conn, timed_db_operation("insert_send_log"):
                with db.transaction(conn):
                    content_id = db.insert_content(
                        conn,
                        sent_timestamp,
                        group_id.serialize() if group_id is not None else None,
                        encode_content(content),
                        content_hint.type,
                    )
                    if content_id is None:
                        raise _ContentNotInserted()
                    written = self._insert_recipients(conn, content_id, recipient_devices)
        except _ContentNotInserted:
            logger.warning("Failed to insert message send log content")
            metrics.increment("storage_failures")
            return RecordResult.storage_failure()
        except sqlite3.Error:
            logger.warning("Failed to insert into message send log", exc_info=True)
            metrics.increment("storage_failures")
            return RecordResult.storage_failure()

        metrics.increment("content_recorded")
        metrics.increment("entries_recorded", written)
        return RecordResult.recorded(content_id)

    @staticmethod
    def _insert_recipients(
        conn: sqlite3.Connection, content_id: int, recipient_devices: list[RecipientDevices]
    ) -> int:
        return db.append_entries(
            conn,
            content_id,
            (
                (rd.recipient_id.id, device_id)
                for rd in recipient_devices
                for device_id in rd.device_ids
            ),
        )

    # --- Invalidation ---

    def delete_entry_for_group(self, sent_timestamp: int, group_id: GroupId) -> None:
        """Forget group content sent at a timestamp, for every recipient."""
        try:
            with self.connection() as conn, db.transaction(conn):
                deleted = db.delete_content_for_group(conn, sent_timestamp, group_id.serialize())
                self._delete_orphaned_log_contents(conn)
        except sqlite3.Error:
            logger.warning("Failed delete from message send log", exc_info=True)
            metrics.increment("storage_failures")
            return
        logger.debug(f"Deleted {deleted} group content row(s) sent at {sent_timestamp}")

    def delete_entry_for_recipient_non_group(
        self, sent_timestamp: int, recipient_id: RecipientId
    ) -> None:
        """Forget direct content sent to a recipient at a timestamp."""
        try:
            with self.connection() as conn, db.transaction(conn):
                db.delete_content_for_recipient_non_group(conn, sent_timestamp, recipient_id.id)
                self._delete_orphaned_log_contents(conn)
        except sqlite3.Error:
            logger.warning("Failed delete from message send log", exc_info=True)
            metrics.increment("storage_failures")

    def delete_entry_for_recipient(
        self, sent_timestamp: int, recipient_id: RecipientId, device_id: int
    ) -> None:
        self.delete_entries_for_recipient([sent_timestamp], recipient_id, device_id)

    def delete_entries_for_recipient(
        self, sent_timestamps: Iterable[int], recipient_id: RecipientId, device_id: int
    ) -> None:
        """Drop one device's entries for the given send timestamps.

        Content that no other device references any more goes with them.
        """
        sent_timestamps = list(sent_timestamps)
        if not sent_timestamps:
            return
        try:
            with self.connection() as conn, db.transaction(conn):
                db.delete_entries_for_recipient_device(
                    conn, sent_timestamps, recipient_id.id, device_id
                )
                self._delete_orphaned_log_contents(conn)
        except sqlite3.Error:
            logger.warning("Failed delete from message send log", exc_info=True)
            metrics.increment("storage_failures")

    @staticmethod
    def _delete_orphaned_log_contents(conn: sqlite3.Connection) -> None:
        reclaimed = db.delete_orphaned_content(conn)
        if reclaimed > 0:
            metrics.increment("orphans_reclaimed", reclaimed)

    # --- Expiry ---

    def retention_cutoff(self) -> int:
        """Timestamp (ms) before which content is expired."""
        return self._clock() - self.options.retention_ms

    def delete_outdated_entries(self) -> int:
        """Run one expiry sweep. Returns the number of content rows removed.

        Raises:
            sqlite3.Error: If the database can't be written
        """
        with self.connection() as conn:
            return self._delete_outdated_entries(conn)

    def count_outdated_entries(self) -> int:
        with self.connection() as conn:
            return db.count_content_older_than(conn, self.retention_cutoff())

    def _delete_outdated_entries(self, conn: sqlite3.Connection) -> int:
        with timed_db_operation("delete_outdated_entries"):
            row_count = db.delete_content_older_than(conn, self.retention_cutoff())
        if row_count > 0:
            metrics.increment("evicted", row_count)
            logger.debug(f"Removed {row_count} outdated entries from the message send log")
        else:
            logger.debug("No outdated entries to be removed from message send log")
        return row_count

    # --- Diagnostics ---

    def stats(self) -> dict:
        with self.connection() as conn, timed_db_operation("stats"):
            stats = db.get_stats(conn)
        stats["retention_hours"] = self.options.retention_hours
        stats["cleanup_running"] = self.cleanup_running
        stats["metrics"] = metrics.to_dict()
        return stats
