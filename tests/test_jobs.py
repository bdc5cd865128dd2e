"""Tests for send log scheduled jobs."""

import threading
import time

import pytest

from sendlog import db
from sendlog import jobs
from sendlog.metrics import metrics
from sendlog.models import ContentHint, RecordStatus
from sendlog.store import SendLogClosedError
from sendlog.testing import address, make_send_result


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll until predicate() is true or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def content_rows(store) -> int:
    with store.connection() as conn:
        return db.count_content(conn)


class TestTTLProcessing:
    def test_no_expired_content(self, send_log, clock):
        """Nothing is deleted when nothing has expired."""
        send_log.insert_if_possible(clock.now, make_send_result("alice"), ContentHint.DEFAULT)

        assert jobs.process_ttl(send_log) == 0
        assert content_rows(send_log) == 1

    def test_expired_content_deleted(self, send_log, clock):
        send_log.insert_if_possible(clock.now, make_send_result("alice"), ContentHint.DEFAULT)
        send_log.insert_if_possible(clock.now, make_send_result("bob"), ContentHint.DEFAULT)
        clock.advance(hours=25)

        assert jobs.process_ttl(send_log) == 2
        assert content_rows(send_log) == 0

    def test_entries_cascade(self, send_log, clock):
        send_log.insert_if_possible(
            clock.now, make_send_result("alice", devices=[1, 2, 3]), ContentHint.DEFAULT
        )
        clock.advance(hours=25)

        jobs.process_ttl(send_log)

        with send_log.connection() as conn:
            assert db.count_entries(conn) == 0

    def test_dry_run(self, send_log, clock):
        """Dry run shows count but doesn't delete."""
        send_log.insert_if_possible(clock.now, make_send_result("alice"), ContentHint.DEFAULT)
        clock.advance(hours=25)

        assert jobs.process_ttl(send_log, dry_run=True) == 1
        assert content_rows(send_log) == 1


class TestEvictionDaemon:
    def test_sweeps_periodically(self, send_log_file, clock):
        send_log_file.insert_if_possible(
            clock.now, make_send_result("alice"), ContentHint.DEFAULT
        )
        clock.advance(hours=25)

        daemon = jobs.EvictionDaemon(send_log_file, interval_seconds=0.02)
        daemon.start()
        try:
            assert wait_for(lambda: daemon.sweeps >= 2)
        finally:
            daemon.stop()

        assert content_rows(send_log_file) == 0
        assert not daemon.failed

    def test_waits_before_first_sweep(self, send_log_file, clock):
        send_log_file.insert_if_possible(
            clock.now, make_send_result("alice"), ContentHint.DEFAULT
        )
        clock.advance(hours=25)

        daemon = jobs.EvictionDaemon(send_log_file, interval_seconds=3600)
        daemon.start()
        daemon.stop()

        assert daemon.sweeps == 0
        assert content_rows(send_log_file) == 1

    def test_stop_interrupts_wait_and_joins(self, send_log_file):
        daemon = jobs.EvictionDaemon(send_log_file, interval_seconds=3600)
        daemon.start()
        assert daemon.is_running

        started = time.monotonic()
        daemon.stop()

        assert time.monotonic() - started < 5
        assert not daemon.is_running
        assert jobs.CLEANUP_THREAD_NAME not in {t.name for t in threading.enumerate()}

    def test_stop_before_start(self, send_log_file):
        daemon = jobs.EvictionDaemon(send_log_file)
        daemon.stop()
        assert not daemon.is_running

    def test_storage_failure_ends_loop(self, send_log_file):
        with send_log_file.connection() as conn:
            conn.execute("DROP TABLE message_send_log")
            conn.execute("DROP TABLE message_send_log_content")

        daemon = jobs.EvictionDaemon(send_log_file, interval_seconds=0.01)
        daemon.start()

        assert wait_for(lambda: not daemon.is_running)
        assert daemon.failed
        assert daemon.sweeps == 0
        daemon.stop()

    def test_lookups_sweep_without_daemon(self, send_log_file, resolver, clock):
        """Lookups sweep expired content without the background job."""
        ts = clock.now
        send_log_file.insert_if_possible(ts, make_send_result("alice"), ContentHint.DEFAULT)
        clock.advance(hours=25)

        alice = resolver.resolve_recipient(make_send_result("alice").address)
        assert send_log_file.find_messages(alice, 1, ts) == []
        assert content_rows(send_log_file) == 0


class TestStoreLifecycle:
    def test_store_start_and_close(self, send_log_file):
        assert not send_log_file.cleanup_running

        send_log_file.start()
        assert send_log_file.cleanup_running

        # Starting twice keeps the one running job
        send_log_file.start()
        assert send_log_file.cleanup_running

        send_log_file.close()
        assert not send_log_file.cleanup_running

    def test_restart_after_close(self, send_log_file):
        send_log_file.start()
        send_log_file.close()

        send_log_file.start()
        assert send_log_file.cleanup_running
        send_log_file.close()

    def test_closed_memory_store_cannot_restart(self, send_log):
        send_log.close()

        with pytest.raises(SendLogClosedError):
            send_log.start()
        assert not send_log.cleanup_running


class TestConcurrentCallers:
    def test_callers_alongside_daemon(self, send_log_any_backend, resolver, clock):
        """Record, lookup and invalidate from several threads while sweeps run."""
        store = send_log_any_backend
        statuses = []
        errors = []

        def caller(name: str) -> None:
            try:
                for i in range(50):
                    ts = clock.now + i
                    result = store.insert_if_possible(
                        ts, make_send_result(name, devices=[1, 2]), ContentHint.RESENDABLE
                    )
                    statuses.append(result.status)
                    if result:
                        more = make_send_result(f"{name}-extra")
                        statuses.append(
                            store.add_recipient_to_existing_entry_if_possible(
                                result.content_id, more
                            )
                        )
                    recipient_id = resolver.resolve_recipient(address(name))
                    store.find_messages(recipient_id, 1, ts)
                    store.delete_entry_for_recipient(ts, recipient_id, 2)
            except Exception as e:
                errors.append(e)

        daemon = jobs.EvictionDaemon(store, interval_seconds=0.001)
        daemon.start()
        try:
            threads = [
                threading.Thread(target=caller, args=(name,))
                for name in ("alice", "bob", "carol", "dave")
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            assert wait_for(lambda: daemon.sweeps >= 1)
        finally:
            daemon.stop()

        assert errors == []
        assert len(statuses) == 400
        assert set(statuses) == {RecordStatus.RECORDED}
        assert metrics.get("storage_failures") == 0
        assert not daemon.failed
        with store.connection() as conn:
            assert db.count_content(conn) == 200
            assert db.count_entries(conn) == 400
