"""Tests for sendlog.testing fixtures."""

from sendlog import db
from sendlog.models import ContentHint
from sendlog.options import SendLogOptions
from sendlog.recipients import InMemoryRecipientResolver
from sendlog.store import SendLogStore
from sendlog.testing import TEST_EPOCH_MS, address, make_send_result


class TestClockFixture:
    def test_starts_at_test_epoch(self, clock):
        assert clock() == TEST_EPOCH_MS

    def test_advance(self, clock):
        assert clock.advance(hours=1, seconds=1, ms=1) == TEST_EPOCH_MS + 3_601_001
        assert clock() == clock.now


class TestSendLogFixture:
    def test_in_memory(self, send_log):
        assert send_log.options.in_memory
        assert not send_log.cleanup_running

    def test_fresh_each_test(self, send_log):
        """Should be fresh for each test (no leftover data)."""
        assert send_log.stats()["content_rows"] == 0

    def test_uses_fixture_resolver(self, send_log, resolver, clock):
        send_log.insert_if_possible(clock.now, make_send_result("alice"), ContentHint.DEFAULT)
        assert len(resolver) == 1


class TestSendLogFileFixture:
    def test_creates_database_file(self, send_log_file, tmp_path):
        assert (tmp_path / "sendlog.db").exists()

    def test_persists_data(self, send_log_file, tmp_path, clock):
        send_log_file.insert_if_possible(clock.now, make_send_result("alice"), ContentHint.DEFAULT)
        send_log_file.close()

        # Reopen and verify
        options = SendLogOptions(path=tmp_path / "sendlog.db", autostart_cleanup=False)
        with SendLogStore(InMemoryRecipientResolver(), options, clock=clock) as reopened:
            with reopened.connection() as conn:
                assert db.count_content(conn) == 1


class TestAnyBackendFixture:
    def test_works_everywhere(self, send_log_any_backend, resolver, clock):
        """Runs once per storage mode."""
        ts = clock.now
        send_log_any_backend.insert_if_possible(ts, make_send_result("bob"), ContentHint.DEFAULT)
        bob = resolver.resolve_recipient(address("bob"))
        assert len(send_log_any_backend.find_messages(bob, 1, ts)) == 1


class TestResolver:
    def test_same_address_same_id(self, resolver):
        assert resolver.resolve_recipient(address("a")) == resolver.resolve_recipient(address("a"))

    def test_sequential_ids(self, resolver):
        ids = [resolver.resolve_recipient(address(name)).id for name in ("a", "b", "c")]
        assert ids == [1, 2, 3]
