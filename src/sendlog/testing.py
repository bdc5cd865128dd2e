"""Pytest fixtures for testing with the send log.

Usage in conftest.py:
    pytest_plugins = ["sendlog.testing"]

Or import specific fixtures:
    from sendlog.testing import send_log, clock

Available fixtures:
    - clock: Manually advanced millisecond clock
    - resolver: Fresh InMemoryRecipientResolver
    - send_log: In-memory store driven by `clock`, background job off
    - send_log_file: File-backed store (uses tmp_path), background job off
    - send_log_any_backend: Parametrized over in-memory and file stores
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, Generator

import pytest

from .content import Content, DataMessage, GroupContext, GroupContextV2
from .models import SendResult, ServiceAddress
from .options import SendLogOptions
from .recipients import InMemoryRecipientResolver
from .store import SendLogStore

if TYPE_CHECKING:
    from pathlib import Path

# Fixed starting point for the test clock (2024-01-01T00:00:00Z)
TEST_EPOCH_MS = 1_704_067_200_000


class ManualClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, now: int = TEST_EPOCH_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, *, hours: float = 0, seconds: float = 0, ms: int = 0) -> int:
        self.now += int(hours * 3_600_000 + seconds * 1000) + ms
        return self.now


@pytest.fixture
def clock() -> ManualClock:
    """Manually advanced clock, starting at TEST_EPOCH_MS."""
    return ManualClock()


@pytest.fixture
def resolver() -> InMemoryRecipientResolver:
    return InMemoryRecipientResolver()


@pytest.fixture
def send_log(
    resolver: InMemoryRecipientResolver, clock: ManualClock
) -> Generator[SendLogStore, None, None]:
    """In-memory send log with the background job disabled.

    Example:
        def test_lookup(send_log, resolver):
            result = send_log.insert_if_possible(1000, make_send_result("alice"), hint)
            alice = resolver.resolve_recipient(address("alice"))
            assert send_log.find_messages(alice, 1, 1000)
    """
    options = SendLogOptions(
        in_memory=True, autostart_cleanup=False, memory_name=f"fixture_{os.urandom(4).hex()}"
    )
    store = SendLogStore(resolver, options, clock=clock)
    yield store
    store.close()


@pytest.fixture
def send_log_file(
    resolver: InMemoryRecipientResolver, clock: ManualClock, tmp_path: "Path"
) -> Generator[SendLogStore, None, None]:
    """File-backed send log in tmp_path with the background job disabled."""
    store = SendLogStore(
        resolver,
        SendLogOptions(path=tmp_path / "sendlog.db", autostart_cleanup=False),
        clock=clock,
    )
    yield store
    store.close()


@pytest.fixture(params=["in_memory", "file"])
def send_log_any_backend(
    request: Any,
    resolver: InMemoryRecipientResolver,
    clock: ManualClock,
    tmp_path: "Path",
) -> Generator[SendLogStore, None, None]:
    """Parametrized fixture that runs tests against both storage modes."""
    if request.param == "in_memory":
        options = SendLogOptions(
            in_memory=True, autostart_cleanup=False, memory_name=f"param_{os.urandom(4).hex()}"
        )
    else:
        options = SendLogOptions(path=tmp_path / "sendlog.db", autostart_cleanup=False)
    store = SendLogStore(resolver, options, clock=clock)
    yield store
    store.close()


# --- Utility Functions ---


def address(name: str) -> ServiceAddress:
    """Build a deterministic address for a test recipient name."""
    return ServiceAddress(service_id=f"{name}-service-id", number=None)


def direct_content(body: str = "hello") -> Content:
    return Content(data_message=DataMessage(body=body, timestamp=TEST_EPOCH_MS))


def legacy_group_content(group_id: bytes, body: str = "hello group") -> Content:
    return Content(data_message=DataMessage(body=body, group=GroupContext(id=group_id)))


def group_content(master_key: bytes, body: str = "hello group") -> Content:
    return Content(
        data_message=DataMessage(body=body, group_v2=GroupContextV2(master_key=master_key))
    )


def make_send_result(
    name: str,
    content: Content | None = None,
    devices: list[int] | None = None,
) -> SendResult:
    """A successful delivery of content to the named recipient's devices."""
    return SendResult.succeeded(
        address(name),
        devices if devices is not None else [1],
        content if content is not None else direct_content(),
    )
